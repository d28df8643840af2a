"""
Workbook Loader
===============
Parses the VaR upload workbook into holdings, an aligned price history
and the run configuration.

Workbook layout (headers are case-sensitive):
    Portfolio_Holdings:  asset | type | quantity | price | [notes]
    Price_History:       date | <asset 1> | <asset 2> | ...
    Configuration:       key | value

Validation never coerces: a blank price, an unknown asset or an
unsupported parameter raises a typed error naming the sheet, the row
and the reason.
"""

import dataclasses
import logging
import math
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from var_sandbox.config import (
    ASSET_TYPES,
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_CURRENCY,
    DEFAULT_TIME_HORIZON_DAYS,
    PERIODS_PER_YEAR,
    RETURN_METHODS,
    SUPPORTED_CONFIDENCE_LEVELS,
)
from var_sandbox.errors import (
    IncompleteData,
    InvalidConfiguration,
    MalformedSheet,
    MissingPriceSeries,
)
from var_sandbox.portfolio import Holding

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────
HOLDINGS_SHEET = "Portfolio_Holdings"
PRICES_SHEET = "Price_History"
CONFIG_SHEET = "Configuration"
REQUIRED_SHEETS: Tuple[str, ...] = (HOLDINGS_SHEET, PRICES_SHEET, CONFIG_SHEET)

HOLDINGS_COLUMNS: Tuple[str, ...] = ("asset", "type", "quantity", "price")
DATE_COLUMN = "date"
CONFIG_COLUMNS: Tuple[str, ...] = ("key", "value")

CONFIG_ALIASES: Dict[str, str] = {
    "confidence_level": "confidence_level",
    "confidence": "confidence_level",
    "time_horizon_days": "time_horizon_days",
    "time_horizon": "time_horizon_days",
    "horizon": "time_horizon_days",
    "data_frequency": "data_frequency",
    "frequency": "data_frequency",
    "return_method": "return_method",
    "currency": "currency",
}

EXCEL_EPOCH = pd.Timestamp("1899-12-30")

# Median spacing (calendar days) separating daily, weekly and monthly data
DAILY_MAX_GAP: float = 3.0
WEEKLY_MAX_GAP: float = 10.0

WorkbookSource = Union[str, Path, BinaryIO]

DATE_FORMATS: Tuple[str, ...] = ("%Y-%m-%d", "%d-%b-%Y", "%d/%m/%Y")


@dataclass(frozen=True)
class VarConfig:
    """Run parameters from the Configuration sheet."""

    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL
    time_horizon_days: int = DEFAULT_TIME_HORIZON_DAYS
    data_frequency: str = "daily"
    return_method: str = "simple"
    currency: str = DEFAULT_CURRENCY
    frequency_detected: bool = False


@dataclass
class VarUploadData:
    """The three parsed sheets of one upload."""

    holdings: List[Holding]
    prices: pd.DataFrame
    config: VarConfig

    @property
    def assets(self) -> List[str]:
        return [h.asset for h in self.holdings]


# ─────────────────────────────────────────────────────────────
# Cell helpers
# ─────────────────────────────────────────────────────────────

def _sheet_row(index) -> int:
    # header occupies spreadsheet row 1
    return int(index) + 2


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _clean_string(value) -> str:
    if _is_blank(value):
        return ""
    return str(value).strip()


def _to_number(value) -> Optional[float]:
    """Float value of a cell, or None if it is not a finite number."""
    if isinstance(value, bool) or _is_blank(value):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _parse_date(value) -> Optional[pd.Timestamp]:
    if _is_blank(value):
        return None
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return pd.Timestamp(value).normalize()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Excel serial date
        return (EXCEL_EPOCH + pd.Timedelta(days=float(value))).normalize()
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return pd.Timestamp(datetime.strptime(text, fmt))
        except ValueError:
            continue
    try:
        return pd.Timestamp(pd.to_datetime(text, dayfirst=True)).normalize()
    except (TypeError, ValueError, OverflowError):
        return None


def _require_columns(df: pd.DataFrame, columns: Sequence[str], sheet: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise MalformedSheet(
            f"missing column(s) {missing}; found {list(df.columns)}",
            sheet=sheet,
            row=1,
        )


def _normalize_headers(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [str(c).strip() for c in df.columns]
    return df.dropna(how="all")


# ─────────────────────────────────────────────────────────────
# Sheet parsers
# ─────────────────────────────────────────────────────────────

def parse_holdings(df: pd.DataFrame) -> List[Holding]:
    """
    Parse the Portfolio_Holdings sheet.

    Parameters
    ----------
    df : pd.DataFrame
        Raw sheet contents.

    Returns
    -------
    list of Holding
        Holdings in sheet order.

    Raises
    ------
    MalformedSheet
        On a blank asset name, unknown asset type, non-numeric or
        negative quantity/price, duplicate asset, or an empty portfolio.
    """
    df = _normalize_headers(df)
    _require_columns(df, HOLDINGS_COLUMNS, HOLDINGS_SHEET)
    has_notes = "notes" in df.columns

    holdings: List[Holding] = []
    seen = set()

    for idx, record in df.iterrows():
        row = _sheet_row(idx)
        asset = _clean_string(record["asset"])
        if not asset:
            raise MalformedSheet("asset name is blank", sheet=HOLDINGS_SHEET, row=row)
        if asset in seen:
            raise MalformedSheet(
                "asset is listed more than once", sheet=HOLDINGS_SHEET, row=row, asset=asset
            )

        asset_type = _clean_string(record["type"]).lower()
        if asset_type not in ASSET_TYPES:
            raise MalformedSheet(
                f"asset type must be one of {list(ASSET_TYPES)}, got {record['type']!r}",
                sheet=HOLDINGS_SHEET,
                row=row,
                asset=asset,
            )

        values = {}
        for column in ("quantity", "price"):
            number = _to_number(record[column])
            if number is None:
                raise MalformedSheet(
                    f"{column} is not a number: {record[column]!r}",
                    sheet=HOLDINGS_SHEET,
                    row=row,
                    asset=asset,
                )
            if number < 0:
                raise MalformedSheet(
                    f"{column} must be non-negative, got {number}",
                    sheet=HOLDINGS_SHEET,
                    row=row,
                    asset=asset,
                )
            values[column] = number

        holdings.append(
            Holding(
                asset=asset,
                asset_type=asset_type,
                quantity=values["quantity"],
                price=values["price"],
                notes=_clean_string(record["notes"]) if has_notes else "",
            )
        )
        seen.add(asset)

    if not holdings:
        raise MalformedSheet("no portfolio holdings found", sheet=HOLDINGS_SHEET)

    if sum(h.market_value for h in holdings) <= 0:
        raise MalformedSheet(
            "total portfolio value must be positive", sheet=HOLDINGS_SHEET
        )

    return holdings


def _first_gap(mask: np.ndarray) -> Tuple[int, int]:
    """Start and end position of the first run of True values."""
    start = int(np.flatnonzero(mask)[0])
    end = start
    while end + 1 < len(mask) and mask[end + 1]:
        end += 1
    return start, end


def parse_price_history(df: pd.DataFrame, assets: Sequence[str]) -> pd.DataFrame:
    """
    Parse the Price_History sheet into an aligned price matrix.

    Parameters
    ----------
    df : pd.DataFrame
        Raw sheet contents.
    assets : sequence of str
        Holding asset names; each needs a price column.

    Returns
    -------
    pd.DataFrame
        Prices indexed by ascending date, one float column per asset in
        ``assets`` order.

    Raises
    ------
    MissingPriceSeries
        If a holding has no price column.
    IncompleteData
        On a blank or unreadable date, or a blank price in the window.
    MalformedSheet
        On duplicate dates or non-numeric / non-positive prices.
    """
    df = _normalize_headers(df)
    _require_columns(df, (DATE_COLUMN,), PRICES_SHEET)

    missing = [a for a in assets if a not in df.columns]
    if missing:
        raise MissingPriceSeries(missing, sheet=PRICES_SHEET)

    extra = [c for c in df.columns if c != DATE_COLUMN and c not in assets]
    if extra:
        logger.debug("Ignoring price columns without holdings: %s", extra)

    if df.empty:
        raise IncompleteData("no price history rows found", sheet=PRICES_SHEET)

    dates = []
    rows = []
    for idx, value in df[DATE_COLUMN].items():
        parsed = _parse_date(value)
        if parsed is None:
            raise IncompleteData(
                f"missing or unreadable date {value!r}",
                row=_sheet_row(idx),
                sheet=PRICES_SHEET,
            )
        dates.append(parsed)
        rows.append(_sheet_row(idx))

    columns: Dict[str, List[float]] = {}
    for asset in assets:
        series = []
        for idx, value in df[asset].items():
            if _is_blank(value):
                series.append(np.nan)
                continue
            number = _to_number(value)
            if number is None:
                raise MalformedSheet(
                    f"price is not a number: {value!r}",
                    sheet=PRICES_SHEET,
                    row=_sheet_row(idx),
                    asset=asset,
                )
            if number <= 0:
                raise MalformedSheet(
                    f"price must be positive, got {number}",
                    sheet=PRICES_SHEET,
                    row=_sheet_row(idx),
                    asset=asset,
                )
            series.append(number)
        columns[asset] = series

    prices = pd.DataFrame(columns, index=pd.DatetimeIndex(dates, name=DATE_COLUMN))
    prices["_row"] = rows
    prices = prices.sort_index(kind="mergesort")

    duplicated = prices.index.duplicated()
    if duplicated.any():
        pos = int(np.flatnonzero(duplicated)[0])
        raise MalformedSheet(
            f"date {prices.index[pos]:%Y-%m-%d} appears more than once",
            sheet=PRICES_SHEET,
            row=int(prices["_row"].iloc[pos]),
        )

    row_numbers = prices.pop("_row")

    for asset in assets:
        mask = prices[asset].isna().to_numpy()
        if not mask.any():
            continue
        start, end = _first_gap(mask)
        first, last = prices.index[start], prices.index[end]
        count = end - start + 1
        raise IncompleteData(
            f"{count} missing price(s) from {first:%Y-%m-%d} to {last:%Y-%m-%d}",
            asset=asset,
            start=first.date(),
            end=last.date(),
            count=count,
            row=int(row_numbers.iloc[start]),
            sheet=PRICES_SHEET,
        )

    return prices.astype(np.float64)


def detect_frequency(dates: pd.DatetimeIndex) -> str:
    """
    Infer daily / weekly / monthly data from the median date spacing.

    Parameters
    ----------
    dates : pd.DatetimeIndex
        Sorted observation dates.

    Returns
    -------
    str
        One of 'daily', 'weekly', 'monthly'.
    """
    if len(dates) < 2:
        return "daily"
    gaps = np.diff(dates.values).astype("timedelta64[s]").astype(np.float64) / 86400.0
    median_gap = float(np.median(gaps))
    if median_gap <= DAILY_MAX_GAP:
        return "daily"
    if median_gap <= WEEKLY_MAX_GAP:
        return "weekly"
    return "monthly"


def parse_confidence_level(value, row: Optional[int] = None, sheet: Optional[str] = CONFIG_SHEET) -> float:
    """Accepts 95, '95%', 0.95, '99.9%' ... and returns a fraction."""
    raw = value
    is_percent = False
    if isinstance(value, str):
        value = value.strip()
        if value.endswith("%"):
            is_percent = True
            value = value[:-1]
    number = _to_number(value)
    if number is not None and (is_percent or number > 1):
        number = number / 100.0

    if number is not None:
        for level in SUPPORTED_CONFIDENCE_LEVELS:
            if math.isclose(number, level, abs_tol=1e-9):
                return level

    raise InvalidConfiguration(
        f"confidence level {raw!r} is not one of 90%, 95%, 99%, 99.9%",
        key="confidence_level",
        row=row,
        sheet=sheet,
    )


def parse_time_horizon(value, row: Optional[int] = None, sheet: Optional[str] = CONFIG_SHEET) -> int:
    number = _to_number(value)
    if number is None or number <= 0 or not float(number).is_integer():
        raise InvalidConfiguration(
            f"time horizon must be a positive whole number of periods, got {value!r}",
            key="time_horizon_days",
            row=row,
            sheet=sheet,
        )
    return int(number)


def parse_configuration(
    df: pd.DataFrame,
    dates: Optional[pd.DatetimeIndex] = None,
) -> VarConfig:
    """
    Parse the key/value Configuration sheet.

    Parameters
    ----------
    df : pd.DataFrame
        Raw sheet contents.
    dates : pd.DatetimeIndex, optional
        Price history dates, used to detect the data frequency when the
        sheet does not state it.

    Returns
    -------
    VarConfig
        Validated run parameters; unknown keys are ignored.
    """
    df = _normalize_headers(df)
    _require_columns(df, CONFIG_COLUMNS, CONFIG_SHEET)

    entries: Dict[str, Tuple[object, int]] = {}
    for idx, record in df.iterrows():
        key = _clean_string(record["key"]).lower().replace(" ", "_")
        if key in CONFIG_ALIASES:
            entries[CONFIG_ALIASES[key]] = (record["value"], _sheet_row(idx))
        elif key:
            logger.debug("Ignoring configuration key %r", key)

    confidence = DEFAULT_CONFIDENCE_LEVEL
    if "confidence_level" in entries:
        value, row = entries["confidence_level"]
        confidence = parse_confidence_level(value, row=row)

    horizon = DEFAULT_TIME_HORIZON_DAYS
    if "time_horizon_days" in entries:
        value, row = entries["time_horizon_days"]
        horizon = parse_time_horizon(value, row=row)

    detected = False
    frequency_value = entries.get("data_frequency", (None, None))
    frequency = _clean_string(frequency_value[0]).lower()
    if not frequency:
        frequency = detect_frequency(dates) if dates is not None else "daily"
        detected = True
    elif frequency not in PERIODS_PER_YEAR:
        raise InvalidConfiguration(
            f"data frequency must be Daily, Weekly or Monthly, got {frequency_value[0]!r}",
            key="data_frequency",
            row=frequency_value[1],
        )

    method_value = entries.get("return_method", (None, None))
    method = _clean_string(method_value[0]).lower() or "simple"
    if method not in RETURN_METHODS:
        raise InvalidConfiguration(
            f"return method must be one of {list(RETURN_METHODS)}, got {method_value[0]!r}",
            key="return_method",
            row=method_value[1],
        )

    currency = _clean_string(entries.get("currency", (None, None))[0]) or DEFAULT_CURRENCY

    return VarConfig(
        confidence_level=confidence,
        time_horizon_days=horizon,
        data_frequency=frequency,
        return_method=method,
        currency=currency,
        frequency_detected=detected,
    )


def apply_overrides(
    config: VarConfig,
    confidence_level=None,
    time_horizon_days=None,
) -> VarConfig:
    """Re-validate parameters chosen after upload (UI selectors, CLI flags)."""
    changes = {}
    if confidence_level is not None:
        changes["confidence_level"] = parse_confidence_level(confidence_level, sheet=None)
    if time_horizon_days is not None:
        changes["time_horizon_days"] = parse_time_horizon(time_horizon_days, sheet=None)
    return dataclasses.replace(config, **changes)


# ─────────────────────────────────────────────────────────────
# Workbook I/O
# ─────────────────────────────────────────────────────────────

def read_workbook(source: WorkbookSource) -> Dict[str, pd.DataFrame]:
    """Read every sheet of the workbook and check the required ones exist."""
    try:
        sheets = pd.read_excel(source, sheet_name=None, engine="openpyxl")
    except (OSError, ValueError, zipfile.BadZipFile, InvalidFileException) as exc:
        raise MalformedSheet(f"cannot read workbook: {exc}") from exc

    missing = [s for s in REQUIRED_SHEETS if s not in sheets]
    if missing:
        raise MalformedSheet(f"missing required sheet(s): {', '.join(missing)}")

    return sheets


def load_workbook(source: WorkbookSource) -> VarUploadData:
    """
    Load and validate a VaR upload workbook.

    Parameters
    ----------
    source : str, Path or file-like
        Path to the .xlsx file or an open binary buffer.

    Returns
    -------
    VarUploadData
        Holdings, aligned prices and configuration.
    """
    sheets = read_workbook(source)

    holdings = parse_holdings(sheets[HOLDINGS_SHEET])
    prices = parse_price_history(sheets[PRICES_SHEET], [h.asset for h in holdings])
    config = parse_configuration(sheets[CONFIG_SHEET], prices.index)

    logger.info(
        "Loaded %d holdings, %d price observations (%s%s)",
        len(holdings),
        len(prices),
        config.data_frequency,
        ", detected" if config.frequency_detected else "",
    )

    return VarUploadData(holdings=holdings, prices=prices, config=config)


TEMPLATE_HOLDINGS = [
    ("NGN 10Y Bond", "Bond", 1_000, 985.00, "Units of NGN 1,000 face; price in NGN per unit"),
    ("NGN 5Y T-Bill", "Bond", 500, 992.00, "Units of NGN 1,000 face; price in NGN per unit"),
    ("Dangote Cement", "Equity", 10_000, 285.00, "Number of shares; price per share"),
    ("Access Bank", "Equity", 25_000, 12.50, "Number of shares; price per share"),
]

TEMPLATE_DAILY_VOL = {
    "NGN 10Y Bond": 0.004,
    "NGN 5Y T-Bill": 0.001,
    "Dangote Cement": 0.018,
    "Access Bank": 0.025,
}


def write_template(
    path: Union[str, Path],
    observations: int = 300,
    seed: int = 42,
) -> Path:
    """
    Write a sample upload workbook with all three sheets.

    Parameters
    ----------
    path : str or Path
        Destination .xlsx file.
    observations : int
        Number of business days of sample prices.
    seed : int
        Random seed for the sample price paths.

    Returns
    -------
    Path
        The written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(seed)

    holdings = pd.DataFrame(
        TEMPLATE_HOLDINGS, columns=["asset", "type", "quantity", "price", "notes"]
    )

    dates = pd.bdate_range(end=pd.Timestamp("2024-12-31"), periods=observations)
    history = {DATE_COLUMN: dates}
    for asset, _, _, price, _ in TEMPLATE_HOLDINGS:
        shocks = rng.normal(0.0, TEMPLATE_DAILY_VOL[asset], size=observations)
        walk = np.cumprod(1.0 + shocks)
        # rescale so the last observation matches the holding's current price
        history[asset] = np.round(walk / walk[-1] * price, 4)

    configuration = pd.DataFrame(
        [
            ("data_frequency", "Daily", "Daily, Weekly or Monthly"),
            ("confidence_level", "95%", "90%, 95%, 99% or 99.9%"),
            ("time_horizon_days", 1, "VaR horizon in periods of the data frequency"),
            ("return_method", "simple", "simple or log"),
            ("currency", DEFAULT_CURRENCY, "Base currency for all positions"),
        ],
        columns=["key", "value", "description"],
    )

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        holdings.to_excel(writer, sheet_name=HOLDINGS_SHEET, index=False)
        pd.DataFrame(history).to_excel(writer, sheet_name=PRICES_SHEET, index=False)
        configuration.to_excel(writer, sheet_name=CONFIG_SHEET, index=False)

    logger.info("Wrote VaR template to %s", path)
    return path
