import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from var_sandbox.loader import (
    CONFIG_SHEET,
    HOLDINGS_SHEET,
    PRICES_SHEET,
    VarConfig,
    VarUploadData,
)
from var_sandbox.portfolio import Holding


def price_frame(returns, assets, start="2023-01-02", freq="B", base=100.0):
    """Price levels whose simple returns are ``returns`` (T x N)."""
    returns = np.asarray(returns, dtype=float)
    if returns.ndim == 1:
        returns = returns[:, None]
    levels = base * np.vstack([np.ones(returns.shape[1]), np.cumprod(1.0 + returns, axis=0)])
    dates = pd.date_range(start=start, periods=len(levels), freq=freq)
    return pd.DataFrame(levels, index=pd.DatetimeIndex(dates, name="date"), columns=list(assets))


@pytest.fixture
def make_upload():
    def build(
        returns,
        assets=None,
        market_values=None,
        frequency="daily",
        confidence_level=0.95,
        time_horizon_days=1,
        freq="B",
    ):
        returns = np.asarray(returns, dtype=float)
        n_assets = 1 if returns.ndim == 1 else returns.shape[1]
        assets = assets or [f"Asset {i + 1}" for i in range(n_assets)]
        market_values = market_values or [1_000_000.0] * n_assets

        holdings = [
            Holding(asset=a, asset_type="equity", quantity=mv / 100.0, price=100.0)
            for a, mv in zip(assets, market_values)
        ]
        config = VarConfig(
            confidence_level=confidence_level,
            time_horizon_days=time_horizon_days,
            data_frequency=frequency,
        )
        return VarUploadData(
            holdings=holdings,
            prices=price_frame(returns, assets, freq=freq),
            config=config,
        )

    return build


@pytest.fixture
def sample_returns():
    rng = np.random.default_rng(11)
    return rng.normal(0.0, [0.01, 0.015, 0.02], size=(300, 3))


@pytest.fixture
def write_workbook(tmp_path):
    """Build an upload workbook; any sheet can be replaced or dropped."""

    def build(
        holdings=None,
        prices=None,
        config=None,
        name="upload.xlsx",
        drop=(),
    ):
        if holdings is None:
            holdings = pd.DataFrame(
                [
                    ("Bond A", "Bond", 10_000, 100.0),
                    ("Stock B", "Equity", 2_000, 250.0),
                ],
                columns=["asset", "type", "quantity", "price"],
            )
        if prices is None:
            rng = np.random.default_rng(3)
            prices = price_frame(
                rng.normal(0.0, [0.004, 0.02], size=(299, 2)), ["Bond A", "Stock B"]
            ).reset_index()
        if config is None:
            config = pd.DataFrame(
                [
                    ("data_frequency", "Daily"),
                    ("confidence_level", "95%"),
                    ("time_horizon_days", 1),
                ],
                columns=["key", "value"],
            )

        path = tmp_path / name
        sheets = {
            HOLDINGS_SHEET: holdings,
            PRICES_SHEET: prices,
            CONFIG_SHEET: config,
        }
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for sheet, frame in sheets.items():
                if sheet not in drop:
                    frame.to_excel(writer, sheet_name=sheet, index=False)
        return path

    return build
