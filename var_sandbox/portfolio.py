"""
Portfolio Construction Module
=============================
Holding valuation, weight definition and return computation.

Mathematical Foundation:
    Market value:  MV_i = q_i · P_i
    Weight:        w_i = MV_i / Σ MV
    Simple return: r_t = P_t / P_{t-1} - 1
    Log return:    r_t = ln(P_t / P_{t-1})

Design note:
    Simple returns are the default: the VaR figures are read as
    currency losses on current market values, which is what simple
    returns measure. Log returns remain available for users whose
    price files span large moves.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from var_sandbox.config import RETURN_METHODS
from var_sandbox.errors import InvalidConfiguration, StatisticalComputationError


@dataclass(frozen=True)
class Holding:
    """One row of the Portfolio_Holdings sheet."""

    asset: str
    asset_type: str
    quantity: float
    price: float
    notes: str = ""

    @property
    def market_value(self) -> float:
        return self.quantity * self.price


def compute_market_values(holdings: Sequence[Holding]) -> pd.Series:
    """
    Market value of each holding, indexed by asset name.

    Parameters
    ----------
    holdings : sequence of Holding
        Parsed portfolio holdings.

    Returns
    -------
    pd.Series
        Market values (currency units).
    """
    return pd.Series(
        [h.market_value for h in holdings],
        index=[h.asset for h in holdings],
        dtype=float,
        name="market_value",
    )


def define_weights(
    holdings: Sequence[Holding],
    assets: Optional[List[str]] = None,
) -> np.ndarray:
    """
    Derive portfolio weights from market values.

    Parameters
    ----------
    holdings : sequence of Holding
        Parsed portfolio holdings.
    assets : list of str, optional
        Asset order of the price/covariance axis. Defaults to the
        holdings order.

    Returns
    -------
    np.ndarray
        Weight vector aligned with ``assets``; sums to 1.

    Raises
    ------
    StatisticalComputationError
        If the portfolio value is not strictly positive or an asset in
        ``assets`` has no holding.
    """
    values = compute_market_values(holdings)

    if assets is None:
        assets = list(values.index)

    # reindex keeps the weight vector aligned with the covariance axis
    # regardless of the order the holdings were listed in.
    aligned = values.reindex(assets)

    if aligned.isna().any():
        missing = aligned[aligned.isna()].index.tolist()
        raise StatisticalComputationError(
            f"weight alignment failed, no holding for assets: {missing}"
        )

    total = float(aligned.sum())
    if not np.isfinite(total) or total <= 0:
        raise StatisticalComputationError(
            f"portfolio value must be positive, got {total}"
        )

    return aligned.values / total


def compute_simple_returns(prices: pd.DataFrame) -> pd.DataFrame:
    """
    Compute simple (arithmetic) returns from price series.

    Mathematical Definition:
        r_t = P_t / P_{t-1} - 1

    Parameters
    ----------
    prices : pd.DataFrame
        DataFrame of asset prices.

    Returns
    -------
    pd.DataFrame
        DataFrame of simple returns (first row dropped).
    """
    return (prices / prices.shift(1) - 1.0).iloc[1:]


def compute_log_returns(prices: pd.DataFrame) -> pd.DataFrame:
    """
    Compute logarithmic returns from price series.

    Mathematical Definition:
        r_t = ln(P_t / P_{t-1})

    Parameters
    ----------
    prices : pd.DataFrame
        DataFrame of asset prices.

    Returns
    -------
    pd.DataFrame
        DataFrame of log returns (first row dropped).
    """
    return np.log(prices / prices.shift(1)).iloc[1:]


def compute_returns(prices: pd.DataFrame, method: str = "simple") -> pd.DataFrame:
    """Dispatch to the simple or log return computation."""
    if method not in RETURN_METHODS:
        raise InvalidConfiguration(
            f"return method must be one of {list(RETURN_METHODS)}, got {method!r}",
            key="return_method",
        )
    if method == "log":
        return compute_log_returns(prices)
    return compute_simple_returns(prices)
