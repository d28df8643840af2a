"""
Risk Metrics Module
====================
Implements Parametric (Variance-Covariance) VaR for a portfolio and
its decomposition into standalone VaR, Euler contributions and the
diversification benefit.

Mathematical Foundation:
    Annual volatility: σ_a = σ_period · √(P)
    Parametric VaR:    VaR = z_α · σ_a · √(h / P) · V
    Contribution:      C_i = w_i (Σw)_i / (w^T Σ w) · VaR
    Diversification:   D = Σ_i VaR_i - VaR

where P is the number of periods per year of the data frequency
(252 daily, 52 weekly, 12 monthly) and h is the horizon counted in
those periods.
"""

from typing import Dict, Optional

import numpy as np
from scipy import stats

from var_sandbox.config import PERIODS_PER_YEAR, SUPPORTED_CONFIDENCE_LEVELS
from var_sandbox.errors import InvalidConfiguration, StatisticalComputationError


# ─────────────────────────────────────────────────────────────
# Scaling helpers
# ─────────────────────────────────────────────────────────────

def z_value(confidence_level: float) -> float:
    """
    Standard normal quantile for a supported confidence level.

    Parameters
    ----------
    confidence_level : float
        One of 0.90, 0.95, 0.99, 0.999.

    Returns
    -------
    float
        z_α (e.g. 1.645 for 95%, 2.326 for 99%).
    """
    if not any(np.isclose(confidence_level, c) for c in SUPPORTED_CONFIDENCE_LEVELS):
        raise InvalidConfiguration(
            f"confidence level {confidence_level} is not supported",
            key="confidence_level",
            sheet=None,
        )
    return float(stats.norm.ppf(confidence_level))


def periods_per_year(frequency: str) -> int:
    try:
        return PERIODS_PER_YEAR[frequency]
    except KeyError:
        raise InvalidConfiguration(
            f"data frequency must be one of {sorted(PERIODS_PER_YEAR)}, got {frequency!r}",
            key="data_frequency",
            sheet=None,
        ) from None


def annualize_volatility(periodic_std, frequency: str):
    """Scale a per-observation standard deviation to annual terms."""
    return periodic_std * np.sqrt(periods_per_year(frequency))


def horizon_scaling_factor(time_horizon_days: int, frequency: str = "daily") -> float:
    """
    Square-root-of-time factor taking annual volatility to the horizon.

    The horizon counts periods of the data frequency, so h weekly
    periods scale the annual volatility by √(h / 52) and a one-period
    horizon gives back the per-observation volatility.
    """
    if time_horizon_days <= 0:
        raise InvalidConfiguration(
            f"time horizon must be a positive number of periods, got {time_horizon_days}",
            key="time_horizon_days",
            sheet=None,
        )
    return float(np.sqrt(time_horizon_days / periods_per_year(frequency)))


# ─────────────────────────────────────────────────────────────
# Parametric (Variance-Covariance) VaR
# ─────────────────────────────────────────────────────────────

def compute_parametric_var(
    annual_volatility: float,
    position_value: float,
    confidence_level: float,
    time_horizon_days: int,
    frequency: str = "daily",
) -> float:
    """
    Compute Parametric VaR in currency units.

    Mathematical Definition:
        VaR = z_α · σ_a · √(h / P) · V

    Parameters
    ----------
    annual_volatility : float
        Annualized volatility (fraction, not percent).
    position_value : float
        Market value of the position or portfolio.
    confidence_level : float
        Confidence level.
    time_horizon_days : int
        Holding period in periods of ``frequency``.
    frequency : str
        Data frequency that sets P (252, 52 or 12).

    Returns
    -------
    float
        VaR (positive = loss magnitude).
    """
    z_alpha = z_value(confidence_level)
    scaling = horizon_scaling_factor(time_horizon_days, frequency)
    return float(z_alpha * annual_volatility * scaling * position_value)


def compute_standalone_var(
    cov_matrix: np.ndarray,
    market_values: np.ndarray,
    frequency: str,
    confidence_level: float,
    time_horizon_days: int,
) -> np.ndarray:
    """
    VaR of each asset held in isolation, ignoring correlation.

    Parameters
    ----------
    cov_matrix : np.ndarray
        Covariance matrix of periodic returns (N x N).
    market_values : np.ndarray
        Market value per asset (N,).
    frequency : str
        Data frequency of the returns.
    confidence_level : float
        Confidence level.
    time_horizon_days : int
        Holding period in periods of ``frequency``.

    Returns
    -------
    np.ndarray
        Standalone VaR per asset (N,).
    """
    asset_vol = annualize_volatility(np.sqrt(np.diag(cov_matrix)), frequency)
    z_alpha = z_value(confidence_level)
    scaling = horizon_scaling_factor(time_horizon_days, frequency)
    return z_alpha * asset_vol * scaling * market_values


def compute_var_contributions(
    weights: np.ndarray,
    cov_matrix: np.ndarray,
    portfolio_var: float,
    portfolio_variance: Optional[float] = None,
) -> np.ndarray:
    """
    Euler allocation of portfolio VaR to each asset.

    Mathematical Definition:
        C_i = w_i (Σw)_i / (w^T Σ w) · VaR

    The contributions sum to the portfolio VaR.

    Parameters
    ----------
    weights : np.ndarray
        Portfolio weight vector (N,).
    cov_matrix : np.ndarray
        Covariance matrix (N x N).
    portfolio_var : float
        Portfolio VaR in currency units.
    portfolio_variance : float, optional
        Periodic w^T Σ w when the caller already has it.

    Returns
    -------
    np.ndarray
        VaR contribution per asset (N,).

    Raises
    ------
    StatisticalComputationError
        If the portfolio variance is not strictly positive.
    """
    marginal = cov_matrix @ weights
    if portfolio_variance is None:
        portfolio_variance = float(weights @ marginal)

    if not np.isfinite(portfolio_variance) or portfolio_variance <= 0.0:
        raise StatisticalComputationError(
            "portfolio variance is zero; VaR contributions are undefined "
            "(every holding has constant prices)"
        )

    return weights * marginal / portfolio_variance * portfolio_var


def compute_diversification_benefit(
    standalone_var: np.ndarray,
    portfolio_var: float,
) -> float:
    """
    Reduction of VaR from holding imperfectly correlated assets.

    Mathematical Definition:
        D = Σ_i VaR_i - VaR_p

    Tiny negative values from float rounding (perfect correlation) are
    reported as 0.
    """
    benefit = float(np.sum(standalone_var) - portfolio_var)
    tolerance = 1e-9 * max(abs(portfolio_var), 1.0)
    if -tolerance < benefit < 0.0:
        return 0.0
    return benefit


def parametric_risk_metrics(
    weights: np.ndarray,
    cov_matrix: np.ndarray,
    market_values: np.ndarray,
    frequency: str,
    confidence_level: float,
    time_horizon_days: int,
    portfolio_variance: Optional[float] = None,
) -> Dict[str, object]:
    """
    Compute the full parametric VaR breakdown.

    Parameters
    ----------
    weights : np.ndarray
        Portfolio weight vector.
    cov_matrix : np.ndarray
        Covariance matrix of periodic returns.
    market_values : np.ndarray
        Market value per asset.
    frequency : str
        Data frequency of the returns.
    confidence_level : float
        Confidence level.
    time_horizon_days : int
        Holding period in periods of ``frequency``.
    portfolio_variance : float, optional
        Periodic w^T Σ w from ``compute_portfolio_statistics``; computed
        here when omitted.

    Returns
    -------
    dict
        portfolio_value, portfolio_volatility (annual fraction),
        portfolio_var, z_value, horizon_scaling, standalone_var,
        var_contributions, diversification_benefit.
    """
    portfolio_value = float(np.sum(market_values))
    if portfolio_variance is None:
        portfolio_variance = float(weights @ cov_matrix @ weights)
    portfolio_std = float(np.sqrt(max(portfolio_variance, 0.0)))
    portfolio_vol = float(annualize_volatility(portfolio_std, frequency))

    portfolio_var = compute_parametric_var(
        portfolio_vol, portfolio_value, confidence_level, time_horizon_days, frequency
    )
    standalone = compute_standalone_var(
        cov_matrix, market_values, frequency, confidence_level, time_horizon_days
    )
    contributions = compute_var_contributions(
        weights, cov_matrix, portfolio_var, portfolio_variance
    )

    return {
        "portfolio_value": portfolio_value,
        "portfolio_volatility": portfolio_vol,
        "portfolio_var": portfolio_var,
        "z_value": z_value(confidence_level),
        "horizon_scaling": horizon_scaling_factor(time_horizon_days, frequency),
        "standalone_var": standalone,
        "var_contributions": contributions,
        "diversification_benefit": compute_diversification_benefit(
            standalone, portfolio_var
        ),
    }
