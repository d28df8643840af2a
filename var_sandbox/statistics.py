"""
Statistical Estimation Module
==============================
Computes the covariance matrix, correlation matrix and portfolio-level
statistics using NumPy linear algebra.

Mathematical Foundation:
    Covariance:   Σ_ij = Σ_t (r_it - r̄_i)(r_jt - r̄_j) / (n - 1)
    Correlation:  ρ_ij = Σ_ij / (σ_i σ_j)
    Portfolio σ²: σ_p² = w^T Σ w
"""

import logging
import warnings
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

from var_sandbox.errors import StatisticalComputationError

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────
MIN_RETURN_OBSERVATIONS: int = 2
PSD_TOLERANCE: float = 1e-10


class ZeroVarianceWarning(UserWarning):
    """An asset has constant prices; its correlations are undefined."""


def compute_covariance_matrix(returns: pd.DataFrame) -> np.ndarray:
    """
    Compute the sample covariance matrix of returns.

    Uses unbiased estimator (ddof=1).
    No loops — pure matrix computation via NumPy.

    Parameters
    ----------
    returns : pd.DataFrame
        Periodic returns (T x N).

    Returns
    -------
    np.ndarray
        Covariance matrix (N x N).

    Raises
    ------
    StatisticalComputationError
        If fewer than two return observations are available or the
        returns contain non-finite values.
    """
    values = returns.to_numpy(dtype=np.float64)

    if values.shape[0] < MIN_RETURN_OBSERVATIONS:
        raise StatisticalComputationError(
            f"at least {MIN_RETURN_OBSERVATIONS} return observations are "
            f"required for a sample covariance, got {values.shape[0]}"
        )
    if not np.all(np.isfinite(values)):
        raise StatisticalComputationError("returns contain non-finite values")

    cov = np.cov(values, rowvar=False, ddof=1)
    # np.cov collapses a single asset to a 0-d array
    return np.atleast_2d(cov)


def compute_correlation_matrix(
    cov_matrix: np.ndarray,
    labels: List[str],
) -> Tuple[np.ndarray, List[str]]:
    """
    Normalize the covariance matrix into a Pearson correlation matrix.

    Zero-variance assets have no defined correlation; their off-diagonal
    entries are set to 0 and a ``ZeroVarianceWarning`` is emitted.
    Entries are clipped to [-1, 1] and the diagonal is exactly 1.

    Parameters
    ----------
    cov_matrix : np.ndarray
        Covariance matrix (N x N).
    labels : list of str
        Asset names in matrix order.

    Returns
    -------
    tuple
        (correlation matrix, list of zero-variance asset names)
    """
    variances = np.diag(cov_matrix).copy()
    zero_var = variances <= 0.0
    std = np.sqrt(np.where(zero_var, 1.0, variances))

    corr = cov_matrix / np.outer(std, std)
    corr[zero_var, :] = 0.0
    corr[:, zero_var] = 0.0

    corr = np.clip(corr, -1.0, 1.0)
    np.fill_diagonal(corr, 1.0)

    flat_assets = [labels[i] for i in np.flatnonzero(zero_var)]
    if flat_assets:
        message = (
            f"zero variance for {', '.join(flat_assets)}; "
            "correlation treated as 0"
        )
        logger.warning(message)
        warnings.warn(message, ZeroVarianceWarning, stacklevel=2)

    return corr, flat_assets


def validate_covariance_matrix(cov_matrix: np.ndarray) -> None:
    """
    Check that the covariance matrix is usable for parametric VaR.

    Parameters
    ----------
    cov_matrix : np.ndarray
        Covariance matrix to validate.

    Raises
    ------
    StatisticalComputationError
        If the matrix is not square, not finite, not symmetric or not
        positive semi-definite.
    """
    if cov_matrix.ndim != 2 or cov_matrix.shape[0] != cov_matrix.shape[1]:
        raise StatisticalComputationError(
            f"covariance matrix must be square, got shape {cov_matrix.shape}"
        )

    if not np.all(np.isfinite(cov_matrix)):
        raise StatisticalComputationError("covariance matrix has non-finite entries")

    # Symmetry check
    if not np.allclose(cov_matrix, cov_matrix.T, atol=PSD_TOLERANCE):
        raise StatisticalComputationError("covariance matrix is not symmetric")

    # Positive semi-definiteness: all eigenvalues >= 0 up to float noise
    eigenvalues = np.linalg.eigvalsh(cov_matrix)
    scale = max(float(np.max(np.abs(eigenvalues))), 1.0)
    if np.min(eigenvalues) < -PSD_TOLERANCE * scale:
        raise StatisticalComputationError(
            "covariance matrix is not positive semi-definite "
            f"(smallest eigenvalue {float(np.min(eigenvalues)):.3e})"
        )


def compute_portfolio_statistics(
    weights: np.ndarray,
    cov_matrix: np.ndarray,
) -> Dict[str, float]:
    """
    Compute portfolio-level risk statistics.

    Mathematical Definitions:
        Portfolio variance:  σ_p² = w^T Σ w
        Portfolio std dev:   σ_p  = sqrt(σ_p²)

    Parameters
    ----------
    weights : np.ndarray
        Portfolio weight vector.
    cov_matrix : np.ndarray
        Covariance matrix.

    Returns
    -------
    dict
        Dictionary with portfolio_variance and portfolio_std (per
        observation period).
    """
    portfolio_variance: float = float(weights @ cov_matrix @ weights)
    # clamp float noise around zero before the square root
    portfolio_std: float = float(np.sqrt(max(portfolio_variance, 0.0)))

    return {
        "portfolio_variance": portfolio_variance,
        "portfolio_std": portfolio_std,
    }


def get_all_statistics(
    returns: pd.DataFrame,
    weights: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, List[str], Dict[str, float]]:
    """
    Compute all statistical estimates in one call.

    The covariance matrix is estimated once and reused for the
    correlation matrix and the portfolio statistics.

    Parameters
    ----------
    returns : pd.DataFrame
        Periodic returns.
    weights : np.ndarray
        Portfolio weight vector.

    Returns
    -------
    tuple
        (cov_matrix, corr_matrix, zero_variance_assets, portfolio_stats)
    """
    cov = compute_covariance_matrix(returns)
    validate_covariance_matrix(cov)
    corr, flat_assets = compute_correlation_matrix(cov, list(returns.columns))
    port_stats = compute_portfolio_statistics(weights, cov)

    logger.debug(
        "Estimated %dx%d covariance from %d returns",
        cov.shape[0], cov.shape[1], len(returns),
    )

    return cov, corr, flat_assets, port_stats
