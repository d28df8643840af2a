"""
VaR Calculator — Analysis Pipeline
===================================
Runs one VaR analysis over an uploaded workbook.

Execution Flow:
    1. Returns from the aligned price history
    2. Covariance (once) and correlation matrices
    3. Portfolio weights from market values
    4. Parametric VaR, standalone VaR, Euler contributions
    5. Likelihood / impact scores against the scale configuration
"""

import logging
import warnings
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from var_sandbox.config import MIN_OBSERVATIONS
from var_sandbox.loader import VarUploadData, apply_overrides
from var_sandbox.portfolio import compute_market_values, compute_returns, define_weights
from var_sandbox.risk_metrics import annualize_volatility, parametric_risk_metrics
from var_sandbox.scales import ScaleConfig, impact_score, likelihood_score
from var_sandbox.statistics import get_all_statistics

logger = logging.getLogger(__name__)


class ReducedConfidenceWarning(UserWarning):
    """Price history is shorter than the recommended minimum."""


@dataclass(frozen=True)
class AssetContribution:
    asset: str
    asset_type: str
    market_value: float
    weight: float
    volatility: float
    standalone_var: float
    var_contribution: float
    var_contribution_pct: float
    diversification_benefit: float


@dataclass
class VaRResult:
    """Outcome of one parametric VaR analysis."""

    portfolio_var: float
    portfolio_volatility: float
    portfolio_value: float
    confidence_level: float
    z_value: float
    time_horizon_days: int
    horizon_scaling: float
    data_frequency: str
    observations: int
    asset_contributions: List[AssetContribution]
    covariance_matrix: pd.DataFrame
    correlation_matrix: pd.DataFrame
    diversification_benefit: float
    likelihood_score: int
    impact_score: int
    matrix_size: int
    currency: str
    reduced_confidence: bool = False
    warnings: List[str] = field(default_factory=list)
    calculated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def portfolio_volatility_pct(self) -> float:
        return self.portfolio_volatility * 100.0

    @property
    def standalone_var_total(self) -> float:
        return float(sum(a.standalone_var for a in self.asset_contributions))

    @property
    def diversification_pct(self) -> float:
        total = self.standalone_var_total
        return self.diversification_benefit / total * 100.0 if total > 0 else 0.0

    def to_dict(self) -> Dict[str, object]:
        """JSON-ready representation."""
        return {
            "portfolio_var": self.portfolio_var,
            "portfolio_volatility_pct": self.portfolio_volatility_pct,
            "portfolio_value": self.portfolio_value,
            "currency": self.currency,
            "confidence_level": self.confidence_level,
            "z_value": self.z_value,
            "time_horizon_days": self.time_horizon_days,
            "horizon_scaling": self.horizon_scaling,
            "data_frequency": self.data_frequency,
            "observations": self.observations,
            "diversification_benefit": self.diversification_benefit,
            "diversification_pct": self.diversification_pct,
            "likelihood_score": self.likelihood_score,
            "impact_score": self.impact_score,
            "matrix_size": self.matrix_size,
            "reduced_confidence": self.reduced_confidence,
            "warnings": list(self.warnings),
            "calculated_at": self.calculated_at.isoformat(),
            "asset_contributions": [asdict(a) for a in self.asset_contributions],
            "correlation_matrix": {
                "assets": list(self.correlation_matrix.columns),
                "matrix": self.correlation_matrix.to_numpy().tolist(),
            },
            "covariance_matrix": self.covariance_matrix.to_numpy().tolist(),
        }


def check_history_length(observations: int, frequency: str) -> Optional[str]:
    """Return a warning message when the history is below the recommended minimum."""
    minimum = MIN_OBSERVATIONS[frequency]
    if observations >= minimum:
        return None
    return (
        f"only {observations} {frequency} observations; at least {minimum} "
        "are recommended, estimates have reduced statistical confidence"
    )


def calculate_var(
    upload: VarUploadData,
    scale_config: Optional[ScaleConfig] = None,
    confidence_level=None,
    time_horizon_days=None,
) -> VaRResult:
    """
    Run the parametric VaR analysis for one upload.

    Parameters
    ----------
    upload : VarUploadData
        Parsed workbook.
    scale_config : ScaleConfig, optional
        Organization scale thresholds (defaults to the 5-point scale).
    confidence_level : optional
        Override of the uploaded confidence level.
    time_horizon_days : optional
        Override of the uploaded time horizon.

    Returns
    -------
    VaRResult
        Portfolio VaR, breakdown per asset and risk scores.

    Raises
    ------
    StatisticalComputationError
        On degenerate data (too few observations, non-PSD covariance,
        zero portfolio variance).
    InvalidConfiguration
        If an override is not supported.
    """
    scale_config = scale_config or ScaleConfig()
    config = apply_overrides(upload.config, confidence_level, time_horizon_days)

    assets = upload.assets
    prices = upload.prices[assets]
    notes: List[str] = []

    # ── Data sufficiency ──────────────────────────────────────
    message = check_history_length(len(prices), config.data_frequency)
    if message:
        logger.warning(message)
        warnings.warn(message, ReducedConfidenceWarning, stacklevel=2)
        notes.append(message)

    # ── Statistics ────────────────────────────────────────────
    returns = compute_returns(prices, config.return_method)
    weights = define_weights(upload.holdings, assets)
    market_values = compute_market_values(upload.holdings).reindex(assets).to_numpy()

    cov, corr, flat_assets, port_stats = get_all_statistics(returns, weights)
    if flat_assets:
        notes.append(
            f"zero variance for {', '.join(flat_assets)}; correlation treated as 0"
        )

    # ── Parametric VaR ────────────────────────────────────────
    metrics = parametric_risk_metrics(
        weights,
        cov,
        market_values,
        config.data_frequency,
        config.confidence_level,
        config.time_horizon_days,
        portfolio_variance=port_stats["portfolio_variance"],
    )

    portfolio_var = metrics["portfolio_var"]
    standalone = metrics["standalone_var"]
    contributions = metrics["var_contributions"]
    asset_vol = annualize_volatility(np.sqrt(np.diag(cov)), config.data_frequency)

    types = {h.asset: h.asset_type for h in upload.holdings}
    breakdown = [
        AssetContribution(
            asset=asset,
            asset_type=types[asset],
            market_value=float(market_values[i]),
            weight=float(weights[i]),
            volatility=float(asset_vol[i]),
            standalone_var=float(standalone[i]),
            var_contribution=float(contributions[i]),
            var_contribution_pct=float(contributions[i] / portfolio_var * 100.0),
            diversification_benefit=float(standalone[i] - contributions[i]),
        )
        for i, asset in enumerate(assets)
    ]

    # ── Scale mapping ─────────────────────────────────────────
    vol_pct = metrics["portfolio_volatility"] * 100.0
    result = VaRResult(
        portfolio_var=portfolio_var,
        portfolio_volatility=metrics["portfolio_volatility"],
        portfolio_value=metrics["portfolio_value"],
        confidence_level=config.confidence_level,
        z_value=metrics["z_value"],
        time_horizon_days=config.time_horizon_days,
        horizon_scaling=metrics["horizon_scaling"],
        data_frequency=config.data_frequency,
        observations=len(prices),
        asset_contributions=breakdown,
        covariance_matrix=pd.DataFrame(cov, index=assets, columns=assets),
        correlation_matrix=pd.DataFrame(corr, index=assets, columns=assets),
        diversification_benefit=metrics["diversification_benefit"],
        likelihood_score=likelihood_score(vol_pct, scale_config),
        impact_score=impact_score(metrics["portfolio_value"], scale_config),
        matrix_size=scale_config.matrix_size,
        currency=config.currency,
        reduced_confidence=message is not None,
        warnings=notes,
    )

    logger.info(
        "VaR %.2f %s at %.1f%% over %d day(s); volatility %.2f%%",
        result.portfolio_var,
        result.currency,
        result.confidence_level * 100,
        result.time_horizon_days,
        vol_pct,
    )

    return result
