"""
Risk Appetite
=============
Classifies risk scores (likelihood × impact) against per-category
appetite thresholds and summarizes appetite utilization for a set of
risks.

Status bands:
    score <= appetite_threshold                  → within
    appetite_threshold < score <= tolerance_max  → tolerance
    score > tolerance_max                        → exceeded
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Literal, Mapping, Optional

import numpy as np

from var_sandbox.errors import InvalidConfiguration

AppetiteStatus = Literal["within", "tolerance", "exceeded"]

# Used for categories without a configured appetite
DEFAULT_APPETITE_THRESHOLD: float = 15.0
DEFAULT_TOLERANCE_MAX: float = 18.0


@dataclass(frozen=True)
class AppetiteConfig:
    category: str
    appetite_threshold: float
    tolerance_min: float
    tolerance_max: float
    rationale: str = ""

    def __post_init__(self) -> None:
        if not self.tolerance_min <= self.appetite_threshold <= self.tolerance_max:
            raise InvalidConfiguration(
                f"appetite for {self.category!r} must satisfy tolerance_min <= "
                f"appetite_threshold <= tolerance_max, got {self.tolerance_min}, "
                f"{self.appetite_threshold}, {self.tolerance_max}",
                key="appetite_threshold",
                sheet=None,
            )


def default_appetite_thresholds() -> Dict[str, AppetiteConfig]:
    """Starting appetite per common risk category."""
    rows = [
        ("Strategic", 12, 10, 15,
         "Moderate appetite for strategic risks aligned with growth objectives"),
        ("Operational", 10, 8, 12,
         "Lower appetite for operational risks to ensure business continuity"),
        ("Financial", 15, 12, 18,
         "Higher appetite for financial risks given market opportunities"),
        ("Compliance", 6, 4, 8,
         "Very low appetite for compliance risks to avoid regulatory penalties"),
        ("Reputational", 8, 6, 10,
         "Low appetite for reputational risks given brand importance"),
        ("Cyber", 8, 6, 10,
         "Low appetite for cyber risks given increasing threat landscape"),
    ]
    return {
        name: AppetiteConfig(name, threshold, low, high, rationale)
        for name, threshold, low, high, rationale in rows
    }


def appetite_status(score: float, config: Optional[AppetiteConfig] = None) -> AppetiteStatus:
    threshold = config.appetite_threshold if config else DEFAULT_APPETITE_THRESHOLD
    tolerance = config.tolerance_max if config else DEFAULT_TOLERANCE_MAX
    if score <= threshold:
        return "within"
    if score <= tolerance:
        return "tolerance"
    return "exceeded"


def exceeds_appetite(score: float, config: Optional[AppetiteConfig] = None) -> bool:
    """True only beyond the tolerance ceiling; the tolerance band is acceptable."""
    return appetite_status(score, config) == "exceeded"


@dataclass
class AppetiteUtilization:
    total_risks: int = 0
    risks_within_appetite: int = 0
    risks_in_tolerance: int = 0
    risks_over_appetite: int = 0
    avg_score: float = 0.0
    utilization: float = 0.0
    category_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)


def risk_score(risk: Mapping[str, object]) -> float:
    return float(risk["likelihood_inherent"]) * float(risk["impact_inherent"])


def calculate_utilization(
    risks: Iterable[Mapping[str, object]],
    configs: Optional[Mapping[str, AppetiteConfig]] = None,
) -> AppetiteUtilization:
    """
    Summarize appetite usage across risks.

    Parameters
    ----------
    risks : iterable of mapping
        Risk rows with ``category``, ``likelihood_inherent`` and
        ``impact_inherent``.
    configs : mapping, optional
        Appetite per category; missing categories use the defaults.

    Returns
    -------
    AppetiteUtilization
        Counts per status, average score and utilization: the average
        score as a percentage of the average applicable appetite
        threshold.
    """
    configs = configs or {}
    scores = []
    thresholds = []
    summary = AppetiteUtilization()
    breakdown: Dict[str, Dict[str, float]] = {}

    for risk in risks:
        category = str(risk.get("category") or "Uncategorized")
        config = configs.get(category)
        score = risk_score(risk)
        status = appetite_status(score, config)

        scores.append(score)
        thresholds.append(config.appetite_threshold if config else DEFAULT_APPETITE_THRESHOLD)

        if status == "within":
            summary.risks_within_appetite += 1
        elif status == "tolerance":
            summary.risks_in_tolerance += 1
        else:
            summary.risks_over_appetite += 1

        bucket = breakdown.setdefault(
            category, {"total": 0, "within": 0, "tolerance": 0, "exceeded": 0}
        )
        bucket["total"] += 1
        bucket[status] += 1

    summary.total_risks = len(scores)
    summary.category_breakdown = breakdown
    if scores:
        summary.avg_score = float(np.mean(scores))
        summary.utilization = float(summary.avg_score / np.mean(thresholds) * 100.0)

    return summary
