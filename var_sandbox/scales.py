"""
Scale Mapping
=============
Maps portfolio volatility and value onto the organization's ordinal
likelihood / impact scales (1..N, N = risk matrix size).

Tie-break:
    A value exactly equal to a threshold belongs to the higher bucket.
    score = 1 + #{t in thresholds : t <= value}
"""

import math
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from var_sandbox.config import (
    DEFAULT_VALUE_THRESHOLDS,
    DEFAULT_VALUE_UNIT,
    DEFAULT_VOLATILITY_THRESHOLDS,
    SUPPORTED_MATRIX_SIZES,
)
from var_sandbox.errors import InvalidConfiguration, ThresholdOrderingViolation


def validate_thresholds(name: str, thresholds: Sequence[float]) -> List[float]:
    values = []
    for t in thresholds:
        if isinstance(t, bool):
            raise InvalidConfiguration(
                f"{name} thresholds must be numbers, got {t!r}", key=name, sheet=None
            )
        try:
            number = float(t)
        except (TypeError, ValueError):
            raise InvalidConfiguration(
                f"{name} thresholds must be numbers, got {t!r}", key=name, sheet=None
            ) from None
        if not math.isfinite(number):
            raise InvalidConfiguration(
                f"{name} thresholds must be finite, got {t!r}", key=name, sheet=None
            )
        values.append(number)

    for lower, upper in zip(values, values[1:]):
        if lower >= upper:
            raise ThresholdOrderingViolation(name, values)

    return values


@dataclass(frozen=True)
class ScaleConfig:
    """
    Threshold arrays for an N-point scale (N - 1 thresholds each).

    ``volatility_thresholds`` are annualized volatility in percent;
    ``value_thresholds`` are portfolio value in ``value_unit`` currency
    units (millions by default).
    """

    volatility_thresholds: List[float] = field(
        default_factory=lambda: list(DEFAULT_VOLATILITY_THRESHOLDS)
    )
    value_thresholds: List[float] = field(
        default_factory=lambda: list(DEFAULT_VALUE_THRESHOLDS)
    )
    value_unit: float = DEFAULT_VALUE_UNIT

    def __post_init__(self) -> None:
        vol = validate_thresholds("volatility", self.volatility_thresholds)
        val = validate_thresholds("value", self.value_thresholds)

        if len(vol) != len(val):
            raise InvalidConfiguration(
                "volatility and value scales must have the same number of "
                f"thresholds, got {len(vol)} and {len(val)}",
                key="thresholds",
                sheet=None,
            )
        if len(vol) + 1 not in SUPPORTED_MATRIX_SIZES:
            raise InvalidConfiguration(
                f"a {len(vol) + 1}-point scale is not supported; use "
                f"{' or '.join(str(n - 1) for n in SUPPORTED_MATRIX_SIZES)} thresholds",
                key="thresholds",
                sheet=None,
            )
        if not (math.isfinite(self.value_unit) and self.value_unit > 0):
            raise InvalidConfiguration(
                f"value unit must be positive, got {self.value_unit}",
                key="value_unit",
                sheet=None,
            )

        # frozen dataclass: normalized copies go through object.__setattr__
        object.__setattr__(self, "volatility_thresholds", vol)
        object.__setattr__(self, "value_thresholds", val)

    @property
    def matrix_size(self) -> int:
        return len(self.volatility_thresholds) + 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "volatility_thresholds": list(self.volatility_thresholds),
            "value_thresholds": list(self.value_thresholds),
            "value_unit": self.value_unit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ScaleConfig":
        for key in ("volatility_thresholds", "value_thresholds"):
            if not isinstance(data.get(key), (list, tuple)):
                raise InvalidConfiguration(
                    f"scale config needs a list of {key}", key=key, sheet=None
                )
        return cls(
            volatility_thresholds=list(data["volatility_thresholds"]),
            value_thresholds=list(data["value_thresholds"]),
            value_unit=float(data.get("value_unit", DEFAULT_VALUE_UNIT)),
        )


def default_scale_config(matrix_size: int = 5) -> ScaleConfig:
    """Default thresholds; a 6-point scale appends one more upper step."""
    if matrix_size == 5:
        return ScaleConfig()
    if matrix_size == 6:
        return ScaleConfig(
            volatility_thresholds=DEFAULT_VOLATILITY_THRESHOLDS + [30.0],
            value_thresholds=DEFAULT_VALUE_THRESHOLDS + [1000.0],
        )
    raise InvalidConfiguration(
        f"matrix size must be one of {list(SUPPORTED_MATRIX_SIZES)}, got {matrix_size}",
        key="matrix_size",
        sheet=None,
    )


def map_to_score(value: float, thresholds: Sequence[float]) -> int:
    """
    Ordinal score of ``value`` against ascending ``thresholds``.

    Below the first threshold → 1, at or above the last → len + 1.
    """
    if math.isnan(value):
        raise InvalidConfiguration("cannot score a NaN value", key="score", sheet=None)
    return bisect_right(list(thresholds), value) + 1


def likelihood_score(annual_volatility_pct: float, config: ScaleConfig) -> int:
    return map_to_score(annual_volatility_pct, config.volatility_thresholds)


def impact_score(value: float, config: ScaleConfig) -> int:
    return map_to_score(value / config.value_unit, config.value_thresholds)
