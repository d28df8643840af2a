"""
Configuration
=============
Engine constants and runtime settings.

Constants describe the VaR methodology (supported confidence levels,
annualization factors, minimum history). ``Settings`` holds the values
that vary per deployment and is read from the environment.
"""

import os
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from var_sandbox.errors import InvalidConfiguration


# ─────────────────────────────────────────────────────────────
# Methodology constants
# ─────────────────────────────────────────────────────────────
SUPPORTED_CONFIDENCE_LEVELS: Tuple[float, ...] = (0.90, 0.95, 0.99, 0.999)

DEFAULT_CONFIDENCE_LEVEL: float = 0.95
DEFAULT_TIME_HORIZON_DAYS: int = 1

TRADING_DAYS_PER_YEAR: int = 252

PERIODS_PER_YEAR: Dict[str, int] = {
    "daily": TRADING_DAYS_PER_YEAR,
    "weekly": 52,
    "monthly": 12,
}

# Below these counts the estimates are still produced but flagged.
MIN_OBSERVATIONS: Dict[str, int] = {
    "daily": 252,
    "weekly": 104,
    "monthly": 60,
}

ASSET_TYPES: Tuple[str, ...] = ("equity", "bond", "cash", "fx", "other")

RETURN_METHODS: Tuple[str, ...] = ("simple", "log")

SUPPORTED_MATRIX_SIZES: Tuple[int, ...] = (5, 6)

# Annualized volatility in percent; portfolio value in millions.
DEFAULT_VOLATILITY_THRESHOLDS: List[float] = [5.0, 10.0, 15.0, 20.0]
DEFAULT_VALUE_THRESHOLDS: List[float] = [10.0, 50.0, 100.0, 500.0]
DEFAULT_VALUE_UNIT: float = 1_000_000.0

DEFAULT_CURRENCY: str = "NGN"


# ─────────────────────────────────────────────────────────────
# Runtime settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseModel):
    llm_api_key: Optional[str] = None
    llm_model: str = "gemini-1.5-flash"
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_timeout: float = 30.0

    risk_save_max_attempts: int = Field(default=3, ge=1)
    risk_save_backoff_seconds: float = Field(default=0.1, ge=0.0)

    matrix_size: int = 5

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from ``GEMINI_API_KEY`` and ``VAR_SANDBOX_*`` variables."""
        env = os.environ if environ is None else environ
        values: Dict[str, object] = {}

        if env.get("GEMINI_API_KEY"):
            values["llm_api_key"] = env["GEMINI_API_KEY"]

        mapping = {
            "VAR_SANDBOX_LLM_MODEL": "llm_model",
            "VAR_SANDBOX_LLM_BASE_URL": "llm_base_url",
            "VAR_SANDBOX_LLM_TIMEOUT": "llm_timeout",
            "VAR_SANDBOX_RISK_SAVE_MAX_ATTEMPTS": "risk_save_max_attempts",
            "VAR_SANDBOX_RISK_SAVE_BACKOFF": "risk_save_backoff_seconds",
            "VAR_SANDBOX_MATRIX_SIZE": "matrix_size",
        }
        for var, field in mapping.items():
            if env.get(var):
                values[field] = env[var]

        try:
            return cls(**values)
        except ValidationError as exc:
            error = exc.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else None
            var = next((v for v, f in mapping.items() if f == field), field)
            raise InvalidConfiguration(
                f"invalid environment setting {var}={values.get(field)!r}: {error['msg']}",
                key=field,
                sheet=None,
            ) from exc
