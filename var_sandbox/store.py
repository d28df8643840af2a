"""
Storage Client Interface
========================
The hosted relational backend is an external collaborator. Operations
that read or write organization data receive a ``RiskStore`` handle as
an argument; nothing in the package holds a shared client.

``InMemoryRiskStore`` implements the interface for local runs and
tests, enforcing the same unique-key rule on risk codes as the backend.
"""

import copy
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Union

from var_sandbox.scales import ScaleConfig, default_scale_config

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
UNIQUE_VIOLATION_CODE = "23505"


class StoreError(Exception):
    """A backend call failed."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)


class DuplicateKeyError(StoreError):
    """An insert violated a unique constraint."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=UNIQUE_VIOLATION_CODE)


def is_duplicate_key(error: BaseException) -> bool:
    """Classify a backend error as a retryable unique-key collision."""
    if isinstance(error, DuplicateKeyError):
        return True
    code = getattr(error, "code", None)
    return code == UNIQUE_VIOLATION_CODE or "duplicate key" in str(error).lower()


class RiskStore(Protocol):
    """Operations the VaR sandbox and AI helpers need from the backend."""

    def load_scale_config(self, organization_id: str) -> Optional[Dict[str, object]]:
        ...

    def save_scale_config(self, organization_id: str, config: Dict[str, object]) -> None:
        ...

    def list_risk_codes(self, organization_id: str) -> List[str]:
        ...

    def insert_risks(self, rows: Sequence[Dict[str, object]]) -> List[Dict[str, object]]:
        ...


class InMemoryRiskStore:
    """Dictionary-backed ``RiskStore``."""

    def __init__(self) -> None:
        self.scale_configs: Dict[str, Dict[str, object]] = {}
        self.risks: List[Dict[str, object]] = []

    def load_scale_config(self, organization_id: str) -> Optional[Dict[str, object]]:
        stored = self.scale_configs.get(organization_id)
        return copy.deepcopy(stored) if stored is not None else None

    def save_scale_config(self, organization_id: str, config: Dict[str, object]) -> None:
        self.scale_configs[organization_id] = copy.deepcopy(config)

    def list_risk_codes(self, organization_id: str) -> List[str]:
        return [
            r["risk_code"] for r in self.risks
            if r["organization_id"] == organization_id
        ]

    def insert_risks(self, rows: Sequence[Dict[str, object]]) -> List[Dict[str, object]]:
        # all-or-nothing, like a single INSERT statement
        taken = {(r["organization_id"], r["risk_code"]) for r in self.risks}
        batch = set()
        for row in rows:
            key = (row["organization_id"], row["risk_code"])
            if key in taken or key in batch:
                raise DuplicateKeyError(
                    f'duplicate key value violates unique constraint "risks_risk_code_key": '
                    f"{row['risk_code']}"
                )
            batch.add(key)
        inserted = [copy.deepcopy(dict(row)) for row in rows]
        self.risks.extend(inserted)
        return copy.deepcopy(inserted)


def load_scale_config(
    store: RiskStore,
    organization_id: str,
    matrix_size: int = 5,
) -> ScaleConfig:
    """
    Read the organization's scale thresholds.

    Falls back to the default thresholds for ``matrix_size`` when none
    are stored. Stored values are validated on the way out.
    """
    stored = store.load_scale_config(organization_id)
    if stored is None:
        logger.debug("No scale config for %s; using defaults", organization_id)
        return default_scale_config(matrix_size)
    return ScaleConfig.from_dict(stored)


def save_scale_config(
    store: RiskStore,
    organization_id: str,
    config: Union[ScaleConfig, Dict[str, object]],
) -> ScaleConfig:
    """Persist validated thresholds; raises before writing on bad input."""
    validated = config if isinstance(config, ScaleConfig) else ScaleConfig.from_dict(config)
    store.save_scale_config(organization_id, validated.to_dict())
    logger.info(
        "Saved %d-point scale config for %s", validated.matrix_size, organization_id
    )
    return validated
