"""
Risk Register — AI-Generated Risk Persistence
=============================================
Turns accepted AI suggestions into risk rows with unique codes and
inserts them through the injected store.

Codes have the form ``AI-{seq:03d}-{suffix}``: a per-organization
sequence plus a time/random suffix. Concurrent saves can still collide
on the unique constraint, so the insert runs in a bounded retry loop:
duplicate-key errors are retried with linear backoff after re-reading
the existing codes; every other error is fatal.
"""

import logging
import random
import re
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from var_sandbox.assistant import GeneratedRisk
from var_sandbox.config import Settings
from var_sandbox.errors import VarSandboxError
from var_sandbox.store import RiskStore, StoreError, is_duplicate_key

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────
DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_BACKOFF_SECONDS: float = 0.1

AI_CODE_PATTERN = re.compile(r"^AI-(\d+)")

SEVERITY_SCORES: Dict[str, Dict[str, int]] = {
    "Critical": {"likelihood": 5, "impact": 5},
    "High": {"likelihood": 4, "impact": 4},
    "Medium": {"likelihood": 3, "impact": 3},
    "Low": {"likelihood": 2, "impact": 2},
    "Very Low": {"likelihood": 1, "impact": 1},
}
DEFAULT_SCORES: Dict[str, int] = {"likelihood": 3, "impact": 3}

DEFAULT_DIVISION = "Operations"
DEFAULT_DEPARTMENT = "Risk Management"


class RiskSaveError(VarSandboxError):
    """Saving generated risks failed."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        retryable: bool = True,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = retryable
        super().__init__(message)


def next_ai_sequence(existing_codes: Iterable[str]) -> int:
    """One past the highest ``AI-NNN`` sequence already in use."""
    numbers = []
    for code in existing_codes:
        match = AI_CODE_PATTERN.match(code or "")
        if match:
            numbers.append(int(match.group(1)))
    return max(numbers) + 1 if numbers else 1


def default_code_suffix() -> str:
    """Last six digits of the millisecond clock plus two random digits."""
    millis = int(time.time() * 1000) % 1_000_000
    return f"{millis:06d}{random.randint(0, 99):02d}"


def build_risk_rows(
    risks: Sequence[GeneratedRisk],
    organization_id: str,
    owner: str,
    start_sequence: int,
    suffix: str,
    user_id: Optional[str] = None,
) -> List[Dict[str, object]]:
    rows = []
    for offset, risk in enumerate(risks):
        scores = SEVERITY_SCORES.get(risk.severity, DEFAULT_SCORES)
        rows.append({
            "organization_id": organization_id,
            "user_id": user_id,
            "risk_code": f"AI-{start_sequence + offset:03d}-{suffix}",
            "risk_title": risk.title,
            "risk_description": risk.description,
            "division": DEFAULT_DIVISION,
            "department": DEFAULT_DEPARTMENT,
            "category": risk.category,
            "owner": owner,
            "relevant_period": None,
            "likelihood_inherent": scores["likelihood"],
            "impact_inherent": scores["impact"],
            "status": "Open",
        })
    return rows


def save_generated_risks(
    store: RiskStore,
    risks: Sequence[GeneratedRisk],
    organization_id: str,
    owner: str,
    user_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
    suffix_factory: Callable[[], str] = default_code_suffix,
) -> List[Dict[str, object]]:
    """
    Insert AI-generated risks with unique codes.

    Parameters
    ----------
    store : RiskStore
        Backend handle.
    risks : sequence of GeneratedRisk
        Risks the user accepted.
    organization_id : str
        Owning organization.
    owner : str
        Display name recorded as risk owner.
    user_id : str, optional
        Creating user.
    max_attempts : int, optional
        Upper bound on insert attempts. Falls back to
        ``settings.risk_save_max_attempts``, then ``DEFAULT_MAX_ATTEMPTS``.
    backoff_seconds : float, optional
        Delay unit; attempt k waits ``k × backoff_seconds`` before retry.
        Falls back the same way through ``settings``.
    settings : Settings, optional
        Deployment settings supplying the retry bounds.
    sleep, suffix_factory : callable
        Injection points for the delay and the code suffix.

    Returns
    -------
    list of dict
        The inserted rows.

    Raises
    ------
    RiskSaveError
        After ``max_attempts`` duplicate-key collisions (retryable) or
        on the first non-duplicate backend error (fatal).
    """
    if max_attempts is None:
        max_attempts = settings.risk_save_max_attempts if settings else DEFAULT_MAX_ATTEMPTS
    if backoff_seconds is None:
        backoff_seconds = (
            settings.risk_save_backoff_seconds if settings else DEFAULT_BACKOFF_SECONDS
        )
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    if not risks:
        return []

    attempt = 0
    last_error: Optional[StoreError] = None

    while attempt < max_attempts:
        attempt += 1

        # fresh read every attempt: a concurrent save may have taken codes
        existing = store.list_risk_codes(organization_id)
        rows = build_risk_rows(
            risks,
            organization_id,
            owner,
            next_ai_sequence(existing),
            suffix_factory(),
            user_id=user_id,
        )

        try:
            inserted = store.insert_risks(rows)
        except StoreError as exc:
            if not is_duplicate_key(exc):
                raise RiskSaveError(
                    f"failed to save risks: {exc}",
                    attempts=attempt,
                    last_error=exc,
                    retryable=False,
                ) from exc

            last_error = exc
            logger.warning(
                "Duplicate risk code on attempt %d/%d: %s", attempt, max_attempts, exc
            )
            if attempt < max_attempts:
                sleep(backoff_seconds * attempt)
            continue

        logger.info(
            "Saved %d AI-generated risk(s) for %s on attempt %d",
            len(inserted), organization_id, attempt,
        )
        return inserted

    raise RiskSaveError(
        f"failed to save risks after {attempt} attempts: {last_error}",
        attempts=attempt,
        last_error=last_error,
    )
