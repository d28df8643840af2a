import re

import pytest

from var_sandbox.assistant import GeneratedRisk
from var_sandbox.config import Settings
from var_sandbox.risk_register import (
    RiskSaveError,
    build_risk_rows,
    default_code_suffix,
    next_ai_sequence,
    save_generated_risks,
)
from var_sandbox.store import DuplicateKeyError, InMemoryRiskStore, StoreError


RISKS = [
    GeneratedRisk(
        title="Liquidity shortfall",
        description="Funding markets tighten and the bank cannot roll deposits.",
        category="Financial",
        severity="High",
    ),
    GeneratedRisk(
        title="Core banking outage",
        description="The core platform is unavailable for more than four hours.",
        category="Operational",
        severity="Critical",
    ),
]


class ScriptedStore(InMemoryRiskStore):
    """Fails the first inserts with the given errors, then behaves normally."""

    def __init__(self, errors=()):
        super().__init__()
        self.errors = list(errors)
        self.code_reads = 0
        self.insert_calls = 0

    def list_risk_codes(self, organization_id):
        self.code_reads += 1
        return super().list_risk_codes(organization_id)

    def insert_risks(self, rows):
        self.insert_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return super().insert_risks(rows)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def save(store, sleep, **kwargs):
    return save_generated_risks(
        store,
        RISKS,
        organization_id="org-1",
        owner="Chief Risk Officer",
        sleep=sleep,
        suffix_factory=lambda: "12345678",
        **kwargs,
    )


class TestCodes:
    def test_next_sequence(self):
        assert next_ai_sequence(["AI-001-1", "AI-007-2", "R-100", "AI-x"]) == 8

    def test_first_sequence(self):
        assert next_ai_sequence([]) == 1
        assert next_ai_sequence(["OPS-001"]) == 1

    def test_suffix_format(self):
        assert re.fullmatch(r"\d{8}", default_code_suffix())

    def test_build_rows(self):
        rows = build_risk_rows(RISKS, "org-1", "CRO", start_sequence=4, suffix="99")

        assert [r["risk_code"] for r in rows] == ["AI-004-99", "AI-005-99"]
        assert rows[0]["likelihood_inherent"] == 4
        assert rows[1]["impact_inherent"] == 5
        assert all(r["status"] == "Open" for r in rows)
        assert rows[0]["owner"] == "CRO"


class TestSaveGeneratedRisks:
    def test_first_attempt(self):
        store, sleep = ScriptedStore(), SleepRecorder()
        inserted = save(store, sleep)

        assert [r["risk_code"] for r in inserted] == ["AI-001-12345678", "AI-002-12345678"]
        assert sleep.delays == []
        assert store.insert_calls == 1

    def test_continues_existing_sequence(self):
        store, sleep = ScriptedStore(), SleepRecorder()
        store.risks.append({"organization_id": "org-1", "risk_code": "AI-041-00000000"})

        inserted = save(store, sleep)
        assert inserted[0]["risk_code"] == "AI-042-12345678"

    def test_duplicate_then_success(self):
        store = ScriptedStore([DuplicateKeyError("duplicate key value")])
        sleep = SleepRecorder()

        inserted = save(store, sleep)

        assert len(inserted) == 2
        assert store.insert_calls == 2
        assert store.code_reads == 2
        assert sleep.delays == [pytest.approx(0.1)]

    def test_exhaustion(self):
        store = ScriptedStore([DuplicateKeyError("duplicate key value")] * 3)
        sleep = SleepRecorder()

        with pytest.raises(RiskSaveError) as exc_info:
            save(store, sleep)

        err = exc_info.value
        assert err.attempts == 3
        assert err.retryable
        assert isinstance(err.last_error, DuplicateKeyError)
        assert sleep.delays == [pytest.approx(0.1), pytest.approx(0.2)]
        assert store.risks == []

    def test_fatal_error_is_not_retried(self):
        store = ScriptedStore([StoreError("permission denied for table risks", code="42501")])
        sleep = SleepRecorder()

        with pytest.raises(RiskSaveError, match="permission denied") as exc_info:
            save(store, sleep)

        assert exc_info.value.attempts == 1
        assert not exc_info.value.retryable
        assert store.insert_calls == 1
        assert sleep.delays == []

    def test_custom_attempts_and_backoff(self):
        store = ScriptedStore([StoreError("23505 conflict", code="23505")] * 4)
        sleep = SleepRecorder()

        inserted = save(store, sleep, max_attempts=5, backoff_seconds=0.5)

        assert len(inserted) == 2
        assert sleep.delays == [0.5, 1.0, 1.5, 2.0]

    def test_settings_bound_attempts_and_backoff(self):
        store = ScriptedStore([DuplicateKeyError("duplicate key value")] * 3)
        sleep = SleepRecorder()
        settings = Settings(risk_save_max_attempts=2, risk_save_backoff_seconds=0.25)

        with pytest.raises(RiskSaveError) as exc_info:
            save(store, sleep, settings=settings)

        assert exc_info.value.attempts == 2
        assert store.insert_calls == 2
        assert sleep.delays == [0.25]

    def test_explicit_arguments_override_settings(self):
        store = ScriptedStore([DuplicateKeyError("duplicate key value")] * 2)
        sleep = SleepRecorder()
        settings = Settings(risk_save_max_attempts=1, risk_save_backoff_seconds=5.0)

        inserted = save(store, sleep, settings=settings, max_attempts=3, backoff_seconds=0.5)

        assert len(inserted) == 2
        assert sleep.delays == [0.5, 1.0]

    def test_empty_input(self):
        store = ScriptedStore()
        assert save_generated_risks(store, [], "org-1", "CRO") == []
        assert store.code_reads == 0

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            save(ScriptedStore(), SleepRecorder(), max_attempts=0)
