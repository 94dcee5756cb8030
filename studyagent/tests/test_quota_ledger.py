"""Tests for admission checks and usage commits."""

from datetime import date, datetime, timezone

import pytest

from studyagent.core.errors import QuotaUnavailableError
from studyagent.features.usage.ledger import QuotaLedger
from studyagent.features.usage.store import current_period_start
from studyagent.tests.mocks import FailingUsageStore, InMemoryUsageStore, StaticPlanLookup

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def _ledger(used: int = 0, limit: int = 10_000):
    store = InMemoryUsageStore()
    if used:
        store.set_usage("u1", used, current_period_start(NOW))
    return QuotaLedger(store, StaticPlanLookup(limit=limit)), store


def test_admit_within_budget():
    ledger, _ = _ledger(used=9_500)
    result = ledger.admit("u1", 500, now=NOW)
    assert result.allowed is True
    assert result.limit == 10_000
    assert result.current == 9_500
    assert result.remaining == 500


def test_admit_over_budget_reports_unchanged_remaining():
    ledger, _ = _ledger(used=9_500)
    result = ledger.admit("u1", 600, now=NOW)
    assert result.allowed is False
    assert result.remaining == 500


def test_admit_does_not_reserve():
    ledger, store = _ledger(used=9_500)
    ledger.admit("u1", 500, now=NOW)
    ledger.admit("u1", 500, now=NOW)
    assert store.records["u1"].tokens_used == 9_500


def test_admit_when_already_over_limit_clamps_remaining():
    ledger, _ = _ledger(used=10_400)
    result = ledger.admit("u1", 1, now=NOW)
    assert result.allowed is False
    assert result.remaining == 0
    assert result.current == 10_400


def test_commit_accumulates_and_never_decreases():
    ledger, store = _ledger()
    ledger.commit("u1", 120, now=NOW)
    ledger.commit("u1", 0, now=NOW)
    ledger.commit("u1", -50, now=NOW)
    ledger.commit("u1", 80, now=NOW)
    assert store.records["u1"].tokens_used == 200
    assert store.increments == [120, 80]


def test_commit_ignores_budget():
    ledger, store = _ledger(used=9_900, limit=10_000)
    ledger.commit("u1", 5_000, now=NOW)
    assert store.records["u1"].tokens_used == 14_900


def test_new_period_starts_from_zero():
    ledger, store = _ledger(used=9_999)
    next_month = datetime(2025, 4, 1, 0, 0, 1, tzinfo=timezone.utc)
    quota = ledger.get_usage("u1", now=next_month)
    assert quota.period_usage == 0
    assert quota.period_start == date(2025, 4, 1)


def test_admit_fails_closed_when_store_unavailable():
    ledger = QuotaLedger(FailingUsageStore(), StaticPlanLookup())
    with pytest.raises(QuotaUnavailableError) as exc_info:
        ledger.admit("u1", 500, now=NOW)
    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "quota_unavailable"


def test_commit_failure_is_swallowed(caplog):
    ledger = QuotaLedger(FailingUsageStore(), StaticPlanLookup())
    ledger.commit("u1", 100, now=NOW)
    assert any(r.getMessage() == "usage.commit_failed" for r in caplog.records)


def test_current_period_start_uses_utc_month():
    assert current_period_start(datetime(2025, 1, 31, 23, 30, tzinfo=timezone.utc)) == date(2025, 1, 1)
    # naive datetimes are treated as UTC
    assert current_period_start(datetime(2025, 2, 1, 0, 0)) == date(2025, 2, 1)
