"""
studyagent/features/usage/ledger.py

Per-user token quota ledger.

Handles:
- Admission checks against the active period budget
- Recording actual consumption after an oracle call
- Usage snapshots for the usage endpoint and the context builder

Admission never reserves the estimate. Two concurrent requests for the same
user can both be admitted against the same remaining budget and then both
commit, overshooting the limit by at most one request's actual cost each.
Commits themselves are atomic increments, so no update is ever lost.
"""

from datetime import datetime
from typing import Optional

from studyagent.core.errors import PersistenceError, QuotaUnavailableError
from studyagent.core.logging import log_event
from studyagent.features.plans.service import PlanLookup
from studyagent.features.usage.store import UsageStore, current_period_start
from studyagent.models.usage import AdmissionResult, UserQuota


class QuotaLedger:
    def __init__(self, store: UsageStore, plan_lookup: PlanLookup):
        self.store = store
        self.plan_lookup = plan_lookup

    def get_usage(self, user_id: str, now: Optional[datetime] = None) -> UserQuota:
        """
        Snapshot of the user's budget for the current period.

        Creates a zeroed record on the default plan if the user has none, and
        rolls the record over if its period has elapsed.

        Raises:
            QuotaUnavailableError: Usage or plan storage unreachable
        """
        period_start = current_period_start(now)
        try:
            record = self.store.get_or_create(user_id, period_start)
            limits = self.plan_lookup.resolve(user_id)
        except PersistenceError as exc:
            log_event(
                "error",
                "usage.read_failed",
                user_id=user_id,
                event_type="usage.read_failed",
                error_code=QuotaUnavailableError.code,
                extra={"error": exc.message},
            )
            raise QuotaUnavailableError("Unable to read token usage") from exc

        return UserQuota(
            user_id=user_id,
            plan_tier=limits.plan_tier,
            period_limit=limits.period_limit,
            period_usage=record.tokens_used,
            period_start=record.period_start,
        )

    def admit(self, user_id: str, estimated_cost: int, now: Optional[datetime] = None) -> AdmissionResult:
        """
        Check whether `estimated_cost` fits in the remaining period budget.

        Fails closed: a storage failure raises instead of admitting.
        """
        quota = self.get_usage(user_id, now=now)
        return self.check(user_id, quota.period_limit, quota.period_usage, estimated_cost)

    def check(self, user_id: str, limit: int, current: int, estimated_cost: int) -> AdmissionResult:
        """Admission decision for a usage snapshot the caller already loaded."""
        headroom = limit - current
        allowed = estimated_cost <= headroom

        result = AdmissionResult(
            allowed=allowed,
            limit=limit,
            current=current,
            remaining=max(0, headroom),
        )
        if not allowed:
            log_event(
                "warning",
                "usage.admission_denied",
                user_id=user_id,
                event_type="usage.admission_denied",
                extra={"estimated": estimated_cost, "limit": result.limit, "current": result.current},
            )
        return result

    def commit(self, user_id: str, actual_cost: int, now: Optional[datetime] = None) -> None:
        """
        Add `actual_cost` to the current period's usage.

        Never rejects on budget and never raises: a failed write is logged
        and dropped so the caller's response is unaffected.
        """
        if actual_cost <= 0:
            log_event(
                "info",
                "usage.commit_skipped",
                user_id=user_id,
                event_type="usage.commit_skipped",
                extra={"amount": actual_cost},
            )
            return

        try:
            self.store.increment(user_id, actual_cost, current_period_start(now))
        except Exception as exc:
            log_event(
                "error",
                "usage.commit_failed",
                user_id=user_id,
                event_type="usage.commit_failed",
                error_code=PersistenceError.code,
                extra={"amount": actual_cost, "error": exc},
                exc_info=True,
            )
            return

        log_event(
            "info",
            "usage.committed",
            user_id=user_id,
            event_type="usage.committed",
            extra={"amount": actual_cost},
        )
