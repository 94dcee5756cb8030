"""
studyagent/features/usage/store.py

Storage for per-user token usage in the active billing period.

Billing periods are calendar months in UTC: a record whose period_start is
older than the first day of the current month is rolled over to zero before
it is read or incremented.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select, insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from studyagent.core.database import get_db_session, plans, user_usage
from studyagent.core.errors import PersistenceError


def current_period_start(now: Optional[datetime] = None) -> date:
    """First day (UTC) of the calendar month containing `now`."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    return date(now.year, now.month, 1)


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    plan_id: str
    tokens_used: int
    period_start: date


class UsageStore(Protocol):
    def get_or_create(self, user_id: str, period_start: date) -> UsageRecord:
        """Return the record for the period, creating or rolling it over as needed."""
        ...

    def increment(self, user_id: str, amount: int, period_start: date) -> None:
        """Add `amount` to the period's usage."""
        ...


class SqlUsageStore:
    """UsageStore backed by the user_usage table.

    All SQLAlchemy failures surface as PersistenceError.
    """

    def get_or_create(self, user_id: str, period_start: date) -> UsageRecord:
        try:
            with get_db_session() as session:
                self._ensure_row(session, user_id, period_start)
                self._rollover(session, user_id, period_start)
                row = session.execute(
                    select(user_usage).where(user_usage.c.user_id == user_id)
                ).first()
                return UsageRecord(
                    user_id=row.user_id,
                    plan_id=row.plan_id,
                    tokens_used=max(0, int(row.tokens_used or 0)),
                    period_start=row.period_start,
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read usage for user {user_id}: {exc}") from exc

    def increment(self, user_id: str, amount: int, period_start: date) -> None:
        now = datetime.now(timezone.utc)
        try:
            with get_db_session() as session:
                self._ensure_row(session, user_id, period_start)
                # A stale period starts over at `amount`; otherwise add atomically
                rolled = session.execute(
                    update(user_usage)
                    .where(user_usage.c.user_id == user_id)
                    .where(user_usage.c.period_start < period_start)
                    .values(tokens_used=amount, period_start=period_start, updated_at=now)
                ).rowcount
                if not rolled:
                    session.execute(
                        update(user_usage)
                        .where(user_usage.c.user_id == user_id)
                        .values(tokens_used=user_usage.c.tokens_used + amount, updated_at=now)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to record usage for user {user_id}: {exc}") from exc

    def _ensure_row(self, session, user_id: str, period_start: date) -> None:
        existing = session.execute(
            select(user_usage.c.user_id).where(user_usage.c.user_id == user_id)
        ).first()
        if existing:
            return

        default_plan = session.execute(
            select(plans.c.plan_id).where(plans.c.is_default.is_(True))
        ).first()
        if not default_plan:
            raise PersistenceError("Default plan not found in database. Run seed_plans() first.")

        values = dict(
            user_id=user_id,
            plan_id=default_plan.plan_id,
            tokens_used=0,
            period_start=period_start,
        )
        dialect = session.get_bind().dialect.name
        # Another request may create the record first; keep theirs
        if dialect == "postgresql":
            stmt = pg_insert(user_usage).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        elif dialect == "sqlite":
            stmt = sqlite_insert(user_usage).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        else:
            stmt = insert(user_usage).values(**values)
        session.execute(stmt)

    def _rollover(self, session, user_id: str, period_start: date) -> None:
        session.execute(
            update(user_usage)
            .where(user_usage.c.user_id == user_id)
            .where(user_usage.c.period_start < period_start)
            .values(tokens_used=0, period_start=period_start, updated_at=datetime.now(timezone.utc))
        )
