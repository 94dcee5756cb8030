"""
studyagent/features/plans/service.py

Plan and billing lookup service.

Handles:
- Plan seeding (free, pro)
- User plan assignment (called by the billing collaborator on upgrade/downgrade)
- Period limit resolution for the quota ledger
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from studyagent.core.config import settings
from studyagent.core.database import get_db_session, plans, user_usage
from studyagent.core.errors import PersistenceError
from studyagent.features.usage.store import current_period_start
from studyagent.models.plan import Plan, PlanLimits


def default_plan_configs() -> Dict[str, Dict[str, object]]:
    """Default plan configurations, derived from settings at call time."""
    free_limit = settings.FREE_MONTHLY_TOKEN_LIMIT
    return {
        "free": {
            "name": "Free Plan",
            "is_default": True,
            "monthly_token_limit": free_limit,
        },
        "pro": {
            "name": "Pro Plan",
            "is_default": False,
            "monthly_token_limit": free_limit * settings.PRO_PLAN_MULTIPLIER,
        },
    }


class PlanLookup(Protocol):
    """Resolves the tier and period limit for a user."""

    def resolve(self, user_id: str) -> PlanLimits:
        ...


def _row_to_plan(row) -> Plan:
    return Plan(
        plan_id=row.plan_id,
        name=row.name,
        monthly_token_limit=row.monthly_token_limit,
        is_default=row.is_default,
        created_at=row.created_at,
    )


def seed_plans() -> None:
    """
    Seed default plans into database (idempotent).

    Existing plans are left untouched so operators can tune limits in place.
    """
    now = datetime.now(timezone.utc)

    with get_db_session() as session:
        for plan_id, config in default_plan_configs().items():
            existing = session.execute(
                select(plans).where(plans.c.plan_id == plan_id)
            ).first()

            if not existing:
                session.execute(
                    insert(plans).values(
                        plan_id=plan_id,
                        name=config["name"],
                        monthly_token_limit=config["monthly_token_limit"],
                        is_default=config["is_default"],
                        created_at=now,
                    )
                )


def get_default_plan() -> Optional[Plan]:
    """Get the default plan (typically 'free')."""
    with get_db_session() as session:
        row = session.execute(
            select(plans).where(plans.c.is_default.is_(True))
        ).first()

        if not row:
            return None

        return _row_to_plan(row)


def get_plan(plan_id: str) -> Optional[Plan]:
    """Get plan by ID."""
    with get_db_session() as session:
        row = session.execute(
            select(plans).where(plans.c.plan_id == plan_id)
        ).first()

        if not row:
            return None

        return _row_to_plan(row)


def assign_plan(user_id: str, plan_id: str, now: Optional[datetime] = None) -> PlanLimits:
    """
    Assign plan to user (creates or updates the usage record).

    Usage already consumed in the current period is kept; only the limit
    changes, and it applies from the next admission check.

    Raises:
        ValueError: If plan_id doesn't exist
    """
    plan = get_plan(plan_id)
    if not plan:
        raise ValueError(f"Plan {plan_id} not found")

    period_start = current_period_start(now)

    with get_db_session() as session:
        existing = session.execute(
            select(user_usage.c.user_id).where(user_usage.c.user_id == user_id)
        ).first()

        if existing:
            session.execute(
                update(user_usage)
                .where(user_usage.c.user_id == user_id)
                .values(plan_id=plan_id, updated_at=datetime.now(timezone.utc))
            )
        else:
            session.execute(
                insert(user_usage).values(
                    user_id=user_id,
                    plan_id=plan_id,
                    tokens_used=0,
                    period_start=period_start,
                )
            )

    return PlanLimits(plan_tier=plan.plan_id, period_limit=plan.monthly_token_limit)


def resolve_plan_limits(user_id: str) -> PlanLimits:
    """
    Resolve the user's tier and monthly token limit.

    Users without a usage record resolve to the default plan.

    Raises:
        RuntimeError: No default plan seeded
    """
    with get_db_session() as session:
        row = session.execute(
            select(plans.c.plan_id, plans.c.monthly_token_limit)
            .select_from(user_usage.join(plans, user_usage.c.plan_id == plans.c.plan_id))
            .where(user_usage.c.user_id == user_id)
        ).first()

        if row:
            return PlanLimits(plan_tier=row.plan_id, period_limit=row.monthly_token_limit)

    default_plan = get_default_plan()
    if not default_plan:
        raise RuntimeError("No default plan configured. Run seed_plans() first.")
    return PlanLimits(plan_tier=default_plan.plan_id, period_limit=default_plan.monthly_token_limit)


class SqlPlanLookup:
    """PlanLookup backed by the plans table. Reads on every call, no caching."""

    def resolve(self, user_id: str) -> PlanLimits:
        try:
            return resolve_plan_limits(user_id)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise PersistenceError(f"Failed to resolve plan for user {user_id}: {exc}") from exc


def ensure_plans_seeded() -> None:
    """Seed plans, tolerating a concurrent seeder winning the insert."""
    try:
        seed_plans()
    except IntegrityError:
        logging.getLogger("studyagent").info("plans.seed_race", extra={"event_type": "plans.seed_race"})
