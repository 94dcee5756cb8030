"""
studyagent/models/plan.py

Plan models for token budgets.

Plans represent token tiers (free, pro) without pricing.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Plan(BaseModel):
    """
    Plan represents a token budget tier.

    Examples:
    - free (default)
    - pro

    Plans do NOT include pricing or payment details; those belong to billing.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    monthly_token_limit: int
    is_default: bool = False
    created_at: Optional[datetime] = None


class PlanLimits(BaseModel):
    """Result of a plan lookup: the tier a user is on and its period limit."""
    model_config = ConfigDict(frozen=True)

    plan_tier: str
    period_limit: int
