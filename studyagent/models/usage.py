"""
studyagent/models/usage.py

Usage models for the per-period token quota.
"""

from datetime import date
from pydantic import BaseModel, ConfigDict, Field


class UserQuota(BaseModel):
    """
    Snapshot of a user's token budget for the active billing period.

    Billing periods are calendar months (UTC); period_start is the first
    day of the month the usage belongs to.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_tier: str
    period_limit: int
    period_usage: int = Field(ge=0)
    period_start: date

    @property
    def remaining(self) -> int:
        return max(0, self.period_limit - self.period_usage)


class AdmissionResult(BaseModel):
    """Outcome of an admission check. Never reserves the estimate."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: int
    current: int
    remaining: int
