"""
studyagent/features/context/builder.py

Assembles the per-request context handed to the intent router.
"""

from typing import List, Optional, Protocol

from studyagent.features.usage.ledger import QuotaLedger
from studyagent.models.intent import Mention, PageContext, RequestContext, UserProfile


class ContextSource(Protocol):
    def build(
        self,
        user_id: str,
        page_context: Optional[PageContext],
        mentions: Optional[List[Mention]],
    ) -> RequestContext:
        ...


class ContextBuilder:
    """Builds RequestContext from the user's plan and usage plus request payload."""

    def __init__(self, ledger: QuotaLedger):
        self.ledger = ledger

    def user_profile(self, user_id: str) -> UserProfile:
        quota = self.ledger.get_usage(user_id)
        return UserProfile(
            user_id=user_id,
            plan_name=quota.plan_tier,
            tokens_used=quota.period_usage,
            monthly_limit=quota.period_limit,
            remaining=quota.remaining,
        )

    def build(
        self,
        user_id: str,
        page_context: Optional[PageContext],
        mentions: Optional[List[Mention]],
    ) -> RequestContext:
        return RequestContext(
            user=self.user_profile(user_id),
            page=page_context,
            mentions=list(mentions or []),
        )
