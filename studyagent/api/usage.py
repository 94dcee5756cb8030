"""Token usage endpoint for the signed-in user."""

from typing import Dict

from fastapi import APIRouter, Depends, Request

from studyagent.core.auth import get_current_user_id
from studyagent.features.usage.ledger import QuotaLedger

router = APIRouter(prefix="/api/usage", tags=["usage"])


def get_ledger(request: Request) -> QuotaLedger:
    return request.app.state.ledger


@router.get("")
def get_usage(
    user_id: str = Depends(get_current_user_id),
    ledger: QuotaLedger = Depends(get_ledger),
) -> Dict:
    quota = ledger.get_usage(user_id)
    return {
        "success": True,
        "planName": quota.plan_tier,
        "tokensUsed": quota.period_usage,
        "monthlyLimit": quota.period_limit,
        "remaining": quota.remaining,
        "periodStart": quota.period_start.isoformat(),
    }
