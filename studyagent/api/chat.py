"""
Chat routing API.

POST /api/chat/route classifies a message into a capability.
GET /api/chat/capabilities lists the registered capabilities (public).
"""

import asyncio
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request

from studyagent.core.auth import get_current_user_id
from studyagent.core.errors import AppError
from studyagent.features.capabilities.registry import CapabilityRegistry
from studyagent.features.intent.router import IntentRouter
from studyagent.models.intent import RouteRequest

logger = logging.getLogger("studyagent")

router = APIRouter(prefix="/api/chat", tags=["chat"])


def get_intent_router(request: Request) -> IntentRouter:
    return request.app.state.intent_router


def get_registry(request: Request) -> CapabilityRegistry:
    return request.app.state.registry


def _log_detached_failure(task: "asyncio.Task") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, AppError):
        logger.error("intent.route_failed", exc_info=exc, extra={"error_code": "internal_error"})


@router.post("/route")
async def route_message(
    body: RouteRequest,
    user_id: str = Depends(get_current_user_id),
    intent_router: IntentRouter = Depends(get_intent_router),
) -> Dict:
    # A client disconnect must not cancel the oracle call once usage is at stake
    task = asyncio.ensure_future(
        intent_router.route(
            user_id,
            body.message,
            mentions=body.mentions,
            page_context=body.page_context,
        )
    )
    task.add_done_callback(_log_detached_failure)
    decision = await asyncio.shield(task)
    return decision.to_response()


@router.get("/capabilities")
def list_capabilities(registry: CapabilityRegistry = Depends(get_registry)) -> Dict:
    return {"success": True, "capabilities": registry.describe()}
