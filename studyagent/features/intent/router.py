"""
studyagent/features/intent/router.py

End-to-end intent routing for one chat message.

Stages: received -> context_built -> admitted -> dispatched -> decoded ->
validated -> committed -> responded. Terminal failures are auth, bad input,
quota exceeded and upstream errors; each is raised as an AppError.
"""

import asyncio
from enum import Enum
from typing import Any, List, Optional

from studyagent.core.config import Settings, settings
from studyagent.core.errors import (
    AuthError,
    InputError,
    QuotaExceededError,
    UpstreamError,
    UpstreamTimeoutError,
)
from studyagent.core.logging import log_event
from studyagent.features.capabilities.registry import CapabilityRegistry
from studyagent.features.context.builder import ContextSource
from studyagent.features.intent.prompts import build_intent_prompt
from studyagent.features.oracle.client import GenerationOracle
from studyagent.features.oracle.decode import (
    NoCall,
    OracleOutcome,
    StructuredCall,
    TextJSON,
    Unparseable,
    extract_total_tokens,
    normalize_response,
)
from studyagent.features.usage.ledger import QuotaLedger
from studyagent.models.intent import NO_INTENT, IntentDecision, Mention, PageContext

STRUCTURED_CALL_CONFIDENCE = 0.9
NO_CALL_CONFIDENCE = 0.2
DEFAULT_TEXT_CONFIDENCE = 0.5


class RouteStage(str, Enum):
    RECEIVED = "received"
    CONTEXT_BUILT = "context_built"
    ADMITTED = "admitted"
    DISPATCHED = "dispatched"
    DECODED = "decoded"
    VALIDATED = "validated"
    COMMITTED = "committed"
    RESPONDED = "responded"
    REJECTED_AUTH = "rejected_auth"
    REJECTED_INPUT = "rejected_input"
    REJECTED_QUOTA = "rejected_quota"
    DEGRADED = "degraded"


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_TEXT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def decide(outcome: OracleOutcome, registry: CapabilityRegistry) -> IntentDecision:
    """Map a decoded oracle outcome to an (unvalidated) decision."""
    if isinstance(outcome, StructuredCall):
        descriptor = registry.resolve_call(outcome.name)
        if descriptor is None:
            return IntentDecision.none(f"Unknown function called: {outcome.name}")
        return IntentDecision(
            capability_id=descriptor.id,
            extracted_parameters=registry.extract_parameters(descriptor, outcome.args),
            confidence=STRUCTURED_CALL_CONFIDENCE,
            reasoning=f"Oracle called {outcome.name}",
        )

    if isinstance(outcome, TextJSON):
        payload = outcome.payload
        intent = payload["intent"]
        reasoning = payload.get("reasoning")
        reasoning = reasoning if isinstance(reasoning, str) else ""
        if intent == NO_INTENT:
            # An explicit no-match is never less certain than no answer at all
            confidence = max(NO_CALL_CONFIDENCE, _clamp_confidence(payload.get("confidence")))
            return IntentDecision.none(reasoning, confidence=confidence)
        descriptor = registry.get(intent)
        if descriptor is None:
            return IntentDecision.none(f"Unknown intent: {intent}")
        return IntentDecision(
            capability_id=descriptor.id,
            extracted_parameters=registry.extract_parameters(descriptor, payload),
            confidence=_clamp_confidence(payload.get("confidence")),
            reasoning=reasoning,
        )

    if isinstance(outcome, NoCall):
        return IntentDecision.none("No capability matched", confidence=NO_CALL_CONFIDENCE)

    if isinstance(outcome, Unparseable):
        return IntentDecision.none("decode failed")

    raise TypeError(f"Unsupported oracle outcome: {type(outcome).__name__}")


class IntentRouter:
    def __init__(
        self,
        ledger: QuotaLedger,
        registry: CapabilityRegistry,
        oracle: GenerationOracle,
        context_builder: ContextSource,
        cfg: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.oracle = oracle
        self.context_builder = context_builder
        self.cfg = cfg or settings

    def _stage(self, stage: RouteStage, user_id: Optional[str], level: str = "info", **extra) -> None:
        log_event(
            level,
            "intent.stage",
            user_id=user_id,
            event_type=f"intent.{stage.value}",
            extra={"stage": stage.value, **extra},
        )

    def _validate_input(self, user_id: Optional[str], message: Any) -> str:
        if not user_id or not str(user_id).strip():
            self._stage(RouteStage.REJECTED_AUTH, None, level="warning")
            raise AuthError("User not authenticated")
        if not isinstance(message, str) or not message.strip():
            self._stage(RouteStage.REJECTED_INPUT, user_id, level="warning")
            raise InputError("Message is required")
        return message.strip()

    async def route(
        self,
        user_id: Optional[str],
        message: Any,
        mentions: Optional[List[Mention]] = None,
        page_context: Optional[PageContext] = None,
    ) -> IntentDecision:
        text = self._validate_input(user_id, message)
        self._stage(RouteStage.RECEIVED, user_id)

        # Ledger and context reads hit the database; keep them off the event loop
        context = await asyncio.to_thread(self.context_builder.build, user_id, page_context, mentions)
        self._stage(RouteStage.CONTEXT_BUILT, user_id, mentions=len(context.mentions))

        estimate = self.cfg.INTENT_ESTIMATED_TOKENS
        admission = self.ledger.check(user_id, context.user.monthly_limit, context.user.tokens_used, estimate)
        if not admission.allowed:
            self._stage(RouteStage.REJECTED_QUOTA, user_id, level="warning", remaining=admission.remaining)
            raise QuotaExceededError(
                "Monthly token limit exceeded",
                limit=admission.limit,
                current=admission.current,
                remaining=admission.remaining,
            )
        self._stage(RouteStage.ADMITTED, user_id, remaining=admission.remaining)

        prompt = build_intent_prompt(text, self.registry, context)
        self._stage(RouteStage.DISPATCHED, user_id)
        try:
            data = await self.oracle.generate(
                prompt,
                self.registry.get_function_declarations(),
                temperature=self.cfg.INTENT_TEMPERATURE,
                max_output_tokens=self.cfg.INTENT_MAX_OUTPUT_TOKENS,
                timeout=self.cfg.INTENT_TIMEOUT_SECONDS,
            )
        except UpstreamTimeoutError as exc:
            self._stage(RouteStage.DEGRADED, user_id, level="error", error_code=exc.code)
            raise
        except UpstreamError as exc:
            self._stage(RouteStage.DEGRADED, user_id, level="error", error_code=exc.code)
            if self.cfg.UPSTREAM_ERROR_USAGE_POLICY == "estimate":
                await asyncio.to_thread(self.ledger.commit, user_id, estimate)
            raise

        outcome = normalize_response(data)
        decision = decide(outcome, self.registry)
        self._stage(RouteStage.DECODED, user_id, outcome=type(outcome).__name__, intent=decision.capability_id)
        if isinstance(outcome, Unparseable):
            log_event(
                "warning",
                "intent.decode_failed",
                user_id=user_id,
                event_type="intent.decode_failed",
                error_code="decode_error",
                extra={"reason": outcome.reason, "raw": outcome.raw},
            )

        decision = self.registry.validate(decision, context)
        self._stage(RouteStage.VALIDATED, user_id, intent=decision.capability_id, confidence=decision.confidence)

        tokens = extract_total_tokens(data)
        await asyncio.to_thread(self.ledger.commit, user_id, tokens)
        self._stage(RouteStage.COMMITTED, user_id, tokens=tokens)

        self._stage(RouteStage.RESPONDED, user_id, intent=decision.capability_id)
        return decision
