"""
studyagent/features/capabilities/registry.py

Static catalog of chat capabilities.

The registry is the single source of truth for both the function
declarations sent to the oracle and the public capability listing.
Capabilities are registered at startup and only read afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from studyagent.models.intent import NO_INTENT, IntentDecision, RequestContext

logger = logging.getLogger("studyagent")

ValidateFn = Callable[[Mapping[str, str], RequestContext], bool]

_CONTEXT_REQUIREMENTS = {
    "mentions": "note mentions",
    "page": "page context",
    "current_view": "a current view",
}


def _always_valid(args: Mapping[str, str], context: RequestContext) -> bool:
    return True


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    One dispatchable capability.

    function_declaration follows the Gemini format:
    {name, description, parameters: {type, properties, required}}.
    response_parameters are the extracted arguments echoed back to the client.
    """
    id: str
    description: str
    function_declaration: Dict[str, Any]
    keywords: Tuple[str, ...] = ()
    examples: Tuple[str, ...] = ()
    required_context_keys: Tuple[str, ...] = ()
    response_parameters: Tuple[str, ...] = ()
    validate: ValidateFn = field(default=_always_valid, compare=False)
    invalid_reason: str = ""

    @property
    def function_name(self) -> str:
        return self.function_declaration["name"]


class CapabilityRegistry:
    def __init__(self):
        self._capabilities: Dict[str, CapabilityDescriptor] = {}

    def register(self, descriptor: CapabilityDescriptor) -> None:
        if descriptor.id == NO_INTENT:
            raise ValueError(f"'{NO_INTENT}' is reserved and cannot be registered")
        if descriptor.id in self._capabilities:
            logger.warning(
                "capability.duplicate",
                extra={"event_type": "capability.duplicate", "intent": descriptor.id},
            )
        self._capabilities[descriptor.id] = descriptor

    def all(self) -> List[CapabilityDescriptor]:
        return list(self._capabilities.values())

    def ids(self) -> List[str]:
        return list(self._capabilities.keys())

    def get(self, capability_id: str) -> Optional[CapabilityDescriptor]:
        return self._capabilities.get(capability_id)

    def get_by_function_name(self, name: str) -> Optional[CapabilityDescriptor]:
        for descriptor in self._capabilities.values():
            if descriptor.function_name == name:
                return descriptor
        return None

    def resolve_call(self, name: str) -> Optional[CapabilityDescriptor]:
        """Match a structured call by function name, falling back to capability id."""
        return self.get_by_function_name(name) or self.get(name)

    def get_function_declarations(self) -> List[Dict[str, Any]]:
        return [dict(descriptor.function_declaration) for descriptor in self._capabilities.values()]

    def describe(self) -> List[Dict[str, Any]]:
        """Public listing served at GET /api/chat/capabilities."""
        return [
            {
                "id": d.id,
                "description": d.description,
                "keywords": list(d.keywords),
                "requiredContext": list(d.required_context_keys),
                "examples": list(d.examples),
                "functionDeclaration": d.function_declaration,
            }
            for d in self._capabilities.values()
        ]

    def extract_parameters(self, descriptor: CapabilityDescriptor, args: Mapping[str, Any]) -> Dict[str, str]:
        """Keep only the response parameters the oracle actually filled in."""
        params: Dict[str, str] = {}
        for key in descriptor.response_parameters:
            value = args.get(key)
            if isinstance(value, str) and value.strip():
                params[key] = value.strip()
        return params

    def validate(self, decision: IntentDecision, context: RequestContext) -> IntentDecision:
        """
        Re-check a decision against its capability's preconditions.

        The oracle's choice is never trusted on its own: a decision whose
        required context or arguments are missing is forced to "none".
        """
        if decision.capability_id == NO_INTENT:
            return decision.model_copy(update={"validated": True})

        descriptor = self.get(decision.capability_id)
        if descriptor is None:
            return IntentDecision.none(f"Unknown capability: {decision.capability_id}", validated=True)

        for key in descriptor.required_context_keys:
            if not context.has(key):
                requirement = _CONTEXT_REQUIREMENTS.get(key, key)
                logger.info(
                    "capability.precondition_unmet",
                    extra={"event_type": "capability.precondition_unmet", "intent": descriptor.id},
                )
                return IntentDecision.none(f"{descriptor.id} requires {requirement}", validated=True)

        if not descriptor.validate(decision.extracted_parameters, context):
            reason = descriptor.invalid_reason or f"{descriptor.id} preconditions not met"
            return IntentDecision.none(reason, validated=True)

        return decision.model_copy(update={"validated": True})
