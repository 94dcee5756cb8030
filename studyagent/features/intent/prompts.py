"""Prompt template for chat intent classification.

The capability list is rendered from the registry so the prompt and the
function declarations never drift apart.
"""

from studyagent.features.capabilities.registry import CapabilityRegistry
from studyagent.models.intent import NO_INTENT, RequestContext

BASE_PROMPT = (
    "You are an intent classifier for a student study assistant application. "
    "Analyze the user's message and determine which capability should handle it."
)

INSTRUCTIONS = """Instructions:
- If the message matches a capability, call its function with the arguments you can extract.
- Extract optional arguments ONLY if they are explicitly mentioned in the message. Never invent or default values.
- Capabilities that require note mentions apply only when the message has note mentions.
- Be flexible with phrasing: "make a quiz from @[note]" and "turn @[note] into a test" mean the same thing.
- If the message doesn't clearly match any capability, do not call a function.

If you cannot call a function, respond with ONLY a JSON object, no other text:
{{
  "intent": {intent_options},
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}}"""


def _capability_lines(registry: CapabilityRegistry) -> str:
    lines = []
    for index, descriptor in enumerate(registry.all(), start=1):
        line = f"{index}. **{descriptor.id}** ({descriptor.function_name}) - {descriptor.description}"
        if descriptor.examples:
            samples = "; ".join(f'"{example}"' for example in descriptor.examples[:3])
            line += f"\n   Examples: {samples}"
        lines.append(line)
    lines.append(f"{len(lines) + 1}. **{NO_INTENT}** - The message doesn't match any of the above capabilities")
    return "\n".join(lines)


def _context_lines(context: RequestContext) -> str:
    lines = [f"Has note mentions: {'Yes' if context.has('mentions') else 'No'}"]
    if context.mentions:
        names = ", ".join(m.note_name or m.note_id for m in context.mentions)
        lines.append(f"Mentioned notes: {names}")
    if context.has("current_view"):
        lines.append(f"Current view: {context.page.current_view}")
    return "\n".join(lines)


def build_intent_prompt(message: str, registry: CapabilityRegistry, context: RequestContext) -> str:
    intent_options = " | ".join(f'"{cid}"' for cid in registry.ids() + [NO_INTENT])
    return "\n\n".join(
        [
            BASE_PROMPT,
            "Available capabilities:\n" + _capability_lines(registry),
            f'User\'s message: "{message}"\n' + _context_lines(context),
            INSTRUCTIONS.format(intent_options=intent_options),
        ]
    )
