"""Built-in chat capabilities: test, flashcard, course_search, career_path."""

from typing import Mapping

from studyagent.features.capabilities.registry import CapabilityDescriptor, CapabilityRegistry
from studyagent.models.intent import RequestContext


def _note_parameters(purpose: str) -> dict:
    return {
        "type": "object",
        "properties": {
            "noteId": {
                "type": "string",
                "description": f"The ID of the note to generate {purpose} from",
            },
            "noteName": {
                "type": "string",
                "description": "The name of the note",
            },
            "noteContent": {
                "type": "string",
                "description": f"The content of the note to generate {purpose} from",
            },
        },
        "required": ["noteId", "noteName", "noteContent"],
    }


def _has_role_and_company(args: Mapping[str, str], context: RequestContext) -> bool:
    return bool(args.get("role")) and bool(args.get("company"))


TEST = CapabilityDescriptor(
    id="test",
    description="Generate a test/quiz from notes (requires a note mention like @[note name])",
    keywords=("test", "quiz", "exam", "questions", "assessment"),
    examples=(
        "turn @[note] into a test",
        "make a quiz from @[note]",
        "generate practice questions for @[note]",
    ),
    function_declaration={
        "name": "generate_test",
        "description": "Generate a test or quiz from a note. Requires a note mention in the user message.",
        "parameters": _note_parameters("a test"),
    },
    required_context_keys=("mentions",),
)

FLASHCARD = CapabilityDescriptor(
    id="flashcard",
    description="Generate flashcards from notes (requires a note mention like @[note name])",
    keywords=("flashcard", "flash card", "study cards", "memorization", "review cards"),
    examples=(
        "create flashcards from @[note]",
        "make study cards for @[note]",
        "flashcards for @[note]",
    ),
    function_declaration={
        "name": "generate_flashcard",
        "description": "Generate flashcards from a note. Requires a note mention in the user message.",
        "parameters": _note_parameters("flashcards"),
    },
    required_context_keys=("mentions",),
)

COURSE_SEARCH = CapabilityDescriptor(
    id="course_search",
    description="Search for relevant courses based on career interests or academic requirements",
    keywords=("course", "courses", "class", "classes", "curriculum", "program", "major", "department"),
    examples=(
        "recommend Stanford CS courses",
        "courses for AI career",
        "Berkeley Computer Science courses",
    ),
    function_declaration={
        "name": "search_courses",
        "description": (
            "Search for relevant courses based on career interests or academic requirements. "
            "Extract school and department only if explicitly mentioned in the user message."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The user's query about courses (e.g., \"courses for AI career\", \"CS courses for machine learning\")",
                },
                "school": {
                    "type": "string",
                    "description": "The university name (ONLY if explicitly mentioned in the message, otherwise omit)",
                },
                "department": {
                    "type": "string",
                    "description": "The department or major (ONLY if explicitly mentioned in the message, otherwise omit)",
                },
            },
            "required": ["query"],
        },
    },
    response_parameters=("school", "department"),
)

CAREER_PATH = CapabilityDescriptor(
    id="career_path",
    description="Generate skill graphs for career paths based on role and company",
    keywords=("career", "job", "role", "work", "position", "skill", "graph", "path", "career path"),
    examples=(
        "I want to work as a fullstack engineer at OpenAI",
        "Show me skills needed for a software engineer at Google",
        "What skills do I need for a ML engineer role at Anthropic",
        "Career path for backend developer at Stripe",
    ),
    function_declaration={
        "name": "generate_career_path",
        "description": (
            "Generate a skill graph for a career path. ALWAYS extract both role and company from the "
            "user message, even if the phrasing is informal."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "role": {
                    "type": "string",
                    "description": (
                        "The complete job role or title, e.g. \"fullstack engineer\", \"ML engineer\", "
                        "\"data scientist\". Extract the full multi-word role, not just \"engineer\"."
                    ),
                },
                "company": {
                    "type": "string",
                    "description": (
                        "The company or organization name, e.g. \"OpenAI\", \"Google\", \"Stripe\". "
                        "For \"at OpenAI\", extract \"OpenAI\"."
                    ),
                },
                "seniority": {
                    "type": "string",
                    "description": "The seniority level ONLY if explicitly mentioned (entry, mid, senior, staff, principal). Otherwise omit.",
                },
                "major": {
                    "type": "string",
                    "description": "The major or discipline ONLY if explicitly mentioned (e.g. CS, Math). Otherwise omit.",
                },
            },
            "required": ["role", "company"],
        },
    },
    response_parameters=("role", "company", "seniority", "major"),
    validate=_has_role_and_company,
    invalid_reason="career_path requires both role and company",
)

DEFAULT_CAPABILITIES = (TEST, FLASHCARD, COURSE_SEARCH, CAREER_PATH)


def build_default_registry() -> CapabilityRegistry:
    registry = CapabilityRegistry()
    for descriptor in DEFAULT_CAPABILITIES:
        registry.register(descriptor)
    return registry
