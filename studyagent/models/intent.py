"""
studyagent/models/intent.py

Request, context and decision models for chat intent routing.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

NO_INTENT = "none"


class Mention(BaseModel):
    """A note referenced in the message as @[noteName](noteId)."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    note_id: str = Field(alias="noteId", min_length=1)
    note_name: str = Field(default="", alias="noteName")


class SelectedItems(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notes: Optional[List[str]] = None
    tests: Optional[List[str]] = None
    flashcards: Optional[List[str]] = None


class PageContext(BaseModel):
    """Where the user is in the UI when sending the message."""
    model_config = ConfigDict(populate_by_name=True)

    current_view: Optional[str] = Field(default=None, alias="currentView")
    selected_items: Optional[SelectedItems] = Field(default=None, alias="selectedItems")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_name: str
    tokens_used: int
    monthly_limit: int
    remaining: int


class RequestContext(BaseModel):
    """
    Per-request bundle assembled by the context builder.

    Owned by the request and discarded after the decision is returned.
    """
    model_config = ConfigDict(frozen=True)

    user: UserProfile
    page: Optional[PageContext] = None
    mentions: List[Mention] = Field(default_factory=list)

    def has(self, key: str) -> bool:
        """Whether a context key is present and non-empty."""
        if key == "mentions":
            return len(self.mentions) > 0
        if key == "page":
            return self.page is not None
        if key == "current_view":
            return bool(self.page and self.page.current_view)
        return False


class IntentDecision(BaseModel):
    """
    Classifier output for one message.

    extracted_parameters holds only values the oracle explicitly extracted;
    absent values are never defaulted.
    """
    model_config = ConfigDict(frozen=True)

    capability_id: str = NO_INTENT
    extracted_parameters: Dict[str, str] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    validated: bool = False

    @classmethod
    def none(cls, reasoning: str, confidence: float = 0.0, validated: bool = False) -> "IntentDecision":
        return cls(capability_id=NO_INTENT, confidence=confidence, reasoning=reasoning, validated=validated)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": True, "intent": self.capability_id}
        body.update(self.extracted_parameters)
        body["confidence"] = self.confidence
        body["reasoning"] = self.reasoning
        return body


class RouteRequest(BaseModel):
    """Inbound body for POST /api/chat/route.

    message is validated by the router so a missing message maps to a 400.
    """
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[Any] = None
    mentions: Optional[List[Mention]] = None
    page_context: Optional[PageContext] = Field(default=None, alias="pageContext")
