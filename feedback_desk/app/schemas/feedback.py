from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field


class FeedbackCreate(BaseModel):
    """Submission body; bounds are enforced by the service so errors share one shape."""

    customer_name: str
    customer_email: str
    subject: str
    message: str
    rating: int
    category: Optional[str] = None
    is_public: bool = True


class FeedbackUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subject: Optional[str] = None
    message: Optional[str] = None
    rating: Optional[int] = None
    category: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    admin_response: Optional[str] = None


class AdminResponseRequest(BaseModel):
    admin_response: Optional[str] = Field(default=None, validation_alias=AliasChoices("admin_response", "response"))
    status: str = "responded"


class StatusRequest(BaseModel):
    status: Optional[str] = None


class PriorityRequest(BaseModel):
    priority: Optional[str] = None


class SuggestionOut(BaseModel):
    text: str
    confidence: float
    style: str
    generated_at: Optional[datetime] = None


class FeedbackSummary(BaseModel):
    """List projection: everything except the AI suggestions."""

    model_config = ConfigDict(extra="ignore")

    id: str
    owner_id: Optional[str] = None
    customer_name: str
    customer_email: str
    subject: str
    message: str
    rating: int
    category: str
    status: str
    priority: str
    admin_response: Optional[str] = None
    is_public: bool = True
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def response_time_hours(self) -> Optional[int]:
        if self.responded_at is None or self.created_at is None:
            return None
        return int((self.responded_at - self.created_at).total_seconds() // 3600)


class FeedbackOut(FeedbackSummary):
    ai_suggestions: List[SuggestionOut] = Field(default_factory=list)


def envelope(data: Any = None, *, message: Optional[str] = None, pagination: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    return body
