from __future__ import annotations

from typing import Any, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from feedback_desk.core.services.errors import ValidationError


Category = Literal["general", "product", "service", "technical", "billing", "suggestion"]
Status = Literal["pending", "responded", "resolved"]
Priority = Literal["low", "medium", "high", "urgent"]

CATEGORIES = Category.__args__
STATUSES = Status.__args__
PRIORITIES = Priority.__args__

MESSAGE_MIN = 10
MESSAGE_MAX = 1000


class FeedbackDraft(BaseModel):
    """Fields a customer supplies when submitting feedback."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    customer_name: str = Field(min_length=1, max_length=100)
    customer_email: EmailStr
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=MESSAGE_MIN, max_length=MESSAGE_MAX)
    rating: int = Field(ge=1, le=5)
    category: Category = "general"
    is_public: bool = True

    @field_validator("customer_email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, v: Any) -> Any:
        return v or "general"


class FeedbackChanges(BaseModel):
    """Partial update; callers pass only the fields they are allowed to change."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    subject: Optional[str] = Field(default=None, min_length=1, max_length=200)
    message: Optional[str] = Field(default=None, min_length=MESSAGE_MIN, max_length=MESSAGE_MAX)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    category: Optional[Category] = None
    status: Optional[Status] = None
    priority: Optional[Priority] = None
    admin_response: Optional[str] = Field(default=None, max_length=2000)


M = TypeVar("M", bound=BaseModel)


def validate(model: Type[M], payload: Mapping[str, Any]) -> M:
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        details = [
            "{0}: {1}".format(".".join(str(p) for p in err["loc"]) or "body", err["msg"])
            for err in exc.errors()
        ]
        raise ValidationError("validation_failed", details=details) from exc
