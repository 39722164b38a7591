from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


DEFAULT_SEARCH_FIELDS: Tuple[str, ...] = ("subject", "message", "customer_name")
ATTENTION_PRIORITIES: Tuple[str, ...] = ("high", "urgent")
ATTENTION_MAX_RATING = 2

SORTABLE_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "rating": "rating",
    "status": "status",
    "priority": "priority",
    "category": "category",
    "subject": "subject",
}

GROUPABLE_FIELDS = {None, "status", "category", "rating", "priority", "created_date"}


@dataclass(frozen=True)
class FeedbackQuery:
    """Predicate handed to a feedback store; every set field narrows the result.

    ``owner_id`` is the ownership restriction: ``None`` means unrestricted.
    """

    owner_id: Optional[str] = None
    status: Optional[str] = None
    statuses: Optional[Tuple[str, ...]] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    min_rating: Optional[int] = None
    search: Optional[str] = None
    search_fields: Tuple[str, ...] = DEFAULT_SEARCH_FIELDS
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    needs_attention: bool = False
    missing_suggestions: bool = False


@dataclass(frozen=True)
class SortSpec:
    field: str = "created_at"
    descending: bool = True

    @classmethod
    def parse(cls, raw: Optional[str]) -> "SortSpec":
        if not raw:
            return cls()
        raw = raw.strip()
        descending = raw.startswith("-")
        key = raw.lstrip("-+")
        field = SORTABLE_FIELDS.get(key)
        if field is None:
            raise ValueError(f"unsupported_sort_key: {key}")
        return cls(field=field, descending=descending)
