from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from feedback_desk.app.deps import default_page_limit, get_current_principal, get_feedback_service
from feedback_desk.app.schemas.feedback import FeedbackCreate, FeedbackOut, FeedbackSummary, FeedbackUpdate, envelope
from feedback_desk.core.access.principal import Principal
from feedback_desk.core.repos.query import FeedbackQuery
from feedback_desk.core.services.errors import ValidationError
from feedback_desk.core.services.feedback_service import FeedbackService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/feedback", tags=["feedback"])


def parse_date(s: Optional[str], field: str) -> Optional[datetime]:
    """Parse an ISO8601 date or datetime; naive values are taken as UTC."""
    if not s:
        return None
    try:
        value = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO8601 date") from exc
    return value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)


@router.get("")
def list_feedback(
    page: int = Query(1),
    limit: Optional[int] = Query(None, description="Defaults to pagination.default_limit"),
    status: Optional[str] = None,
    category: Optional[str] = None,
    rating: Optional[int] = Query(None, description="Minimum rating"),
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="field or -field"),
    date_from: Optional[str] = Query(None, description="ISO8601 start datetime"),
    date_to: Optional[str] = Query(None, description="ISO8601 end datetime"),
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    filters = FeedbackQuery(
        status=status or None,
        category=category or None,
        min_rating=rating,
        search=(search or "").strip() or None,
        created_from=parse_date(date_from, "date_from"),
        created_to=parse_date(date_to, "date_to"),
    )
    if limit is None:
        limit = default_page_limit()
    items, pagination = service.list_feedback(principal, filters, page=page, limit=limit, sort=sort)
    return envelope([FeedbackSummary(**i) for i in items], pagination=pagination)


@router.get("/stats/overview")
def stats_overview(
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    return envelope(service.stats(principal))


@router.get("/{fb_id}")
def get_feedback(
    fb_id: str,
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    return envelope(FeedbackOut(**service.get_feedback(principal, fb_id)))


@router.post("", status_code=201)
def create_feedback(
    payload: FeedbackCreate,
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    record = service.create_feedback(principal, payload.model_dump())
    return envelope(FeedbackOut(**record), message="Feedback submitted successfully")


@router.put("/{fb_id}")
def update_feedback(
    fb_id: str,
    payload: FeedbackUpdate,
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    record = service.update_feedback(principal, fb_id, payload.model_dump(exclude_unset=True))
    return envelope(FeedbackOut(**record), message="Feedback updated successfully")


@router.delete("/{fb_id}")
def delete_feedback(
    fb_id: str,
    principal: Principal = Depends(get_current_principal),
    service: FeedbackService = Depends(get_feedback_service),
):
    service.delete_feedback(principal, fb_id)
    return envelope(message="Feedback deleted successfully")
