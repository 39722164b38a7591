from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from feedback_desk.app.deps import default_page_limit, get_feedback_service, require_admin
from feedback_desk.app.routers.feedback import parse_date
from feedback_desk.app.schemas.feedback import (
    AdminResponseRequest,
    FeedbackOut,
    FeedbackSummary,
    PriorityRequest,
    StatusRequest,
    envelope,
)
from feedback_desk.core.access.principal import Principal
from feedback_desk.core.repos.query import DEFAULT_SEARCH_FIELDS, FeedbackQuery
from feedback_desk.core.services.feedback_service import FeedbackService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

ADMIN_SEARCH_FIELDS = DEFAULT_SEARCH_FIELDS + ("customer_email",)


@router.get("/feedback")
def list_all_feedback(
    page: int = Query(1),
    limit: Optional[int] = Query(None, description="Defaults to pagination.admin_default_limit"),
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    rating: Optional[int] = Query(None, description="Minimum rating"),
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="field or -field"),
    date_from: Optional[str] = Query(None, description="ISO8601 start datetime"),
    date_to: Optional[str] = Query(None, description="ISO8601 end datetime"),
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    filters = FeedbackQuery(
        status=status or None,
        category=category or None,
        priority=priority or None,
        min_rating=rating,
        search=(search or "").strip() or None,
        search_fields=ADMIN_SEARCH_FIELDS,
        created_from=parse_date(date_from, "date_from"),
        created_to=parse_date(date_to, "date_to"),
    )
    if limit is None:
        limit = default_page_limit(admin=True)
    items, pagination = service.list_feedback(admin, filters, page=page, limit=limit, sort=sort)
    return envelope([FeedbackSummary(**i) for i in items], pagination=pagination)


@router.put("/feedback/{fb_id}/response")
def respond_to_feedback(
    fb_id: str,
    payload: AdminResponseRequest,
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    record = service.respond(admin, fb_id, payload.admin_response, payload.status)
    return envelope(FeedbackOut(**record), message="Response added successfully")


@router.put("/feedback/{fb_id}/status")
def update_status(
    fb_id: str,
    payload: StatusRequest,
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    record = service.set_status(admin, fb_id, payload.status)
    return envelope(FeedbackOut(**record), message="Status updated successfully")


@router.put("/feedback/{fb_id}/priority")
def update_priority(
    fb_id: str,
    payload: PriorityRequest,
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    record = service.set_priority(admin, fb_id, payload.priority)
    return envelope(FeedbackOut(**record), message="Priority updated successfully")


@router.get("/dashboard")
def dashboard(
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    data = service.dashboard(admin)
    data["recent_feedback"] = [FeedbackSummary(**i) for i in data["recent_feedback"]]
    data["urgent_feedback"] = [FeedbackSummary(**i) for i in data["urgent_feedback"]]
    return envelope(data)


@router.get("/reports/summary")
def summary_report(
    start_date: Optional[str] = Query(None, description="ISO8601 start date"),
    end_date: Optional[str] = Query(None, description="ISO8601 end date"),
    admin: Principal = Depends(require_admin),
    service: FeedbackService = Depends(get_feedback_service),
):
    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    return envelope(service.summary_report(admin, start, end))
