from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from feedback_desk.core.access.policy import (
    ROLE_ADMIN,
    can_access,
    filter_writable,
    is_admin,
    require_principal,
    require_role,
    scope_query,
)
from feedback_desk.core.access.principal import Principal
from feedback_desk.core.repos.query import FeedbackQuery, SortSpec
from feedback_desk.core.services.ai_service import DEFAULT_SENTIMENT, AIService
from feedback_desk.core.services.errors import Forbidden, NotFound, UpstreamFailure, ValidationError
from feedback_desk.core.services.feedback_rules import FeedbackChanges, FeedbackDraft, validate


logger = logging.getLogger(__name__)

LIST_EXCLUDE = ("ai_suggestions",)


class FeedbackService:
    """Feedback operations with ownership and role rules applied.

    ``enrichment`` receives the id of every newly created record for
    out-of-band suggestion generation (see ``SuggestionQueue``). With
    ``hide_forbidden`` set, ownership violations are reported as missing
    records so other users' ids cannot be probed.
    """

    def __init__(
        self,
        repo,
        ai: Optional[AIService] = None,
        *,
        enrichment=None,
        hide_forbidden: bool = False,
        max_limit: int = 100,
    ) -> None:
        self.repo = repo
        self.ai = ai
        self.enrichment = enrichment
        self.hide_forbidden = hide_forbidden
        self.max_limit = max_limit

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _load_for(self, principal: Optional[Principal], fb_id: str, *, action: str) -> Dict[str, Any]:
        principal = require_principal(principal)
        record = self.repo.get(fb_id)
        if record is None:
            raise NotFound("feedback_not_found")
        if not can_access(principal, record):
            logger.warning(
                "feedback.%s denied user_id=%s feedback_id=%s owner_id=%s",
                action,
                principal.id,
                fb_id,
                record.get("owner_id"),
            )
            if self.hide_forbidden:
                raise NotFound("feedback_not_found")
            raise Forbidden(f"access_denied: you can only {action} your own feedback")
        return record

    # ---------- reads ----------
    def list_feedback(
        self,
        principal: Optional[Principal],
        filters: FeedbackQuery = FeedbackQuery(),
        *,
        page: int = 1,
        limit: int = 10,
        sort: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        principal = require_principal(principal)
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1 or limit > self.max_limit:
            raise ValidationError(f"limit must be between 1 and {self.max_limit}")
        try:
            sort_spec = SortSpec.parse(sort)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        query = scope_query(principal, filters)
        items, total = self.repo.find(
            query, sort=sort_spec, skip=(page - 1) * limit, limit=limit, exclude=LIST_EXCLUDE
        )
        total_pages = math.ceil(total / limit)
        pagination = {
            "current_page": page,
            "total_pages": total_pages,
            "total_items": total,
            "items_per_page": limit,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        }
        logger.info(
            "feedback.list user_id=%s role=%s returned=%s total=%s",
            principal.id,
            principal.role,
            len(items),
            total,
        )
        return items, pagination

    def get_feedback(self, principal: Optional[Principal], fb_id: str) -> Dict[str, Any]:
        return self._load_for(principal, fb_id, action="view")

    def stats(
        self,
        principal: Optional[Principal],
        *,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        principal = require_principal(principal)
        query = scope_query(principal, FeedbackQuery(created_from=created_from, created_to=created_to))
        by_status = self.repo.aggregate(query, "status")
        by_category = self.repo.aggregate(query, "category")
        by_rating = self.repo.aggregate(query, "rating")

        total = sum(row["count"] for row in by_status)
        rating_sum = sum(row["avg_rating"] * row["count"] for row in by_status)
        status_counts = {row["key"]: row["count"] for row in by_status}
        return {
            "overview": {
                "total_feedback": total,
                "average_rating": round(rating_sum / total, 2) if total else 0,
                "total_pending": status_counts.get("pending", 0),
                "total_responded": status_counts.get("responded", 0),
                "total_resolved": status_counts.get("resolved", 0),
            },
            "category_breakdown": [
                {"category": row["key"], "count": row["count"], "avg_rating": round(row["avg_rating"], 2)}
                for row in sorted(by_category, key=lambda r: (-r["count"], str(r["key"])))
            ],
            "rating_distribution": [
                {"rating": row["key"], "count": row["count"]}
                for row in sorted(by_rating, key=lambda r: r["key"] or 0)
            ],
        }

    # ---------- writes ----------
    def create_feedback(self, principal: Optional[Principal], payload: Mapping[str, Any]) -> Dict[str, Any]:
        principal = require_principal(principal)
        draft = validate(FeedbackDraft, payload)
        now = self._now()
        record = self.repo.create(
            {
                **draft.model_dump(),
                "owner_id": principal.id,
                "status": "pending",
                "priority": "medium",
                "ai_suggestions": [],
                "created_at": now,
                "updated_at": now,
            }
        )
        logger.info(
            "feedback.create id=%s owner_id=%s category=%s rating=%s",
            record["id"],
            principal.id,
            record["category"],
            record["rating"],
        )
        # background jobs use their own session and must see the row
        self.repo.commit()
        self._enqueue_suggestions(record["id"])
        return record

    def update_feedback(
        self, principal: Optional[Principal], fb_id: str, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        record = self._load_for(principal, fb_id, action="update")
        allowed = filter_writable(principal, payload)
        ignored = sorted(set(payload) - set(allowed))
        if ignored:
            logger.debug("feedback.update ignored_fields=%s role=%s", ignored, principal.role)
        changes = validate(FeedbackChanges, allowed).model_dump(exclude_unset=True)
        changes = self._with_transitions(principal, record, changes)
        if not changes:
            return record
        updated = self.repo.update(fb_id, changes)
        if updated is None:
            raise NotFound("feedback_not_found")
        logger.info("feedback.update id=%s by=%s changes=%s", fb_id, principal.id, sorted(changes))
        return updated

    def _with_transitions(
        self, principal: Principal, record: Mapping[str, Any], changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        now = self._now()
        response = changes.get("admin_response")
        if is_admin(principal) and response:
            changes["status"] = "responded"
        status = changes.get("status")
        if status == "responded" and not record.get("responded_at"):
            changes["responded_at"] = now
        if status == "resolved" and not record.get("resolved_at"):
            changes["resolved_at"] = now
        if status and status != "resolved" and record.get("status") == "resolved":
            logger.warning("feedback.reopen id=%s by=%s status=%s", record["id"], principal.id, status)
        return changes

    def delete_feedback(self, principal: Optional[Principal], fb_id: str) -> None:
        record = self._load_for(principal, fb_id, action="delete")
        if not self.repo.delete(fb_id):
            raise NotFound("feedback_not_found")
        logger.info("feedback.delete id=%s by=%s owner_id=%s", fb_id, principal.id, record.get("owner_id"))

    # ---------- admin ----------
    def respond(
        self, principal: Optional[Principal], fb_id: str, response: Optional[str], status: str = "responded"
    ) -> Dict[str, Any]:
        principal = require_role(principal, ROLE_ADMIN)
        if not response or not response.strip():
            raise ValidationError("admin_response_required")
        changes = validate(FeedbackChanges, {"admin_response": response, "status": status}).model_dump(
            exclude_unset=True
        )
        record = self._load_for(principal, fb_id, action="respond to")
        now = self._now()
        changes["responded_at"] = record.get("responded_at") or now
        if changes["status"] == "resolved" and not record.get("resolved_at"):
            changes["resolved_at"] = now
        updated = self.repo.update(fb_id, changes)
        if updated is None:
            raise NotFound("feedback_not_found")
        logger.info("feedback.respond id=%s by=%s status=%s", fb_id, principal.id, changes["status"])
        return updated

    def set_status(self, principal: Optional[Principal], fb_id: str, status: Optional[str]) -> Dict[str, Any]:
        principal = require_role(principal, ROLE_ADMIN)
        return self.update_feedback(principal, fb_id, {"status": status or ""})

    def set_priority(self, principal: Optional[Principal], fb_id: str, priority: Optional[str]) -> Dict[str, Any]:
        principal = require_role(principal, ROLE_ADMIN)
        return self.update_feedback(principal, fb_id, {"priority": priority or ""})

    def dashboard(self, principal: Optional[Principal]) -> Dict[str, Any]:
        require_role(principal, ROLE_ADMIN)
        now = self._now()
        everything = FeedbackQuery()

        by_status = {row["key"]: row for row in self.repo.aggregate(everything, "status")}
        by_priority = {row["key"]: row["count"] for row in self.repo.aggregate(everything, "priority")}
        total = sum(row["count"] for row in by_status.values())
        rating_sum = sum(row["avg_rating"] * row["count"] for row in by_status.values())

        pending_by_category = {
            row["key"]: row["count"] for row in self.repo.aggregate(FeedbackQuery(status="pending"), "category")
        }
        category_stats = [
            {
                "category": row["key"],
                "count": row["count"],
                "avg_rating": round(row["avg_rating"], 2),
                "pending": pending_by_category.get(row["key"], 0),
            }
            for row in sorted(self.repo.aggregate(everything, "category"), key=lambda r: -r["count"])
        ]
        recent, _ = self.repo.find(
            FeedbackQuery(created_from=now - timedelta(hours=24)), limit=10, exclude=LIST_EXCLUDE
        )
        urgent, _ = self.repo.find(
            FeedbackQuery(needs_attention=True, status="pending"), limit=5, exclude=LIST_EXCLUDE
        )
        trends = self.repo.aggregate(FeedbackQuery(created_from=now - timedelta(days=30)), "created_date")
        return {
            "stats": {
                "total": total,
                "pending": by_status.get("pending", {}).get("count", 0),
                "responded": by_status.get("responded", {}).get("count", 0),
                "resolved": by_status.get("resolved", {}).get("count", 0),
                "avg_rating": round(rating_sum / total, 2) if total else 0,
                "high_priority": by_priority.get("high", 0) + by_priority.get("urgent", 0),
            },
            "recent_feedback": recent,
            "urgent_feedback": urgent,
            "category_stats": category_stats,
            "rating_trends": [
                {"date": row["key"], "avg_rating": round(row["avg_rating"], 2), "count": row["count"]}
                for row in sorted(trends, key=lambda r: str(r["key"]))
            ],
        }

    def summary_report(
        self,
        principal: Optional[Principal],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        principal = require_role(principal, ROLE_ADMIN)
        if start and end and start > end:
            raise ValidationError("start_date must not be after end_date")
        report = self.stats(principal, created_from=start, created_to=end)
        report["date_range"] = {"start_date": start, "end_date": end}
        return report

    # ---------- AI ----------
    def regenerate_suggestions(self, principal: Optional[Principal], fb_id: str) -> List[Dict[str, Any]]:
        principal = require_role(principal, ROLE_ADMIN)
        record = self._load_for(principal, fb_id, action="view")
        suggestions = self._generate_suggestions(record)
        if self.repo.update(fb_id, {"ai_suggestions": suggestions}) is None:
            raise NotFound("feedback_not_found")
        return suggestions

    def analyze_sentiment(self, principal: Optional[Principal], fb_id: str) -> Dict[str, Any]:
        record = self._load_for(principal, fb_id, action="view")
        if self.ai is None:
            analysis = DEFAULT_SENTIMENT.model_dump()
        else:
            analysis = self.ai.analyze_sentiment(record["message"])
        return {
            "feedback_id": fb_id,
            "analysis": analysis,
            "message": record["message"],
            "analyzed_at": self._now(),
        }

    def refresh_suggestions(self, fb_id: str) -> bool:
        """Background job body: regenerate suggestions for a freshly created record.

        Returns False when the record disappeared before the job ran.
        """
        record = self.repo.get(fb_id)
        if record is None:
            logger.info("feedback.enrich skipped feedback_id=%s reason=not_found", fb_id)
            return False
        suggestions = self._generate_suggestions(record)
        if self.repo.update(fb_id, {"ai_suggestions": suggestions}) is None:
            logger.info("feedback.enrich skipped feedback_id=%s reason=deleted", fb_id)
            return False
        logger.info("feedback.enrich stored feedback_id=%s count=%s", fb_id, len(suggestions))
        return True

    def backfill_suggestions(self, *, older_than: timedelta = timedelta(minutes=10), limit: int = 50) -> int:
        """Re-enqueue the oldest records still without suggestions; returns how many were queued."""
        if self.enrichment is None:
            return 0
        query = FeedbackQuery(missing_suggestions=True, created_to=self._now() - older_than)
        items, total = self.repo.find(
            query, sort=SortSpec(field="created_at", descending=False), limit=limit, exclude=LIST_EXCLUDE
        )
        for item in items:
            self._enqueue_suggestions(item["id"])
        if items:
            logger.info("feedback.backfill queued=%s remaining=%s", len(items), total - len(items))
        return len(items)

    def _generate_suggestions(self, record: Mapping[str, Any]) -> List[Dict[str, Any]]:
        if self.ai is None:
            raise UpstreamFailure("ai_unavailable")
        now = self._now()
        return [{**s, "generated_at": now} for s in self.ai.generate_suggestions(record)]

    def _enqueue_suggestions(self, fb_id: str) -> None:
        if self.enrichment is None:
            return
        try:
            self.enrichment.submit(fb_id)
        except Exception as exc:  # noqa: BLE001 - enrichment must never fail the create
            logger.warning("feedback.enrich enqueue_failed feedback_id=%s (%s)", fb_id, exc.__class__.__name__)
