from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from feedback_desk.core.models.feedback import Feedback
from feedback_desk.core.repos.query import (
    ATTENTION_MAX_RATING,
    ATTENTION_PRIORITIES,
    FeedbackQuery,
    SortSpec,
)


_COLUMNS = (
    "id",
    "owner_id",
    "customer_name",
    "customer_email",
    "subject",
    "message",
    "rating",
    "category",
    "status",
    "priority",
    "admin_response",
    "is_public",
    "responded_at",
    "resolved_at",
    "created_at",
    "updated_at",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _dump_suggestions(suggestions: Optional[List[Dict[str, Any]]]) -> str:
    out = []
    for s in suggestions or []:
        item = dict(s)
        if isinstance(item.get("generated_at"), datetime):
            item["generated_at"] = item["generated_at"].isoformat()
        out.append(item)
    return json.dumps(out, ensure_ascii=False)


def _load_suggestions(raw: Optional[str]) -> List[Dict[str, Any]]:
    if not raw:
        return []
    items = json.loads(raw)
    for item in items:
        if item.get("generated_at"):
            item["generated_at"] = datetime.fromisoformat(item["generated_at"])
    return items


def _to_record(fb: Feedback, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    rec = {name: getattr(fb, name) for name in _COLUMNS}
    for name in ("responded_at", "resolved_at", "created_at", "updated_at"):
        rec[name] = _aware(rec[name])
    rec["ai_suggestions"] = _load_suggestions(fb.ai_suggestions_json)
    for field in exclude:
        rec.pop(field, None)
    return rec


def _apply(fb: Feedback, changes: Dict[str, Any]) -> None:
    for key, value in changes.items():
        if key == "ai_suggestions":
            fb.ai_suggestions_json = _dump_suggestions(value)
        elif key in _COLUMNS and key != "id":
            setattr(fb, key, value)


def _where(q: FeedbackQuery) -> list:
    clauses = []
    if q.owner_id is not None:
        clauses.append(Feedback.owner_id == q.owner_id)
    if q.status:
        clauses.append(Feedback.status == q.status)
    if q.statuses:
        clauses.append(Feedback.status.in_(q.statuses))
    if q.category:
        clauses.append(Feedback.category == q.category)
    if q.priority:
        clauses.append(Feedback.priority == q.priority)
    if q.min_rating is not None:
        clauses.append(Feedback.rating >= q.min_rating)
    if q.search:
        clauses.append(or_(*[getattr(Feedback, f).icontains(q.search, autoescape=True) for f in q.search_fields]))
    if q.created_from is not None:
        clauses.append(Feedback.created_at >= q.created_from)
    if q.created_to is not None:
        clauses.append(Feedback.created_at <= q.created_to)
    if q.needs_attention:
        clauses.append(or_(Feedback.priority.in_(ATTENTION_PRIORITIES), Feedback.rating <= ATTENTION_MAX_RATING))
    if q.missing_suggestions:
        clauses.append(or_(Feedback.ai_suggestions_json.is_(None), Feedback.ai_suggestions_json == "[]"))
    return clauses


class FeedbackRepoDB:
    def __init__(self, session: Session):
        self.session = session

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(data)
        now = datetime.now(timezone.utc)
        payload["created_at"] = payload.get("created_at") or now
        payload["updated_at"] = payload.get("updated_at") or payload["created_at"]
        fb = Feedback()
        _apply(fb, payload)
        if data.get("id"):
            fb.id = data["id"]
        if "ai_suggestions" not in payload:
            fb.ai_suggestions_json = "[]"
        self.session.add(fb)
        self.session.flush()
        return _to_record(fb)

    def get(self, fb_id: str) -> Optional[Dict[str, Any]]:
        fb = self.session.get(Feedback, fb_id)
        return _to_record(fb) if fb is not None else None

    def find(
        self,
        query: FeedbackQuery,
        *,
        sort: SortSpec = SortSpec(),
        skip: int = 0,
        limit: int = 10,
        exclude: Iterable[str] = (),
    ) -> Tuple[List[Dict[str, Any]], int]:
        q = select(Feedback).where(*_where(query))
        cq = select(func.count()).select_from(q.subquery())
        total = self.session.execute(cq).scalar_one()
        col = getattr(Feedback, sort.field)
        if sort.descending:
            q = q.order_by(col.desc(), Feedback.id.desc())
        else:
            q = q.order_by(col.asc(), Feedback.id.asc())
        rows = self.session.execute(q.offset(skip).limit(limit)).scalars().all()
        exclude = tuple(exclude)
        return [_to_record(r, exclude) for r in rows], total

    def update(self, fb_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        fb = self.session.get(Feedback, fb_id)
        if fb is None:
            return None
        _apply(fb, changes)
        if "updated_at" not in changes:
            fb.updated_at = datetime.now(timezone.utc)
        self.session.flush()
        return _to_record(fb)

    def commit(self) -> None:
        self.session.commit()

    def delete(self, fb_id: str) -> bool:
        res = self.session.execute(delete(Feedback).where(Feedback.id == fb_id))
        return res.rowcount > 0

    def aggregate(self, query: FeedbackQuery, group_by: Optional[str] = None) -> List[Dict[str, Any]]:
        metrics = (func.count(Feedback.id).label("count"), func.avg(Feedback.rating).label("avg_rating"))
        if group_by is None:
            stmt = select(*metrics).where(*_where(query))
            row = self.session.execute(stmt).one()
            if not row.count:
                return []
            return [{"key": None, "count": row.count, "avg_rating": float(row.avg_rating or 0)}]

        if group_by == "created_date":
            key_expr = func.date(Feedback.created_at)
        else:
            key_expr = getattr(Feedback, group_by)
        stmt = select(key_expr.label("key"), *metrics).where(*_where(query)).group_by(key_expr)
        out = []
        for row in self.session.execute(stmt):
            key = row.key.isoformat() if isinstance(row.key, date) else row.key
            out.append({"key": key, "count": row.count, "avg_rating": float(row.avg_rating or 0)})
        return out
