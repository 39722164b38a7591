from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from feedback_desk.core.repos.query import (
    ATTENTION_MAX_RATING,
    ATTENTION_PRIORITIES,
    FeedbackQuery,
    SortSpec,
)


logger = logging.getLogger(__name__)

_DT_FIELDS = ("created_at", "updated_at", "responded_at", "resolved_at")

FEEDBACK_DEFAULTS: Dict[str, Any] = {
    "owner_id": None,
    "category": "general",
    "status": "pending",
    "priority": "medium",
    "admin_response": None,
    "ai_suggestions": [],
    "is_public": True,
    "responded_at": None,
    "resolved_at": None,
}


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_to_json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items()}
    return value


class FeedbackRepoJSON:
    def __init__(self, path: str | Path):
        self.path = self._resolve_path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        if not self.path.exists():
            self._atomic_write([])

    def _resolve_path(self, p: str | Path) -> Path:
        path = Path(p)
        if not path.is_absolute():
            base = Path(__file__).resolve().parents[2]  # feedback_desk/
            path = (base / path).resolve()
        return path

    def _read(self) -> List[Dict[str, Any]]:
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                return json.load(f) or []
            except json.JSONDecodeError:
                logger.warning("feedback.json unreadable path=%s; treating as empty", self.path)
                return []

    def _atomic_write(self, data: List[Dict[str, Any]]):
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def _hydrate(self, row: Dict[str, Any], exclude: Iterable[str] = ()) -> Dict[str, Any]:
        rec = {**FEEDBACK_DEFAULTS, **row}
        for field in _DT_FIELDS:
            rec[field] = _parse_dt(rec.get(field))
        rec["ai_suggestions"] = [
            {**s, "generated_at": _parse_dt(s.get("generated_at"))} for s in (rec.get("ai_suggestions") or [])
        ]
        for field in exclude:
            rec.pop(field, None)
        return rec

    def _rows(self) -> List[Dict[str, Any]]:
        return [self._hydrate(r) for r in self._read()]

    # ---------- writes ----------
    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._read()
            now = datetime.now(timezone.utc)
            rec = {**FEEDBACK_DEFAULTS, **data, "id": data.get("id") or uuid.uuid4().hex}
            rec["created_at"] = rec.get("created_at") or now
            rec["updated_at"] = rec.get("updated_at") or rec["created_at"]
            rows.append(_to_json_value(rec))
            self._atomic_write(rows)
        return self._hydrate(rows[-1])

    def update(self, fb_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            rows = self._read()
            updated = None
            for r in rows:
                if r.get("id") == fb_id:
                    r.update(_to_json_value({k: v for k, v in changes.items() if k not in {"id", "created_at"}}))
                    if "updated_at" not in changes:
                        r["updated_at"] = datetime.now(timezone.utc).isoformat()
                    updated = r
                    break
            if updated is not None:
                self._atomic_write(rows)
        return self._hydrate(updated) if updated is not None else None

    def delete(self, fb_id: str) -> bool:
        with self._lock:
            rows = self._read()
            new_rows = [r for r in rows if r.get("id") != fb_id]
            changed = len(new_rows) != len(rows)
            if changed:
                self._atomic_write(new_rows)
            return changed

    def commit(self) -> None:
        """Writes are persisted immediately; nothing to flush."""

    # ---------- reads ----------
    def get(self, fb_id: str) -> Optional[Dict[str, Any]]:
        for r in self._read():
            if r.get("id") == fb_id:
                return self._hydrate(r)
        return None

    def find(
        self,
        query: FeedbackQuery,
        *,
        sort: SortSpec = SortSpec(),
        skip: int = 0,
        limit: int = 10,
        exclude: Iterable[str] = (),
    ) -> Tuple[List[Dict[str, Any]], int]:
        rows = [r for r in self._rows() if _matches(r, query)]
        rows.sort(key=lambda r: r["id"], reverse=sort.descending)
        rows.sort(key=lambda r: _sort_key(r.get(sort.field)), reverse=sort.descending)
        total = len(rows)
        exclude = tuple(exclude)
        page = rows[skip : skip + limit]
        for rec in page:
            for field in exclude:
                rec.pop(field, None)
        return page, total

    def aggregate(self, query: FeedbackQuery, group_by: Optional[str] = None) -> List[Dict[str, Any]]:
        groups: Dict[Any, List[int]] = defaultdict(list)
        for r in self._rows():
            if not _matches(r, query):
                continue
            if group_by is None:
                key = None
            elif group_by == "created_date":
                key = r["created_at"].date().isoformat() if r.get("created_at") else None
            else:
                key = r.get(group_by)
            groups[key].append(int(r.get("rating") or 0))
        return [
            {"key": key, "count": len(ratings), "avg_rating": sum(ratings) / len(ratings)}
            for key, ratings in groups.items()
        ]


def _sort_key(value: Any) -> Tuple[bool, Any]:
    # None sorts before any value in ascending order
    if value is None:
        return (False, 0)
    if isinstance(value, datetime):
        return (True, value.timestamp())
    return (True, value)


def _matches(r: Dict[str, Any], q: FeedbackQuery) -> bool:
    if q.owner_id is not None and r.get("owner_id") != q.owner_id:
        return False
    if q.status and r.get("status") != q.status:
        return False
    if q.statuses and r.get("status") not in q.statuses:
        return False
    if q.category and r.get("category") != q.category:
        return False
    if q.priority and r.get("priority") != q.priority:
        return False
    if q.min_rating is not None and int(r.get("rating") or 0) < q.min_rating:
        return False
    if q.search:
        needle = q.search.lower()
        if not any(needle in str(r.get(f) or "").lower() for f in q.search_fields):
            return False
    created = r.get("created_at")
    if q.created_from is not None and (created is None or created < q.created_from):
        return False
    if q.created_to is not None and (created is None or created > q.created_to):
        return False
    if q.needs_attention:
        if r.get("priority") not in ATTENTION_PRIORITIES and int(r.get("rating") or 0) > ATTENTION_MAX_RATING:
            return False
    if q.missing_suggestions and r.get("ai_suggestions"):
        return False
    return True
