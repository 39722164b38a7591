from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from feedback_desk.core.services.errors import Conflict


class UsersRepoJSON:
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
                return []

    def _atomic_write(self, data: List[Dict[str, Any]]):
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._read()
            username = (data.get("username") or "").lower()
            email = (data.get("email") or "").lower()
            if any((r.get("username") or "").lower() == username or (r.get("email") or "").lower() == email for r in rows):
                raise Conflict("username_or_email_exists")
            now = datetime.now(timezone.utc).isoformat()
            rec = {
                "id": uuid.uuid4().hex,
                "created_at": now,
                "updated_at": now,
                "role": data.get("role") or "user",
                "is_active": True,
                **{k: v for k, v in data.items() if k not in {"id", "created_at", "updated_at"}},
            }
            rows.append(rec)
            self._atomic_write(rows)
            return rec

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        for r in self._read():
            if r.get("id") == user_id:
                return r
        return None

    def get_by_login(self, login: str) -> Optional[Dict[str, Any]]:
        """Look a user up by username or e-mail, case-insensitively."""
        login = (login or "").lower()
        for r in self._read():
            if (r.get("username") or "").lower() == login or (r.get("email") or "").lower() == login:
                return r
        return None

    def exists(self, *, username: str, email: str) -> bool:
        return self.get_by_login(username) is not None or self.get_by_login(email) is not None

    def update(self, user_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            rows = self._read()
            updated = None
            for r in rows:
                if r.get("id") == user_id:
                    r.update(
                        {
                            k: (v.isoformat() if isinstance(v, datetime) else v)
                            for k, v in data.items()
                            if k not in {"id", "created_at"}
                        }
                    )
                    r["updated_at"] = datetime.now(timezone.utc).isoformat()
                    updated = r
                    break
            if updated is not None:
                self._atomic_write(rows)
            return updated
