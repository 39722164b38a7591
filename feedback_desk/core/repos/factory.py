from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict

from feedback_desk.app.deps import settings
from feedback_desk.core.db.session import new_session
from feedback_desk.core.repos.feedback_repo_db import FeedbackRepoDB
from feedback_desk.core.repos.feedback_repo_json import FeedbackRepoJSON
from feedback_desk.core.repos.users_repo_db import UsersRepoDB
from feedback_desk.core.repos.users_repo_json import UsersRepoJSON


_DEFAULT_JSON_PATHS = {"users": "data/users.json", "feedback": "data/feedback.json"}


def _storage_cfg() -> Dict[str, Any]:
    return (settings.app.get("storage") or {}) if isinstance(settings.app, dict) else {}


def _entity_cfg(entity: str) -> Dict[str, Any]:
    cfg = _storage_cfg().get(entity) or {}
    return cfg if isinstance(cfg, dict) else {}


def storage_mode(entity: str) -> str:
    mode = str(_entity_cfg(entity).get("mode", "db")).lower()
    if mode not in {"db", "json"}:
        raise ValueError(f"storage.{entity}.mode must be 'db' or 'json', got {mode!r}")
    return mode


# One JSON repo per file so every request shares the same write lock.
@lru_cache(maxsize=None)
def _json_users_repo(path: str) -> UsersRepoJSON:
    return UsersRepoJSON(path)


@lru_cache(maxsize=None)
def _json_feedback_repo(path: str) -> FeedbackRepoJSON:
    return FeedbackRepoJSON(path)


def get_users_repo(session=None):
    if storage_mode("users") == "json":
        return _json_users_repo(_entity_cfg("users").get("json_path", _DEFAULT_JSON_PATHS["users"]))
    return UsersRepoDB(session or new_session())


def get_feedback_repo(session=None):
    if storage_mode("feedback") == "json":
        return _json_feedback_repo(_entity_cfg("feedback").get("json_path", _DEFAULT_JSON_PATHS["feedback"]))
    return FeedbackRepoDB(session or new_session())
