from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_DOTENV_LOADED = False
_PACKAGE_DIR = Path(__file__).resolve().parents[1]
_PROJECT_ROOT = _PACKAGE_DIR.parent


def _load_env_once() -> None:
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return

    candidates = []
    env_hint = os.environ.get("APP_ENV_FILE")
    if env_hint:
        candidates.append(Path(env_hint))
    candidates.append(_PROJECT_ROOT / ".env")
    candidates.append(_PACKAGE_DIR / ".env")

    for candidate in candidates:
        candidate = Path(candidate).expanduser()
        if not candidate.is_absolute():
            candidate = (_PROJECT_ROOT / candidate).resolve()
        if candidate.exists():
            load_dotenv(candidate)
            break

    _DOTENV_LOADED = True


_load_env_once()


def _env(key: str, default: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return default
    return value


def _env_bool(key: str, default: bool) -> bool:
    raw = _env(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_int(key: str, default: int) -> int:
    raw = _env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config: %s is not an int; using %s", key, default)
        return default


def _env_float(key: str, default: float) -> float:
    raw = _env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config: %s is not a number; using %s", key, default)
        return default


def jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        # Fallback to SESSION_SECRET if provided
        secret = os.getenv("SESSION_SECRET", "changeme-secret")
    return secret


def jwt_ttl_min() -> int:
    return _env_int("JWT_TTL_MIN", 1440)


def password_algo(default: str = "bcrypt") -> str:
    return (_env("PASSWORD_ALGO", default) or default).lower()


def ai_provider(default: str = "none") -> str:
    return (_env("AI_PROVIDER", default) or default).lower()


def ai_timeout_seconds(default: float = 20.0) -> float:
    return _env_float("AI_TIMEOUT_SECONDS", default)


def suggestions_enabled(default: bool = True) -> bool:
    return _env_bool("SUGGESTIONS_ENABLED", default)


def suggestions_workers(default: int = 2) -> int:
    return max(1, _env_int("SUGGESTIONS_WORKERS", default))


def suggestions_max_attempts(default: int = 3) -> int:
    return max(1, _env_int("SUGGESTIONS_MAX_ATTEMPTS", default))


def demo_setup_enabled(default: bool = False) -> bool:
    return _env_bool("DEMO_SETUP_ENABLED", default)


def backfill_schedule_enabled() -> bool:
    return _env_bool("BACKFILL_SCHEDULE_ENABLED", False)


def backfill_schedule_cron() -> str:
    return _env("BACKFILL_SCHEDULE_CRON", "*/15 * * * *") or "*/15 * * * *"


def scheduler_timezone() -> str:
    return _env("SCHEDULER_TIMEZONE", "UTC") or "UTC"
