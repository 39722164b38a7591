from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Tuple

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine

from feedback_desk.app.deps import settings


logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///./feedback_desk.db"


def _db_cfg() -> dict:
    app_cfg = getattr(settings, "app", {}) or {}
    db_cfg = app_cfg.get("database", {}) if isinstance(app_cfg, dict) else {}
    return db_cfg if isinstance(db_cfg, dict) else {}


def resolve_db_url() -> Tuple[str, str]:
    """Resolve DB URL and its source label: env|config|default.

    Precedence: env(DATABASE_SQLALCHEMY_URL|DATABASE_URL), then
    config.database.sqlalchemy_url, then a local SQLite file.
    """
    url = os.getenv("DATABASE_SQLALCHEMY_URL") or os.getenv("DATABASE_URL")
    if url:
        return url, "env"
    url = _db_cfg().get("sqlalchemy_url")
    if url:
        return url, "config"
    return DEFAULT_DB_URL, "default"


def mask_url(url: str) -> str:
    if "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    if "@" not in rest:
        return url
    creds, host = rest.split("@", 1)
    user = creds.split(":", 1)[0] if ":" in creds else ""
    masked = f"{user}:***" if user else "***"
    return f"{scheme}://{masked}@{host}"


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)

    db_cfg = _db_cfg()
    pool_min = int(db_cfg.get("pool_min", 1) or 1)
    pool_max = int(db_cfg.get("pool_max", 5) or 5)
    timeout = int(db_cfg.get("pool_timeout_seconds", 30) or 30)
    logger.info("db.pool size=%s-%s timeout=%ss", pool_min, pool_max, timeout)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=pool_min,
        max_overflow=max(pool_max - pool_min, 0),
        pool_timeout=timeout,
        future=True,
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    url, source = resolve_db_url()
    logger.info("Creating SQLAlchemy engine: url=%s (source=%s)", mask_url(url), source)
    return build_engine(url)


def init_schema(engine: Engine | None = None) -> list[str]:
    """Create missing tables and return the table names present afterwards."""
    from feedback_desk.core.db.base import Base
    import feedback_desk.core.models.feedback  # noqa: F401 - register models
    import feedback_desk.core.models.users  # noqa: F401

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    return sorted(inspect(engine).get_table_names())
