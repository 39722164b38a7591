import logging

# --- Logging setup ---
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s %(name)s:%(lineno)d | %(message)s"
)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
# --- End logging setup ---

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from feedback_desk.app.routers import health
from feedback_desk.app.routers import admin as admin_router
from feedback_desk.app.routers import ai as ai_router
from feedback_desk.app.routers import auth as auth_router
from feedback_desk.app.routers import feedback as feedback_router
from feedback_desk.app.deps import get_suggestion_queue, run_suggestion_backfill, settings, shutdown_ai, suggestions_enabled
from feedback_desk.app.errors import register_error_handlers
from feedback_desk.app.services.scheduler import start_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)

app = FastAPI(title="Feedback Desk API")

register_error_handlers(app)

# CORS
cfg = settings.section("server").get("cors", {})
app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.get("allow_origins", ["*"]),
    allow_methods=cfg.get("allow_methods", ["*"]),
    allow_headers=cfg.get("allow_headers", ["*"]),
)

# Routers
app.include_router(health.router)
app.include_router(auth_router.router)
app.include_router(feedback_router.router)
app.include_router(admin_router.router)
app.include_router(ai_router.router)


@app.on_event("startup")
def _startup_storage() -> None:
    from feedback_desk.core.db.engine import init_schema, mask_url, resolve_db_url
    from feedback_desk.core.repos.factory import storage_mode

    if "db" not in {storage_mode("users"), storage_mode("feedback")}:
        logger.info("DB init skipped: JSON storage only")
        return
    url, source = resolve_db_url()
    tables = init_schema()
    logger.info("DB ready url=%s (source=%s) tables=%s", mask_url(url), source, tables)


@app.on_event("startup")
def _startup_suggestions() -> None:
    if not suggestions_enabled():
        logger.info("Suggestion queue disabled (suggestions.enabled=false or ai.provider=none)")
        return
    get_suggestion_queue().start()
    start_scheduler(run_suggestion_backfill)


@app.on_event("shutdown")
def _shutdown_suggestions() -> None:
    shutdown_scheduler()
    shutdown_ai()
