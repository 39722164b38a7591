import logging
import os
import re
from datetime import timedelta
from importlib import resources
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, Optional

import yaml
from dotenv import load_dotenv
from fastapi import Depends, Header, Request

import oci

from feedback_desk.app import config as app_config


logger = logging.getLogger(__name__)

# ---------------- paths ----------------
BASE_DIR = Path(__file__).resolve().parents[1]  # feedback_desk/
PROJECT_ROOT = Path(__file__).resolve().parents[2]
REPO_ROOT = PROJECT_ROOT

# ---------------- env ----------------
_DOTENV_LOADED = False


def _load_env_file() -> None:
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return

    candidates = []
    env_hint = os.environ.get("APP_ENV_FILE")
    if env_hint:
        candidates.append(Path(env_hint))
    candidates.append(PROJECT_ROOT / ".env")
    candidates.append(BASE_DIR / ".env")

    for candidate in candidates:
        candidate = Path(candidate).expanduser()
        if not candidate.is_absolute():
            candidate = (PROJECT_ROOT / candidate).resolve()
        if candidate.exists():
            load_dotenv(candidate)
            break

    _DOTENV_LOADED = True


_load_env_file()


# ---------------- settings ----------------
def _read_yaml(p: Path):
    with p.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def _deep_resolve_env(obj):
    def resolve(v):
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.getenv(v[2:-1])
        return v

    if isinstance(obj, dict):
        return {k: _deep_resolve_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_deep_resolve_env(v) for v in obj]
    return resolve(obj)


def _read_yaml_from_package(package: str, filename: str) -> Optional[Any]:
    try:
        resource = resources.files(package).joinpath(filename)
    except ModuleNotFoundError:
        return None

    if not resource.is_file():
        return None

    with resources.as_file(resource) as resolved:
        return _read_yaml(Path(resolved))


def _load_config_yaml(env_var: str, filename: str) -> Dict[str, Any]:
    override = os.environ.get(env_var)
    if override:
        override_path = Path(override).expanduser()
        if not override_path.is_absolute():
            override_path = (PROJECT_ROOT / override_path).resolve()
        if not override_path.exists():
            raise FileNotFoundError(f"Config file not found at {override_path}")
        return _read_yaml(override_path) or {}

    package_data = _read_yaml_from_package("feedback_desk.config", filename)
    if package_data is not None:
        return package_data or {}

    fallback_path = BASE_DIR / "config" / filename
    if not fallback_path.exists():
        return {}
    return _read_yaml(fallback_path) or {}


class Settings:
    def __init__(self):
        self.app = _load_config_yaml("APP_CONFIG_PATH", "app.yaml")
        self.providers = _deep_resolve_env(_load_config_yaml("PROVIDERS_CONFIG_PATH", "providers.yaml"))

    def section(self, name: str) -> Dict[str, Any]:
        value = (self.app or {}).get(name) if isinstance(self.app, dict) else None
        return value if isinstance(value, dict) else {}


settings = Settings()


# ---------------- provider helpers ----------------
def _resolve_auth_file(raw_path: Optional[str]) -> Optional[str]:
    if not raw_path:
        return None
    path = Path(os.path.expanduser(raw_path))
    if not path.is_absolute():
        path = (REPO_ROOT / raw_path).resolve()
    return str(path)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


_GEN_PARAM_RULES = {
    "max_tokens": (int, 1, None),
    "temperature": (float, 0.0, 2.0),
    "top_p": (float, 0.0, 1.0),
    "top_k": (int, 0, None),
    "frequency_penalty": (float, 0.0, 2.0),
    "presence_penalty": (float, 0.0, 2.0),
}


def _parse_generation_params(section: str, data: dict, env_prefix: Optional[str] = None) -> dict:
    """Extract and validate optional generation params from a provider section.

    With ``env_prefix``, ``<PREFIX><KEY>`` environment variables take precedence
    over YAML values.
    Values outside acceptable ranges are clamped with a warning.
    """
    out: dict[str, int | float] = {}
    for key, (cast, lo, hi) in _GEN_PARAM_RULES.items():
        raw = os.getenv(env_prefix + key.upper()) if env_prefix else None
        if raw is None or raw == "":
            raw = data.get(key)
        if raw is None:
            continue
        try:
            value = cast(raw)
        except (TypeError, ValueError):
            logger.warning("%s.%s is not a %s; ignoring: %r", section, key, cast.__name__, raw)
            continue
        clamped = _clamp(value, lo, hi if hi is not None else value)
        if clamped != value:
            logger.warning("%s.%s=%s out of range; clamping to %s", section, key, value, clamped)
        out[key] = cast(clamped)
    return out


def _extract_region_from_endpoint(endpoint: str) -> Optional[str]:
    if not endpoint:
        return None
    match = re.search(r"\.([a-z0-9-]+)\.oci\.oraclecloud\.com", endpoint)
    if match:
        return match.group(1)
    return None


_region_warning_cache: set[tuple[str, str]] = set()


def _warn_if_region_mismatch(endpoint: str, auth_file: Optional[str], auth_profile: str) -> None:
    endpoint_region = _extract_region_from_endpoint(endpoint)
    if not endpoint_region or not auth_file:
        return
    try:
        config = oci.config.from_file(file_location=auth_file, profile_name=auth_profile)
    except Exception as exc:  # noqa: BLE001 - logging only, do not block startup
        logger.debug("Unable to load OCI config (profile=%s, file=%s): %s", auth_profile, auth_file, exc)
        return

    config_region = config.get("region")
    if not config_region or config_region == endpoint_region:
        return
    cache_key = (endpoint_region, config_region)
    if cache_key in _region_warning_cache:
        return
    _region_warning_cache.add(cache_key)
    logger.warning(
        "OCI profile region '%s' differs from endpoint region '%s' (%s); the endpoint region wins.",
        config_region,
        endpoint_region,
        endpoint,
    )


def _load_oci_llm() -> dict:
    oci_cfg = settings.providers.get("oci", {}) or {}
    data = dict(oci_cfg.get("llm", {}) or {})
    data.setdefault("endpoint", oci_cfg.get("endpoint"))
    data.setdefault("compartment_id", oci_cfg.get("compartment_id"))
    data.setdefault("auth_file", oci_cfg.get("config_path"))
    data.setdefault(
        "auth_profile",
        oci_cfg.get("config_profile") or os.environ.get("OCI_CONFIG_PROFILE", "DEFAULT"),
    )
    if not data.get("model_id") and data.get("model_ocid"):
        data["model_id"] = data.pop("model_ocid")

    missing = [k for k in ("endpoint", "compartment_id", "model_id") if not data.get(k)]
    if missing:
        raise ValueError(f"providers.oci.llm missing required keys: {', '.join(missing)}")

    data["auth_file"] = _resolve_auth_file(data.get("auth_file"))
    data["gen_params"] = _parse_generation_params("providers.oci.llm", data, env_prefix="OCI_LLM_")
    _warn_if_region_mismatch(data["endpoint"], data["auth_file"], data["auth_profile"])
    return data


# ---------------- factories ----------------
def ai_provider() -> str:
    return app_config.ai_provider(default=str(settings.section("ai").get("provider", "none")))


def make_chat_model(provider: Optional[str] = None):
    from feedback_desk.core.ports.chat_model import DisabledChatModel

    provider = (provider or ai_provider()).lower()
    if provider == "oci":
        from feedback_desk.providers.oci.chat_model import OciChatModel

        cfg = _load_oci_llm()
        return OciChatModel(
            model_id=cfg["model_id"],
            endpoint=cfg["endpoint"],
            compartment_id=cfg["compartment_id"],
            auth_file_location=cfg["auth_file"],
            auth_profile=cfg["auth_profile"],
            **(cfg.get("gen_params") or {}),
        )
    if provider == "gemini":
        from feedback_desk.providers.gemini.chat_model import GeminiChatModel

        cfg = settings.providers.get("gemini", {}) or {}
        gen = _parse_generation_params("providers.gemini", cfg, env_prefix="GEMINI_")
        return GeminiChatModel(
            api_key=cfg.get("api_key") or os.getenv("GEMINI_API_KEY"),
            model=cfg.get("model") or "gemini-1.5-flash",
            temperature=gen.get("temperature", 0.7),
            max_tokens=gen.get("max_tokens", 1024),
            system_prompt=cfg.get("system_prompt"),
        )
    if provider != "none":
        logger.warning("Unknown ai.provider '%s'; AI features disabled", provider)
    return DisabledChatModel(f"ai_provider_{provider}")


_AI_LOCK = Lock()
_AI_CACHE: Dict[str, Any] = {"service": None, "queue": None}


def get_ai_service():
    """Process-wide AI service; a provider that fails to initialise yields a disabled one."""
    from feedback_desk.core.ports.chat_model import DisabledChatModel
    from feedback_desk.core.services.ai_service import AIService

    with _AI_LOCK:
        if _AI_CACHE["service"] is not None:
            return _AI_CACHE["service"]
        ai_cfg = settings.section("ai")
        try:
            chat_model = make_chat_model()
        except Exception as exc:  # noqa: BLE001 - a bad provider config must not take the API down
            logger.error("AI provider init failed (%s: %s); AI features disabled", exc.__class__.__name__, exc)
            chat_model = DisabledChatModel("ai_provider_init_failed")
        service = AIService(
            chat_model,
            timeout_seconds=app_config.ai_timeout_seconds(default=float(ai_cfg.get("timeout_seconds", 20.0))),
            max_workers=int(ai_cfg.get("max_workers", 4)),
        )
        _AI_CACHE["service"] = service
        logger.info("ai.init provider=%s timeout=%ss", ai_provider(), service.timeout_seconds)
        return service


def _refresh_suggestions_job(feedback_id: str) -> bool:
    from feedback_desk.core.db.session import session_scope
    from feedback_desk.core.repos.factory import get_feedback_repo
    from feedback_desk.core.services.feedback_service import FeedbackService

    with session_scope() as session:
        service = FeedbackService(get_feedback_repo(session=session), get_ai_service())
        return service.refresh_suggestions(feedback_id)


def get_suggestion_queue():
    from feedback_desk.app.services.suggestion_queue import SuggestionQueue

    with _AI_LOCK:
        if _AI_CACHE["queue"] is None:
            cfg = settings.section("suggestions")
            _AI_CACHE["queue"] = SuggestionQueue(
                _refresh_suggestions_job,
                max_workers=app_config.suggestions_workers(default=int(cfg.get("workers", 2))),
                max_attempts=app_config.suggestions_max_attempts(default=int(cfg.get("max_attempts", 3))),
                wait_seconds=float(cfg.get("wait_seconds", 1.0)),
            )
        return _AI_CACHE["queue"]


def suggestions_enabled() -> bool:
    cfg = settings.section("suggestions")
    return app_config.suggestions_enabled(default=bool(cfg.get("enabled", True))) and ai_provider() != "none"


def run_suggestion_backfill() -> int:
    from feedback_desk.core.db.session import session_scope
    from feedback_desk.core.repos.factory import get_feedback_repo
    from feedback_desk.core.services.feedback_service import FeedbackService

    cfg = settings.section("suggestions")
    queue = get_suggestion_queue()
    if not queue.running:
        return 0
    with session_scope() as session:
        service = FeedbackService(get_feedback_repo(session=session), get_ai_service(), enrichment=queue)
        return service.backfill_suggestions(
            older_than=timedelta(minutes=int(cfg.get("backfill_older_than_minutes", 10))),
            limit=int(cfg.get("backfill_batch", 50)),
        )


def shutdown_ai() -> None:
    with _AI_LOCK:
        queue, service = _AI_CACHE["queue"], _AI_CACHE["service"]
    if queue is not None:
        queue.shutdown(timeout=float(settings.section("suggestions").get("drain_timeout_seconds", 10)))
    if service is not None:
        service.close()


# ---------------- request dependencies ----------------
def db_session() -> Iterator[Any]:
    from feedback_desk.core.db.session import session_scope

    with session_scope() as session:
        yield session


def get_users_repository(db=Depends(db_session)):
    from feedback_desk.core.repos.factory import get_users_repo

    return get_users_repo(session=db)


def get_feedback_repository(db=Depends(db_session)):
    from feedback_desk.core.repos.factory import get_feedback_repo

    return get_feedback_repo(session=db)


def get_user_service(repo=Depends(get_users_repository)):
    from feedback_desk.core.services.user_service import UserService

    return UserService(
        repo,
        secret=app_config.jwt_secret(),
        ttl_min=app_config.jwt_ttl_min(),
        password_algo=app_config.password_algo(default=str(settings.section("auth").get("password_algo", "bcrypt"))),
    )


def default_page_limit(admin: bool = False) -> int:
    cfg = settings.section("pagination")
    if admin:
        return int(cfg.get("admin_default_limit", 20))
    return int(cfg.get("default_limit", 10))


def get_feedback_service(repo=Depends(get_feedback_repository), ai=Depends(get_ai_service)):
    from feedback_desk.core.services.feedback_service import FeedbackService

    queue = get_suggestion_queue() if suggestions_enabled() else None
    return FeedbackService(
        repo,
        ai,
        enrichment=queue if queue is not None and queue.running else None,
        hide_forbidden=bool(settings.section("privacy").get("hide_forbidden_as_not_found", False)),
        max_limit=int(settings.section("pagination").get("max_limit", 100)),
    )


def get_current_principal(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    users=Depends(get_users_repository),
):
    from feedback_desk.core.access.principal import resolve_principal
    from feedback_desk.core.security.tokens import bearer_token

    principal = resolve_principal(bearer_token(authorization), users, secret=app_config.jwt_secret())
    request.state.principal = principal
    return principal


def require_admin(principal=Depends(get_current_principal)):
    from feedback_desk.core.access.policy import ROLE_ADMIN, require_role

    return require_role(principal, ROLE_ADMIN)


# ---------------- health ----------------
def _summarize_exc(exc: Exception) -> str:
    message = str(exc).strip()
    if not message:
        return type(exc).__name__
    first_line = message.splitlines()[0]
    if len(first_line) > 60:
        first_line = first_line[:57] + "..."
    return f"{type(exc).__name__}: {first_line}"


def _probe_store() -> Dict[str, Any]:
    from feedback_desk.core.db.session import session_scope
    from feedback_desk.core.repos.factory import get_feedback_repo, storage_mode
    from feedback_desk.core.repos.query import FeedbackQuery

    info = f"users={storage_mode('users')} feedback={storage_mode('feedback')}"
    with session_scope() as session:
        get_feedback_repo(session=session).aggregate(FeedbackQuery())
    return {"info": info, "is_up": True, "reason": None}


def _probe_ai() -> Dict[str, Any]:
    provider = ai_provider()
    info = f"provider={provider}"
    if provider == "none":
        return {"info": info, "is_up": False, "reason": "disabled"}
    is_up = get_ai_service().health_check()
    return {"info": info, "is_up": is_up, "reason": None if is_up else "no_response"}


def health_probe(section: str) -> Dict[str, Any]:
    """Public helper for health checks."""
    probes = {"store": _probe_store, "ai": _probe_ai}
    if section not in probes:
        raise ValueError(f"Unsupported section '{section}' for probing")
    try:
        return probes[section]()
    except Exception as exc:  # noqa: BLE001
        reason = _summarize_exc(exc)
        return {"info": f"{section} probe error", "is_up": False, "reason": reason}
