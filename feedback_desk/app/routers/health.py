import logging

from fastapi import APIRouter

from feedback_desk.app.deps import health_probe


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/healthz")
def healthz():
    services = {}
    probes = {
        "store": health_probe("store"),
        "ai": health_probe("ai"),
    }

    for label, probe in probes.items():
        if probe["is_up"]:
            services[label] = "up"
        else:
            reason = probe.get("reason") or "error"
            services[label] = f"down ({reason})"
            logger.debug("Health detail for %s: %s", label, probe["info"])

    # the API is usable without AI; only the store decides readiness
    ok = probes["store"]["is_up"]
    return {"ok": ok, "services": services}
