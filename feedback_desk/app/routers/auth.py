from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from feedback_desk.app import config as app_config
from feedback_desk.app.deps import get_current_principal, get_user_service
from feedback_desk.app.schemas.auth import LoginRequest, LoginResponse, RegisterRequest, UserPublic
from feedback_desk.app.schemas.feedback import envelope
from feedback_desk.core.access.principal import Principal
from feedback_desk.core.services.errors import Forbidden
from feedback_desk.core.services.user_service import UserService


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _session(token: str, user: dict) -> dict:
    return LoginResponse(token=token, user=UserPublic(**user)).model_dump()


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, users: UserService = Depends(get_user_service)):
    token, user = users.register(payload.model_dump())
    return envelope(_session(token, user), message="User registered successfully")


@router.post("/login")
def login(payload: LoginRequest, users: UserService = Depends(get_user_service)):
    token, user = users.authenticate(payload.login, payload.password)
    return envelope(_session(token, user), message="Login successful")


@router.post("/refresh")
def refresh(
    principal: Principal = Depends(get_current_principal),
    users: UserService = Depends(get_user_service),
):
    token, user = users.refresh(principal)
    return envelope(_session(token, user))


@router.get("/me")
def me(
    principal: Principal = Depends(get_current_principal),
    users: UserService = Depends(get_user_service),
):
    return envelope({"user": UserPublic(**users.profile(principal)).model_dump()})


@router.post("/demo-setup")
def demo_setup(users: UserService = Depends(get_user_service)):
    # seeds a known admin password; only an explicit DEMO_SETUP_ENABLED turns it on
    if not app_config.demo_setup_enabled():
        raise Forbidden("demo_setup_disabled")
    created = users.seed_demo_users()
    return envelope(
        {
            "created": [u["username"] for u in created],
            "credentials": {
                "admin": {"username": "admin", "password": "admin123"},
                "user": {"username": "demo_user", "password": "user123"},
            },
        },
        message="Demo users ready",
    )
