from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from feedback_desk.core.access.policy import ROLE_ADMIN, ROLE_USER
from feedback_desk.core.access.principal import Principal
from feedback_desk.core.security.passwords import hash_password, verify_password
from feedback_desk.core.security.tokens import issue_token
from feedback_desk.core.services.errors import Conflict, Unauthenticated
from feedback_desk.core.services.feedback_rules import validate


logger = logging.getLogger(__name__)

PUBLIC_USER_FIELDS = ("id", "username", "email", "name", "role", "is_active", "created_at")

DEMO_USERS = (
    {
        "username": "admin",
        "email": "admin@feedbacktracker.com",
        "password": "admin123",
        "name": "System Administrator",
        "role": ROLE_ADMIN,
    },
    {
        "username": "demo_user",
        "email": "demo@example.com",
        "password": "user123",
        "name": "Demo User",
        "role": ROLE_USER,
    },
)


class Registration(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()


def public_user(user: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: user.get(k) for k in PUBLIC_USER_FIELDS}


class UserService:
    """Registration, credential checks and token issuance.

    Registration always yields a ``user``; admins only come from seeding
    or direct store access.
    """

    def __init__(self, repo, *, secret: str, ttl_min: int = 1440, password_algo: str = "bcrypt") -> None:
        self.repo = repo
        self.secret = secret
        self.ttl_min = ttl_min
        self.password_algo = password_algo

    def _token_for(self, user: Mapping[str, Any]) -> str:
        return issue_token(
            str(user["id"]), user.get("username") or "", user.get("role") or ROLE_USER, self.ttl_min, secret=self.secret
        )

    def register(self, payload: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
        data = validate(Registration, payload)
        if self.repo.exists(username=data.username, email=data.email):
            logger.info("auth.register conflict username=%s", data.username)
            raise Conflict("username_or_email_exists")
        user = self.repo.create(
            {
                "username": data.username,
                "email": data.email,
                "name": data.name,
                "role": ROLE_USER,
                "is_active": True,
                "password_hash": hash_password(data.password, self.password_algo),
                "password_algo": self.password_algo,
            }
        )
        logger.info("auth.register user_id=%s", user["id"])
        return self._token_for(user), public_user(user)

    def authenticate(self, login: str, password: str) -> Tuple[str, Dict[str, Any]]:
        """Check credentials by username or e-mail and issue a session token.

        Unknown login, wrong password and deactivated account all answer
        ``Unauthenticated``; only the log line tells them apart.
        """
        user = self.repo.get_by_login((login or "").strip())
        if not user or not verify_password(password or "", user.get("password_hash")):
            logger.info("auth.login rejected reason=bad_credentials")
            raise Unauthenticated("invalid_credentials")
        if not user.get("is_active", True):
            logger.info("auth.login rejected reason=inactive user_id=%s", user["id"])
            raise Unauthenticated("account_deactivated")
        user = self.repo.update(user["id"], {"last_login_at": datetime.now(timezone.utc)}) or user
        logger.info("auth.login user_id=%s role=%s", user["id"], user.get("role"))
        return self._token_for(user), public_user(user)

    def refresh(self, principal: Principal) -> Tuple[str, Dict[str, Any]]:
        user = self.repo.get(principal.id)
        if not user:
            raise Unauthenticated("invalid_user")
        return self._token_for(user), public_user(user)

    def profile(self, principal: Principal) -> Dict[str, Any]:
        user = self.repo.get(principal.id)
        if not user:
            raise Unauthenticated("invalid_user")
        return public_user(user)

    def seed_demo_users(self) -> List[Dict[str, Any]]:
        """Create the demo accounts that are missing; existing ones are left untouched."""
        created = []
        for demo in DEMO_USERS:
            if self.repo.exists(username=demo["username"], email=demo["email"]):
                continue
            user = self.repo.create(
                {
                    "username": demo["username"],
                    "email": demo["email"],
                    "name": demo["name"],
                    "role": demo["role"],
                    "is_active": True,
                    "password_hash": hash_password(demo["password"], self.password_algo),
                    "password_algo": self.password_algo,
                }
            )
            created.append(public_user(user))
        logger.info("auth.demo_setup created=%s", [u["username"] for u in created])
        return created
