from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from feedback_desk.core.security.tokens import TokenError, decode_token
from feedback_desk.core.services.errors import Unauthenticated


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: str
    username: str
    role: str
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_record(cls, user: Mapping[str, Any]) -> "Principal":
        return cls(
            id=str(user["id"]),
            username=user.get("username") or "",
            role=user.get("role") or "user",
            email=user.get("email"),
            name=user.get("name"),
        )


def resolve_principal(token: Optional[str], users_repo, *, secret: str) -> Principal:
    """Map a session token to the active user it was issued for.

    The user is re-read from the store on every call, so deactivation and
    role changes take effect on the next request.
    """
    if not token:
        raise Unauthenticated("authentication_required")
    try:
        claims = decode_token(token, secret=secret)
    except TokenError as exc:
        logger.info("auth.reject reason=%s", exc)
        raise Unauthenticated("invalid_token") from exc

    user = users_repo.get(str(claims["sub"]))
    if not user:
        logger.info("auth.reject reason=unknown_user sub=%s", claims["sub"])
        raise Unauthenticated("invalid_user")
    if not user.get("is_active", True):
        logger.info("auth.reject reason=inactive_user user_id=%s", user["id"])
        raise Unauthenticated("account_deactivated")
    return Principal.from_record(user)
