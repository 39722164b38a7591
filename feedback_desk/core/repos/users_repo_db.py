from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from feedback_desk.core.models.users import User
from feedback_desk.core.services.errors import Conflict


_FIELDS = (
    "id",
    "username",
    "email",
    "name",
    "role",
    "is_active",
    "password_hash",
    "password_algo",
    "last_login_at",
    "created_at",
    "updated_at",
)


def _to_record(user: User) -> Dict[str, Any]:
    return {name: getattr(user, name) for name in _FIELDS}


class UsersRepoDB:
    def __init__(self, session: Session):
        self.session = session

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        # unique constraints are case-sensitive on most backends
        if self.exists(username=data.get("username") or "", email=data.get("email") or ""):
            raise Conflict("username_or_email_exists")
        user = User(**data)
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("username_or_email_exists") from exc
        return _to_record(user)

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.session.get(User, user_id)
        return _to_record(user) if user is not None else None

    def get_by_login(self, login: str) -> Optional[Dict[str, Any]]:
        login = (login or "").lower()
        stmt = select(User).where(or_(func.lower(User.username) == login, func.lower(User.email) == login))
        user = self.session.execute(stmt).scalars().first()
        return _to_record(user) if user is not None else None

    def exists(self, *, username: str, email: str) -> bool:
        stmt = select(func.count(User.id)).where(
            or_(func.lower(User.username) == username.lower(), func.lower(User.email) == email.lower())
        )
        return self.session.execute(stmt).scalar_one() > 0

    def update(self, user_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        user = self.session.get(User, user_id)
        if user is None:
            return None
        for key, value in data.items():
            if key in _FIELDS and key not in {"id", "created_at"}:
                setattr(user, key, value)
        self.session.flush()
        return _to_record(user)
