from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, sessionmaker

from .engine import get_engine


SessionLocal = sessionmaker(expire_on_commit=False, future=True)


def new_session() -> Session:
    return SessionLocal(bind=get_engine())


@contextmanager
def session_scope() -> Iterator[Session]:
    session = new_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
