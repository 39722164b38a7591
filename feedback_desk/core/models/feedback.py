from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from feedback_desk.core.db.base import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(String(32), primary_key=True, default=_new_id)
    # Nullable: records imported before user accounts existed have no owner.
    owner_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(320), nullable=False)
    subject = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)
    category = Column(String(20), nullable=False, default="general")
    status = Column(String(20), nullable=False, default="pending")
    priority = Column(String(20), nullable=False, default="medium")
    admin_response = Column(Text, nullable=True)
    # JSON-encoded list of suggestion objects; attribute kept distinct from the column name
    ai_suggestions_json = Column("ai_suggestions", Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_feedback_owner_created", "owner_id", "created_at"),
        Index("ix_feedback_created", "created_at"),
        Index("ix_feedback_status", "status"),
        Index("ix_feedback_category", "category"),
        Index("ix_feedback_rating", "rating"),
    )
