"""
Issue Infrastructure Models
===========================

SQLAlchemy ORM models for the issue lifecycle engine.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import IssueStatus, Priority


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssueModel(Base):
    """
    Database model for Issue entity.

    Maps to the 'issues' table. updated_at doubles as the optimistic
    concurrency token.
    """
    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=IssueStatus.OPEN, index=True)
    priority: Mapped[str] = mapped_column(String(32), nullable=False, default=Priority.MEDIUM)
    type_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_type_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    employee_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Assignment
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Type mapping for "others"
    mapped_type_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mapped_sub_type_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mapped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    mapped_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Escalation
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditTrailModel(Base):
    """
    Database model for AuditTrailEntry.

    Append-only; the autoincrement id preserves insertion order per issue.
    """
    __tablename__ = "issue_audit_trail"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_issue_audit_trail_issue_id_id", "issue_id", "id"),
    )


class NotificationModel(Base):
    """Maps to the 'issue_notifications' table."""
    __tablename__ = "issue_notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    issue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_issue_notifications_recipient_read", "recipient_id", "is_read"),
    )


class EscalationRuleModel(Base):
    """Externally managed escalation rules; read-only to the engine."""
    __tablename__ = "escalation_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    priority: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    escalate_after_hours: Mapped[float] = mapped_column(Float, nullable=False)
    escalate_to_role: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    escalate_to_user: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
