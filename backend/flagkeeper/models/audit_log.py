"""
Flag Audit Log Model

This module defines the SQLAlchemy model for the flag audit trail.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from flagkeeper.db.base import Base, utcnow
from flagkeeper.models.types import JSONB


class AuditAction(str, Enum):
    """Enum for flag audit action types."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FlagAuditLog(Base):
    """Append-only record of one flag mutation."""

    __tablename__ = "feature_flag_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flag_id: Mapped[int] = mapped_column(
        ForeignKey("feature_flags.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    before: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)
    after: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<FlagAuditLog(id={self.id}, "
            f"flag_id={self.flag_id}, "
            f"action={self.action}, "
            f"timestamp={self.timestamp})>"
        )
