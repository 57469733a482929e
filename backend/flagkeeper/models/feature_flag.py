"""
Feature Flag Models

Tables are linked by id only; relations are loaded with explicit queries
in the repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from flagkeeper.db.base import Base, TimestampMixin, utcnow


class FeatureFlag(TimestampMixin, Base):
    __tablename__ = "feature_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="BOOLEAN")
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<FeatureFlag {self.key} ({'deleted' if self.is_deleted else 'active'})>"


class FlagEnvironment(TimestampMixin, Base):
    __tablename__ = "feature_flag_environments"
    __table_args__ = (
        UniqueConstraint("flag_id", "environment"),
        CheckConstraint(
            "rollout_percentage IS NULL OR (rollout_percentage >= 0 AND rollout_percentage <= 100)",
            name="rollout_percentage_range",
        ),
        CheckConstraint(
            "environment IN ('development', 'staging', 'production')",
            name="environment_name",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flag_id: Mapped[int] = mapped_column(
        ForeignKey("feature_flags.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    environment: Mapped[str] = mapped_column(String(16), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rollout_percentage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0-100
    # Only consulted by the override-first evaluation policy
    force_enabled: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    force_disabled: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    def __repr__(self) -> str:
        return f"<FlagEnvironment flag={self.flag_id} {self.environment} ({'on' if self.enabled else 'off'})>"


class SegmentTarget(Base):
    __tablename__ = "feature_flag_segment_targets"
    __table_args__ = (
        UniqueConstraint("flag_environment_id", "segment"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flag_environment_id: Mapped[int] = mapped_column(
        ForeignKey("feature_flag_environments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    segment: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    include: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserTarget(Base):
    __tablename__ = "feature_flag_user_targets"
    __table_args__ = (
        UniqueConstraint("flag_environment_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flag_environment_id: Mapped[int] = mapped_column(
        ForeignKey("feature_flag_environments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    include: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class SegmentDefinition(Base):
    """Catalog entry for a known segment name; not consulted by evaluation."""

    __tablename__ = "feature_segment_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
