"""
Models Package

Importing the models here registers them with SQLAlchemy's metadata so that
Base.metadata.create_all() and Alembic can find them.
"""

from .audit_log import AuditAction, FlagAuditLog
from .feature_flag import (
    FeatureFlag,
    FlagEnvironment,
    SegmentDefinition,
    SegmentTarget,
    UserTarget,
)

__all__ = [
    "AuditAction",
    "FlagAuditLog",
    "FeatureFlag",
    "FlagEnvironment",
    "SegmentDefinition",
    "SegmentTarget",
    "UserTarget",
]
