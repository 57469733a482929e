from flagkeeper.schemas.audit_log import AuditLogEntry, AuditLogPage
from flagkeeper.schemas.feature_flag import (
    DeleteResult,
    Environment,
    EnvironmentConfigInput,
    EnvironmentState,
    FlagCreate,
    FlagDetail,
    FlagState,
    FlagType,
    FlagUpdate,
    SegmentName,
    SegmentRegistration,
    SegmentTargetInput,
    SegmentTargetState,
    ToggleResult,
    UserContext,
    UserTargetInput,
    UserTargetState,
)

__all__ = [
    "AuditLogEntry",
    "AuditLogPage",
    "DeleteResult",
    "Environment",
    "EnvironmentConfigInput",
    "EnvironmentState",
    "FlagCreate",
    "FlagDetail",
    "FlagState",
    "FlagType",
    "FlagUpdate",
    "SegmentName",
    "SegmentRegistration",
    "SegmentTargetInput",
    "SegmentTargetState",
    "ToggleResult",
    "UserContext",
    "UserTargetInput",
    "UserTargetState",
]
