"""
Feature Flag Schemas

Pydantic models for flag mutation input, the flag state snapshots stored in
the audit trail, and the user context used for evaluation. Segment labels
are normalized here, on the way in, and nowhere else.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from flagkeeper.schemas.audit_log import AuditLogEntry

FLAG_KEY_MAX_LENGTH = 128
FLAG_KEY_PATTERN = r"^[a-zA-Z0-9._-]+$"

FlagKey = Annotated[
    str,
    StringConstraints(min_length=1, max_length=FLAG_KEY_MAX_LENGTH, pattern=FLAG_KEY_PATTERN),
]


class Environment(str, Enum):
    """The closed set of deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class FlagType(str, Enum):
    BOOLEAN = "BOOLEAN"
    MULTIVARIANT = "MULTIVARIANT"


def normalize_segment(value: str) -> str:
    return value.strip().lower()


class CamelModel(BaseModel):
    """Accepts both snake_case and camelCase field names."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# Input

class EnvironmentConfigInput(CamelModel):
    """Per-environment settings; only the fields that are set get merged on update."""

    environment: Environment
    enabled: Optional[bool] = None
    rollout_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    force_enabled: Optional[bool] = None
    force_disabled: Optional[bool] = None


class SegmentTargetInput(CamelModel):
    environment: Environment
    segment: str = Field(..., min_length=1)
    include: bool

    @field_validator("segment")
    @classmethod
    def normalize(cls, v: str) -> str:
        normalized = normalize_segment(v)
        if not normalized:
            raise ValueError("Segment must not be blank")
        return normalized


class UserTargetInput(CamelModel):
    environment: Environment
    user_id: str = Field(..., min_length=1)
    include: bool


class FlagCreate(CamelModel):
    key: FlagKey
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: FlagType = FlagType.BOOLEAN
    environments: Optional[List[EnvironmentConfigInput]] = None
    segment_targets: Optional[List[SegmentTargetInput]] = None
    user_targets: Optional[List[UserTargetInput]] = None


class FlagUpdate(CamelModel):
    """Partial update; fields left out are not touched."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    type: Optional[FlagType] = None
    environments: Optional[List[EnvironmentConfigInput]] = Field(default=None, min_length=1)
    segment_targets: Optional[List[SegmentTargetInput]] = None
    user_targets: Optional[List[UserTargetInput]] = None

    @field_validator("name", "type", "environments", "segment_targets", "user_targets")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        # Only description may be cleared with null
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @model_validator(mode="after")
    def require_any_field(self) -> "FlagUpdate":
        supplied = [
            field for field in self.model_fields_set
            if field == "description" or getattr(self, field) is not None
        ]
        if not supplied:
            raise ValueError("At least one field must be provided")
        return self

    def scalar_changes(self) -> Dict[str, Any]:
        """Scalar columns that were explicitly supplied."""
        changes = {}
        for field in ("name", "description", "type"):
            if field in self.model_fields_set:
                value = getattr(self, field)
                changes[field] = value.value if isinstance(value, Enum) else value
        return changes


# State

class SegmentTargetState(BaseModel):
    segment: str
    include: bool

    @field_validator("segment")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_segment(v)


class UserTargetState(BaseModel):
    user_id: str
    include: bool


class EnvironmentState(BaseModel):
    environment: Environment
    enabled: bool = False
    rollout_percentage: Optional[int] = None
    force_enabled: Optional[bool] = None
    force_disabled: Optional[bool] = None
    segment_targets: List[SegmentTargetState] = Field(default_factory=list)
    user_targets: List[UserTargetState] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class FlagState(BaseModel):
    """Full state of one flag: scalar fields plus environments and their targets."""

    id: int
    key: str
    name: str
    description: Optional[str] = None
    type: FlagType = FlagType.BOOLEAN
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    environments: List[EnvironmentState] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    def environment(self, name: str) -> Optional[EnvironmentState]:
        for env in self.environments:
            if env.environment == name:
                return env
        return None

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe form stored in the audit trail."""
        return self.model_dump(mode="json")


class FlagDetail(FlagState):
    """Flag state enriched with its most recent audit entries.

    ``degraded`` marks a fallback read that carries scalar fields only.
    """

    recent_audit: List[AuditLogEntry] = Field(default_factory=list)
    degraded: bool = False


class ToggleResult(BaseModel):
    key: str
    environment: Environment
    enabled: bool


class DeleteResult(BaseModel):
    """``deleted`` is False when there was nothing active to delete."""

    key: str
    deleted: bool


# Evaluation

class UserContext(CamelModel):
    id: str = Field(..., min_length=1)
    role: Optional[str] = None
    country: Optional[str] = None
    segments: List[str] = Field(default_factory=list)
    is_employee: Optional[bool] = None
    is_new_customer: Optional[bool] = None
    phone_number: Optional[str] = None
    birth_date: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


# Segment registry

SEGMENT_NAME_MAX_LENGTH = 128
SEGMENT_NAME_PATTERN = r"^[a-zA-Z0-9._:-]+$"

SegmentName = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True,
        min_length=1,
        max_length=SEGMENT_NAME_MAX_LENGTH,
        pattern=SEGMENT_NAME_PATTERN,
    ),
]


class SegmentRegistration(BaseModel):
    """``created`` is False when the name was already registered."""

    name: str
    created: bool
