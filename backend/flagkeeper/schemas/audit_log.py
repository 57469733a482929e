"""
Audit Log Schema

This module defines the Pydantic schemas for flag audit entries.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditLogEntry(BaseModel):
    """One immutable audit record with before/after flag snapshots."""

    id: int = Field(..., description="Unique identifier for the audit log entry")
    flag_id: int = Field(..., description="ID of the flag the entry describes")
    timestamp: datetime = Field(..., description="When the mutation was committed")
    actor: str = Field(..., description="Caller identity supplied by the auth layer")
    action: str = Field(..., description="create, update or delete")
    before: Optional[Any] = Field(None, description="State before the mutation")
    after: Optional[Any] = Field(None, description="State after the mutation")

    model_config = ConfigDict(from_attributes=True)


class AuditLogPage(BaseModel):
    """Newest-first slice of a flag's audit trail."""

    items: List[AuditLogEntry]
    total: int
    skip: int
    take: int
