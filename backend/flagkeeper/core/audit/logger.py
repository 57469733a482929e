"""
Audit Logger Module

This module records flag mutations in the audit trail and reads them back.
Entries are written on the caller's session so they commit or roll back
together with the mutation they describe.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from flagkeeper.core.logging import get_logger
from flagkeeper.models.audit_log import AuditAction, FlagAuditLog

# Initialize logger
logger = get_logger(__name__)


async def record_flag_change(
    db: AsyncSession,
    flag_id: int,
    action: AuditAction,
    actor: str,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None
) -> FlagAuditLog:
    """
    Append an audit entry for a flag mutation.

    Args:
        db: Session of the mutation's transaction
        flag_id: ID of the mutated flag
        action: create, update or delete
        actor: Caller identity
        before: Flag snapshot before the mutation, None on create
        after: Flag snapshot after the mutation, None on delete

    Returns:
        Created FlagAuditLog instance

    Raises:
        SQLAlchemyError: If the entry cannot be written; the caller's
            transaction must then roll back
    """
    entry = FlagAuditLog(
        flag_id=flag_id,
        actor=actor,
        action=AuditAction(action).value,
        before=before,
        after=after
    )

    try:
        db.add(entry)
        await db.flush()
    except Exception as e:
        logger.error(
            "Failed to record flag audit entry",
            exc_info=True,
            extra={
                "flag_id": flag_id,
                "action": entry.action,
                "actor": actor,
                "error": str(e)
            }
        )
        raise

    logger.info(
        "Flag audit entry recorded",
        extra={
            "audit_id": entry.id,
            "flag_id": flag_id,
            "action": entry.action,
            "actor": actor
        }
    )
    return entry


async def get_flag_audit_log(
    db: AsyncSession,
    flag_id: int,
    limit: int = 100,
    offset: int = 0
) -> List[FlagAuditLog]:
    """
    Query a flag's audit entries, newest first.

    Args:
        db: Database session
        flag_id: Flag ID
        limit: Maximum number of records to return
        offset: Number of records to skip
    """
    query = (
        select(FlagAuditLog)
        .where(FlagAuditLog.flag_id == flag_id)
        .order_by(FlagAuditLog.timestamp.desc(), FlagAuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_flag_audit_log(db: AsyncSession, flag_id: int) -> int:
    result = await db.execute(
        select(func.count(FlagAuditLog.id)).where(FlagAuditLog.flag_id == flag_id)
    )
    return result.scalar_one()
