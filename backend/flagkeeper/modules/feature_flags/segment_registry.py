"""
Segment Registry

Catalog of known segment names for discovery. Evaluation never reads it.
"""

from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from flagkeeper.core.logging import get_logger
from flagkeeper.models.feature_flag import SegmentDefinition, SegmentTarget
from flagkeeper.schemas.feature_flag import normalize_segment

logger = get_logger(__name__)

# Always listed, whether registered or not
BASE_SEGMENTS = (
    "employee",
    "non_employee",
    "beta",
    "premium",
    "new_customer",
    "old_customer",
    "beta_tester",
)


async def list_segments(db: AsyncSession) -> List[str]:
    """Base segments, then registered and in-use segments in alphabetical order."""
    defined = (await db.execute(select(SegmentDefinition.name))).scalars().all()
    used = (await db.execute(select(SegmentTarget.segment).distinct())).scalars().all()

    extra = {normalize_segment(name) for name in [*defined, *used]} - set(BASE_SEGMENTS)
    return [*BASE_SEGMENTS, *sorted(extra)]


async def register_segment(db: AsyncSession, name: str) -> Tuple[str, bool]:
    """
    Add a segment name to the catalog.

    Args:
        db: Session of the caller's transaction
        name: Already validated segment name

    Returns:
        The normalized name and whether a new row was written
    """
    name = normalize_segment(name)
    dialect = (await db.connection()).dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert
    result = await db.execute(
        insert(SegmentDefinition).values(name=name).on_conflict_do_nothing()
    )
    created = result.rowcount > 0

    logger.info(
        "Segment registered" if created else "Segment already registered",
        extra={"segment": name, "created": created}
    )
    return name, created
