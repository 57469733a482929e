"""
Segment and user target writes.

Targets are addressed by environment name and resolved against the flag's
environment rows; a target naming an environment the flag does not have is
skipped. Replace operations clear the targets of every environment of the
flag before inserting.
"""

from typing import Dict, List, Sequence, Type, Union

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from flagkeeper.core.logging import get_logger
from flagkeeper.models.feature_flag import SegmentTarget, UserTarget
from flagkeeper.modules.feature_flags.repository import FeatureFlagRepository
from flagkeeper.schemas.feature_flag import SegmentTargetInput, UserTargetInput

logger = get_logger(__name__)

TargetModel = Union[Type[SegmentTarget], Type[UserTarget]]


def _segment_rows(targets: Sequence[SegmentTargetInput], env_ids: Dict[str, int]) -> List[dict]:
    rows: Dict[tuple, dict] = {}
    for target in targets:
        env_id = env_ids.get(target.environment.value)
        if env_id is None:
            continue
        rows.setdefault(
            (env_id, target.segment),
            {"flag_environment_id": env_id, "segment": target.segment, "include": target.include},
        )
    return list(rows.values())


def _user_rows(targets: Sequence[UserTargetInput], env_ids: Dict[str, int]) -> List[dict]:
    rows: Dict[tuple, dict] = {}
    for target in targets:
        env_id = env_ids.get(target.environment.value)
        if env_id is None:
            continue
        rows.setdefault(
            (env_id, target.user_id),
            {"flag_environment_id": env_id, "user_id": target.user_id, "include": target.include},
        )
    return list(rows.values())


async def _insert_skip_duplicates(db: AsyncSession, model: TargetModel, rows: List[dict]) -> None:
    """Insert rows, leaving any existing (environment, target) pair untouched."""
    if not rows:
        return

    dialect = (await db.connection()).dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert
    await db.execute(insert(model).values(rows).on_conflict_do_nothing())


async def _clear(db: AsyncSession, model: TargetModel, env_ids: Dict[str, int]) -> None:
    if env_ids:
        await db.execute(delete(model).where(model.flag_environment_id.in_(list(env_ids.values()))))


async def replace_segment_targets(
    db: AsyncSession,
    flag_id: int,
    targets: Sequence[SegmentTargetInput],
) -> None:
    """Drop all segment targets of the flag, then insert the given set."""
    env_ids = await FeatureFlagRepository(db).environment_ids(flag_id)
    await _clear(db, SegmentTarget, env_ids)
    rows = _segment_rows(targets, env_ids)
    if rows:
        db.add_all([SegmentTarget(**row) for row in rows])
        await db.flush()
    logger.debug("Segment targets replaced", extra={"flag_id": flag_id, "count": len(rows)})


async def upsert_segment_targets(
    db: AsyncSession,
    flag_id: int,
    targets: Sequence[SegmentTargetInput],
) -> None:
    env_ids = await FeatureFlagRepository(db).environment_ids(flag_id)
    await _insert_skip_duplicates(db, SegmentTarget, _segment_rows(targets, env_ids))


async def replace_user_targets(
    db: AsyncSession,
    flag_id: int,
    targets: Sequence[UserTargetInput],
) -> None:
    """Drop all user targets of the flag, then insert the given set."""
    env_ids = await FeatureFlagRepository(db).environment_ids(flag_id)
    await _clear(db, UserTarget, env_ids)
    rows = _user_rows(targets, env_ids)
    if rows:
        db.add_all([UserTarget(**row) for row in rows])
        await db.flush()
    logger.debug("User targets replaced", extra={"flag_id": flag_id, "count": len(rows)})


async def upsert_user_targets(
    db: AsyncSession,
    flag_id: int,
    targets: Sequence[UserTargetInput],
) -> None:
    env_ids = await FeatureFlagRepository(db).environment_ids(flag_id)
    await _insert_skip_duplicates(db, UserTarget, _user_rows(targets, env_ids))
