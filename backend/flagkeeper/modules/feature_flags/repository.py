"""
Feature Flag Repository

Store access for flags and their environments. Every method runs on the
caller's session, so the orchestrator decides the transaction boundary.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_, select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from flagkeeper.db.base import utcnow
from flagkeeper.models.feature_flag import (
    FeatureFlag,
    FlagEnvironment,
    SegmentTarget,
    UserTarget,
)
from flagkeeper.schemas.feature_flag import (
    Environment,
    EnvironmentConfigInput,
    EnvironmentState,
    FlagCreate,
    FlagState,
    SegmentTargetState,
    UserTargetState,
)

# Fields merged one by one on an environment upsert
ENVIRONMENT_FIELDS = ("enabled", "rollout_percentage", "force_enabled", "force_disabled")


def dedupe_environments(envs: Iterable[EnvironmentConfigInput]) -> List[EnvironmentConfigInput]:
    """First occurrence of each environment wins."""
    seen = set()
    result = []
    for env in envs:
        if env.environment in seen:
            continue
        seen.add(env.environment)
        result.append(env)
    return result


def default_environments() -> List[EnvironmentConfigInput]:
    """One disabled config per supported environment."""
    return [EnvironmentConfigInput(environment=env) for env in Environment]


class FeatureFlagRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # Reads

    async def get_flag_row(
        self,
        key: str,
        include_deleted: bool = False,
        lock: bool = False,
    ) -> Optional[FeatureFlag]:
        """
        Get a flag row by key.

        Args:
            key: Flag key
            include_deleted: Also match a soft-deleted row
            lock: Take a row lock (SELECT ... FOR UPDATE) until commit
        """
        query = (
            select(FeatureFlag)
            .where(FeatureFlag.key == key)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(FeatureFlag.deleted_at.is_(None))
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def load_state(self, key: str, lock: bool = False) -> Optional[FlagState]:
        """Full state of an active flag, or None."""
        flag = await self.get_flag_row(key, lock=lock)
        if flag is None:
            return None
        states = await self.hydrate([flag])
        return states[0]

    async def hydrate(
        self,
        flags: Sequence[FeatureFlag],
        environment: Optional[Environment] = None,
    ) -> List[FlagState]:
        """Attach environments and targets to flag rows with three batched queries."""
        if not flags:
            return []

        env_query = (
            select(FlagEnvironment)
            .where(FlagEnvironment.flag_id.in_([f.id for f in flags]))
            .order_by(FlagEnvironment.id)
        )
        if environment is not None:
            env_query = env_query.where(FlagEnvironment.environment == Environment(environment).value)
        envs = (await self.db.execute(env_query)).scalars().all()

        env_ids = [env.id for env in envs]
        segment_targets: Dict[int, List[SegmentTargetState]] = defaultdict(list)
        user_targets: Dict[int, List[UserTargetState]] = defaultdict(list)
        if env_ids:
            segment_rows = (await self.db.execute(
                select(SegmentTarget)
                .where(SegmentTarget.flag_environment_id.in_(env_ids))
                .order_by(SegmentTarget.created_at, SegmentTarget.id)
            )).scalars().all()
            for row in segment_rows:
                segment_targets[row.flag_environment_id].append(
                    SegmentTargetState(segment=row.segment, include=row.include)
                )

            user_rows = (await self.db.execute(
                select(UserTarget)
                .where(UserTarget.flag_environment_id.in_(env_ids))
                .order_by(UserTarget.created_at, UserTarget.id)
            )).scalars().all()
            for row in user_rows:
                user_targets[row.flag_environment_id].append(
                    UserTargetState(user_id=row.user_id, include=row.include)
                )

        envs_by_flag: Dict[int, List[EnvironmentState]] = defaultdict(list)
        for env in envs:
            envs_by_flag[env.flag_id].append(EnvironmentState(
                environment=env.environment,
                enabled=env.enabled,
                rollout_percentage=env.rollout_percentage,
                force_enabled=env.force_enabled,
                force_disabled=env.force_disabled,
                segment_targets=segment_targets[env.id],
                user_targets=user_targets[env.id],
            ))

        return [self.to_state(flag, envs_by_flag[flag.id]) for flag in flags]

    @staticmethod
    def to_state(flag: FeatureFlag, environments: Optional[List[EnvironmentState]] = None) -> FlagState:
        return FlagState(
            id=flag.id,
            key=flag.key,
            name=flag.name,
            description=flag.description,
            type=flag.type,
            created_at=flag.created_at,
            updated_at=flag.updated_at,
            environments=environments or [],
        )

    async def list_flags(
        self,
        environment: Optional[Environment] = None,
        search: Optional[str] = None,
        skip: int = 0,
        take: int = 20,
    ) -> List[FlagState]:
        """Active flags, newest first, optionally filtered by key/name substring."""
        query = select(FeatureFlag).where(FeatureFlag.deleted_at.is_(None))
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(FeatureFlag.key).like(pattern),
                func.lower(FeatureFlag.name).like(pattern),
            ))
        query = query.order_by(FeatureFlag.created_at.desc(), FeatureFlag.id.desc()).offset(skip).limit(take)

        flags = (await self.db.execute(query)).scalars().all()
        return await self.hydrate(flags, environment=environment)

    async def get_flags_by_keys(self, keys: Sequence[str]) -> List[FlagState]:
        """Active flags among the given keys; unknown keys are simply absent."""
        if not keys:
            return []
        flags = (await self.db.execute(
            select(FeatureFlag)
            .where(FeatureFlag.key.in_(list(set(keys))))
            .where(FeatureFlag.deleted_at.is_(None))
        )).scalars().all()
        return await self.hydrate(flags)

    async def environment_ids(self, flag_id: int) -> Dict[str, int]:
        """Environment name -> environment row id for a flag."""
        rows = (await self.db.execute(
            select(FlagEnvironment.environment, FlagEnvironment.id)
            .where(FlagEnvironment.flag_id == flag_id)
        )).all()
        return {environment: env_id for environment, env_id in rows}

    async def get_environment_row(
        self,
        key: str,
        environment: Environment,
        lock: bool = False,
    ) -> Optional[Tuple[FeatureFlag, FlagEnvironment]]:
        """The active flag and one of its environment rows, or None."""
        query = (
            select(FeatureFlag, FlagEnvironment)
            .join(FlagEnvironment, FlagEnvironment.flag_id == FeatureFlag.id)
            .where(FeatureFlag.key == key)
            .where(FeatureFlag.deleted_at.is_(None))
            .where(FlagEnvironment.environment == Environment(environment).value)
        )
        if lock:
            query = query.with_for_update()
        row = (await self.db.execute(query)).first()
        if row is None:
            return None
        return row[0], row[1]

    # Writes

    async def insert_flag(self, data: FlagCreate) -> FeatureFlag:
        flag = FeatureFlag(
            key=data.key,
            name=data.name,
            description=data.description,
            type=data.type.value,
        )
        self.db.add(flag)
        await self.db.flush()
        return flag

    async def revive_flag(self, flag: FeatureFlag, data: FlagCreate) -> FeatureFlag:
        """Bring a soft-deleted row back with fresh scalar fields and no environments."""
        await self.delete_environments(flag.id)
        flag.deleted_at = None
        flag.name = data.name
        flag.description = data.description
        flag.type = data.type.value
        flag.updated_at = utcnow()
        await self.db.flush()
        return flag

    async def delete_environments(self, flag_id: int) -> None:
        """Delete a flag's environments together with their targets."""
        env_ids = list((await self.environment_ids(flag_id)).values())
        if not env_ids:
            return
        await self.db.execute(delete(SegmentTarget).where(SegmentTarget.flag_environment_id.in_(env_ids)))
        await self.db.execute(delete(UserTarget).where(UserTarget.flag_environment_id.in_(env_ids)))
        await self.db.execute(delete(FlagEnvironment).where(FlagEnvironment.id.in_(env_ids)))

    async def insert_environments(
        self,
        flag_id: int,
        environments: Optional[Sequence[EnvironmentConfigInput]],
    ) -> None:
        envs = dedupe_environments(environments) if environments else default_environments()
        for env in envs:
            self.db.add(FlagEnvironment(
                flag_id=flag_id,
                environment=env.environment.value,
                enabled=env.enabled if env.enabled is not None else False,
                rollout_percentage=env.rollout_percentage,
                force_enabled=env.force_enabled,
                force_disabled=env.force_disabled,
            ))
        await self.db.flush()

    async def upsert_environment(self, flag_id: int, env: EnvironmentConfigInput) -> None:
        """Create the (flag, environment) row or merge only the supplied fields into it."""
        row = (await self.db.execute(
            select(FlagEnvironment)
            .where(FlagEnvironment.flag_id == flag_id)
            .where(FlagEnvironment.environment == env.environment.value)
            .with_for_update()
        )).scalar_one_or_none()

        supplied = {field: getattr(env, field) for field in ENVIRONMENT_FIELDS if field in env.model_fields_set}
        if row is None:
            row = FlagEnvironment(flag_id=flag_id, environment=env.environment.value, enabled=False)
            self.db.add(row)
        for field, value in supplied.items():
            if field == "enabled" and value is None:
                continue
            setattr(row, field, value)
        await self.db.flush()

    async def update_scalars(self, flag_id: int, changes: Dict[str, object]) -> bool:
        """
        Apply scalar changes to an active flag and bump updated_at.

        Returns False when the row is gone or soft-deleted.
        """
        result = await self.db.execute(
            update(FeatureFlag)
            .where(FeatureFlag.id == flag_id)
            .where(FeatureFlag.deleted_at.is_(None))
            .values(**changes, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def soft_delete(self, flag_id: int) -> bool:
        result = await self.db.execute(
            update(FeatureFlag)
            .where(FeatureFlag.id == flag_id)
            .where(FeatureFlag.deleted_at.is_(None))
            .values(deleted_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def set_environment_enabled(self, env: FlagEnvironment, enabled: bool) -> FlagEnvironment:
        env.enabled = enabled
        await self.db.flush()
        return env
