"""
Feature Flag Service

Coordinates flag mutations against the store and the audit trail. Every
mutation runs in its own session and a single bounded transaction, so a
failed step (the audit write included) rolls back the whole operation.
Rows are locked with SELECT ... FOR UPDATE; no in-process locks are used,
the service may run as many stateless replicas.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flagkeeper.core.audit.logger import (
    count_flag_audit_log,
    get_flag_audit_log,
    record_flag_change,
)
from flagkeeper.core.error_handler import (
    BadRequestError,
    FlagConflictError,
    FlagNotFoundError,
    translate_store_error,
)
from flagkeeper.core.logging import get_logger, log_duration
from flagkeeper.core.settings import settings
from flagkeeper.db.session import SessionLocal, transaction
from flagkeeper.models.audit_log import AuditAction
from flagkeeper.modules.feature_flags import segment_registry
from flagkeeper.modules.feature_flags.evaluation import EvaluationPolicy, evaluate_flag
from flagkeeper.modules.feature_flags.instrumentation import (
    log_mutation,
    operation_timer,
    record_evaluations,
)
from flagkeeper.modules.feature_flags.repository import FeatureFlagRepository
from flagkeeper.modules.feature_flags.segments import derive_segments
from flagkeeper.modules.feature_flags.targets import (
    replace_segment_targets,
    replace_user_targets,
    upsert_segment_targets,
    upsert_user_targets,
)
from flagkeeper.schemas.audit_log import AuditLogEntry, AuditLogPage
from flagkeeper.schemas.feature_flag import (
    DeleteResult,
    Environment,
    FlagCreate,
    FlagDetail,
    FlagKey,
    FlagState,
    FlagUpdate,
    SegmentName,
    SegmentRegistration,
    ToggleResult,
    UserContext,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)
R = TypeVar("R")

_flag_key_adapter = TypeAdapter(FlagKey)
_segment_name_adapter = TypeAdapter(SegmentName)


def _validation_details(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]


def parse_input(model: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    """Validate caller input, turning pydantic errors into bad_request."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise BadRequestError(
            f"Invalid {model.__name__} payload",
            extra={"details": _validation_details(e)}
        ) from e


def validate_flag_key(key: str) -> str:
    try:
        return _flag_key_adapter.validate_python(key)
    except ValidationError as e:
        raise BadRequestError(
            "Flag key must be 1-128 characters of letters, digits, '.', '_' or '-'",
            extra={"details": _validation_details(e)}
        ) from e


def parse_environment(environment: Union[Environment, str]) -> Environment:
    try:
        return Environment(environment)
    except ValueError as e:
        raise BadRequestError(
            f"Unknown environment '{environment}'",
            extra={"details": {"allowed": [env.value for env in Environment]}}
        ) from e


class FeatureFlagService:
    """
    Flag CRUD, evaluation and segment catalog operations.

    Args:
        session_factory: Session factory; one session is opened per operation
        policy: Evaluation precedence model of this deployment
        transaction_timeout: Upper bound in seconds for a mutation transaction
        toggle_timeout: Upper bound in seconds for the toggle fast path
        recent_audit_entries: Number of audit entries attached by get_flag
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        policy: Optional[EvaluationPolicy] = None,
        transaction_timeout: Optional[float] = None,
        toggle_timeout: Optional[float] = None,
        recent_audit_entries: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.policy = EvaluationPolicy(policy or settings.flags.EVALUATION_POLICY)
        self.transaction_timeout = transaction_timeout or settings.flags.TRANSACTION_TIMEOUT_SECONDS
        self.toggle_timeout = toggle_timeout or settings.flags.TOGGLE_TIMEOUT_SECONDS
        self.recent_audit_entries = (
            settings.flags.RECENT_AUDIT_ENTRIES if recent_audit_entries is None else recent_audit_entries
        )

    async def _mutate(
        self,
        operation: str,
        key: str,
        body: Callable[[AsyncSession], Awaitable[R]],
        timeout: Optional[float] = None,
        **meta: Any,
    ) -> R:
        """Run ``body`` in one transaction, classifying any failure."""
        log_mutation(operation, key, "start", **meta)
        with operation_timer(operation) as elapsed_ms:
            try:
                async with transaction(self.session_factory, timeout or self.transaction_timeout) as db:
                    result = await body(db)
            except Exception as e:
                error = translate_store_error(e, f"Failed to {operation} flag '{key}'")
                log_mutation(
                    operation, key, "error",
                    kind=error.kind,
                    error=str(e),
                    duration_ms=elapsed_ms(),
                    exc_info=error.kind == "internal",
                    **meta
                )
                if error is e:
                    raise
                raise error from e

            log_mutation(operation, key, "success", duration_ms=elapsed_ms(), **meta)
            return result

    # Mutations

    async def create_flag(
        self,
        data: Union[FlagCreate, Dict[str, Any]],
        actor: str,
    ) -> FlagState:
        """
        Create a flag, or revive a soft-deleted one with the same key.

        Revival discards the old environments and their targets. Missing
        environments default to one disabled row per environment.

        Raises:
            BadRequestError: Malformed key or payload
            FlagConflictError: An active flag already uses the key
        """
        data = parse_input(FlagCreate, data)

        async def body(db: AsyncSession) -> FlagState:
            repo = FeatureFlagRepository(db)
            existing = await repo.get_flag_row(data.key, include_deleted=True, lock=True)
            if existing is not None and not existing.is_deleted:
                raise FlagConflictError(
                    f"Flag '{data.key}' already exists",
                    extra={"details": {"key": data.key}}
                )

            if existing is None:
                flag = await repo.insert_flag(data)
            else:
                flag = await repo.revive_flag(existing, data)
                logger.info("Reviving soft-deleted flag", extra={"flag_key": data.key, "flag_id": flag.id})

            await repo.insert_environments(flag.id, data.environments)
            if data.segment_targets:
                await upsert_segment_targets(db, flag.id, data.segment_targets)
            if data.user_targets:
                await upsert_user_targets(db, flag.id, data.user_targets)

            after = await repo.load_state(data.key)
            await record_flag_change(db, flag.id, AuditAction.CREATE, actor, before=None, after=after.snapshot())
            return after

        return await self._mutate("create", data.key, body, actor=actor)

    async def update_flag(
        self,
        key: str,
        data: Union[FlagUpdate, Dict[str, Any]],
        actor: str,
    ) -> FlagState:
        """
        Partially update a flag.

        Only supplied scalar fields change. Supplied environments are merged
        field by field. Supplied target lists replace every target of that
        kind on the flag; an empty list clears them.

        Raises:
            BadRequestError: Malformed key, empty payload or invalid values
            FlagNotFoundError: No active flag with this key, including one
                deleted concurrently before the update committed
        """
        key = validate_flag_key(key)
        data = parse_input(FlagUpdate, data)

        async def body(db: AsyncSession) -> FlagState:
            repo = FeatureFlagRepository(db)
            flag = await repo.get_flag_row(key, lock=True)
            if flag is None:
                raise FlagNotFoundError(f"Flag '{key}' not found")
            before = (await repo.hydrate([flag]))[0]

            if not await repo.update_scalars(flag.id, data.scalar_changes()):
                raise FlagNotFoundError(f"Flag '{key}' was deleted during the update")

            for env in data.environments or []:
                await repo.upsert_environment(flag.id, env)
            if data.segment_targets is not None:
                await replace_segment_targets(db, flag.id, data.segment_targets)
            if data.user_targets is not None:
                await replace_user_targets(db, flag.id, data.user_targets)

            after = await repo.load_state(key)
            if after is None:
                raise FlagNotFoundError(f"Flag '{key}' was deleted during the update")
            await record_flag_change(
                db, flag.id, AuditAction.UPDATE, actor,
                before=before.snapshot(),
                after=after.snapshot()
            )
            return after

        return await self._mutate("update", key, body, actor=actor, fields=sorted(data.model_fields_set))

    async def toggle_environment(
        self,
        key: str,
        environment: Union[Environment, str],
        enabled: bool,
        actor: str,
    ) -> ToggleResult:
        """
        Flip the master switch of one environment.

        Touches only that environment row and records a minimal audit entry
        holding the environment and its old and new ``enabled`` value.
        """
        key = validate_flag_key(key)
        environment = parse_environment(environment)

        async def body(db: AsyncSession) -> ToggleResult:
            repo = FeatureFlagRepository(db)
            found = await repo.get_environment_row(key, environment, lock=True)
            if found is None:
                raise FlagNotFoundError(
                    f"Flag '{key}' or its {environment.value} environment not found"
                )
            flag, env = found

            before = {"environment": environment.value, "enabled": env.enabled}
            await repo.set_environment_enabled(env, enabled)
            await record_flag_change(
                db, flag.id, AuditAction.UPDATE, actor,
                before=before,
                after={"environment": environment.value, "enabled": enabled}
            )
            return ToggleResult(key=key, environment=environment, enabled=enabled)

        return await self._mutate(
            "toggle", key, body,
            timeout=self.toggle_timeout,
            actor=actor,
            flag_environment=environment.value,
            enabled=enabled
        )

    async def soft_delete_flag(self, key: str, actor: str) -> DeleteResult:
        """
        Soft-delete a flag.

        Deleting an absent or already deleted flag is not an error; the
        result then carries ``deleted=False`` and no audit entry is written.
        """
        key = validate_flag_key(key)

        async def body(db: AsyncSession) -> DeleteResult:
            repo = FeatureFlagRepository(db)
            flag = await repo.get_flag_row(key, lock=True)
            if flag is None:
                return DeleteResult(key=key, deleted=False)

            before = (await repo.hydrate([flag]))[0]
            if not await repo.soft_delete(flag.id):
                return DeleteResult(key=key, deleted=False)

            await record_flag_change(
                db, flag.id, AuditAction.DELETE, actor,
                before=before.snapshot(),
                after=None
            )
            return DeleteResult(key=key, deleted=True)

        return await self._mutate("delete", key, body, actor=actor)

    # Reads

    async def get_flag(self, key: str, allow_fallback: bool = False) -> FlagDetail:
        """
        Get a flag with its environments, targets and recent audit entries.

        Args:
            key: Flag key
            allow_fallback: On a store failure return the scalar fields only,
                marked ``degraded``, instead of raising

        Raises:
            FlagNotFoundError: No active flag with this key
        """
        key = validate_flag_key(key)
        try:
            async with self.session_factory() as db:
                repo = FeatureFlagRepository(db)
                state = await repo.load_state(key)
                if state is None:
                    raise FlagNotFoundError(f"Flag '{key}' not found")
                recent = await get_flag_audit_log(db, state.id, limit=self.recent_audit_entries)
        except SQLAlchemyError as e:
            if not allow_fallback:
                raise translate_store_error(e, f"Failed to load flag '{key}'") from e
            logger.warning(
                "Enriched flag read failed, serving degraded result",
                extra={"flag_key": key, "error": str(e)}
            )
            return await self._get_flag_minimal(key)

        return FlagDetail(
            **state.model_dump(),
            recent_audit=[AuditLogEntry.model_validate(entry) for entry in recent]
        )

    async def _get_flag_minimal(self, key: str) -> FlagDetail:
        try:
            async with self.session_factory() as db:
                flag = await FeatureFlagRepository(db).get_flag_row(key)
        except SQLAlchemyError as e:
            raise translate_store_error(e, f"Failed to load flag '{key}'") from e

        if flag is None:
            raise FlagNotFoundError(f"Flag '{key}' not found")
        state = FeatureFlagRepository.to_state(flag)
        return FlagDetail(**state.model_dump(), degraded=True)

    def _page(self, skip: int, take: Optional[int]) -> Tuple[int, int]:
        take = settings.flags.DEFAULT_PAGE_SIZE if take is None else take
        if skip < 0 or take < 1:
            raise BadRequestError(
                "skip must be >= 0 and take must be >= 1",
                extra={"details": {"skip": skip, "take": take}}
            )
        return skip, min(take, settings.flags.MAX_PAGE_SIZE)

    async def list_flags(
        self,
        environment: Optional[Union[Environment, str]] = None,
        search: Optional[str] = None,
        skip: int = 0,
        take: Optional[int] = None,
    ) -> List[FlagState]:
        """
        List active flags, newest first.

        ``environment`` narrows each flag's environment list; ``search``
        matches key or name case-insensitively.
        """
        if environment is not None:
            environment = parse_environment(environment)
        skip, take = self._page(skip, take)

        try:
            with log_duration(logger, "list flags"):
                async with self.session_factory() as db:
                    return await FeatureFlagRepository(db).list_flags(
                        environment=environment,
                        search=search.strip() if search else None,
                        skip=skip,
                        take=take
                    )
        except SQLAlchemyError as e:
            raise translate_store_error(e, "Failed to list flags") from e

    async def get_audit_log(
        self,
        key: str,
        skip: int = 0,
        take: Optional[int] = None,
    ) -> AuditLogPage:
        """Audit history of a flag, newest first. Soft-deleted flags keep their history."""
        key = validate_flag_key(key)
        skip, take = self._page(skip, take)

        try:
            async with self.session_factory() as db:
                flag = await FeatureFlagRepository(db).get_flag_row(key, include_deleted=True)
                if flag is None:
                    raise FlagNotFoundError(f"Flag '{key}' not found")
                entries = await get_flag_audit_log(db, flag.id, limit=take, offset=skip)
                total = await count_flag_audit_log(db, flag.id)
        except SQLAlchemyError as e:
            raise translate_store_error(e, f"Failed to load audit log of flag '{key}'") from e

        return AuditLogPage(
            items=[AuditLogEntry.model_validate(entry) for entry in entries],
            total=total,
            skip=skip,
            take=take
        )

    # Evaluation

    async def evaluate_flags(
        self,
        environment: Union[Environment, str],
        user: Union[UserContext, Dict[str, Any]],
        flag_keys: Sequence[str],
    ) -> Dict[str, bool]:
        """
        Evaluate several flags for one user.

        Unknown or deleted keys, and unknown environments, resolve to False.

        Raises:
            BadRequestError: Malformed user context
            InternalError: The store read failed
        """
        user = parse_input(UserContext, user)
        results = {key: False for key in flag_keys}
        try:
            environment = Environment(environment)
        except ValueError:
            logger.debug("Evaluation for unknown environment", extra={"requested_environment": str(environment)})
            return results
        if not results:
            return results

        try:
            async with self.session_factory() as db:
                states = await FeatureFlagRepository(db).get_flags_by_keys(list(results))
        except SQLAlchemyError as e:
            raise translate_store_error(e, "Failed to load flags for evaluation") from e

        segments = derive_segments(user)
        for state in states:
            results[state.key] = evaluate_flag(state, environment, user, self.policy, segments)

        record_evaluations(environment.value, results)
        return results

    # Segment catalog

    async def list_segments(self) -> List[str]:
        try:
            async with self.session_factory() as db:
                return await segment_registry.list_segments(db)
        except SQLAlchemyError as e:
            raise translate_store_error(e, "Failed to list segments") from e

    async def register_segment(self, name: str) -> SegmentRegistration:
        """
        Register a segment name; registering a known name again is a no-op.

        Raises:
            BadRequestError: Name is not 1-128 characters of letters, digits,
                '.', '_', ':' or '-'
        """
        try:
            name = _segment_name_adapter.validate_python(name)
        except ValidationError as e:
            raise BadRequestError(
                "Invalid segment name",
                extra={"details": _validation_details(e)}
            ) from e

        try:
            async with transaction(self.session_factory, self.transaction_timeout) as db:
                normalized, created = await segment_registry.register_segment(db, name)
        except (SQLAlchemyError, TimeoutError) as e:
            raise translate_store_error(e, f"Failed to register segment '{name}'") from e

        return SegmentRegistration(name=normalized, created=created)
