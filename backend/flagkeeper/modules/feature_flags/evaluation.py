"""
Feature Flag Evaluation Engine

Pure evaluation of one flag for one user in one environment. Nothing here
performs I/O or raises for missing configuration; absent data evaluates to
``False``.

Two precedence models exist and are not equivalent, so a deployment picks
exactly one through ``EvaluationPolicy``:

MASTER_SWITCH (default)
    ``enabled=False`` turns the flag off unconditionally. Otherwise a segment
    exclude wins, then a segment include, then the rollout bucket; include
    rules without a match and without rollout leave the user off, and a flag
    with no targeting is on for everyone.

OVERRIDE_FIRST
    force-enable > force-disable > per-user target > first matching segment
    target > rollout > base ``enabled``. Overrides and user targets can turn
    on a flag whose ``enabled`` is False.
"""

from enum import Enum
from typing import Optional, Set, Union

from flagkeeper.modules.feature_flags.hashing import bucket_for
from flagkeeper.modules.feature_flags.segments import derive_segments
from flagkeeper.schemas.feature_flag import (
    Environment,
    EnvironmentState,
    FlagState,
    UserContext,
)


class EvaluationPolicy(str, Enum):
    MASTER_SWITCH = "master_switch"
    OVERRIDE_FIRST = "override_first"


def _evaluate_master_switch(
    flag_key: str,
    env: EnvironmentState,
    user: UserContext,
    segments: Set[str],
) -> bool:
    if not env.enabled:
        return False

    includes = []
    for target in env.segment_targets:
        if not target.include and target.segment in segments:
            return False
        if target.include:
            includes.append(target.segment)

    has_include_rules = bool(includes)
    if has_include_rules and any(segment in segments for segment in includes):
        return True

    if env.rollout_percentage is not None:
        return bucket_for(flag_key, user.id) < env.rollout_percentage

    if has_include_rules:
        return False

    return True


def _evaluate_override_first(
    flag_key: str,
    env: EnvironmentState,
    user: UserContext,
    segments: Set[str],
) -> bool:
    if env.force_enabled is True:
        return True
    if env.force_disabled is True:
        return False

    for target in env.user_targets:
        if target.user_id == user.id:
            return target.include

    for target in env.segment_targets:
        if target.segment in segments:
            return target.include

    if env.rollout_percentage is not None:
        if bucket_for(flag_key, user.id) < env.rollout_percentage:
            return True

    return env.enabled


_POLICIES = {
    EvaluationPolicy.MASTER_SWITCH: _evaluate_master_switch,
    EvaluationPolicy.OVERRIDE_FIRST: _evaluate_override_first,
}


def evaluate_flag(
    flag: FlagState,
    environment: Union[Environment, str],
    user: UserContext,
    policy: EvaluationPolicy = EvaluationPolicy.MASTER_SWITCH,
    segments: Optional[Set[str]] = None,
) -> bool:
    """
    Evaluate a flag for a user in an environment.

    Args:
        flag: Flag state with its environments and targets
        environment: Environment name; unknown names evaluate to False
        user: Request user context
        policy: Precedence model of this deployment
        segments: Pre-derived segments, to share one derivation across flags

    Returns:
        Whether the flag is on for this user
    """
    env = flag.environment(environment)
    if env is None:
        return False

    if segments is None:
        segments = derive_segments(user)

    return _POLICIES[EvaluationPolicy(policy)](flag.key, env, user, segments)
