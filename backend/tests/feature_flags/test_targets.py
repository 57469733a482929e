"""
Target Write Tests

Replace and upsert are separate operations with different duplicate
handling.
"""

from typing import List, Tuple

import pytest
from sqlalchemy import select

from flagkeeper.db.session import transaction
from flagkeeper.models.feature_flag import FlagEnvironment, SegmentTarget, UserTarget
from flagkeeper.modules.feature_flags.service import FeatureFlagService
from flagkeeper.modules.feature_flags.targets import (
    replace_segment_targets,
    replace_user_targets,
    upsert_segment_targets,
    upsert_user_targets,
)
from flagkeeper.schemas.feature_flag import SegmentTargetInput, UserTargetInput


@pytest.fixture
async def flag_id(service: FeatureFlagService, actor: str) -> int:
    flag = await service.create_flag({
        "key": "targets",
        "name": "Targets",
        "environments": [
            {"environment": "production", "enabled": True},
            {"environment": "staging", "enabled": True},
        ],
    }, actor)
    return flag.id


async def segment_rows(session_factory) -> List[Tuple[str, str, bool]]:
    async with session_factory() as db:
        rows = await db.execute(
            select(FlagEnvironment.environment, SegmentTarget.segment, SegmentTarget.include)
            .join(FlagEnvironment, FlagEnvironment.id == SegmentTarget.flag_environment_id)
            .order_by(SegmentTarget.id)
        )
        return [tuple(row) for row in rows.all()]


async def user_rows(session_factory) -> List[Tuple[str, str, bool]]:
    async with session_factory() as db:
        rows = await db.execute(
            select(FlagEnvironment.environment, UserTarget.user_id, UserTarget.include)
            .join(FlagEnvironment, FlagEnvironment.id == UserTarget.flag_environment_id)
            .order_by(UserTarget.id)
        )
        return [tuple(row) for row in rows.all()]


def segment(environment: str, name: str, include: bool = True) -> SegmentTargetInput:
    return SegmentTargetInput(environment=environment, segment=name, include=include)


def user(environment: str, user_id: str, include: bool = True) -> UserTargetInput:
    return UserTargetInput(environment=environment, user_id=user_id, include=include)


async def test_upsert_skips_existing_pairs(session_factory, flag_id: int):
    async with transaction(session_factory) as db:
        await upsert_segment_targets(db, flag_id, [segment("production", "beta")])

    async with transaction(session_factory) as db:
        await upsert_segment_targets(db, flag_id, [
            segment("production", "BETA", include=False),
            segment("production", "vip", include=False),
            segment("staging", "beta"),
        ])

    assert await segment_rows(session_factory) == [
        ("production", "beta", True),
        ("production", "vip", False),
        ("staging", "beta", True),
    ]


async def test_replace_clears_every_environment(session_factory, flag_id: int):
    async with transaction(session_factory) as db:
        await upsert_segment_targets(db, flag_id, [
            segment("production", "beta"),
            segment("staging", "employee"),
        ])

    async with transaction(session_factory) as db:
        await replace_segment_targets(db, flag_id, [segment("production", "premium", include=False)])

    assert await segment_rows(session_factory) == [("production", "premium", False)]


async def test_replace_with_duplicates_keeps_first(session_factory, flag_id: int):
    async with transaction(session_factory) as db:
        await replace_segment_targets(db, flag_id, [
            segment("production", "beta"),
            segment("production", " Beta ", include=False),
        ])

    assert await segment_rows(session_factory) == [("production", "beta", True)]


async def test_targets_for_unconfigured_environment_are_skipped(session_factory, flag_id: int):
    async with transaction(session_factory) as db:
        await upsert_segment_targets(db, flag_id, [segment("development", "beta")])
        await replace_user_targets(db, flag_id, [user("development", "u1")])

    assert await segment_rows(session_factory) == []
    assert await user_rows(session_factory) == []


async def test_user_targets_upsert_and_replace(session_factory, flag_id: int):
    async with transaction(session_factory) as db:
        await upsert_user_targets(db, flag_id, [user("production", "u1"), user("production", "u2", include=False)])
        await upsert_user_targets(db, flag_id, [user("production", "u1", include=False)])

    assert await user_rows(session_factory) == [
        ("production", "u1", True),
        ("production", "u2", False),
    ]

    async with transaction(session_factory) as db:
        await replace_user_targets(db, flag_id, [])

    assert await user_rows(session_factory) == []
