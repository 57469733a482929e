"""
Test Configuration

This module contains shared fixtures and configuration for tests. An
in-memory SQLite database stands in for PostgreSQL; row locks and
statement timeouts are no-ops there.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_URL", "sqlite+aiosqlite://")

from typing import Any, AsyncGenerator, Dict

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import flagkeeper.models  # noqa: F401
from flagkeeper.db.base import Base
from flagkeeper.db.session import create_db_engine, create_session_factory
from flagkeeper.modules.feature_flags.evaluation import EvaluationPolicy
from flagkeeper.modules.feature_flags.service import FeatureFlagService

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite://"

TEST_ACTOR = "admin@example.com"


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    engine = create_db_engine(TEST_DATABASE_URL, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest.fixture
def service(session_factory: async_sessionmaker[AsyncSession]) -> FeatureFlagService:
    """Service with the master-switch evaluation policy."""
    return FeatureFlagService(session_factory, policy=EvaluationPolicy.MASTER_SWITCH)


@pytest.fixture
def override_service(session_factory: async_sessionmaker[AsyncSession]) -> FeatureFlagService:
    """Service with the override-first evaluation policy, sharing the same database."""
    return FeatureFlagService(session_factory, policy=EvaluationPolicy.OVERRIDE_FIRST)


@pytest.fixture
def actor() -> str:
    return TEST_ACTOR


@pytest.fixture
def flag_payload() -> Dict[str, Any]:
    """Create payload with production on, staging off and a couple of targets."""
    return {
        "key": "dark-mode",
        "name": "Dark mode",
        "description": "Dark theme for the web app",
        "environments": [
            {"environment": "production", "enabled": True, "rolloutPercentage": 50},
            {"environment": "staging", "enabled": False},
        ],
        "segmentTargets": [
            {"environment": "production", "segment": " Beta_Tester ", "include": True},
            {"environment": "production", "segment": "vip", "include": False},
            {"environment": "staging", "segment": "employee", "include": True},
        ],
    }
