"""
Segment Registry Tests
"""

import pytest

from flagkeeper.core.error_handler import BadRequestError
from flagkeeper.modules.feature_flags.segment_registry import BASE_SEGMENTS
from flagkeeper.modules.feature_flags.service import FeatureFlagService


async def test_base_segments_always_listed(service: FeatureFlagService):
    assert await service.list_segments() == list(BASE_SEGMENTS)


async def test_register_is_normalized_and_idempotent(service: FeatureFlagService):
    first = await service.register_segment("  VIP:Gold ")
    second = await service.register_segment("vip:gold")

    assert first.name == "vip:gold"
    assert first.created is True
    assert second.name == "vip:gold"
    assert second.created is False
    assert (await service.list_segments()).count("vip:gold") == 1


async def test_registering_base_segment_does_not_duplicate_it(service: FeatureFlagService):
    await service.register_segment("Employee")
    segments = await service.list_segments()
    assert segments.count("employee") == 1


async def test_list_includes_segments_used_by_targets(service: FeatureFlagService, actor: str):
    await service.create_flag({
        "key": "promo",
        "name": "Promo",
        "environments": [{"environment": "production", "enabled": True}],
        "segmentTargets": [
            {"environment": "production", "segment": "phone-prefix3:912", "include": True},
            {"environment": "production", "segment": "beta", "include": True},
        ],
    }, actor)
    await service.register_segment("zz-top")
    await service.register_segment("aa-first")

    segments = await service.list_segments()

    assert segments[:len(BASE_SEGMENTS)] == list(BASE_SEGMENTS)
    assert segments[len(BASE_SEGMENTS):] == ["aa-first", "phone-prefix3:912", "zz-top"]


@pytest.mark.parametrize("name", ["", "   ", "has space", "slash/not/allowed", "s" * 129])
async def test_register_rejects_invalid_names(service: FeatureFlagService, name: str):
    with pytest.raises(BadRequestError):
        await service.register_segment(name)
