"""
Rollout Bucketing Tests
"""

import pytest

from flagkeeper.modules.feature_flags.hashing import bucket_for, hash_to_percentage


def utf16_units(key: str):
    for char in key:
        point = ord(char)
        if point > 0xFFFF:
            point -= 0x10000
            yield 0xD800 + (point >> 10)
            yield 0xDC00 + (point & 0x3FF)
        else:
            yield point


def reference_hash(key: str) -> int:
    # Unsigned mod-2**32 accumulation, converted to signed once at the end
    h = 0
    for unit in utf16_units(key):
        h = (h * 31 + unit) % (1 << 32)
    if h >= 1 << 31:
        h -= 1 << 32
    return abs(h) % 100


@pytest.mark.parametrize(
    "key,expected",
    [
        ("", 0),
        ("a", 97),
        ("ab", 5),
        ("f:a", 17),
        ("f:b", 18),
        ("f:z", 42),
        ("hello", 22),
    ],
)
def test_known_values(key, expected):
    """Small inputs never overflow and match hand-computed values"""
    assert hash_to_percentage(key) == expected


def test_int32_minimum_wraps_to_positive_bucket():
    """A hash of exactly -2**31 takes abs() of the wide value"""
    # "polygenelubricants" hashes to -2147483648
    assert hash_to_percentage("polygenelubricants") == 48


@pytest.mark.parametrize(
    "key",
    [
        "checkout-redesign:user-0001",
        "new-onboarding:9f8b2c1e-4a7d-4c1b-9b0e-1f2a3b4c5d6e",
        "a-very-long-flag-key-that-overflows-many-times:some.user@example.com",
        "unicode:пользователь-42",
        "emoji:\U0001F680-launch:user-\U0001F600",
    ],
)
def test_matches_wraparound_reference(key):
    """Long keys overflow 32 bits; result matches modular arithmetic"""
    assert hash_to_percentage(key) == reference_hash(key)


def test_bucket_for_uses_flag_and_user():
    assert bucket_for("f", "a") == hash_to_percentage("f:a") == 17


def test_bucket_is_stable_and_in_range():
    for i in range(500):
        user_id = f"user-{i}"
        first = bucket_for("checkout", user_id)
        assert 0 <= first < 100
        assert bucket_for("checkout", user_id) == first


@pytest.mark.parametrize(
    "key,expected",
    [
        ("f:\U0001F600", 19),
        ("\U0001F600", 99),
    ],
)
def test_astral_characters_hash_as_surrogate_pairs(key, expected):
    """Characters outside the BMP contribute both UTF-16 code units"""
    assert hash_to_percentage(key) == expected
