"""
Deterministic rollout bucketing.

Bucket assignment must match prior deployments bit for bit, so the hash
uses explicit signed 32-bit wraparound after every step instead of Python's
arbitrary-precision integers.
"""

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def _to_int32(value: int) -> int:
    value &= _INT32_MASK
    if value & _INT32_SIGN:
        value -= 1 << 32
    return value


def hash_to_percentage(key: str) -> int:
    """
    Map a string to a bucket in [0, 100).

    ``hash = hash * 31 + unit`` over the UTF-16 code units of ``key``,
    truncated to a signed 32-bit integer after each unit; the result is
    ``abs(hash) % 100``. Characters outside the BMP count as two units.
    """
    data = key.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        h = _to_int32(h * 31 + int.from_bytes(data[i:i + 2], "little"))
    return abs(h) % 100


def bucket_for(flag_key: str, user_id: str) -> int:
    """Rollout bucket of a user for one flag."""
    return hash_to_percentage(f"{flag_key}:{user_id}")
