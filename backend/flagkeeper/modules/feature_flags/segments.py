"""
Segment derivation for flag evaluation.

Turns a user context into the set of lowercase segment labels that segment
targets are matched against. Pure, no I/O.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional, Set

from flagkeeper.schemas.feature_flag import UserContext, normalize_segment

_NON_DIGITS = re.compile(r"\D")


def _phone_segments(phone: str) -> Set[str]:
    digits = _NON_DIGITS.sub("", phone)
    if not digits:
        return set()

    segments = {f"phone:{digits}"}
    if len(digits) >= 4:
        segments.add(f"phone-last4:{digits[-4:]}")
    if len(digits) >= 2:
        segments.add(f"phone-last2:{digits[-2:]}")
    if len(digits) >= 3:
        # Leading country code 7 is skipped for the prefix
        if digits.startswith("7") and len(digits) >= 4:
            prefix = digits[1:4]
        else:
            prefix = digits[:3]
        segments.add(f"phone-prefix3:{prefix}")
    return segments


def parse_birth_date(value: str) -> Optional[date]:
    """
    Parse an ISO-8601 date or date-time; returns None when unparseable.

    Date-times carrying an offset are converted to UTC before the date is
    taken.
    """
    value = value.strip()
    if not value:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError:
        pass

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def derive_segments(user: UserContext) -> Set[str]:
    """
    Build the normalized segment labels for a user.

    Rules are additive: explicit segments, employee / customer status,
    phone-derived labels and the birth date.
    """
    segments: Set[str] = set()

    for segment in user.segments:
        normalized = normalize_segment(segment)
        if normalized:
            segments.add(normalized)

    if user.is_employee is True:
        segments.add("employee")
    elif user.is_employee is False:
        segments.add("non_employee")

    if user.is_new_customer is True:
        segments.add("new_customer")
    elif user.is_new_customer is False:
        segments.add("old_customer")

    phone = user.phone_number
    if not phone and isinstance(user.attributes.get("phone"), str):
        phone = user.attributes["phone"]
    if phone:
        segments |= _phone_segments(phone)

    birth_date = user.birth_date
    if not birth_date and isinstance(user.attributes.get("birthDate"), str):
        birth_date = user.attributes["birthDate"]
    if birth_date:
        parsed = parse_birth_date(birth_date)
        if parsed is not None:
            segments.add(f"birthdate:{parsed.isoformat()}")

    return segments
