"""
Segment Derivation Tests
"""

from datetime import date

import pytest

from flagkeeper.modules.feature_flags.segments import derive_segments, parse_birth_date
from flagkeeper.schemas.feature_flag import UserContext


def user(**kwargs) -> UserContext:
    return UserContext(id="user-1", **kwargs)


def test_no_attributes_no_segments():
    assert derive_segments(user()) == set()


def test_explicit_segments_are_trimmed_and_lowercased():
    segments = derive_segments(user(segments=[" Beta_Tester ", "VIP", "  "]))
    assert segments == {"beta_tester", "vip"}


@pytest.mark.parametrize(
    "is_employee,expected",
    [(True, {"employee"}), (False, {"non_employee"}), (None, set())],
)
def test_employee_status(is_employee, expected):
    assert derive_segments(user(is_employee=is_employee)) == expected


@pytest.mark.parametrize(
    "is_new_customer,expected",
    [(True, {"new_customer"}), (False, {"old_customer"}), (None, set())],
)
def test_customer_status(is_new_customer, expected):
    assert derive_segments(user(is_new_customer=is_new_customer)) == expected


def test_phone_with_leading_country_code_seven():
    segments = derive_segments(user(phone_number="+7 (912) 345-67-89"))
    assert segments == {
        "phone:79123456789",
        "phone-last4:6789",
        "phone-last2:89",
        "phone-prefix3:912",
    }


def test_phone_without_country_code():
    segments = derive_segments(user(phone_number="555-1234"))
    assert segments == {
        "phone:5551234",
        "phone-last4:1234",
        "phone-last2:34",
        "phone-prefix3:555",
    }


def test_short_phone_numbers():
    assert derive_segments(user(phone_number="12")) == {"phone:12", "phone-last2:12"}
    assert derive_segments(user(phone_number="712")) == {
        "phone:712",
        "phone-last2:12",
        "phone-prefix3:712",
    }


def test_phone_without_digits_is_ignored():
    assert derive_segments(user(phone_number="n/a")) == set()


def test_phone_from_attributes():
    segments = derive_segments(user(attributes={"phone": "8-800-555-35-35"}))
    assert "phone:88005553535" in segments
    assert "phone-prefix3:880" in segments


def test_birth_date():
    assert derive_segments(user(birth_date="1990-05-17")) == {"birthdate:1990-05-17"}


def test_birth_date_from_attributes():
    assert derive_segments(user(attributes={"birthDate": "2001-01-31"})) == {"birthdate:2001-01-31"}


def test_unparseable_birth_date_is_ignored():
    assert derive_segments(user(birth_date="17th of May")) == set()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("1990-05-17", date(1990, 5, 17)),
        ("1990-05-17T10:00:00", date(1990, 5, 17)),
        ("1990-05-17T23:30:00-02:00", date(1990, 5, 18)),
        ("1990-05-17T00:30:00+03:00", date(1990, 5, 16)),
        ("1990-05-17T12:00:00Z", date(1990, 5, 17)),
        ("", None),
        ("1990-13-45", None),
        ("yesterday", None),
    ],
)
def test_parse_birth_date(value, expected):
    assert parse_birth_date(value) == expected


def test_rules_are_additive():
    segments = derive_segments(user(
        segments=["premium"],
        is_employee=True,
        is_new_customer=False,
        phone_number="12",
        birth_date="1985-02-01",
    ))
    assert segments == {
        "premium",
        "employee",
        "old_customer",
        "phone:12",
        "phone-last2:12",
        "birthdate:1985-02-01",
    }
