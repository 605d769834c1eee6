"""Tests for device fingerprint matching."""

import pytest

from attendance_guard.security.device import DeviceIdentityMatcher


@pytest.mark.parametrize(
    "submitted, enrolled, expected",
    [
        ("abc123", "abc123", True),
        ("wrong", "abc123", False),
        ("ABC123", "abc123", False),
        ("abc123 ", "abc123", False),
        ("", "abc123", False),
        (None, "abc123", False),
        ("abc123", None, False),
    ],
)
def test_match_is_exact(submitted, enrolled, expected) -> None:
    assert DeviceIdentityMatcher().match(submitted, enrolled) is expected


def test_mask_never_exposes_full_hash() -> None:
    assert DeviceIdentityMatcher.mask("0123456789abcdef") == "01234567..."
    assert DeviceIdentityMatcher.mask("abc") == "abc"
    assert DeviceIdentityMatcher.mask(None) == "<none>"
