"""Tests for haversine distance, the geofence check and GPS accuracy screening."""

import math

import pytest

from attendance_guard.errors import InvalidEvidenceError
from attendance_guard.schemas import LocationPolicy
from attendance_guard.security.geofence import GeofenceValidator, distance


@pytest.fixture
def policy() -> LocationPolicy:
    return LocationPolicy(id=1, reference_latitude=-6.2001, reference_longitude=106.8167, radius_meters=100)


@pytest.mark.parametrize(
    "a, b",
    [
        ((-6.2000, 106.8166), (-6.2001, 106.8167)),
        ((51.5007, -0.1246), (40.6892, -74.0445)),
        ((0.0, 179.9), (0.0, -179.9)),
        ((89.9, 0.0), (-89.9, 180.0)),
    ],
)
def test_distance_is_symmetric(a, b) -> None:
    assert distance(*a, *b) == pytest.approx(distance(*b, *a))


@pytest.mark.parametrize("point", [(0.0, 0.0), (-6.2001, 106.8167), (90.0, 180.0), (-90.0, -180.0)])
def test_distance_to_self_is_zero(point) -> None:
    assert distance(*point, *point) == 0.0


def test_distance_matches_known_values() -> None:
    # One degree of latitude on a 6371km sphere
    assert distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(6371000.0 * math.pi / 180, rel=1e-9)
    # Scenario evidence is about 15.6m from the school
    assert distance(-6.2000, 106.8166, -6.2001, 106.8167) == pytest.approx(15.6, abs=0.5)


def test_distance_across_antimeridian_is_short() -> None:
    assert distance(0.0, 179.9, 0.0, -179.9) < 25000


@pytest.mark.parametrize(
    "lat, lon",
    [(float("nan"), 0.0), (0.0, float("inf")), (91.0, 0.0), (-90.5, 0.0), (0.0, 180.1), ("1", 0.0)],
)
def test_invalid_coordinates_raise(lat, lon) -> None:
    with pytest.raises(InvalidEvidenceError):
        distance(lat, lon, 0.0, 0.0)


def test_invalid_evidence_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        distance(100.0, 0.0, 0.0, 0.0)


def test_is_within_inside_radius(policy: LocationPolicy) -> None:
    check = GeofenceValidator().is_within(-6.2000, 106.8166, policy)

    assert check.ok
    assert not check.near_boundary
    assert check.distance_meters < 20


def test_is_within_outside_radius(policy: LocationPolicy) -> None:
    # About 222m north of the reference point
    check = GeofenceValidator().is_within(-6.1981, 106.8167, policy)

    assert not check.ok
    assert not check.near_boundary
    assert check.distance_meters > 100


def test_exact_radius_is_inside() -> None:
    meters = distance(0.0, 0.0, 0.0005, 0.0)
    policy = LocationPolicy(id=1, reference_latitude=0.0005, reference_longitude=0.0, radius_meters=meters)

    assert GeofenceValidator().is_within(0.0, 0.0, policy).ok


def test_near_boundary_flagged_past_ratio(policy: LocationPolicy) -> None:
    # About 89m north: inside the 100m radius, beyond 80% of it
    check = GeofenceValidator().is_within(-6.2009, 106.8167, policy)

    assert check.ok
    assert check.near_boundary


def test_near_boundary_ratio_is_configurable(policy: LocationPolicy) -> None:
    check = GeofenceValidator(near_boundary_ratio=0.95).is_within(-6.2009, 106.8167, policy)

    assert check.ok
    assert not check.near_boundary


@pytest.mark.parametrize("ratio", [0, -0.1, 1.5])
def test_near_boundary_ratio_must_be_a_fraction(ratio) -> None:
    with pytest.raises(ValueError):
        GeofenceValidator(near_boundary_ratio=ratio)


@pytest.mark.parametrize(
    "accuracy, verdict",
    [
        (None, None),
        (5.0, None),
        (20.0, None),
        (20.5, "low"),
        (500.0, "low"),
        (0.0, "fake"),
        (10001.0, "fake"),
    ],
)
def test_accuracy_screening(accuracy, verdict) -> None:
    check = GeofenceValidator().check_accuracy(accuracy)

    assert check.verdict == verdict
    assert check.ok == (verdict is None)


def test_negative_accuracy_is_invalid() -> None:
    with pytest.raises(InvalidEvidenceError):
        GeofenceValidator().check_accuracy(-1.0)
