"""Tests for the database manager, runtime config and the location policy loader."""

import pytest

from attendance_guard.database.db_manager import LocationPolicyLoader
from attendance_guard.database.models import DEFAULT_CONFIG, LocationConfig, SystemConfig


def test_default_config_is_seeded(db) -> None:
    assert db.get_config_float("near_boundary_ratio") == 0.8
    assert db.get_config_int("anomaly_warning_threshold") == 70
    assert db.get_config_list("face_provider_order") == [
        "openai-vision", "gemini-vision", "insightface-local", "phash-basic"
    ]
    assert all(db.get_config(key) == value for key, (value, _) in DEFAULT_CONFIG.items())


def test_config_helpers_fall_back_on_bad_values(db) -> None:
    db.set_config("rapid_repeat_minutes", "soon")
    db.set_config("near_boundary_ratio", "most")

    assert db.get_config_int("rapid_repeat_minutes", 5) == 5
    assert db.get_config_float("near_boundary_ratio", 0.8) == 0.8
    assert db.get_config_list("reference_photo_hosts") == []
    assert db.get_config("missing", "fallback") == "fallback"


def test_session_rolls_back_on_error(db) -> None:
    with pytest.raises(RuntimeError):
        with db.get_session() as session:
            session.add(SystemConfig(key="half_written", value="1"))
            session.flush()
            raise RuntimeError("boom")

    assert db.get_config("half_written") is None


def test_stats(db, school) -> None:
    stats = db.get_stats()

    assert stats["active_location_configs"] == 1
    assert stats["attendance_records"] == 0
    assert stats["initialized"] is True


def test_policy_snapshot_is_frozen(db, school) -> None:
    policy = db.get_active_location_policy()

    with pytest.raises(Exception):
        policy.radius_meters = 1000


def test_loader_reuses_snapshot_within_ttl(db, school) -> None:
    now = [0.0]
    loader = LocationPolicyLoader(db, ttl_seconds=30, clock=lambda: now[0])

    first = loader.load()
    db.set_active_location_config(1.0, 2.0, 50, location_name="Moved")
    now[0] = 10.0
    assert loader.load() is first

    now[0] = 31.0
    assert loader.load().location_name == "Moved"


def test_loader_invalidate_forces_reload(db, school) -> None:
    loader = LocationPolicyLoader(db, ttl_seconds=3600)
    loader.load()
    db.set_active_location_config(1.0, 2.0, 50, location_name="Moved")

    loader.invalidate()

    assert loader.load().location_name == "Moved"


def test_loader_ttl_defaults_to_config(db) -> None:
    db.set_config("location_cache_seconds", "5")

    assert LocationPolicyLoader(db).ttl_seconds == 5.0


@pytest.mark.parametrize("latitude, longitude, radius", [
    (-6.2001, 106.8167, 0),
    (-6.2001, 106.8167, -10),
    (91.0, 106.8167, 100),
    (-6.2001, 181.0, 100),
    (float("nan"), 106.8167, 100),
])
def test_invalid_location_config_is_refused(db, school, latitude, longitude, radius) -> None:
    with pytest.raises(ValueError):
        db.set_active_location_config(latitude, longitude, radius, allowed_ssids=["SMK-WIFI"])

    assert db.get_active_location_policy().id == school


def test_malformed_active_row_yields_no_policy(db) -> None:
    with db.get_session() as session:
        session.add(LocationConfig(location_name="Broken", reference_latitude=95.0, reference_longitude=0.0,
                                   radius_meters=100, allowed_ssids=[], allowed_ip_ranges=[], is_active=True))
        session.commit()

    assert db.get_active_location_policy() is None
