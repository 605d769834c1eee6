"""Tests for the administration command line."""

import json

import pytest

from attendance_guard.admin_cli import main
from attendance_guard.database.biometric_registry import BiometricRegistry
from attendance_guard.database.db_manager import DatabaseManager


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "admin.db")


def run(db_path, *args) -> int:
    return main(["--db", db_path, *args])


def test_set_location_then_stats(db_path, capsys) -> None:
    assert run(db_path, "set-location", "-6.2001", "106.8167", "100",
               "--ssid", "SMK-WIFI", "--ip-range", "192.168.1.0/24", "--name", "SMK Negeri 1") == 0
    capsys.readouterr()

    assert run(db_path, "stats") == 0
    stats = json.loads(capsys.readouterr().out)

    assert stats["active_location_configs"] == 1
    assert stats["active_location"]["location_name"] == "SMK Negeri 1"
    assert stats["active_location"]["allowed_ssids"] == ["SMK-WIFI"]
    assert stats["active_location"]["reference_latitude"] == pytest.approx(-6.2001)


def test_set_location_without_networks_warns(db_path, capsys) -> None:
    assert run(db_path, "set-location", "1.0", "2.0", "50") == 0

    assert "Warning" in capsys.readouterr().out


def test_set_location_rejects_non_positive_radius(db_path, capsys) -> None:
    assert run(db_path, "set-location", "-6.2001", "106.8167", "0", "--ssid", "SMK-WIFI") == 1
    assert "Radius" in capsys.readouterr().out

    assert run(db_path, "stats") == 0
    assert json.loads(capsys.readouterr().out)["active_location_configs"] == 0


def test_enroll_and_reset(db_path, capsys) -> None:
    assert run(db_path, "enroll", "u-1", "abc123", "/photos/u-1.jpg", "--credential-id", "cred-1") == 0

    db = DatabaseManager(db_path)
    profile_status = BiometricRegistry(db).get_status("u-1")
    db.close()
    assert profile_status["enrolled"] is True
    assert profile_status["has_platform_credential"] is True

    assert run(db_path, "reset", "u-1", "--admin", "root") == 0
    assert run(db_path, "reset", "u-1") == 1
    assert "No enrollment" in capsys.readouterr().out


def test_unknown_command_exits() -> None:
    with pytest.raises(SystemExit):
        main(["frobnicate"])
