"""Tests for the behavioural anomaly scorer."""

from datetime import datetime
from typing import Optional

import pytest

from attendance_guard.database.models import AttendanceRecord
from attendance_guard.security.anomaly import RULE_WEIGHTS, AnomalyScorer

from conftest import FIXED_NOW, USER_ID


def add_record(db, check_in: datetime, check_out: Optional[datetime] = None, wifi: str = "SMK-WIFI",
               fingerprint: str = "abc123", lat: float = -6.2000, lon: float = 106.8166) -> None:
    with db.get_session() as session:
        session.add(AttendanceRecord(
            user_id=USER_ID,
            attendance_date=check_in.date(),
            check_in_time=check_in,
            check_out_time=check_out,
            latitude=lat,
            longitude=lon,
            wifi_ssid=wifi,
            fingerprint_hash=fingerprint
        ))
        session.commit()


def add_routine_days(db, days=(5, 6, 9), **kwargs) -> None:
    """Check-in at 07:30 and check-out at 15:00 on the given March days."""
    for day in days:
        add_record(db, datetime(2026, 3, day, 7, 30), datetime(2026, 3, day, 15, 0), **kwargs)


@pytest.fixture
def scorer(attendance) -> AnomalyScorer:
    return AnomalyScorer(attendance)


def test_first_time_user_scores_zero(scorer, make_evidence) -> None:
    report = scorer.score(USER_ID, make_evidence())

    assert report.score == 0
    assert report.patterns == ["FIRST_TIME_USER"]


def test_routine_attendance_scores_zero(db, scorer, make_evidence) -> None:
    add_routine_days(db)

    report = scorer.score(USER_ID, make_evidence())

    assert report.score == 0
    assert report.patterns == []


def test_history_older_than_window_is_ignored(db, scorer, make_evidence) -> None:
    add_record(db, datetime(2026, 3, 1, 7, 30), wifi="OLD-WIFI", fingerprint="old-device")

    assert scorer.score(USER_ID, make_evidence()).patterns == ["FIRST_TIME_USER"]


def test_new_wifi_network(db, scorer, make_evidence) -> None:
    add_routine_days(db)

    report = scorer.score(USER_ID, make_evidence(wifi_ssid="CAFE-WIFI"))

    assert report.patterns == ["NEW_WIFI_NETWORK"]
    assert report.score == RULE_WEIGHTS["NEW_WIFI_NETWORK"]


def test_excessive_wifi_switching(db, scorer, make_evidence) -> None:
    for day, wifi in zip((4, 5, 6, 8, 9), ("SMK-WIFI", "A", "B", "C", "D")):
        add_record(db, datetime(2026, 3, day, 7, 30), datetime(2026, 3, day, 15, 0), wifi=wifi)

    report = scorer.score(USER_ID, make_evidence())

    assert "EXCESSIVE_WIFI_SWITCHING" in report.patterns
    assert "HIGH_WIFI_CHANGE_RATE" not in report.patterns
    assert "NEW_WIFI_NETWORK" not in report.patterns


def test_high_wifi_change_rate(db, scorer, make_evidence) -> None:
    add_record(db, datetime(2026, 3, 5, 7, 30), wifi="SMK-WIFI")
    add_record(db, datetime(2026, 3, 6, 7, 30), wifi="LAB-WIFI")
    add_record(db, datetime(2026, 3, 9, 7, 30), wifi="SMK-WIFI")

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["HIGH_WIFI_CHANGE_RATE"]


def test_change_rate_needs_enough_records(db, scorer, make_evidence) -> None:
    add_record(db, datetime(2026, 3, 6, 7, 30), wifi="LAB-WIFI")
    add_record(db, datetime(2026, 3, 9, 7, 30), wifi="SMK-WIFI")

    assert scorer.score(USER_ID, make_evidence()).patterns == []


def test_impossible_travel(db, scorer, make_evidence) -> None:
    # Checked in from Bandung half an hour ago
    add_record(db, datetime(2026, 3, 10, 7, 30), lat=-6.9175, lon=107.6191)

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["IMPOSSIBLE_TRAVEL"]
    assert report.score == RULE_WEIGHTS["IMPOSSIBLE_TRAVEL"]


def test_fast_travel(db, scorer, make_evidence) -> None:
    # About 6km south, half an hour ago
    add_record(db, datetime(2026, 3, 10, 7, 30), lat=-6.2541, lon=106.8166)

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["FAST_TRAVEL"]


def test_travel_ignored_after_two_hours(db, scorer, make_evidence) -> None:
    add_record(db, datetime(2026, 3, 10, 5, 30), lat=-6.9175, lon=107.6191)

    assert scorer.score(USER_ID, make_evidence()).patterns == []


def test_new_device(db, scorer, make_evidence) -> None:
    add_routine_days(db)

    report = scorer.score(USER_ID, make_evidence(fingerprint_hash="other-device"))

    assert report.patterns == ["NEW_DEVICE"]


def test_multiple_devices(db, scorer, make_evidence) -> None:
    for day, fingerprint in zip((5, 6, 9), ("abc123", "device-2", "device-3")):
        add_record(db, datetime(2026, 3, day, 7, 30), fingerprint=fingerprint)

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["MULTIPLE_DEVICES"]


def test_night_attendance(db, scorer, make_evidence, clock) -> None:
    add_record(db, datetime(2026, 3, 9, 7, 30))
    clock.now = FIXED_NOW.replace(hour=23, minute=30)

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["ABNORMAL_TIME"]


def test_off_pattern_hour(db, scorer, make_evidence, clock) -> None:
    add_routine_days(db)
    clock.now = FIXED_NOW.replace(hour=14)

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["OFF_PATTERN_HOUR"]


def test_weekend_attendance(db, scorer, make_evidence, clock) -> None:
    add_record(db, datetime(2026, 3, 13, 7, 30), datetime(2026, 3, 13, 15, 0))
    clock.now = datetime(2026, 3, 14, 8, 0, tzinfo=FIXED_NOW.tzinfo)

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["WEEKEND_ATTENDANCE"]


def test_rapid_repeat_after_last_event(db, scorer, make_evidence) -> None:
    add_record(db, datetime(2026, 3, 10, 7, 57))

    report = scorer.score(USER_ID, make_evidence())

    assert report.patterns == ["RAPID_REPEAT"]


def test_score_is_capped(db, scorer, make_evidence) -> None:
    add_record(db, datetime(2026, 3, 10, 7, 58), lat=-6.9175, lon=107.6191)

    report = scorer.score(USER_ID, make_evidence(wifi_ssid="CAFE-WIFI", fingerprint_hash="other-device"))

    assert set(report.patterns) == {"IMPOSSIBLE_TRAVEL", "NEW_WIFI_NETWORK", "NEW_DEVICE", "RAPID_REPEAT"}
    assert report.score == 100


def test_scorer_faults_degrade_to_zero(make_evidence) -> None:
    class BrokenHistory:
        def recent_history(self, *args):
            raise RuntimeError("database unavailable")

    report = AnomalyScorer(BrokenHistory()).score(USER_ID, make_evidence())

    assert report.score == 0
    assert report.patterns == ["DETECTION_ERROR"]


def test_backdated_timestamp_keeps_the_history_window(db, scorer, make_evidence) -> None:
    for day, wifi, fingerprint in zip((4, 5, 6, 8, 9), ("SMK-WIFI", "A", "B", "C", "D"),
                                      ("abc123", "d-2", "d-3", "d-4", "d-5")):
        add_record(db, datetime(2026, 3, day, 7, 30), wifi=wifi, fingerprint=fingerprint)

    current = scorer.score(USER_ID, make_evidence())
    backdated = scorer.score(USER_ID, make_evidence(timestamp_millis=0))

    assert {"EXCESSIVE_WIFI_SWITCHING", "MULTIPLE_DEVICES"} <= set(current.patterns)
    assert "FIRST_TIME_USER" not in backdated.patterns
    assert set(backdated.patterns) == set(current.patterns) | {"CLOCK_SKEW"}
    assert backdated.score >= current.score


def test_small_clock_drift_is_tolerated(db, scorer, make_evidence, clock) -> None:
    add_routine_days(db)
    skewed = int(clock().timestamp() * 1000) - 2 * 60 * 1000

    assert scorer.score(USER_ID, make_evidence(timestamp_millis=skewed)).patterns == []
