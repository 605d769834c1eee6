"""Tests for the attendance state machine and its commit operations."""

from datetime import date, datetime, timedelta

import pytest

from attendance_guard.database.attendance_service import AttendanceService, to_naive_utc
from attendance_guard.database.models import AttendanceRecord, AttendanceState, AttendanceType
from attendance_guard.errors import AttendanceConflictError

from conftest import FIXED_NOW, USER_ID


def test_state_machine_walks_check_in_check_out_completed(attendance, make_evidence) -> None:
    day = attendance.today()

    proposal = attendance.propose_action(USER_ID, day)
    assert proposal.state == AttendanceState.NONE
    assert proposal.attendance_type == AttendanceType.CHECK_IN

    attendance.commit_check_in(make_evidence(), day)
    proposal = attendance.propose_action(USER_ID, day)
    assert proposal.state == AttendanceState.CHECKED_IN
    assert proposal.attendance_type == AttendanceType.CHECK_OUT

    attendance.commit_check_out(USER_ID, day)
    proposal = attendance.propose_action(USER_ID, day)
    assert proposal.is_completed
    assert proposal.attendance_type is None


def test_propose_action_is_read_only(db, attendance) -> None:
    day = attendance.today()

    first = attendance.propose_action(USER_ID, day)
    second = attendance.propose_action(USER_ID, day)

    assert first.to_dict() == second.to_dict()
    with db.get_session() as session:
        assert session.query(AttendanceRecord).count() == 0


def test_commit_check_in_stores_evidence_and_face_data(attendance, make_evidence, clock) -> None:
    committed = attendance.commit_check_in(
        make_evidence(ip_address="192.168.1.20"), attendance.today(),
        face_match_score=0.91, face_provider="openai-vision"
    )
    record = committed["record"]

    assert record["user_id"] == USER_ID
    assert record["attendance_date"] == "2026-03-10"
    assert record["check_in_time"] == to_naive_utc(clock()).isoformat()
    assert record["wifi_ssid"] == "SMK-WIFI"
    assert record["face_match_score"] == 0.91
    assert record["face_provider"] == "openai-vision"
    assert record["state"] == "CHECKED_IN"
    assert committed["auto_closed_ids"] == []


def test_second_check_in_same_day_conflicts(attendance, make_evidence) -> None:
    day = attendance.today()
    attendance.commit_check_in(make_evidence(), day)

    with pytest.raises(AttendanceConflictError):
        attendance.commit_check_in(make_evidence(), day)

    assert len(attendance.get_user_history(USER_ID)) == 1


def test_check_out_without_open_record_conflicts(attendance) -> None:
    with pytest.raises(AttendanceConflictError):
        attendance.commit_check_out(USER_ID, attendance.today())


def test_second_check_out_conflicts_and_keeps_first_time(attendance, make_evidence, clock) -> None:
    day = attendance.today()
    attendance.commit_check_in(make_evidence(), day)
    clock.advance(hours=8)
    first = attendance.commit_check_out(USER_ID, day)["record"]

    clock.advance(minutes=1)
    with pytest.raises(AttendanceConflictError):
        attendance.commit_check_out(USER_ID, day)

    assert attendance.get_user_history(USER_ID)[0]["check_out_time"] == first["check_out_time"]


def test_stale_open_record_is_auto_closed_on_next_check_in(db, attendance, make_evidence, clock) -> None:
    first_day = attendance.today()
    first_id = attendance.commit_check_in(make_evidence(), first_day)["record"]["id"]

    clock.advance(days=1)
    second_day = attendance.today()
    assert attendance.propose_action(USER_ID, second_day).attendance_type == AttendanceType.CHECK_IN

    committed = attendance.commit_check_in(make_evidence(), second_day)

    assert committed["auto_closed_ids"] == [first_id]
    with db.get_session() as session:
        stale = session.get(AttendanceRecord, first_id)
        assert stale.auto_closed
        assert stale.state == AttendanceState.COMPLETED
        assert stale.check_out_time == datetime(2026, 3, 10, 23, 59, 59)


def test_today_follows_configured_timezone(db, clock) -> None:
    db.set_config("attendance_timezone", "Asia/Jakarta")
    clock.now = FIXED_NOW.replace(hour=20)

    service = AttendanceService(db, clock=clock)

    assert service.today() == date(2026, 3, 11)
    assert service.local_time(datetime(2026, 3, 10, 20, 0)).hour == 3


def test_unknown_timezone_falls_back_to_utc(db, clock) -> None:
    db.set_config("attendance_timezone", "Mars/Olympus_Mons")

    service = AttendanceService(db, clock=clock)

    assert service.today() == date(2026, 3, 10)


def test_recent_history_window_is_half_open(attendance, make_evidence, clock) -> None:
    attendance.commit_check_in(make_evidence(), attendance.today())
    check_in = clock()

    assert len(attendance.recent_history(USER_ID, check_in - timedelta(days=1), check_in + timedelta(seconds=1))) == 1
    assert attendance.recent_history(USER_ID, check_in - timedelta(days=1), check_in) == []


def test_daily_report_counts(attendance, make_evidence, enrolled) -> None:
    day = attendance.today()
    attendance.commit_check_in(make_evidence(), day)

    report = attendance.get_daily_report(day)

    assert report["date"] == "2026-03-10"
    assert report["total_enrolled"] == 1
    assert report["present_count"] == 1
    assert report["open_count"] == 1
    assert report["completed_count"] == 0
    assert report["absent_count"] == 0
    assert report["attendance_rate"] == 100.0


def test_daily_report_with_nobody_enrolled(attendance) -> None:
    report = attendance.get_daily_report()

    assert report["present_count"] == 0
    assert report["attendance_rate"] == 0
