"""
Attendance Service for Attendance Guard
=======================================
Record-store side of attendance tracking.

Features:
- Read-only state proposal (check-in / check-out / already completed)
- Check-in commit guarded by the (user_id, attendance_date) unique constraint
- Check-out commit as a compare-and-swap on check_out_time IS NULL
- Auto-close of stale open records from earlier days
- History and daily report queries
"""

import logging
from datetime import datetime, date, time, timezone
from typing import Optional, List, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError

from .models import AttendanceRecord, EnrolledBiometric, AttendanceState, AttendanceType
from .db_manager import get_db_manager, DatabaseManager
from ..errors import AttendanceConflictError
from ..schemas import AttendanceEvidence

# Configure logging
logger = logging.getLogger(__name__)


def _utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def to_naive_utc(moment: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in the database."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


class AttendanceProposal:
    """
    Proposed attendance step for a user on a given day.
    attendance_type is None when the day is already completed.
    """

    def __init__(
        self,
        state: AttendanceState,
        attendance_type: Optional[AttendanceType],
        attendance_date: date,
        record_id: Optional[int] = None
    ):
        self.state = state
        self.attendance_type = attendance_type
        self.attendance_date = attendance_date
        self.record_id = record_id

    @property
    def is_completed(self) -> bool:
        return self.state == AttendanceState.COMPLETED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "attendance_type": self.attendance_type.value if self.attendance_type else None,
            "attendance_date": self.attendance_date.isoformat(),
            "record_id": self.record_id
        }


class AttendanceService:
    """
    Main service for attendance record operations.

    Usage:
        service = AttendanceService()
        proposal = service.propose_action("u-1", service.today())
        if proposal.attendance_type == AttendanceType.CHECK_IN:
            service.commit_check_in(evidence, proposal.attendance_date)
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize attendance service.

        Args:
            db_manager: Optional DatabaseManager instance. Uses global if not provided.
            clock: Callable returning the current aware datetime. Defaults to UTC now.
        """
        self.db = db_manager or get_db_manager()
        self.clock = clock or _utc_clock
        self._cache_config()

    def _cache_config(self):
        """Cache frequently used configuration values."""
        tz_name = self.db.get_config("attendance_timezone", "UTC")
        try:
            self.tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"[ATTENDANCE] Unknown timezone '{tz_name}', falling back to UTC")
            self.tz = ZoneInfo("UTC")

        logger.debug(f"Config cached: timezone={self.tz}")

    # ============== Clock helpers ==============

    def now(self) -> datetime:
        """Current time in the attendance timezone."""
        return self.clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def local_time(self, moment: datetime) -> datetime:
        """Express an aware (or naive UTC) datetime in the attendance timezone."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)

    def _end_of_day_utc(self, day: date) -> datetime:
        local_end = datetime.combine(day, time(23, 59, 59), tzinfo=self.tz)
        return to_naive_utc(local_end)

    # ============== State tracking ==============

    def propose_action(self, user_id: str, day: date) -> AttendanceProposal:
        """
        Propose the next attendance step for a user on a day.

        Read-only: nothing is written, so calling it repeatedly with no
        intervening commit always yields the same proposal.

        Rules:
        - No record for the day -> check-in
        - Record without check-out -> check-out
        - Record with check-out -> completed (terminal)
        """
        with self.db.get_session() as session:
            record = session.query(AttendanceRecord).filter_by(
                user_id=user_id,
                attendance_date=day
            ).first()

            if record is None:
                return AttendanceProposal(AttendanceState.NONE, AttendanceType.CHECK_IN, day)

            if record.state == AttendanceState.CHECKED_IN:
                return AttendanceProposal(AttendanceState.CHECKED_IN, AttendanceType.CHECK_OUT, day, record.id)

            return AttendanceProposal(AttendanceState.COMPLETED, None, day, record.id)

    # ============== Commit ==============

    def commit_check_in(
        self,
        evidence: AttendanceEvidence,
        day: date,
        face_match_score: Optional[float] = None,
        face_provider: Optional[str] = None
    ) -> dict:
        """
        Create today's record for a user.

        Stale open records from earlier days are closed in the same transaction.
        A concurrent check-in that already committed surfaces as
        AttendanceConflictError and nothing is written.

        Returns:
            Dictionary with the new record and the ids of auto-closed records
        """
        check_in_time = to_naive_utc(self.clock())

        with self.db.get_session() as session:
            stale = session.query(AttendanceRecord).filter(
                AttendanceRecord.user_id == evidence.user_id,
                AttendanceRecord.attendance_date < day,
                AttendanceRecord.check_out_time.is_(None)
            ).all()

            auto_closed_ids = []
            for old in stale:
                old.check_out_time = self._end_of_day_utc(old.attendance_date)
                old.auto_closed = True
                auto_closed_ids.append(old.id)
                logger.info(f"[ATTENDANCE] Auto-closed open record {old.id} for {evidence.user_id} "
                            f"from {old.attendance_date}")

            record = AttendanceRecord(
                user_id=evidence.user_id,
                attendance_date=day,
                check_in_time=check_in_time,
                latitude=evidence.latitude,
                longitude=evidence.longitude,
                wifi_ssid=evidence.wifi_ssid,
                ip_address=evidence.ip_address,
                fingerprint_hash=evidence.fingerprint_hash,
                face_match_score=face_match_score,
                face_provider=face_provider
            )
            session.add(record)

            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning(f"[ATTENDANCE] Concurrent check-in lost for {evidence.user_id} on {day}")
                raise AttendanceConflictError(f"Check-in for {evidence.user_id} on {day} already committed")

            logger.info(f"[ATTENDANCE] Check-in committed: {evidence.user_id} on {day}")
            return {"record": record.to_dict(), "auto_closed_ids": auto_closed_ids}

    def commit_check_out(self, user_id: str, day: date) -> dict:
        """
        Close today's open record.

        The update only applies while check_out_time is still NULL, so of two
        concurrent check-outs exactly one succeeds.

        Returns:
            Dictionary with the updated record
        """
        check_out_time = to_naive_utc(self.clock())

        with self.db.get_session() as session:
            updated = session.query(AttendanceRecord).filter(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.attendance_date == day,
                AttendanceRecord.check_out_time.is_(None)
            ).update({"check_out_time": check_out_time}, synchronize_session=False)

            if updated != 1:
                session.rollback()
                logger.warning(f"[ATTENDANCE] Check-out for {user_id} on {day} found no open record")
                raise AttendanceConflictError(f"No open record for {user_id} on {day}")

            session.commit()
            record = session.query(AttendanceRecord).filter_by(user_id=user_id, attendance_date=day).one()

            logger.info(f"[ATTENDANCE] Check-out committed: {user_id} on {day}")
            return {"record": record.to_dict()}

    # ============== Query Methods ==============

    def recent_history(self, user_id: str, since: datetime, until: datetime) -> List[AttendanceRecord]:
        """
        Committed records whose check-in falls in [since, until).
        Returned rows are detached and read-only.
        """
        with self.db.get_session() as session:
            return session.query(AttendanceRecord).filter(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.check_in_time >= to_naive_utc(since),
                AttendanceRecord.check_in_time < to_naive_utc(until)
            ).order_by(AttendanceRecord.check_in_time.asc()).all()

    def get_user_history(self, user_id: str, limit: int = 30) -> list:
        """Get a user's most recent attendance records."""
        with self.db.get_session() as session:
            records = session.query(AttendanceRecord).filter_by(
                user_id=user_id
            ).order_by(AttendanceRecord.attendance_date.desc()).limit(limit).all()
            return [r.to_dict() for r in records]

    def get_daily_report(self, report_date: Optional[date] = None) -> dict:
        """Get attendance report for a specific date."""
        report_date = report_date or self.today()

        with self.db.get_session() as session:
            records = session.query(AttendanceRecord).filter_by(
                attendance_date=report_date
            ).all()

            total_enrolled = session.query(EnrolledBiometric).count()
            present_count = len(records)
            completed_count = len([r for r in records if r.state == AttendanceState.COMPLETED])

            return {
                "date": report_date.isoformat(),
                "total_enrolled": total_enrolled,
                "present_count": present_count,
                "completed_count": completed_count,
                "open_count": present_count - completed_count,
                "absent_count": max(total_enrolled - present_count, 0),
                "attendance_rate": round(present_count / total_enrolled * 100, 1) if total_enrolled > 0 else 0,
                "records": [r.to_dict() for r in records]
            }
