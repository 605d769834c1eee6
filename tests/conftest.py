"""Shared fixtures: temporary database, fixed clock, seeded location and users."""

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from attendance_guard.attendance_flow import AttendanceFlow
from attendance_guard.database.attendance_service import AttendanceService
from attendance_guard.database.audit_log import AuditLog
from attendance_guard.database.biometric_registry import BiometricRegistry
from attendance_guard.database.db_manager import DatabaseManager
from attendance_guard.face.chain import FaceVerificationChain
from attendance_guard.face.models import FaceVerificationResult
from attendance_guard.face.providers import FaceVerificationProvider
from attendance_guard.schemas import AttendanceEvidence
from attendance_guard.security.pipeline import SecurityValidationPipeline

# Tuesday morning, UTC
FIXED_NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)

SCHOOL_LAT = -6.2001
SCHOOL_LON = 106.8167
SCHOOL_SSID = "SMK-WIFI"
USER_ID = "u-1"
FINGERPRINT = "abc123"
REFERENCE_PHOTO = b"reference-photo-bytes"
CAPTURED_PHOTO = b"captured-photo-bytes"


class FixedClock:
    """Mutable clock returning an aware UTC datetime."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProvider(FaceVerificationProvider):
    """Scripted provider recording every call."""

    def __init__(self, name: str, result: Optional[FaceVerificationResult] = None,
                 error: Optional[Exception] = None, delay: float = 0.0, is_available: bool = True):
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.is_available = is_available
        self.calls = 0
        self.cancelled = False
        self.closed = False

    def available(self) -> bool:
        return self.is_available

    async def execute(self, captured: bytes, reference: bytes, timeout: float) -> FaceVerificationResult:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error:
            raise self.error
        return self.result

    async def close(self):
        self.closed = True


def matched_result(provider_name: str = "fake", **overrides) -> FaceVerificationResult:
    fields = dict(success=True, face_detected=True, match_score=0.92, is_live=True,
                  is_fake=False, confidence=0.9, provider_name=provider_name, reasoning="same person")
    fields.update(overrides)
    return FaceVerificationResult(**fields)


def data_url(data: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(data).decode("ascii")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def db(tmp_path: Path):
    """Fresh SQLite database with default config seeded."""
    manager = DatabaseManager(tmp_path / "attendance.db")
    assert manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def school(db: DatabaseManager) -> int:
    """Active location config matching the SMK scenario."""
    return db.set_active_location_config(
        reference_latitude=SCHOOL_LAT,
        reference_longitude=SCHOOL_LON,
        radius_meters=100,
        allowed_ssids=[SCHOOL_SSID],
        allowed_ip_ranges=["192.168.1.0/24"],
        location_name="SMK Negeri 1"
    )


@pytest.fixture
def enrolled(db: DatabaseManager):
    return BiometricRegistry(db).enroll(USER_ID, FINGERPRINT, data_url(REFERENCE_PHOTO))


@pytest.fixture
def attendance(db: DatabaseManager, clock: FixedClock) -> AttendanceService:
    return AttendanceService(db, clock=clock)


@pytest.fixture
def audit(db: DatabaseManager) -> AuditLog:
    return AuditLog(db)


@pytest.fixture
def pipeline(db, attendance, audit, school, enrolled) -> SecurityValidationPipeline:
    return SecurityValidationPipeline.from_database(db, attendance=attendance, audit=audit)


@pytest.fixture
def make_evidence(clock: FixedClock):
    """Factory for evidence matching the scenario, timestamped by the clock."""

    def factory(**overrides) -> AttendanceEvidence:
        fields = dict(
            user_id=USER_ID,
            latitude=-6.2000,
            longitude=106.8166,
            wifi_ssid=SCHOOL_SSID,
            fingerprint_hash=FINGERPRINT,
            timestamp_millis=int(clock().timestamp() * 1000)
        )
        fields.update(overrides)
        return AttendanceEvidence(**fields)

    return factory


@pytest.fixture
def face_provider() -> FakeProvider:
    return FakeProvider("fake-vision", result=matched_result("fake-vision"))


@pytest.fixture
def flow(db, clock, school, enrolled, face_provider) -> AttendanceFlow:
    chain = FaceVerificationChain([face_provider], provider_timeout=1.0, budget=2.0)
    return AttendanceFlow(db, chain=chain, clock=clock)
