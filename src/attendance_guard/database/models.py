"""
Database Models for Attendance Guard
====================================
SQLAlchemy ORM models for attendance validation.

Tables:
- location_config: School location, geofence radius and network allow-lists
- enrolled_biometrics: Per-user device fingerprint and reference photo
- attendance_records: One row per user per day (check-in / check-out)
- security_events: Append-only audit trail of security decisions
- face_verification_logs: Append-only learning log of face verifications
- system_config: Configurable system parameters
"""

from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Date,
    Text, JSON, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AttendanceState(str, Enum):
    """Lifecycle of a user's attendance for one day."""
    NONE = "NONE"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"


class AttendanceType(str, Enum):
    """Attendance step proposed for the current submission."""
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class EventSeverity(str, Enum):
    """Severity of a security event or rejection."""
    INFO = "INFO"
    WARNING = "WARNING"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class LocationConfig(Base):
    """
    School location configuration.
    Admin-owned; exactly one row is expected to be active.
    """
    __tablename__ = 'location_config'

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_name = Column(String(200), nullable=False, default="School")
    reference_latitude = Column(Float, nullable=False)
    reference_longitude = Column(Float, nullable=False)
    radius_meters = Column(Float, nullable=False)
    allowed_ssids = Column(JSON, nullable=False, default=list)
    allowed_ip_ranges = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<LocationConfig(id={self.id}, name={self.location_name}, active={self.is_active})>"


class EnrolledBiometric(Base):
    """
    One enrollment per user.
    Replaced wholesale on re-enrollment, deleted on admin-approved reset.
    """
    __tablename__ = 'enrolled_biometrics'

    user_id = Column(String(64), primary_key=True, index=True)
    fingerprint_hash = Column(String(256), nullable=False)
    reference_photo_url = Column(String(1024), nullable=False)
    credential_id = Column(String(512), nullable=True)
    enrolled_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<EnrolledBiometric(user={self.user_id})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "user_id": self.user_id,
            "reference_photo_url": self.reference_photo_url,
            "has_platform_credential": bool(self.credential_id),
            "enrolled_at": self.enrolled_at.isoformat() if self.enrolled_at else None
        }


class AttendanceRecord(Base):
    """
    Daily attendance record.
    Created on the first committed check-in and mutated once to add the check-out.
    """
    __tablename__ = 'attendance_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    attendance_date = Column(Date, nullable=False, index=True)
    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    wifi_ssid = Column(String(100), nullable=True)
    ip_address = Column(String(64), nullable=True)
    fingerprint_hash = Column(String(256), nullable=True)
    face_match_score = Column(Float, nullable=True)
    face_provider = Column(String(50), nullable=True)
    auto_closed = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'attendance_date', name='uq_attendance_user_date'),
    )

    def __repr__(self):
        return f"<AttendanceRecord(user={self.user_id}, date={self.attendance_date})>"

    @property
    def state(self) -> AttendanceState:
        if self.check_out_time is not None:
            return AttendanceState.COMPLETED
        return AttendanceState.CHECKED_IN

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "attendance_date": self.attendance_date.isoformat() if self.attendance_date else None,
            "check_in_time": self.check_in_time.isoformat() if self.check_in_time else None,
            "check_out_time": self.check_out_time.isoformat() if self.check_out_time else None,
            "wifi_ssid": self.wifi_ssid,
            "face_match_score": self.face_match_score,
            "face_provider": self.face_provider,
            "auto_closed": self.auto_closed,
            "state": self.state.value
        }


class SecurityEvent(Base):
    """
    Append-only audit trail of security decisions.
    Rows are never updated or deleted by the service.
    """
    __tablename__ = 'security_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    severity = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<SecurityEvent(id={self.id}, type={self.event_type}, severity={self.severity})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "severity": self.severity,
            "description": self.description,
            "metadata": self.event_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }


class FaceVerificationLog(Base):
    """
    Immutable learning log of face verification outcomes.
    Used to tune thresholds and provider order.
    """
    __tablename__ = 'face_verification_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    provider_name = Column(String(50), nullable=False)
    success = Column(Boolean, nullable=False)
    verified = Column(Boolean, nullable=False)
    face_detected = Column(Boolean, nullable=False)
    match_score = Column(Float, nullable=False)
    is_live = Column(Boolean, nullable=False)
    is_fake = Column(Boolean, nullable=False)
    confidence = Column(Float, nullable=False)
    reasoning = Column(Text, nullable=True)
    reasons = Column(JSON, nullable=True)
    attempts = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<FaceVerificationLog(id={self.id}, user={self.user_id}, provider={self.provider_name})>"


class SystemConfig(Base):
    """
    System configuration parameters.
    Allows runtime configuration without code changes.
    """
    __tablename__ = 'system_config'

    key = Column(String(100), primary_key=True)
    value = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<SystemConfig(key={self.key}, value={self.value})>"


# Default configuration values
DEFAULT_CONFIG = {
    "near_boundary_ratio": ("0.8", "Fraction of the radius beyond which a NEAR_BOUNDARY warning is raised"),
    "gps_fake_accuracy_max_m": ("10000", "Reported GPS accuracy above this (or exactly 0) is treated as spoofed"),
    "gps_accuracy_required_m": ("20", "Maximum reported GPS accuracy accepted for attendance"),
    "attendance_timezone": ("UTC", "Timezone used to decide the attendance date and local hour"),
    "location_cache_seconds": ("30", "How long the active location config snapshot is reused"),
    "anomaly_warning_threshold": ("70", "Anomaly score above this raises SUSPICIOUS_PATTERN"),
    "anomaly_history_days": ("7", "Days of committed attendance used as the behaviour baseline"),
    "rapid_repeat_minutes": ("5", "Submissions this soon after the last committed event are flagged"),
    "night_start_hour": ("23", "Start of abnormal attendance hours (24h format)"),
    "night_end_hour": ("5", "End of abnormal attendance hours (24h format)"),
    "face_match_threshold": ("0.70", "Minimum match score for an accepted face"),
    "face_confidence_threshold": ("0.70", "Minimum provider confidence for an accepted face"),
    "face_provider_timeout_seconds": ("10", "Timeout for a single face provider call"),
    "face_chain_budget_seconds": ("30", "Total time budget for the face provider chain"),
    "face_chain_mode": ("sequential", "sequential or race"),
    "face_provider_order": ("openai-vision,gemini-vision,insightface-local,phash-basic", "Face provider priority"),
    "phash_confidence": ("0.6", "Confidence reported by the perceptual hash provider"),
    "phash_max_distance": ("32", "Hamming distance at which the perceptual hash match score reaches 0"),
    "reference_photo_dir": ("", "Directory admin-enrolled reference photo files must live in (empty disables files)"),
    "reference_photo_hosts": ("", "Comma separated hosts reference photo URLs may be fetched from"),
}
