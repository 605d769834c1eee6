"""
Validation result types
=======================
Machine-readable codes, suggested actions and the structured result every
validator stage contributes to.
"""

from enum import Enum
from typing import Optional, List, Dict, Any

from ..database.models import EventSeverity


class ViolationCode(str, Enum):
    """Hard rejection codes."""
    USER_MISMATCH = "USER_MISMATCH"
    NO_ACTIVE_CONFIG = "NO_ACTIVE_CONFIG"
    WIFI_NOT_ALLOWED = "WIFI_NOT_ALLOWED"
    IP_NOT_IN_WHITELIST = "IP_NOT_IN_WHITELIST"
    NOT_ON_SCHOOL_NETWORK = "NOT_ON_SCHOOL_NETWORK"
    OUTSIDE_RADIUS = "OUTSIDE_RADIUS"
    FAKE_GPS_DETECTED = "FAKE_GPS_DETECTED"
    GPS_ACCURACY_LOW = "GPS_ACCURACY_LOW"
    FINGERPRINT_MISMATCH = "FINGERPRINT_MISMATCH"
    NO_BIOMETRIC = "NO_BIOMETRIC"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"
    FACE_NOT_MATCHED = "FACE_NOT_MATCHED"


class WarningCode(str, Enum):
    """Non-rejecting findings."""
    NEAR_BOUNDARY = "NEAR_BOUNDARY"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
    PERMISSIVE_NETWORK = "PERMISSIVE_NETWORK"


class Action(str, Enum):
    """What the client should do next."""
    PROCEED_PHOTO = "PROCEED_PHOTO"
    BLOCK_ATTENDANCE = "BLOCK_ATTENDANCE"
    SHOW_SETUP_ERROR = "SHOW_SETUP_ERROR"
    REDIRECT_SETUP = "REDIRECT_SETUP"
    SHOW_COMPLETED = "SHOW_COMPLETED"
    REDIRECT_LOGIN = "REDIRECT_LOGIN"
    RETRY_PHOTO = "RETRY_PHOTO"
    ATTENDANCE_RECORDED = "ATTENDANCE_RECORDED"


# Score deductions applied by the pipeline
SCORE_DEDUCTIONS = {
    ViolationCode.WIFI_NOT_ALLOWED: 50,
    ViolationCode.IP_NOT_IN_WHITELIST: 50,
    ViolationCode.NOT_ON_SCHOOL_NETWORK: 50,
    ViolationCode.OUTSIDE_RADIUS: 50,
    ViolationCode.GPS_ACCURACY_LOW: 30,
    ViolationCode.FINGERPRINT_MISMATCH: 30,
    ViolationCode.NO_BIOMETRIC: 40,
    WarningCode.NEAR_BOUNDARY: 10,
    WarningCode.SUSPICIOUS_PATTERN: 20,
}

# Suggested remedy shown with each rejection
REMEDIES = {
    ViolationCode.USER_MISMATCH: "Sign in again with your own account.",
    ViolationCode.NO_ACTIVE_CONFIG: "Contact the administrator to configure the school location.",
    ViolationCode.WIFI_NOT_ALLOWED: "Connect to the school WiFi network and try again.",
    ViolationCode.IP_NOT_IN_WHITELIST: "Connect to the school network and try again.",
    ViolationCode.NOT_ON_SCHOOL_NETWORK: "Turn off mobile data and connect to the school WiFi.",
    ViolationCode.OUTSIDE_RADIUS: "Move inside the school area and try again.",
    ViolationCode.FAKE_GPS_DETECTED: "Disable mock location apps and use the device GPS.",
    ViolationCode.GPS_ACCURACY_LOW: "Enable high accuracy location and wait for a better GPS fix.",
    ViolationCode.FINGERPRINT_MISMATCH: "Use the device you enrolled with, or ask an administrator to reset it.",
    ViolationCode.NO_BIOMETRIC: "Complete biometric enrollment first.",
    ViolationCode.ALREADY_COMPLETED: "Attendance for today is complete. See you tomorrow.",
    ViolationCode.ALL_PROVIDERS_FAILED: "Face verification is temporarily unavailable. Try again shortly.",
    ViolationCode.FACE_NOT_MATCHED: "Retake the photo facing the camera in good light.",
}


class SecurityScore:
    """
    Audit score that starts at 100 and only goes down.
    Never used to decide pass or fail.
    """

    def __init__(self, start: int = 100):
        self.value = start

    def deduct(self, code) -> int:
        self.value = max(0, self.value - SCORE_DEDUCTIONS.get(code, 0))
        return self.value

    def zero(self) -> int:
        self.value = 0
        return self.value


class ValidationResult:
    """
    Result of a validation stage or of the whole pipeline.
    Provides a structured response for API endpoints.
    """

    def __init__(
        self,
        success: bool,
        action: Action,
        security_score: int = 100,
        violations: Optional[List[ViolationCode]] = None,
        warnings: Optional[List[WarningCode]] = None,
        severity: Optional[EventSeverity] = None,
        reason: Optional[str] = None,
        remedy: Optional[str] = None,
        attendance_type: Optional[str] = None,
        distance_meters: Optional[float] = None,
        data: Optional[Dict[str, Any]] = None
    ):
        self.success = success
        self.action = action
        self.security_score = security_score
        self.violations = list(violations or [])
        self.warnings = list(warnings or [])
        self.severity = severity
        self.reason = reason
        self.remedy = remedy
        self.attendance_type = attendance_type
        self.distance_meters = distance_meters
        self.data = data or {}

    @classmethod
    def reject(
        cls,
        violation: ViolationCode,
        severity: EventSeverity,
        action: Action,
        reason: str,
        security_score: int,
        warnings: Optional[List[WarningCode]] = None,
        distance_meters: Optional[float] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> "ValidationResult":
        return cls(
            success=False,
            action=action,
            security_score=security_score,
            violations=[violation],
            warnings=warnings,
            severity=severity,
            reason=reason,
            remedy=REMEDIES.get(violation),
            distance_meters=distance_meters,
            data=data
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "success": self.success,
            "action": self.action.value,
            "security_score": self.security_score,
            "violations": [v.value for v in self.violations],
            "warnings": [w.value for w in self.warnings]
        }

        if self.severity:
            result["severity"] = self.severity.value
        if self.reason:
            result["reason"] = self.reason
        if self.remedy:
            result["remedy"] = self.remedy
        if self.attendance_type:
            result["attendance_type"] = self.attendance_type
        if self.distance_meters is not None:
            result["distance_meters"] = round(self.distance_meters, 1)
        if self.data:
            result["data"] = self.data

        return result

    def __eq__(self, other):
        if not isinstance(other, ValidationResult):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<ValidationResult(success={self.success}, action={self.action.value}, violations={self.violations})>"
