"""
Attendance Flow
===============
Entry points used by the API and the CLI.

- validate_security: pre-photo checks, read-only
- verify_face: provider chain against the enrolled reference, logged
- submit: re-validates, verifies the face, then commits the check-in or
  check-out; any rejection leaves the attendance records untouched
"""

import logging
from datetime import date, datetime
from typing import Optional, Callable

from .database.attendance_service import AttendanceService
from .database.audit_log import AuditLog
from .database.biometric_registry import BiometricRegistry
from .database.db_manager import DatabaseManager, get_db_manager
from .database.models import AttendanceType, EventSeverity
from .errors import EnrollmentExistsError
from .face.chain import FaceVerificationChain
from .face.service import FaceVerificationOutcome, build_face_service
from .schemas import AttendanceEvidence, BiometricProfile
from .security.pipeline import SecurityValidationPipeline
from .security.results import Action, ValidationResult, ViolationCode

logger = logging.getLogger(__name__)

FACE_REJECTION_SEVERITY = {
    ViolationCode.FACE_NOT_MATCHED: EventSeverity.HIGH,
    ViolationCode.ALL_PROVIDERS_FAILED: EventSeverity.CRITICAL,
    ViolationCode.USER_MISMATCH: EventSeverity.HIGH,
    ViolationCode.NO_BIOMETRIC: EventSeverity.MEDIUM,
}


class AttendanceFlow:
    """
    Usage:
        flow = AttendanceFlow()
        result = flow.validate_security(evidence, session_user_id="u-1")
        if result.success:
            outcome = await flow.submit(evidence, photo_bytes, session_user_id="u-1")
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        chain: Optional[FaceVerificationChain] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db_manager or get_db_manager()
        self.audit = AuditLog(self.db)
        self.biometrics = BiometricRegistry(self.db)
        self.attendance = AttendanceService(self.db, clock=clock)
        self.pipeline = SecurityValidationPipeline.from_database(self.db, attendance=self.attendance, audit=self.audit)
        self.face = build_face_service(self.db, chain=chain, audit=self.audit)

    def validate_security(self, evidence: AttendanceEvidence, session_user_id: str) -> ValidationResult:
        return self.pipeline.validate(evidence, session_user_id)

    async def verify_face(self, photo: bytes, user_id: str, session_user_id: str) -> FaceVerificationOutcome:
        return await self.face.verify_face(photo, user_id, session_user_id)

    async def submit(self, evidence: AttendanceEvidence, photo: bytes, session_user_id: str) -> ValidationResult:
        """
        Commit one attendance step.

        Raises:
            AttendanceConflictError: a concurrent submission committed first
        """
        security = self.validate_security(evidence, session_user_id)
        if not security.success:
            return security

        outcome = await self.verify_face(photo, evidence.user_id, session_user_id)
        if not outcome.verified:
            code = outcome.error_code or ViolationCode.FACE_NOT_MATCHED
            logger.warning(f"[ATTENDANCE] Face rejected for {evidence.user_id}: {outcome.reasons}")
            return ValidationResult.reject(
                code,
                FACE_REJECTION_SEVERITY.get(code, EventSeverity.HIGH),
                Action.RETRY_PHOTO,
                "; ".join(outcome.reasons) or "Face verification failed",
                security.security_score,
                warnings=security.warnings,
                distance_meters=security.distance_meters,
                data={"face": outcome.to_dict()}
            )

        day = date.fromisoformat(security.data["attendance_date"])
        face_result = outcome.result

        if security.attendance_type == AttendanceType.CHECK_IN.value:
            committed = self.attendance.commit_check_in(
                evidence, day,
                face_match_score=face_result.match_score,
                face_provider=face_result.provider_name
            )
            for record_id in committed["auto_closed_ids"]:
                self.audit.log_security_event(
                    evidence.user_id, "auto_closed_record", EventSeverity.INFO,
                    "Open record from an earlier day closed at end of day",
                    {"record_id": record_id}
                )
        else:
            committed = self.attendance.commit_check_out(evidence.user_id, day)

        logger.info(f"[ATTENDANCE] SUCCESS: {security.attendance_type} recorded for {evidence.user_id} on {day}")

        return ValidationResult(
            success=True,
            action=Action.ATTENDANCE_RECORDED,
            security_score=security.security_score,
            warnings=security.warnings,
            attendance_type=security.attendance_type,
            distance_meters=security.distance_meters,
            data={
                "record": committed["record"],
                "face": {
                    "provider_name": face_result.provider_name,
                    "match_score": face_result.match_score,
                    "confidence": face_result.confidence
                }
            }
        )

    # ============== Enrollment ==============

    def enroll(self, user_id: str, fingerprint_hash: str, reference_photo_url: str,
               credential_id: Optional[str] = None) -> BiometricProfile:
        existing = self.biometrics.get_profile(user_id)
        profile = self.biometrics.enroll(user_id, fingerprint_hash, reference_photo_url, credential_id)
        if existing:
            self.audit.log_security_event(
                user_id, "biometric_reenrolled", EventSeverity.WARNING,
                "Biometric enrollment replaced"
            )
        return profile

    def enroll_self(self, user_id: str, fingerprint_hash: str, reference_photo_url: str,
                    credential_id: Optional[str] = None) -> BiometricProfile:
        """
        Self-service enrollment from the user API.
        Replacing an existing enrollment needs an admin reset first.

        Raises:
            EnrollmentExistsError: the user is already enrolled
            InvalidEvidenceError: the reference photo source is not acceptable
        """
        if self.biometrics.get_profile(user_id) is not None:
            logger.warning(f"[BIOMETRIC] Re-enrollment attempt by {user_id} without admin reset")
            self.audit.log_security_event(
                user_id, "reenrollment_blocked", EventSeverity.WARNING,
                "Self-service re-enrollment refused, admin reset required"
            )
            raise EnrollmentExistsError(f"{user_id} is already enrolled, ask an admin to reset the enrollment")

        self.face.reference_store.check_user_supplied(reference_photo_url)
        return self.enroll(user_id, fingerprint_hash, reference_photo_url, credential_id)

    def reset_enrollment(self, user_id: str, admin_id: str) -> bool:
        removed = self.biometrics.reset(user_id)
        if removed:
            self.audit.log_security_event(
                user_id, "biometric_reset", EventSeverity.WARNING,
                f"Enrollment reset by {admin_id}", {"admin_id": admin_id}
            )
        return removed

    async def close(self):
        await self.face.close()
