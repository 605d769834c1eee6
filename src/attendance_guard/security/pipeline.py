"""
Security Validation Pipeline
============================
Orchestrates every pre-photo check into one admission decision.

Order (short-circuits on the first hard rejection):
0. Caller user id must equal the session user id
1. Exactly one active location config   (CRITICAL, fail-closed)
2. Network identity                     (HIGH)
3. GPS accuracy and geofence            (HIGH, near boundary is a warning)
4. Biometric enrollment / device match  (MEDIUM / HIGH)
5. Attendance state                     (INFO when already completed)
6. Anomaly score                        (warning only)

Pass/fail depends only on violations. The security score is an audit signal.
"""

import logging
from typing import Optional

from ..database.attendance_service import AttendanceService
from ..database.audit_log import AuditLog
from ..database.biometric_registry import BiometricRegistry
from ..database.db_manager import DatabaseManager, LocationPolicyLoader
from ..database.models import EventSeverity
from ..schemas import AttendanceEvidence
from .anomaly import AnomalyScorer
from .device import DeviceIdentityMatcher
from .geofence import GeofenceValidator
from .network import NetworkIdentityValidator
from .results import Action, SecurityScore, ValidationResult, ViolationCode, WarningCode

logger = logging.getLogger(__name__)


class SecurityValidationPipeline:
    """
    Usage:
        pipeline = SecurityValidationPipeline.from_database(db)
        result = pipeline.validate(evidence, session_user_id="u-1")
        if result.success:
            # client captures the photo
    """

    def __init__(
        self,
        location_loader: LocationPolicyLoader,
        biometrics: BiometricRegistry,
        attendance: AttendanceService,
        anomaly_scorer: AnomalyScorer,
        audit: AuditLog,
        geofence: Optional[GeofenceValidator] = None,
        network: Optional[NetworkIdentityValidator] = None,
        device: Optional[DeviceIdentityMatcher] = None,
        anomaly_warning_threshold: int = 70
    ):
        self.location_loader = location_loader
        self.biometrics = biometrics
        self.attendance = attendance
        self.anomaly_scorer = anomaly_scorer
        self.audit = audit
        self.geofence = geofence or GeofenceValidator()
        self.network = network or NetworkIdentityValidator()
        self.device = device or DeviceIdentityMatcher()
        self.anomaly_warning_threshold = anomaly_warning_threshold

    @classmethod
    def from_database(cls, db: DatabaseManager, attendance: Optional[AttendanceService] = None,
                      audit: Optional[AuditLog] = None) -> "SecurityValidationPipeline":
        """Build a pipeline with thresholds read from system_config."""
        attendance = attendance or AttendanceService(db)
        return cls(
            location_loader=LocationPolicyLoader(db),
            biometrics=BiometricRegistry(db),
            attendance=attendance,
            anomaly_scorer=AnomalyScorer(
                attendance,
                history_days=db.get_config_int("anomaly_history_days", 7),
                rapid_repeat_minutes=db.get_config_int("rapid_repeat_minutes", 5),
                night_start_hour=db.get_config_int("night_start_hour", 23),
                night_end_hour=db.get_config_int("night_end_hour", 5)
            ),
            audit=audit or AuditLog(db),
            geofence=GeofenceValidator(
                near_boundary_ratio=db.get_config_float("near_boundary_ratio", 0.8),
                fake_accuracy_max_m=db.get_config_float("gps_fake_accuracy_max_m", 10000.0),
                accuracy_required_m=db.get_config_float("gps_accuracy_required_m", 20.0)
            ),
            anomaly_warning_threshold=db.get_config_int("anomaly_warning_threshold", 70)
        )

    def validate(self, evidence: AttendanceEvidence, session_user_id: str) -> ValidationResult:
        """
        Run every check for one attendance attempt.

        Read-only with respect to attendance state: identical evidence with no
        intervening commit yields an identical result.

        Returns:
            ValidationResult with PROCEED_PHOTO on success, otherwise the first
            hard rejection
        """
        user_id = evidence.user_id
        score = SecurityScore()
        warnings = []

        logger.info(f"[SECURITY] Validating attendance for {user_id}")

        # Step 0: Caller must be the authenticated user
        if user_id != session_user_id:
            self.audit.log_security_event(
                session_user_id, "user_mismatch", EventSeverity.HIGH,
                "Submitted user id does not match the session",
                {"submitted_user_id": user_id}
            )
            return self._reject(
                ViolationCode.USER_MISMATCH, EventSeverity.HIGH, Action.REDIRECT_LOGIN,
                "Submitted user does not match the signed-in user", score.zero(), warnings
            )

        # Step 1: Active location config (fail-closed)
        policy = self.location_loader.load()
        if policy is None:
            self.audit.log_security_event(
                user_id, "config_missing", EventSeverity.CRITICAL,
                "No single active location config; attendance blocked"
            )
            return self._reject(
                ViolationCode.NO_ACTIVE_CONFIG, EventSeverity.CRITICAL, Action.SHOW_SETUP_ERROR,
                "Attendance location is not configured", score.zero(), warnings
            )

        # Step 2: Network identity
        network = self.network.validate(evidence.wifi_ssid, evidence.ip_address, evidence.connection_type, policy)
        if not network.ok:
            score.deduct(network.violation)
            return self._reject(
                network.violation, EventSeverity.HIGH, Action.BLOCK_ATTENDANCE,
                network.reason, score.value, warnings, data={"network_method": network.method}
            )
        if network.permissive:
            warnings.append(WarningCode.PERMISSIVE_NETWORK)
            self.audit.log_security_event(
                user_id, "permissive_mode_access", EventSeverity.WARNING,
                "Accepted through the 0.0.0.0/0 permissive IP range",
                {"ip_address": evidence.ip_address}
            )

        # Step 3a: GPS accuracy screening
        accuracy = self.geofence.check_accuracy(evidence.location_accuracy)
        if accuracy.verdict == "fake":
            self.audit.log_security_event(
                user_id, "fake_gps_detected", EventSeverity.CRITICAL,
                f"Reported GPS accuracy {accuracy.accuracy}m looks spoofed",
                {"accuracy": accuracy.accuracy, "latitude": evidence.latitude, "longitude": evidence.longitude}
            )
            return self._reject(
                ViolationCode.FAKE_GPS_DETECTED, EventSeverity.CRITICAL, Action.BLOCK_ATTENDANCE,
                "Fake GPS detected", score.zero(), warnings
            )
        if accuracy.verdict == "low":
            score.deduct(ViolationCode.GPS_ACCURACY_LOW)
            return self._reject(
                ViolationCode.GPS_ACCURACY_LOW, EventSeverity.HIGH, Action.BLOCK_ATTENDANCE,
                f"GPS accuracy {accuracy.accuracy:.0f}m is too low "
                f"(required {self.geofence.accuracy_required_m:.0f}m)",
                score.value, warnings
            )

        # Step 3b: Geofence
        geofence = self.geofence.is_within(evidence.latitude, evidence.longitude, policy)
        if not geofence.ok:
            score.deduct(ViolationCode.OUTSIDE_RADIUS)
            return self._reject(
                ViolationCode.OUTSIDE_RADIUS, EventSeverity.HIGH, Action.BLOCK_ATTENDANCE,
                f"You are {geofence.distance_meters:.0f}m from {policy.location_name} "
                f"(allowed {policy.radius_meters:.0f}m)",
                score.value, warnings, distance_meters=geofence.distance_meters
            )
        if geofence.near_boundary:
            warnings.append(WarningCode.NEAR_BOUNDARY)
            score.deduct(WarningCode.NEAR_BOUNDARY)

        # Step 4: Enrollment and device identity
        profile = self.biometrics.get_profile(user_id)
        if profile is None:
            score.deduct(ViolationCode.NO_BIOMETRIC)
            return self._reject(
                ViolationCode.NO_BIOMETRIC, EventSeverity.MEDIUM, Action.REDIRECT_SETUP,
                "Biometric enrollment required before attendance",
                score.value, warnings, distance_meters=geofence.distance_meters
            )

        if not self.device.match(evidence.fingerprint_hash, profile.fingerprint_hash):
            score.deduct(ViolationCode.FINGERPRINT_MISMATCH)
            self.audit.log_security_event(
                user_id, "fingerprint_mismatch", EventSeverity.HIGH,
                "Device fingerprint does not match enrollment",
                {
                    "submitted": self.device.mask(evidence.fingerprint_hash),
                    "enrolled": self.device.mask(profile.fingerprint_hash)
                }
            )
            return self._reject(
                ViolationCode.FINGERPRINT_MISMATCH, EventSeverity.HIGH, Action.BLOCK_ATTENDANCE,
                "This device is not the one you enrolled with",
                score.value, warnings, distance_meters=geofence.distance_meters
            )

        # Step 5: Attendance state
        proposal = self.attendance.propose_action(user_id, self.attendance.today())
        if proposal.is_completed:
            return self._reject(
                ViolationCode.ALREADY_COMPLETED, EventSeverity.INFO, Action.SHOW_COMPLETED,
                "Attendance already completed today",
                score.value, warnings, distance_meters=geofence.distance_meters,
                data={"attendance_date": proposal.attendance_date.isoformat()}
            )

        # Step 6: Anomaly score (never rejects)
        report = self.anomaly_scorer.score(user_id, evidence)
        if report.score > self.anomaly_warning_threshold:
            warnings.append(WarningCode.SUSPICIOUS_PATTERN)
            score.deduct(WarningCode.SUSPICIOUS_PATTERN)
            self.audit.log_security_event(
                user_id, "suspicious_pattern", EventSeverity.MEDIUM,
                f"Anomaly score {report.score} above {self.anomaly_warning_threshold}",
                report.to_dict()
            )

        logger.info(f"[SECURITY] {user_id} cleared for {proposal.attendance_type.value} "
                    f"(score={score.value}, warnings={[w.value for w in warnings]})")

        return ValidationResult(
            success=True,
            action=Action.PROCEED_PHOTO,
            security_score=score.value,
            warnings=warnings,
            attendance_type=proposal.attendance_type.value,
            distance_meters=geofence.distance_meters,
            data={
                "attendance_date": proposal.attendance_date.isoformat(),
                "location_name": policy.location_name,
                "network_method": network.method,
                "anomaly": report.to_dict()
            }
        )

    def _reject(self, violation, severity, action, reason, security_score, warnings,
                distance_meters=None, data=None) -> ValidationResult:
        logger.warning(f"[SECURITY] Rejected {violation.value} ({severity.value}): {reason}")
        return ValidationResult.reject(
            violation, severity, action, reason, security_score,
            warnings=warnings, distance_meters=distance_meters, data=data
        )
