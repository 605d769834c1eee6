"""
Append-only audit trail
=======================
Security events and face verification outcomes.

Writes are fire-and-forget: a failing write is logged and swallowed so an
audit outage never turns into a validation failure.
"""

import logging
from typing import Optional, List

from .models import SecurityEvent, FaceVerificationLog, EventSeverity
from .db_manager import get_db_manager, DatabaseManager

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Writer for the security_events and face_verification_logs tables.

    Usage:
        audit = AuditLog()
        audit.log_security_event("u-1", "fingerprint_mismatch", EventSeverity.HIGH, "Device changed")
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db = db_manager or get_db_manager()

    def log_security_event(
        self,
        user_id: Optional[str],
        event_type: str,
        severity: EventSeverity,
        description: str,
        metadata: Optional[dict] = None
    ) -> Optional[int]:
        """
        Append a security event.

        Returns:
            Id of the new row, or None if the write failed
        """
        try:
            with self.db.get_session() as session:
                event = SecurityEvent(
                    user_id=user_id,
                    event_type=event_type,
                    severity=EventSeverity(severity).value,
                    description=description,
                    event_metadata=metadata or {}
                )
                session.add(event)
                session.commit()
                logger.info(f"[SECURITY] Event {event_type} ({event.severity}) for {user_id}: {description}")
                return event.id
        except Exception as e:
            logger.error(f"[SECURITY] Failed to record event {event_type} for {user_id}: {e}")
            return None

    def log_face_verification(self, user_id: str, result, verified: bool, reasons: List[str]) -> Optional[int]:
        """
        Append a face verification outcome to the learning log.

        Args:
            user_id: User the verification was for
            result: FaceVerificationResult returned by the provider chain
            verified: Whether the acceptance policy accepted the result
            reasons: Every reason the policy rejected it (empty when verified)

        Returns:
            Id of the new row, or None if the write failed
        """
        try:
            with self.db.get_session() as session:
                entry = FaceVerificationLog(
                    user_id=user_id,
                    provider_name=result.provider_name,
                    success=result.success,
                    verified=verified,
                    face_detected=result.face_detected,
                    match_score=result.match_score,
                    is_live=result.is_live,
                    is_fake=result.is_fake,
                    confidence=result.confidence,
                    reasoning=result.reasoning,
                    reasons=list(reasons),
                    attempts=[attempt.model_dump() for attempt in result.attempts]
                )
                session.add(entry)
                session.commit()
                logger.debug(f"[FACE] Logged verification {entry.id} for {user_id} via {result.provider_name}")
                return entry.id
        except Exception as e:
            logger.error(f"[FACE] Failed to log verification for {user_id}: {e}")
            return None

    def recent_security_events(self, user_id: Optional[str] = None, limit: int = 50) -> list:
        """Most recent security events, newest first."""
        with self.db.get_session() as session:
            query = session.query(SecurityEvent)
            if user_id:
                query = query.filter(SecurityEvent.user_id == user_id)
            events = query.order_by(SecurityEvent.id.desc()).limit(limit).all()
            return [e.to_dict() for e in events]

    def face_verification_count(self, user_id: str) -> int:
        with self.db.get_session() as session:
            return session.query(FaceVerificationLog).filter_by(user_id=user_id).count()
