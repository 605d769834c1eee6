"""
Biometric enrollment store.

One EnrolledBiometric row per user, replaced wholesale on re-enrollment and
deleted on an admin-approved reset.
"""

import logging
from typing import Optional

from .models import EnrolledBiometric, utcnow
from .db_manager import get_db_manager, DatabaseManager
from ..schemas import BiometricProfile

logger = logging.getLogger(__name__)


class BiometricRegistry:

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db = db_manager or get_db_manager()

    def enroll(
        self,
        user_id: str,
        fingerprint_hash: str,
        reference_photo_url: str,
        credential_id: Optional[str] = None
    ) -> BiometricProfile:
        """Create or replace a user's enrollment."""
        with self.db.get_session() as session:
            existing = session.query(EnrolledBiometric).filter_by(user_id=user_id).first()
            if existing:
                session.delete(existing)
                session.flush()

            session.add(EnrolledBiometric(
                user_id=user_id,
                fingerprint_hash=fingerprint_hash,
                reference_photo_url=reference_photo_url,
                credential_id=credential_id,
                enrolled_at=utcnow()
            ))
            session.commit()

        action = "Re-enrolled" if existing else "Enrolled"
        logger.info(f"[BIOMETRIC] {action} user {user_id}")
        return BiometricProfile(
            user_id=user_id,
            fingerprint_hash=fingerprint_hash,
            reference_photo_url=reference_photo_url,
            credential_id=credential_id
        )

    def get_profile(self, user_id: str) -> Optional[BiometricProfile]:
        """Snapshot of a user's enrollment, or None if not enrolled."""
        with self.db.get_session() as session:
            row = session.query(EnrolledBiometric).filter_by(user_id=user_id).first()
            if row is None:
                return None
            return BiometricProfile(
                user_id=row.user_id,
                fingerprint_hash=row.fingerprint_hash,
                reference_photo_url=row.reference_photo_url,
                credential_id=row.credential_id
            )

    def get_status(self, user_id: str) -> dict:
        with self.db.get_session() as session:
            row = session.query(EnrolledBiometric).filter_by(user_id=user_id).first()
            if row is None:
                return {"user_id": user_id, "enrolled": False}
            return {"enrolled": True, **row.to_dict()}

    def reset(self, user_id: str) -> bool:
        """
        Delete a user's enrollment.

        Returns:
            True if an enrollment existed
        """
        with self.db.get_session() as session:
            deleted = session.query(EnrolledBiometric).filter_by(user_id=user_id).delete()
            session.commit()

        if deleted:
            logger.info(f"[BIOMETRIC] Reset enrollment for {user_id}")
        else:
            logger.warning(f"[BIOMETRIC] Reset requested for {user_id} but no enrollment exists")
        return bool(deleted)
