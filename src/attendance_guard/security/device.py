"""
Device identity matching.

The client sends a hash of stable device and browser characteristics; it must
equal the hash stored at enrollment. There is no partial credit.
"""

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class DeviceIdentityMatcher:

    def match(self, submitted_hash: Optional[str], enrolled_hash: Optional[str]) -> bool:
        """Exact, constant-time comparison of two fingerprint hashes."""
        if not submitted_hash or not enrolled_hash:
            return False
        return hmac.compare_digest(submitted_hash.encode("utf-8"), enrolled_hash.encode("utf-8"))

    @staticmethod
    def mask(fingerprint_hash: Optional[str]) -> str:
        """Shortened hash for logs and audit metadata."""
        if not fingerprint_hash:
            return "<none>"
        return fingerprint_hash[:8] + "..." if len(fingerprint_hash) > 8 else fingerprint_hash
