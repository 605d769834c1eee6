"""
Face Verification Service
=========================
Runs the provider chain for a user's captured photo.

Features:
- Reference photo resolved from the user's enrollment only
- Acceptance policy applied outside the chain, listing every failing reason
- Every outcome appended to the face verification learning log
"""

import base64
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable
from urllib.parse import urlparse, unquote

import aiohttp

from ..database.audit_log import AuditLog
from ..database.biometric_registry import BiometricRegistry
from ..database.db_manager import DatabaseManager
from ..errors import InvalidEvidenceError, ReferencePhotoUnavailable
from ..security.results import ViolationCode
from .chain import FaceVerificationChain, CHAIN_PROVIDER_NAME
from .local_provider import InsightFaceProvider
from .models import FaceVerificationResult
from .providers import OpenAIVisionProvider, GeminiVisionProvider, PerceptualHashProvider

logger = logging.getLogger(__name__)

MAX_PHOTO_BYTES = 10 * 1024 * 1024


class FaceAcceptancePolicy:
    """
    Accept iff a face was detected, the match score and confidence reach
    their thresholds, and the photo is not flagged as fake.
    """

    def __init__(self, match_threshold: float = 0.70, confidence_threshold: float = 0.70):
        self.match_threshold = match_threshold
        self.confidence_threshold = confidence_threshold

    def evaluate(self, result: FaceVerificationResult) -> List[str]:
        """Every reason the result is rejected; empty when accepted."""
        reasons = []
        if not result.face_detected:
            reasons.append("Face not detected in the photo")
        if result.match_score < self.match_threshold:
            reasons.append(f"Face does not match the enrolled reference ({round(result.match_score * 100)}%)")
        if result.is_fake:
            reasons.append("Photo looks like a screenshot or printed photo")
        if result.confidence < self.confidence_threshold:
            reasons.append(f"Verification confidence too low ({round(result.confidence * 100)}%)")
        return reasons


class ReferencePhotoStore:
    """
    Loads enrolled reference photos.

    Supported sources:
    - base64 data URLs
    - http(s) URLs whose host is in ``allowed_hosts``
    - file paths / file:// URLs resolving inside ``base_dir`` (admin enrollment only)

    Anything else is refused.
    """

    def __init__(self, base_dir: Optional[Path] = None, allowed_hosts: Optional[Iterable[str]] = None,
                 timeout: float = 10.0):
        self.base_dir = Path(base_dir).resolve() if base_dir else None
        self.allowed_hosts = {host.lower() for host in (allowed_hosts or [])}
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    def _check_host(self, url: str) -> str:
        host = (urlparse(url).hostname or "").lower()
        if host not in self.allowed_hosts:
            raise ReferencePhotoUnavailable(f"Reference photo host '{host}' is not allowed")
        return url

    def _resolve_path(self, url: str) -> Path:
        if self.base_dir is None:
            raise ReferencePhotoUnavailable("Reference photo files are not enabled")

        parsed = urlparse(url)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(url)
        if not path.is_absolute():
            path = self.base_dir / path
        path = path.resolve()
        if not path.is_relative_to(self.base_dir):
            raise ReferencePhotoUnavailable("Reference photo path is outside the photo directory")
        return path

    def check_user_supplied(self, url: str):
        """
        Validate a reference photo submitted through the user API.
        Only data URLs and allow-listed http(s) hosts are accepted.

        Raises:
            InvalidEvidenceError: the source is not acceptable
        """
        if url.startswith("data:"):
            return
        if urlparse(url).scheme in ("http", "https"):
            try:
                self._check_host(url)
            except ReferencePhotoUnavailable as e:
                raise InvalidEvidenceError(str(e))
            return
        raise InvalidEvidenceError("Reference photo must be a data URL or an https URL on an allowed host")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()

    async def load(self, url: str) -> bytes:
        if not url:
            raise ReferencePhotoUnavailable("No reference photo enrolled")

        if url.startswith("data:"):
            try:
                return base64.b64decode(url.split(",", 1)[1], validate=True)
            except (IndexError, ValueError) as e:
                raise ReferencePhotoUnavailable(f"Invalid data URL: {e}")

        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            self._check_host(url)
            try:
                session = await self._get_session()
                async with session.get(url, allow_redirects=False) as response:
                    if response.status != 200:
                        raise ReferencePhotoUnavailable(f"Reference photo fetch returned {response.status}")
                    return await response.read()
            except aiohttp.ClientError as e:
                raise ReferencePhotoUnavailable(f"Reference photo fetch failed: {e}")

        if parsed.scheme not in ("", "file"):
            raise ReferencePhotoUnavailable(f"Unsupported reference photo scheme '{parsed.scheme}'")

        path = self._resolve_path(url)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ReferencePhotoUnavailable(f"Reference photo not readable: {e}")


class FaceVerificationOutcome:
    """
    Result of VerifyFace.
    Provides a structured response for API endpoints.
    """

    def __init__(
        self,
        success: bool,
        verified: bool,
        reasons: Optional[List[str]] = None,
        error_code: Optional[ViolationCode] = None,
        result: Optional[FaceVerificationResult] = None,
        log_id: Optional[int] = None
    ):
        self.success = success
        self.verified = verified
        self.reasons = list(reasons or [])
        self.error_code = error_code
        self.result = result
        self.log_id = log_id

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        data: Dict[str, Any] = self.result.model_dump() if self.result else {}
        response = {
            "success": self.success,
            "verified": self.verified,
            "reasons": self.reasons,
            "data": data
        }
        if self.error_code:
            response["error_code"] = self.error_code.value
        if self.log_id:
            response["log_id"] = self.log_id
        return response


class FaceVerificationService:
    """
    Usage:
        service = FaceVerificationService(chain, biometrics, audit)
        outcome = await service.verify_face(photo_bytes, "u-1", session_user_id="u-1")
    """

    def __init__(
        self,
        chain: FaceVerificationChain,
        biometrics: BiometricRegistry,
        audit: AuditLog,
        policy: Optional[FaceAcceptancePolicy] = None,
        reference_store: Optional[ReferencePhotoStore] = None
    ):
        self.chain = chain
        self.biometrics = biometrics
        self.audit = audit
        self.policy = policy or FaceAcceptancePolicy()
        self.reference_store = reference_store or ReferencePhotoStore()

    async def verify_face(self, photo: bytes, user_id: str, session_user_id: str) -> FaceVerificationOutcome:
        """
        Verify a captured photo against the user's enrolled reference.

        Raises:
            InvalidEvidenceError: photo is empty or too large
            ReferencePhotoUnavailable: enrolled reference could not be loaded
        """
        if user_id != session_user_id:
            logger.warning(f"[FACE] Session {session_user_id} tried to verify as {user_id}")
            return FaceVerificationOutcome(
                success=False, verified=False,
                reasons=["Cannot verify photos for another user"],
                error_code=ViolationCode.USER_MISMATCH
            )

        if not photo:
            raise InvalidEvidenceError("Captured photo is empty")
        if len(photo) > MAX_PHOTO_BYTES:
            raise InvalidEvidenceError(f"Captured photo exceeds {MAX_PHOTO_BYTES} bytes")

        profile = self.biometrics.get_profile(user_id)
        if profile is None:
            return FaceVerificationOutcome(
                success=False, verified=False,
                reasons=["Biometric enrollment required"],
                error_code=ViolationCode.NO_BIOMETRIC
            )

        reference = await self.reference_store.load(profile.reference_photo_url)

        logger.info(f"[FACE] Verifying {user_id} with providers {self.chain.provider_names}")
        result = await self.chain.verify(photo, reference)

        if not result.success and result.provider_name == CHAIN_PROVIDER_NAME:
            reasons = [result.reasoning or "All face verification providers failed"]
            log_id = self.audit.log_face_verification(user_id, result, False, reasons)
            return FaceVerificationOutcome(
                success=False, verified=False, reasons=reasons,
                error_code=ViolationCode.ALL_PROVIDERS_FAILED, result=result, log_id=log_id
            )

        reasons = self.policy.evaluate(result)
        verified = not reasons
        log_id = self.audit.log_face_verification(user_id, result, verified, reasons)

        if not verified:
            logger.info(f"[FACE] {user_id} not verified: {reasons}")
            return FaceVerificationOutcome(
                success=False, verified=False, reasons=reasons,
                error_code=ViolationCode.FACE_NOT_MATCHED, result=result, log_id=log_id
            )

        logger.info(f"[FACE] {user_id} verified by {result.provider_name} ({result.match_score:.2f})")
        return FaceVerificationOutcome(success=True, verified=True, result=result, log_id=log_id)

    async def close(self):
        await self.chain.close()
        await self.reference_store.close()


# Provider factories by configured name
PROVIDER_FACTORIES = {
    OpenAIVisionProvider.name: lambda db: OpenAIVisionProvider(),
    GeminiVisionProvider.name: lambda db: GeminiVisionProvider(),
    InsightFaceProvider.name: lambda db: InsightFaceProvider(),
    PerceptualHashProvider.name: lambda db: PerceptualHashProvider(
        confidence=db.get_config_float("phash_confidence", 0.6),
        max_distance=db.get_config_int("phash_max_distance", 32)
    ),
}


def build_default_chain(db: DatabaseManager) -> FaceVerificationChain:
    """Build the provider chain from face_provider_order and the chain settings."""
    providers = []
    for name in db.get_config_list("face_provider_order", list(PROVIDER_FACTORIES)):
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning(f"[FACE] Unknown provider '{name}' in face_provider_order, skipping")
            continue
        providers.append(factory(db))

    return FaceVerificationChain(
        providers,
        provider_timeout=db.get_config_float("face_provider_timeout_seconds", 10.0),
        budget=db.get_config_float("face_chain_budget_seconds", 30.0),
        mode=db.get_config("face_chain_mode", "sequential")
    )


def build_face_service(db: DatabaseManager, chain: Optional[FaceVerificationChain] = None,
                       audit: Optional[AuditLog] = None) -> FaceVerificationService:
    return FaceVerificationService(
        chain=chain or build_default_chain(db),
        biometrics=BiometricRegistry(db),
        audit=audit or AuditLog(db),
        policy=FaceAcceptancePolicy(
            match_threshold=db.get_config_float("face_match_threshold", 0.70),
            confidence_threshold=db.get_config_float("face_confidence_threshold", 0.70)
        ),
        reference_store=ReferencePhotoStore(
            base_dir=db.get_config("reference_photo_dir") or None,
            allowed_hosts=db.get_config_list("reference_photo_hosts")
        )
    )
