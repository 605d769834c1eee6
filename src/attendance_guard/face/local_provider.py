"""
Local Face Verification with InsightFace
========================================
Flow:
1. Detect the largest face in both photos using InsightFace (buffalo_l)
2. Extract 512D embeddings and compute cosine similarity
3. Run print/screenshot detection on the captured face crop
4. Map similarity onto the shared 0-1 match score scale

Requires the optional ``local-face`` extra (insightface, onnxruntime).
"""

import os
import asyncio
import logging
import threading
import importlib.util
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from ..errors import ProviderError
from .models import FaceVerificationResult
from .print_detector import PrintDetector, crop_with_margin, decode_image
from .providers import FaceVerificationProvider

logger = logging.getLogger(__name__)

# ============== Configuration ==============
MODELS_DIR = Path(os.environ.get("INSIGHTFACE_MODELS_DIR", Path.home() / ".insightface"))
INSIGHTFACE_MODEL_NAME = "buffalo_l"
SIMILARITY_THRESHOLD = 0.45  # Cosine similarity at which two faces are the same person
MATCH_SCORE_AT_THRESHOLD = 0.70  # Match score that SIMILARITY_THRESHOLD maps to
# ==========================================


def get_onnx_providers() -> list:
    """
    Get available ONNX Runtime execution providers.
    Only includes CUDAExecutionProvider if ONNX Runtime reports it.
    """
    providers = []

    try:
        import onnxruntime as ort
        if 'CUDAExecutionProvider' in ort.get_available_providers():
            providers.append('CUDAExecutionProvider')
            logger.info("CUDA is available - using GPU acceleration")
    except Exception as e:
        logger.debug(f"CUDA availability check failed: {e}")

    # Always include CPU as fallback
    providers.append('CPUExecutionProvider')
    return providers


def cosine_similarity(embedding1: np.ndarray, embedding2: np.ndarray) -> float:
    """Calculate cosine similarity between two embeddings."""
    e1 = embedding1 / np.linalg.norm(embedding1)
    e2 = embedding2 / np.linalg.norm(embedding2)
    return float(np.dot(e1, e2))


def similarity_to_match_score(similarity: float) -> float:
    """
    Piecewise-linear map from cosine similarity to a 0-1 match score.
    SIMILARITY_THRESHOLD lands exactly on MATCH_SCORE_AT_THRESHOLD.
    """
    if similarity <= 0:
        return 0.0
    if similarity < SIMILARITY_THRESHOLD:
        return MATCH_SCORE_AT_THRESHOLD * similarity / SIMILARITY_THRESHOLD
    span = 1.0 - SIMILARITY_THRESHOLD
    score = MATCH_SCORE_AT_THRESHOLD + (1.0 - MATCH_SCORE_AT_THRESHOLD) * (similarity - SIMILARITY_THRESHOLD) / span
    return min(score, 1.0)


class InsightFaceProvider(FaceVerificationProvider):
    """
    Embedding comparison with InsightFace, run in a worker thread.
    The model is loaded on first use.
    """

    name = "insightface-local"

    def __init__(self, models_dir: Optional[Path] = None, print_detector: Optional[PrintDetector] = None):
        self.models_dir = Path(models_dir) if models_dir else MODELS_DIR
        self.print_detector = print_detector or PrintDetector()
        self.face_analyzer = None
        self._load_lock = threading.Lock()
        self._load_failed = False

    def available(self) -> bool:
        if self._load_failed:
            return False
        return importlib.util.find_spec("insightface") is not None

    def _load_model(self):
        """
        Load InsightFace model (buffalo_l) for face recognition.
        Buffalo_l produces 512-dimensional face embeddings.
        """
        with self._load_lock:
            if self.face_analyzer is not None:
                return self.face_analyzer

            try:
                from insightface.app import FaceAnalysis

                providers = get_onnx_providers()
                logger.info(f"[FACE] Loading InsightFace model: {INSIGHTFACE_MODEL_NAME} ({providers})")

                analyzer = FaceAnalysis(
                    name=INSIGHTFACE_MODEL_NAME,
                    root=str(self.models_dir),
                    providers=providers
                )
                # ctx_id: -1 for CPU, 0 for GPU
                ctx_id = 0 if 'CUDAExecutionProvider' in providers else -1
                analyzer.prepare(ctx_id=ctx_id, det_size=(320, 320), det_thresh=0.3)

                self.face_analyzer = analyzer
                logger.info("[FACE] InsightFace model loaded successfully")
                return analyzer

            except Exception as e:
                self._load_failed = True
                logger.error(f"[FACE] Failed to load InsightFace model: {e}")
                raise ProviderError(self.name, f"model unavailable: {e}")

    def _largest_face(self, image: np.ndarray):
        faces = self.face_analyzer.get(image)
        if not faces:
            return None
        # The largest face is most likely the main subject
        return max(faces, key=lambda f: (f.bbox[2] - f.bbox[0]) * (f.bbox[3] - f.bbox[1]))

    @staticmethod
    def _bbox(face) -> Tuple[int, int, int, int]:
        bbox = face.bbox.astype(int)
        return int(bbox[0]), int(bbox[1]), int(bbox[2]), int(bbox[3])

    def _verify_sync(self, captured: bytes, reference: bytes) -> FaceVerificationResult:
        self._load_model()

        captured_img = decode_image(captured)
        if captured_img is None:
            raise ProviderError(self.name, "captured photo could not be decoded")
        reference_img = decode_image(reference)
        if reference_img is None:
            raise ProviderError(self.name, "reference photo could not be decoded")

        captured_face = self._largest_face(captured_img)
        if captured_face is None:
            return FaceVerificationResult(
                success=True,
                face_detected=False,
                provider_name=self.name,
                reasoning="No face detected in captured photo"
            )

        reference_face = self._largest_face(reference_img)
        if reference_face is None:
            raise ProviderError(self.name, "no face found in reference photo")

        if captured_face.embedding is None or reference_face.embedding is None:
            raise ProviderError(self.name, "failed to extract face embedding")

        similarity = cosine_similarity(captured_face.embedding, reference_face.embedding)
        match_score = similarity_to_match_score(similarity)

        face_region = crop_with_margin(captured_img, self._bbox(captured_face))
        looks_printed, print_score, _ = self.print_detector.is_print(face_region)

        det_score = float(getattr(captured_face, "det_score", 0.0))
        logger.info(f"[FACE] InsightFace similarity={similarity:.3f} score={match_score:.2f} print={print_score:.2f}")

        return FaceVerificationResult(
            success=True,
            face_detected=True,
            match_score=round(match_score, 4),
            is_live=not looks_printed,
            is_fake=looks_printed,
            confidence=round(min(max(det_score, 0.0), 1.0), 4),
            provider_name=self.name,
            reasoning=f"Cosine similarity {similarity:.3f}, print score {print_score:.2f}",
            details={"similarity": round(similarity, 4), "print_score": round(print_score, 4)}
        )

    async def execute(self, captured: bytes, reference: bytes, timeout: float) -> FaceVerificationResult:
        return await asyncio.to_thread(self._verify_sync, captured, reference)
