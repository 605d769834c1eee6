"""
Face verification: provider chain, providers and acceptance policy.
"""

from .models import FaceVerificationResult, ProviderAttempt
from .providers import (
    FaceVerificationProvider, OpenAIVisionProvider, GeminiVisionProvider, PerceptualHashProvider
)
from .local_provider import InsightFaceProvider
from .chain import FaceVerificationChain
from .service import (
    FaceAcceptancePolicy, FaceVerificationService, FaceVerificationOutcome,
    ReferencePhotoStore, build_default_chain, build_face_service
)

__all__ = [
    'FaceVerificationResult',
    'ProviderAttempt',
    'FaceVerificationProvider',
    'OpenAIVisionProvider',
    'GeminiVisionProvider',
    'PerceptualHashProvider',
    'InsightFaceProvider',
    'FaceVerificationChain',
    'FaceAcceptancePolicy',
    'FaceVerificationService',
    'FaceVerificationOutcome',
    'ReferencePhotoStore',
    'build_default_chain',
    'build_face_service'
]
