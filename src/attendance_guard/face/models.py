"""
Face verification result models.
"""

from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field


class ProviderAttempt(BaseModel):
    """One provider invocation inside a chain run."""
    provider_name: str
    outcome: str = Field(..., description="success, unsuccessful, timeout, error, skipped or cancelled")
    reason: Optional[str] = None
    elapsed_ms: float = 0.0


class FaceVerificationResult(BaseModel):
    """Uniform result returned by every face verification provider."""
    success: bool = Field(..., description="Provider produced a usable verdict")
    face_detected: bool = False
    match_score: float = Field(0.0, ge=0.0, le=1.0)
    is_live: bool = False
    is_fake: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    provider_name: str
    reasoning: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    attempts: List[ProviderAttempt] = Field(default_factory=list)

    @classmethod
    def failure(cls, provider_name: str, reasoning: str, **details) -> "FaceVerificationResult":
        return cls(success=False, provider_name=provider_name, reasoning=reasoning, details=details)
