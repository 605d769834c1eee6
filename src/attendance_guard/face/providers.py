"""
Face Verification Providers
===========================
Interchangeable face-match backends sharing one capability interface:

- available() -> bool: whether the provider can run right now
- async execute(captured, reference, timeout) -> FaceVerificationResult

Providers:
1. openai-vision: OpenAI chat completions with image input and JSON output
2. gemini-vision: Google Gemini generateContent with inline images
3. phash-basic: perceptual hash of the Haar-detected face + print detection

A provider raises ProviderError when it cannot produce a verdict. A verdict
that the face does not match is a successful result with a low score.
"""

import os
import json
import base64
import asyncio
import logging
from typing import Optional, Dict, Any, Tuple

import aiohttp
import imagehash
import cv2
import numpy as np
from PIL import Image

from ..errors import ProviderError
from .models import FaceVerificationResult
from .print_detector import PrintDetector, decode_image

logger = logging.getLogger(__name__)

VISION_PROMPT = """Analyze these two photos for face verification. Return only a JSON object with:
- faceDetected: boolean (is there a clear human face in the current photo?)
- matchScore: number 0-1 (how likely is it the same person as in the reference photo?)
- isLive: boolean (does it look like a real person photographed live?)
- isFake: boolean (is it a screenshot, printed photo, photo of a screen or deepfake?)
- confidence: number 0-1 (how confident are you in this assessment?)
- reasoning: short explanation

The first image is the current photo, the second is the reference photo."""


def sniff_mime_type(data: bytes) -> str:
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def _unit_interval(value: Any) -> float:
    """Coerce a provider score to [0, 1]; percentages are rescaled."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    if number > 1.0:
        number = number / 100.0
    return min(max(number, 0.0), 1.0)


def result_from_payload(provider_name: str, payload: Dict[str, Any]) -> FaceVerificationResult:
    """Map a vision model's JSON verdict onto a FaceVerificationResult."""
    def pick(*keys, default=None):
        for key in keys:
            if key in payload:
                return payload[key]
        return default

    reasoning = pick("reasoning", "details")
    if reasoning is not None and not isinstance(reasoning, str):
        reasoning = json.dumps(reasoning)

    return FaceVerificationResult(
        success=True,
        face_detected=bool(pick("faceDetected", "face_detected", default=False)),
        match_score=_unit_interval(pick("matchScore", "match_score", default=0)),
        is_live=bool(pick("isLive", "is_live", default=False)),
        is_fake=bool(pick("isFake", "is_fake", default=False)),
        confidence=_unit_interval(pick("confidence", default=0)),
        provider_name=provider_name,
        reasoning=reasoning,
    )


class FaceVerificationProvider:
    """Base class for face verification providers."""

    name = "base"

    def available(self) -> bool:
        return True

    async def execute(self, captured: bytes, reference: bytes, timeout: float) -> FaceVerificationResult:
        raise NotImplementedError

    async def close(self):
        """Release provider resources."""


class HttpVisionProvider(FaceVerificationProvider):
    """
    Base for hosted vision-model providers.
    Holds one aiohttp session, created lazily and reused across calls.
    """

    api_key_env = ""
    default_model = ""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else os.environ.get(self.api_key_env, "")
        self.model = model or self.default_model
        self.session: Optional[aiohttp.ClientSession] = None

    def available(self) -> bool:
        return bool(self.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=30)
            )
        return self.session

    async def close(self):
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def _post_json(self, url: str, body: dict, timeout: float,
                         headers: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        session = await self._get_session()
        try:
            async with session.post(
                url,
                json=body,
                headers=headers,
                params=params,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"[FACE] {self.name} returned {response.status}: {error_text[:200]}")
                    raise ProviderError(self.name, f"HTTP {response.status}")
                return await response.json()
        except aiohttp.ClientError as e:
            raise ProviderError(self.name, f"connection failed: {e}")

    def _parse_verdict(self, text: str) -> FaceVerificationResult:
        try:
            payload = json.loads(text)
        except (TypeError, ValueError):
            raise ProviderError(self.name, "response was not valid JSON")
        if not isinstance(payload, dict):
            raise ProviderError(self.name, "response JSON was not an object")
        return result_from_payload(self.name, payload)


class OpenAIVisionProvider(HttpVisionProvider):
    """OpenAI chat completions with two image inputs."""

    name = "openai-vision"
    api_key_env = "OPENAI_API_KEY"
    default_model = "gpt-4o-mini"
    url = "https://api.openai.com/v1/chat/completions"

    async def execute(self, captured: bytes, reference: bytes, timeout: float) -> FaceVerificationResult:
        def data_url(data: bytes) -> str:
            return f"data:{sniff_mime_type(data)};base64,{base64.b64encode(data).decode('ascii')}"

        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url(captured)}},
                        {"type": "image_url", "image_url": {"url": data_url(reference)}}
                    ]
                }
            ],
            "max_tokens": 500,
            "response_format": {"type": "json_object"}
        }

        data = await self._post_json(
            self.url, body, timeout,
            headers={"Authorization": f"Bearer {self.api_key}"}
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(self.name, "unexpected response shape")
        return self._parse_verdict(content)


class GeminiVisionProvider(HttpVisionProvider):
    """Google Gemini generateContent with inline image parts."""

    name = "gemini-vision"
    api_key_env = "GEMINI_API_KEY"
    default_model = "gemini-2.0-flash"
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    async def execute(self, captured: bytes, reference: bytes, timeout: float) -> FaceVerificationResult:
        def inline(data: bytes) -> dict:
            return {"inline_data": {"mime_type": sniff_mime_type(data),
                                    "data": base64.b64encode(data).decode("ascii")}}

        body = {
            "contents": [{"parts": [{"text": VISION_PROMPT}, inline(captured), inline(reference)]}],
            "generationConfig": {"responseMimeType": "application/json", "temperature": 0}
        }

        data = await self._post_json(
            f"{self.base_url}/{self.model}:generateContent", body, timeout,
            params={"key": self.api_key}
        )
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(self.name, "unexpected response shape")
        return self._parse_verdict(text)


class PerceptualHashProvider(FaceVerificationProvider):
    """
    Offline last-resort provider.

    Compares perceptual hashes of the detected face regions. The reported
    confidence is fixed and below the acceptance threshold by default, so a
    pHash verdict alone never admits attendance.
    """

    name = "phash-basic"

    def __init__(self, confidence: float = 0.6, max_distance: int = 32,
                 print_detector: Optional[PrintDetector] = None):
        self.confidence = confidence
        self.max_distance = max_distance
        self.print_detector = print_detector or PrintDetector()
        self._cascade = None

    def available(self) -> bool:
        return True

    def _get_cascade(self):
        if self._cascade is None:
            cascade_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
            self._cascade = cv2.CascadeClassifier(cascade_path)
        return self._cascade

    def _largest_face(self, image: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        faces = self._get_cascade().detectMultiScale(gray, 1.3, 5)
        if len(faces) == 0:
            return None
        x, y, w, h = max(faces, key=lambda f: f[2] * f[3])
        return int(x), int(y), int(x + w), int(y + h)

    @staticmethod
    def _phash(image: np.ndarray):
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        return imagehash.phash(Image.fromarray(rgb).resize((256, 256)))

    def _verify_sync(self, captured: bytes, reference: bytes) -> FaceVerificationResult:
        captured_img = decode_image(captured)
        if captured_img is None:
            raise ProviderError(self.name, "captured photo could not be decoded")
        reference_img = decode_image(reference)
        if reference_img is None:
            raise ProviderError(self.name, "reference photo could not be decoded")

        captured_box = self._largest_face(captured_img)
        if captured_box is None:
            return FaceVerificationResult(
                success=True,
                face_detected=False,
                confidence=self.confidence,
                provider_name=self.name,
                reasoning="No face detected in captured photo"
            )

        reference_box = self._largest_face(reference_img)
        x1, y1, x2, y2 = captured_box
        captured_face = captured_img[y1:y2, x1:x2]
        if reference_box:
            rx1, ry1, rx2, ry2 = reference_box
            reference_face = reference_img[ry1:ry2, rx1:rx2]
        else:
            reference_face = reference_img

        hash_distance = self._phash(captured_face) - self._phash(reference_face)
        match_score = max(0.0, 1.0 - hash_distance / float(self.max_distance))

        looks_printed, print_score, _ = self.print_detector.is_print(captured_face)

        return FaceVerificationResult(
            success=True,
            face_detected=True,
            match_score=round(match_score, 4),
            is_live=not looks_printed,
            is_fake=looks_printed,
            confidence=self.confidence,
            provider_name=self.name,
            reasoning=f"pHash distance {hash_distance}, print score {print_score:.2f}",
            details={"hash_distance": int(hash_distance), "print_score": round(print_score, 4)}
        )

    async def execute(self, captured: bytes, reference: bytes, timeout: float) -> FaceVerificationResult:
        return await asyncio.to_thread(self._verify_sync, captured, reference)

