"""
Print / Screenshot Detection
============================
Heuristic anti-spoofing for a captured face crop.

A phone camera pointed at a live face adds sensor noise, slight blur and
uneven lighting. Paper prints and screens come out sharper, with more
edges and flatter lighting. Each cue below maps one image statistic to a
liveness score through a band table; the weighted sum is the final score.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Below this score the crop is treated as a print or screen capture
PRINT_SCORE_THRESHOLD = 0.5

ANALYSIS_SIZE = (128, 128)

# (upper bound, score) bands, checked in order; the last band is open-ended
Bands = List[Tuple[float, float]]


def _sharpness(gray: np.ndarray, hsv: Optional[np.ndarray]) -> float:
    return float(cv2.Laplacian(gray, cv2.CV_64F).var())


def _edge_density(gray: np.ndarray, hsv: Optional[np.ndarray]) -> float:
    edges = cv2.Canny(gray, 50, 150)
    return float(np.count_nonzero(edges) / edges.size)


def _gradient_mean(gray: np.ndarray, hsv: Optional[np.ndarray]) -> float:
    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    return float(np.hypot(gx, gy).mean())


def _brightness_variance(gray: np.ndarray, hsv: Optional[np.ndarray]) -> Optional[float]:
    if hsv is None:
        return None
    return float(hsv[:, :, 2].var())


class PrintCue:
    """One image statistic, its liveness bands and its weight in the final score."""

    def __init__(self, name: str, measure: Callable, bands: Bands, weight: float, fallback: float = 0.5):
        self.name = name
        self.measure = measure
        self.bands = bands
        self.weight = weight
        self.fallback = fallback

    def score(self, value: Optional[float]) -> float:
        if value is None:
            return self.fallback
        for upper, band_score in self.bands:
            if value < upper:
                return band_score
        return self.bands[-1][1]


# Live crops sit in the second band of every cue
DEFAULT_CUES = [
    PrintCue("laplacian_var", _sharpness, [(150, 0.5), (450, 1.0), (700, 0.3), (float("inf"), 0.1)], 0.30),
    PrintCue("edge_density", _edge_density, [(0.03, 0.5), (0.08, 1.0), (0.12, 0.4), (float("inf"), 0.1)], 0.25),
    PrintCue("gradient_mean", _gradient_mean, [(20, 0.5), (40, 1.0), (55, 0.4), (float("inf"), 0.1)], 0.25),
    PrintCue("hsv_v_var", _brightness_variance, [(250, 0.5), (500, 1.0), (1200, 0.6), (float("inf"), 0.2)], 0.20),
]


class PrintDetector:
    """
    Usage:
        detector = PrintDetector()
        looks_printed, score, details = detector.is_print(face_crop)
    """

    def __init__(self, threshold: float = PRINT_SCORE_THRESHOLD, cues: Optional[List[PrintCue]] = None):
        self.threshold = threshold
        self.cues = cues or DEFAULT_CUES

    def analyze(self, face_image: Optional[np.ndarray]) -> Tuple[float, Dict]:
        """
        Returns:
            (score, details), score from 0.0 (print) to 1.0 (live)
        """
        if face_image is None or face_image.size == 0:
            return 0.0, {"error": "Invalid image"}

        hsv = None
        if face_image.ndim == 3:
            resized = cv2.resize(face_image, ANALYSIS_SIZE)
            gray = cv2.cvtColor(resized, cv2.COLOR_BGR2GRAY)
            hsv = cv2.cvtColor(resized, cv2.COLOR_BGR2HSV)
        else:
            gray = cv2.resize(face_image, ANALYSIS_SIZE)

        details: Dict = {}
        total = 0.0
        for cue in self.cues:
            value = cue.measure(gray, hsv)
            cue_score = cue.score(value)
            details[cue.name] = value
            details[f"{cue.name}_score"] = cue_score
            total += cue.weight * cue_score

        details["final_score"] = total
        return total, details

    def is_print(self, face_image: Optional[np.ndarray]) -> Tuple[bool, float, Dict]:
        """(looks_printed, score, details) for a face crop."""
        score, details = self.analyze(face_image)
        looks_printed = score < self.threshold
        if looks_printed:
            logger.info(f"[FACE] Print/screen capture suspected (score={score:.2f})")
        return looks_printed, score, details


def crop_with_margin(image: np.ndarray, bbox: Tuple[int, int, int, int], margin_ratio: float = 0.3) -> np.ndarray:
    """Face region (x1, y1, x2, y2) grown by a margin and clipped to the image."""
    x1, y1, x2, y2 = bbox
    height, width = image.shape[:2]
    margin = int(max(x2 - x1, y2 - y1) * margin_ratio)
    return image[max(0, y1 - margin):min(height, y2 + margin), max(0, x1 - margin):min(width, x2 + margin)]


def decode_image(data: bytes) -> Optional[np.ndarray]:
    """Decode JPEG/PNG bytes to a BGR array, or None if undecodable."""
    if not data:
        return None
    return cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
