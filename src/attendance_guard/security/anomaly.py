"""
Behavioural anomaly scoring
===========================
Rule-based score (0-100, higher is more suspicious) of the current
submission against the user's recent committed attendance.

Rules:
- WiFi: too many distinct networks, high change rate, never-seen network
- Travel: impossible or fast travel since the last check-in
- Device: several fingerprints in the window, or a new one
- Time: night hours, hour far from the user's habit, weekend
- Frequency: rapid repeat after the last committed event
- Clock: capture timestamp far from server time

The history window and every time rule use the server clock. The
client timestamp is only compared against it.

The score is advisory. It raises a warning, never a rejection.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from ..database.attendance_service import AttendanceService, to_naive_utc
from ..schemas import AttendanceEvidence
from .geofence import distance
from .network import is_placeholder_ssid, normalize_ssid

logger = logging.getLogger(__name__)

# Configurable thresholds
THRESHOLDS = {
    "max_unique_wifi": 4,
    "wifi_change_rate": 0.5,
    "wifi_change_rate_min_records": 3,
    "impossible_travel_m_60min": 10000,
    "impossible_travel_m_120min": 20000,
    "fast_travel_m_60min": 5000,
    "max_unique_devices": 2,
    "off_pattern_min_history": 3,
    "off_pattern_hours": 3,
    "max_clock_skew_minutes": 10,
}

# Rule weights for anomaly score calculation
RULE_WEIGHTS = {
    "EXCESSIVE_WIFI_SWITCHING": 35,
    "HIGH_WIFI_CHANGE_RATE": 20,
    "NEW_WIFI_NETWORK": 15,
    "IMPOSSIBLE_TRAVEL": 60,
    "FAST_TRAVEL": 25,
    "MULTIPLE_DEVICES": 40,
    "NEW_DEVICE": 20,
    "ABNORMAL_TIME": 30,
    "OFF_PATTERN_HOUR": 15,
    "WEEKEND_ATTENDANCE": 15,
    "RAPID_REPEAT": 30,
    "CLOCK_SKEW": 20,
}

MAX_SCORE = 100


class AnomalyReport:
    """Score plus the patterns that produced it."""

    def __init__(self, score: int = 0, patterns: Optional[List[str]] = None,
                 recommendations: Optional[List[str]] = None):
        self.score = min(max(int(score), 0), MAX_SCORE)
        self.patterns = list(patterns or [])
        self.recommendations = list(recommendations or [])

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "patterns": self.patterns,
            "recommendations": self.recommendations
        }


def _hour_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 24
    return min(diff, 24 - diff)


class AnomalyScorer:
    """
    Usage:
        scorer = AnomalyScorer(attendance_service)
        report = scorer.score("u-1", evidence)
    """

    def __init__(
        self,
        attendance: AttendanceService,
        history_days: int = 7,
        rapid_repeat_minutes: int = 5,
        night_start_hour: int = 23,
        night_end_hour: int = 5
    ):
        self.attendance = attendance
        self.history_days = history_days
        self.rapid_repeat_minutes = rapid_repeat_minutes
        self.night_start_hour = night_start_hour
        self.night_end_hour = night_end_hour

    def score(self, user_id: str, evidence: AttendanceEvidence) -> AnomalyReport:
        """
        Score a submission. Faults degrade to a zero score tagged
        DETECTION_ERROR so anomaly detection can never block attendance.
        """
        try:
            return self._score(user_id, evidence)
        except Exception as e:
            logger.error(f"[SECURITY] Anomaly detection failed for {user_id}: {e}", exc_info=True)
            return AnomalyReport(0, ["DETECTION_ERROR"], ["Anomaly detection encountered an error"])

    def _score(self, user_id: str, evidence: AttendanceEvidence) -> AnomalyReport:
        now = self.attendance.now()
        history = self.attendance.recent_history(user_id, now - timedelta(days=self.history_days), now)

        if not history:
            return AnomalyReport(0, ["FIRST_TIME_USER"], ["Monitor user to establish a baseline pattern"])

        # newest first
        history = list(reversed(history))
        patterns: List[str] = []
        recommendations: List[str] = []

        def flag(pattern: str, recommendation: str):
            patterns.append(pattern)
            recommendations.append(recommendation)

        self._check_wifi(evidence, history, flag)
        self._check_travel(evidence, history, now, flag)
        self._check_devices(evidence, history, flag)
        self._check_time(history, now, flag)
        self._check_rapid_repeat(history, now, flag)
        self._check_clock_skew(evidence, now, flag)

        score = min(sum(RULE_WEIGHTS[p] for p in patterns), MAX_SCORE)
        logger.debug(f"[SECURITY] Anomaly score for {user_id}: {score} {patterns}")
        return AnomalyReport(score, patterns, recommendations)

    def _check_wifi(self, evidence, history, flag):
        wifi_history = [normalize_ssid(r.wifi_ssid) for r in history if not is_placeholder_ssid(r.wifi_ssid)]
        if not wifi_history:
            return

        unique_wifi = set(wifi_history)
        change_rate = len(unique_wifi) / len(wifi_history)

        if len(unique_wifi) > THRESHOLDS["max_unique_wifi"]:
            flag("EXCESSIVE_WIFI_SWITCHING", f"{len(unique_wifi)} different WiFi networks in {self.history_days} days")
        elif (len(wifi_history) >= THRESHOLDS["wifi_change_rate_min_records"]
              and change_rate > THRESHOLDS["wifi_change_rate"]):
            flag("HIGH_WIFI_CHANGE_RATE", f"WiFi network changes too often ({change_rate:.2f})")

        if not is_placeholder_ssid(evidence.wifi_ssid) and normalize_ssid(evidence.wifi_ssid) not in unique_wifi:
            flag("NEW_WIFI_NETWORK", f"WiFi '{evidence.wifi_ssid}' has not been used before")

    def _check_travel(self, evidence, history, now: datetime, flag):
        last = next((r for r in history if r.latitude is not None and r.longitude is not None), None)
        if last is None:
            return

        minutes = (to_naive_utc(now) - last.check_in_time).total_seconds() / 60
        if minutes < 0 or minutes >= 120:
            return

        meters = distance(evidence.latitude, evidence.longitude, last.latitude, last.longitude)

        if ((meters > THRESHOLDS["impossible_travel_m_60min"] and minutes < 60) or
                meters > THRESHOLDS["impossible_travel_m_120min"]):
            flag("IMPOSSIBLE_TRAVEL", f"{meters / 1000:.1f}km in {round(minutes)} minutes")
        elif meters > THRESHOLDS["fast_travel_m_60min"] and minutes < 60:
            flag("FAST_TRAVEL", f"Fast travel: {meters / 1000:.1f}km in {round(minutes)} minutes")

    def _check_devices(self, evidence, history, flag):
        fingerprints = [r.fingerprint_hash for r in history if r.fingerprint_hash]
        unique_devices = set(fingerprints)

        if len(unique_devices) > THRESHOLDS["max_unique_devices"]:
            flag("MULTIPLE_DEVICES", f"{len(unique_devices)} different devices used")
        elif fingerprints and evidence.fingerprint_hash not in unique_devices:
            flag("NEW_DEVICE", "New device fingerprint")

    def _is_night(self, hour: int) -> bool:
        if self.night_start_hour > self.night_end_hour:
            return hour >= self.night_start_hour or hour < self.night_end_hour
        return self.night_start_hour <= hour < self.night_end_hour

    def _check_time(self, history, now: datetime, flag):
        local_now = self.attendance.local_time(now)
        hour = local_now.hour

        if self._is_night(hour):
            flag("ABNORMAL_TIME", f"Attendance at unusual hour {hour:02d}:00")

        if len(history) >= THRESHOLDS["off_pattern_min_history"]:
            usual_hours = Counter(self.attendance.local_time(r.check_in_time).hour for r in history)
            nearest = min(_hour_distance(hour, h) for h in usual_hours)
            if nearest > THRESHOLDS["off_pattern_hours"]:
                typical = usual_hours.most_common(1)[0][0]
                flag("OFF_PATTERN_HOUR", f"Hour {hour:02d}:00 differs from usual {typical:02d}:00")

        if local_now.weekday() >= 5:
            flag("WEEKEND_ATTENDANCE", "Attendance on a weekend")

    def _check_rapid_repeat(self, history, now: datetime, flag):
        naive_now = to_naive_utc(now)
        events = []
        for r in history:
            events.append(r.check_in_time)
            if r.check_out_time is not None:
                events.append(r.check_out_time)

        past = [e for e in events if e <= naive_now]
        if not past:
            return

        minutes = (naive_now - max(past)).total_seconds() / 60
        if minutes < self.rapid_repeat_minutes:
            flag("RAPID_REPEAT", f"Submitted {minutes:.1f} minutes after the last attendance event")

    def _check_clock_skew(self, evidence, now: datetime, flag):
        skew = abs((evidence.captured_at - now).total_seconds()) / 60
        if skew > THRESHOLDS["max_clock_skew_minutes"]:
            flag("CLOCK_SKEW", f"Capture timestamp is {round(skew)} minutes away from server time")
