"""
Attendance Guard
================
Anti-spoofing attendance validation: school network identity, GPS
geofence, device fingerprint, daily check-in/check-out state, anomaly
scoring and face verification with provider fallback.
"""

__version__ = "1.0.0"
