"""
Security checks run before photo capture.
"""

from .results import ViolationCode, WarningCode, Action, ValidationResult, SecurityScore
from .geofence import GeofenceValidator, GeofenceCheck, distance
from .network import NetworkIdentityValidator, NetworkCheck, ip_in_range
from .device import DeviceIdentityMatcher
from .anomaly import AnomalyScorer, AnomalyReport
from .pipeline import SecurityValidationPipeline

__all__ = [
    'ViolationCode',
    'WarningCode',
    'Action',
    'ValidationResult',
    'SecurityScore',
    'GeofenceValidator',
    'GeofenceCheck',
    'distance',
    'NetworkIdentityValidator',
    'NetworkCheck',
    'ip_in_range',
    'DeviceIdentityMatcher',
    'AnomalyScorer',
    'AnomalyReport',
    'SecurityValidationPipeline'
]
