"""
Database Module for Attendance Guard
====================================
Provides SQLite-backed storage for:
- Active location configuration
- Biometric enrollments
- Daily attendance records (check-in / check-out)
- Security events and the face verification learning log
"""

from .models import (
    LocationConfig, EnrolledBiometric, AttendanceRecord, SecurityEvent,
    FaceVerificationLog, SystemConfig, AttendanceState, AttendanceType, EventSeverity
)
from .db_manager import DatabaseManager, LocationPolicyLoader, get_db_manager, reset_db_manager
from .attendance_service import AttendanceService, AttendanceProposal
from .audit_log import AuditLog
from .biometric_registry import BiometricRegistry

__all__ = [
    'LocationConfig',
    'EnrolledBiometric',
    'AttendanceRecord',
    'SecurityEvent',
    'FaceVerificationLog',
    'SystemConfig',
    'AttendanceState',
    'AttendanceType',
    'EventSeverity',
    'DatabaseManager',
    'LocationPolicyLoader',
    'get_db_manager',
    'reset_db_manager',
    'AttendanceService',
    'AttendanceProposal',
    'AuditLog',
    'BiometricRegistry'
]
