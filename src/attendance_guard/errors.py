"""
Exceptions for infrastructure faults.

Validator rejections are returned as structured results, never raised.
These are reserved for malformed input and failing collaborators.
"""


class AttendanceGuardError(Exception):
    """Base class for all attendance guard errors."""


class InvalidEvidenceError(AttendanceGuardError, ValueError):
    """Submitted evidence is malformed (non-finite or out-of-range values)."""


class ProviderError(AttendanceGuardError):
    """A face verification provider could not produce a result."""

    def __init__(self, provider_name: str, message: str):
        super().__init__(f"{provider_name}: {message}")
        self.provider_name = provider_name


class ReferencePhotoUnavailable(AttendanceGuardError):
    """The enrolled reference photo could not be loaded."""


class AttendanceConflictError(AttendanceGuardError):
    """A concurrent submission already committed this attendance step."""


class EnrollmentExistsError(AttendanceGuardError):
    """The user is already enrolled; replacement needs an admin reset first."""
