"""
Request and snapshot schemas for Attendance Guard
=================================================
Pydantic models shared by the validators, the services and the API.

- AttendanceEvidence: ephemeral evidence submitted with each attempt
- LocationPolicy: frozen snapshot of the active LocationConfig
- BiometricProfile: frozen snapshot of a user's enrollment
"""

from datetime import datetime, timezone
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field


class AttendanceEvidence(BaseModel):
    """Evidence collected by the client before photo capture. Never persisted raw."""

    user_id: str = Field(..., min_length=1, description="Caller-supplied user id")
    latitude: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    wifi_ssid: Optional[str] = Field(None, description="SSID if the client could read it")
    fingerprint_hash: str = Field(..., description="Device fingerprint hash")
    timestamp_millis: int = Field(..., ge=0, description="Client capture time in epoch milliseconds")
    ip_address: Optional[str] = Field(None, description="Client IP if known to the caller")
    connection_type: Optional[str] = Field(None, description="wifi, ethernet, cellular, 4g ...")
    location_accuracy: Optional[float] = Field(None, ge=0, allow_inf_nan=False,
                                               description="Reported GPS accuracy in meters")

    @property
    def captured_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_millis / 1000.0, tz=timezone.utc)


class LocationPolicy(BaseModel):
    """Read-only view of the active location configuration."""

    model_config = ConfigDict(frozen=True)

    id: int
    location_name: str = "School"
    reference_latitude: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    reference_longitude: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    radius_meters: float = Field(..., gt=0, allow_inf_nan=False)
    allowed_ssids: List[str] = Field(default_factory=list)
    allowed_ip_ranges: List[str] = Field(default_factory=list)


class BiometricProfile(BaseModel):
    """Read-only view of a user's enrolled biometric."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    fingerprint_hash: str
    reference_photo_url: str
    credential_id: Optional[str] = None
