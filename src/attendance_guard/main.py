"""
Attendance Guard API
====================
Flow:
1. Client collects location / network / device evidence
2. POST /attendance/validate-security -> PROCEED_PHOTO or a rejection
3. Client captures a photo
4. POST /attendance/verify-face (optional preview) or /attendance/submit
5. Submit re-validates, verifies the face and records the check-in / check-out
"""

import logging
from datetime import date as date_type
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, File, Form, UploadFile, HTTPException, Query, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from .attendance_flow import AttendanceFlow
from .auth import require_auth, require_admin
from .database.db_manager import get_db_manager
from .errors import (
    AttendanceConflictError, EnrollmentExistsError, InvalidEvidenceError, ReferencePhotoUnavailable
)
from .schemas import AttendanceEvidence

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Attendance Guard API",
    description="Anti-spoofing attendance validation: network, geofence, device identity and face verification",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Response Models ==============
class ValidationResponse(BaseModel):
    success: bool
    action: str = Field(..., description="PROCEED_PHOTO, BLOCK_ATTENDANCE, SHOW_COMPLETED, ...")
    security_score: int = Field(..., description="Advisory audit score 0-100")
    violations: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    severity: Optional[str] = None
    reason: Optional[str] = Field(None, description="Human-readable rejection reason")
    remedy: Optional[str] = Field(None, description="Suggested remedial action")
    attendance_type: Optional[str] = Field(None, description="check-in or check-out")
    distance_meters: Optional[float] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class FaceVerificationResponse(BaseModel):
    success: bool
    verified: bool
    reasons: List[str] = Field(default_factory=list)
    error_code: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    log_id: Optional[int] = None


class BiometricSetupRequest(BaseModel):
    user_id: Optional[str] = Field(None, description="Must equal the session user when given")
    fingerprint_hash: str = Field(..., min_length=1)
    reference_photo_url: str = Field(..., min_length=1)
    credential_id: Optional[str] = None


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def with_request_ip(evidence: AttendanceEvidence, request: Request) -> AttendanceEvidence:
    """Fill a missing ip_address from the request; browsers cannot read their own IP."""
    if evidence.ip_address:
        return evidence
    ip = client_ip(request)
    return evidence.model_copy(update={"ip_address": ip}) if ip else evidence


# ============== Global Service Instance ==============
attendance_flow: Optional[AttendanceFlow] = None


def get_flow() -> AttendanceFlow:
    global attendance_flow
    if attendance_flow is None:
        attendance_flow = AttendanceFlow(get_db_manager())
    return attendance_flow


@app.on_event("startup")
async def startup_event():
    """Initialize database and services on startup."""
    logger.info("=" * 60)
    logger.info("Starting Attendance Guard")
    logger.info("=" * 60)

    flow = get_flow()
    stats = flow.db.get_stats()
    chain = flow.face.chain

    logger.info(f"Database: {stats['database_path']} ({stats['attendance_records']} records)")
    logger.info(f"Active location configs: {stats['active_location_configs']}")
    for provider in chain.providers:
        logger.info(f"Face provider {provider.name}: {'available' if provider.available() else 'unavailable'}")
    logger.info(f"Face chain mode: {chain.mode}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    if attendance_flow is not None:
        await attendance_flow.close()


@app.get("/")
async def root(flow: AttendanceFlow = Depends(get_flow)):
    """Health check endpoint."""
    return {
        "status": "online",
        "service": "Attendance Guard API",
        "database": flow.db.get_stats(),
        "face_providers": [
            {"name": p.name, "available": p.available()} for p in flow.face.chain.providers
        ]
    }


@app.post("/attendance/validate-security", response_model=ValidationResponse, response_model_exclude_none=True)
async def validate_security(
    evidence: AttendanceEvidence,
    request: Request,
    auth: dict = Depends(require_auth),
    flow: AttendanceFlow = Depends(get_flow)
):
    """
    Pre-photo security validation.

    Runs network -> geofence -> device -> state -> anomaly checks and
    returns PROCEED_PHOTO or the first hard rejection.
    """
    try:
        return flow.validate_security(with_request_ip(evidence, request), session_user_id=auth["sub"]).to_dict()
    except InvalidEvidenceError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/attendance/verify-face", response_model=FaceVerificationResponse, response_model_exclude_none=True)
async def verify_face(
    user_id: str = Form(..., description="User the photo belongs to"),
    photo: UploadFile = File(...),
    auth: dict = Depends(require_auth),
    flow: AttendanceFlow = Depends(get_flow)
):
    """
    Verify a captured photo against the caller's enrolled reference photo.
    The reference is never taken from the request.
    """
    contents = await photo.read()
    try:
        outcome = await flow.verify_face(contents, user_id, session_user_id=auth["sub"])
    except InvalidEvidenceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReferencePhotoUnavailable as e:
        logger.error(f"[FACE] Reference photo unavailable for {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Reference photo unavailable")
    return outcome.to_dict()


@app.post("/attendance/submit", response_model=ValidationResponse, response_model_exclude_none=True)
async def submit_attendance(
    request: Request,
    evidence: str = Form(..., description="AttendanceEvidence as JSON"),
    photo: UploadFile = File(...),
    auth: dict = Depends(require_auth),
    flow: AttendanceFlow = Depends(get_flow)
):
    """
    Commit a check-in or check-out.
    Re-runs security validation and face verification before writing.
    """
    try:
        parsed = with_request_ip(AttendanceEvidence.model_validate_json(evidence), request)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    contents = await photo.read()
    try:
        result = await flow.submit(parsed, contents, session_user_id=auth["sub"])
    except InvalidEvidenceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReferencePhotoUnavailable as e:
        logger.error(f"[FACE] Reference photo unavailable for {parsed.user_id}: {e}")
        raise HTTPException(status_code=503, detail="Reference photo unavailable")
    except AttendanceConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.to_dict()


# ============== Biometric Endpoints ==============

@app.get("/attendance/biometric/setup")
async def biometric_status(auth: dict = Depends(require_auth), flow: AttendanceFlow = Depends(get_flow)):
    """Enrollment status of the signed-in user."""
    return {"success": True, **flow.biometrics.get_status(auth["sub"])}


@app.post("/attendance/biometric/setup")
async def biometric_setup(
    body: BiometricSetupRequest,
    auth: dict = Depends(require_auth),
    flow: AttendanceFlow = Depends(get_flow)
):
    """
    Enroll the signed-in user's device fingerprint and reference photo.
    An existing enrollment is only replaced after an admin reset.
    """
    user_id = auth["sub"]
    if body.user_id and body.user_id != user_id:
        raise HTTPException(status_code=403, detail="Cannot enroll another user")

    try:
        profile = flow.enroll_self(user_id, body.fingerprint_hash, body.reference_photo_url, body.credential_id)
    except EnrollmentExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidEvidenceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "success": True,
        "message": f"Biometric enrolled for {user_id}",
        "user_id": profile.user_id,
        "has_platform_credential": bool(profile.credential_id)
    }


@app.delete("/admin/biometric/{user_id}")
async def reset_biometric(user_id: str, auth: dict = Depends(require_admin), flow: AttendanceFlow = Depends(get_flow)):
    """Admin-approved enrollment reset."""
    if not flow.reset_enrollment(user_id, admin_id=auth["sub"]):
        raise HTTPException(status_code=404, detail="No enrollment for user")
    return {"success": True, "message": f"Enrollment reset for {user_id}"}


# ============== Attendance Endpoints ==============

@app.get("/attendance/history")
async def attendance_history(
    limit: int = Query(30, ge=1, le=365),
    auth: dict = Depends(require_auth),
    flow: AttendanceFlow = Depends(get_flow)
):
    """Recent attendance records of the signed-in user."""
    records = flow.attendance.get_user_history(auth["sub"], limit=limit)
    return {"success": True, "records": records, "count": len(records)}


@app.get("/attendance/daily-report")
async def daily_report(
    date: Optional[str] = Query(None, description="Date in YYYY-MM-DD format"),
    auth: dict = Depends(require_admin),
    flow: AttendanceFlow = Depends(get_flow)
):
    """Get daily attendance report with summary."""
    try:
        report_date = date_type.fromisoformat(date) if date else None
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")

    return {"success": True, "report": flow.attendance.get_daily_report(report_date)}


@app.get("/admin/security-events")
async def security_events(
    user_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    auth: dict = Depends(require_admin),
    flow: AttendanceFlow = Depends(get_flow)
):
    """Most recent security events."""
    events = flow.audit.recent_security_events(user_id=user_id, limit=limit)
    return {"success": True, "events": events, "count": len(events)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
