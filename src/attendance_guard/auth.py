"""
Session authentication.

Bearer JWT (HS256) whose ``sub`` is the authenticated user id. Admin
endpoints additionally require ``role == "admin"``.
"""

import os
import logging
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

logger = logging.getLogger(__name__)

security = HTTPBearer()

JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12


def get_secret_key() -> str:
    return os.getenv("SECRET_KEY", "dev-secret-key-change")


def create_access_token(user_id: str, role: str = "user", expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, get_secret_key(), algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, get_secret_key(), algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_auth(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    payload = decode_token(credentials.credentials)
    if payload.get("type") != "access" or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token type")
    return payload


def require_admin(auth: dict = Depends(require_auth)) -> dict:
    if auth.get("role") != "admin":
        logger.warning(f"[SECURITY] Non-admin {auth.get('sub')} attempted an admin action")
        raise HTTPException(status_code=403, detail="Admin role required")
    return auth
