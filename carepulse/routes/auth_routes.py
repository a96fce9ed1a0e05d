import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from carepulse.auth import jwt_handler
from carepulse.auth.dependencies import get_token_payload
from carepulse.core import config

router = APIRouter(tags=["auth"])

logger = logging.getLogger(__name__)

ADMIN_SUBJECT = "admin"


class AdminSessionRequest(BaseModel):
    passkey: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CurrentSessionResponse(BaseModel):
    subject: str
    role: str


@router.post("/admin/session", response_model=TokenResponse)
def create_admin_session(data: AdminSessionRequest):
    if not config.ADMIN_PASSKEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin access is not configured.",
        )

    if not hmac.compare_digest(data.passkey.strip().encode(), config.ADMIN_PASSKEY.encode()):
        logger.warning("Rejected admin session request with an invalid passkey")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid passkey. Please try again.",
        )

    token = jwt_handler.create_access_token(subject=ADMIN_SUBJECT, role=jwt_handler.ADMIN_ROLE)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=CurrentSessionResponse)
def me(payload: dict = Depends(get_token_payload)):
    return CurrentSessionResponse(subject=payload["sub"], role=payload.get("role") or "")
