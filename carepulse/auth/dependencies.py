import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from carepulse.auth import jwt_handler

security = HTTPBearer()


def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token subject")
    return payload


def require_admin(payload: dict = Depends(get_token_payload)) -> dict:
    if payload.get("role") != jwt_handler.ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Admin access required")
    return payload
