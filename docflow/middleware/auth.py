from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
import structlog

from docflow.services.auth_service import verify_access_token

logger = structlog.get_logger()

bearer = HTTPBearer(auto_error=False)


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": {"code": code, "message": message}},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> dict:
    """The caller's identity claims: user_id, tenant_id and an optional company_id."""
    if credentials is None:
        raise _unauthorized("AUTH_TOKEN_MISSING", "Bearer token required")
    try:
        claims = verify_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _unauthorized("AUTH_TOKEN_INVALID", "Invalid or expired token")
    return {
        "user_id": claims["sub"],
        "tenant_id": claims["tenant_id"],
        "company_id": claims.get("company_id"),
    }
