"""
Access tokens.

docflow does not log users in; an identity provider issues the tokens and
this module only needs to mint them for tests and internal tooling and to
verify them on every request. HS* algorithms use JWT_SECRET_KEY, RS* read
the PEM files named in the settings.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from jose import JWTError, jwt

from docflow.config import settings

REQUIRED_CLAIMS = {"require_sub": True, "require_exp": True, "require_iat": True}


@lru_cache(maxsize=4)
def _read_pem(path: str) -> str:
    with open(path, "r") as f:
        return f.read()


def _key(pem_path: str) -> str:
    if settings.JWT_ALGORITHM.startswith("HS"):
        if not settings.JWT_SECRET_KEY:
            raise JWTError("JWT_SECRET_KEY is not configured")
        return settings.JWT_SECRET_KEY
    return _read_pem(pem_path)


def create_access_token(
    user_id: str,
    tenant_id: str,
    company_id: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id),
        "type": "access",
        "iat": issued,
        "exp": issued + timedelta(minutes=expires_minutes),
    }
    if company_id:
        claims["company_id"] = str(company_id)
    return jwt.encode(claims, _key(settings.JWT_PRIVATE_KEY_PATH), algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """Claims of a valid access token. Raises JWTError otherwise."""
    claims = jwt.decode(
        token,
        _key(settings.JWT_PUBLIC_KEY_PATH),
        algorithms=[settings.JWT_ALGORITHM],
        options=REQUIRED_CLAIMS,
    )
    if claims.get("type") != "access":
        raise JWTError("Not an access token")
    if not claims.get("tenant_id"):
        raise JWTError("Token carries no tenant")
    return claims
