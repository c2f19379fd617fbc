"""
Request authentication for the cron and admin endpoints.

Admin callers present `Authorization: Bearer <jwt>` signed with
ADMIN_JWT_SECRET (HS256); the `sub` claim is the caller's uid. Cron callers
pass `?secret=<CRON_SECRET>`.
"""
import hmac
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Query, status

from bookingflow.config import require_cron_config, settings
from bookingflow.errors import ConfigurationError
from bookingflow.logging_config import get_logger

logger = get_logger("auth")

JWT_ALGORITHM = "HS256"


def verify_admin_token(token: str, secret: str = None) -> dict:
    """
    Verify an admin JWT and return its payload.

    Raises:
        ConfigurationError: ADMIN_JWT_SECRET is not set
        HTTPException 401: token expired, malformed or badly signed
    """
    secret = secret if secret is not None else settings.admin_jwt_secret
    if not secret:
        raise ConfigurationError("ADMIN_JWT_SECRET is missing", code="ADMIN_JWT_SECRET_MISSING")

    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True, "require": ["sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Admin token expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except jwt.InvalidTokenError as e:
        logger.warning("Admin token rejected", extra={"context": {"error": str(e)}})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def get_current_admin_uid(authorization: Optional[str] = Header(None)) -> str:
    """FastAPI dependency: caller uid from the Bearer token"""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_admin_token(parts[1])
    uid = str(payload.get("sub") or "").strip()
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID claim",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return uid


def require_cron_secret(secret: str = Query(default="")) -> None:
    """FastAPI dependency: reject cron calls without the shared secret"""
    require_cron_config(settings)
    if not hmac.compare_digest(secret.encode("utf-8"), settings.cron_secret.encode("utf-8")):
        logger.warning("Cron call with invalid secret")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid cron secret")
