"""
FastAPI Dependencies - Authentication.

Mobile clients send the auth provider's access token (Bearer JWT, `sub` is
the account id). The payment/VIP provider and schedulers send X-API-Key.
The core trusts the authenticated account id and never re-authenticates.
"""

import secrets
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from vidgro.config import settings
from vidgro.exceptions import AuthenticationError

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> UUID:
    """
    Verify an access token and return the account id it names.

    Raises:
        AuthenticationError: Signature, expiry, audience or subject invalid
    """
    if not settings.jwt_secret:
        raise AuthenticationError("JWT secret not configured")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience or None,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"invalid token: {exc}") from exc

    try:
        return UUID(str(payload["sub"]))
    except ValueError as exc:
        raise AuthenticationError("subject is not an account id") from exc


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UUID:
    """
    FastAPI dependency resolving the caller's account id from the Bearer token.

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as exc:
        logger.warning("access_token_rejected", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def require_service_key(
    x_api_key: str = Header(..., description="Service API key"),
) -> None:
    """
    FastAPI dependency guarding internal routes.

    Raises:
        HTTPException 401 if the key is missing from config or doesn't match
    """
    if not settings.service_api_key or not secrets.compare_digest(
        x_api_key.encode(), settings.service_api_key.encode()
    ):
        logger.warning("service_key_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
