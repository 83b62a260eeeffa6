"""Request authentication.

Users authenticate with a Google ID token; the verified email is mapped to
a profile by ``api.dependencies``. Cron jobs send the shared
``X-Service-Key`` instead.
"""
from __future__ import annotations

import hmac
import os
from functools import lru_cache

from fastapi import Header, HTTPException, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from ..config import ConfigError, load_settings

DEV_BYPASS_ENV = "VC_DEV_AUTH_BYPASS"
AUDIENCE_ENVS = ("GOOGLE_OAUTH_AUDIENCE", "GOOGLE_OAUTH_CLIENT_ID")


class AuthError(HTTPException):
    def __init__(self, detail: str, code: int = status.HTTP_401_UNAUTHORIZED) -> None:
        super().__init__(status_code=code, detail=detail)


@lru_cache
def _audiences() -> tuple[str, ...]:
    raw = next((os.getenv(name) for name in AUDIENCE_ENVS if os.getenv(name)), "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise AuthError("Missing Bearer token.")
    return token.strip()


def verify_google_email(token: str) -> str:
    """Verify an ID token against each configured audience and return its email."""
    audiences = _audiences()
    if not audiences:
        raise AuthError("Server missing GOOGLE_OAUTH_CLIENT_ID or audience config.")

    transport = google_requests.Request()
    last_error: ValueError | None = None
    for audience in audiences:
        try:
            claims = id_token.verify_oauth2_token(token, transport, audience)
        except ValueError as exc:
            last_error = exc
            continue
        email = claims.get("email")
        if not email:
            raise AuthError("Token missing email claim.")
        return email
    raise AuthError(f"Invalid token: {last_error}")


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    dev_user: str | None = Header(default=None, alias="X-User-Email"),
) -> str:
    """Return the caller's email.

    With VC_DEV_AUTH_BYPASS=1 the X-User-Email header is trusted as is.
    """
    if os.getenv(DEV_BYPASS_ENV) == "1":
        if not dev_user:
            raise AuthError("Auth bypass enabled but X-User-Email header missing (dev only).")
        return dev_user
    return verify_google_email(_bearer_token(authorization))


def require_service_key(
    service_key: str | None = Header(default=None, alias="X-Service-Key"),
) -> None:
    """Guard for cron-triggered job endpoints."""
    try:
        expected = load_settings(require_service_key=True).service_key
    except ConfigError as exc:
        raise AuthError(str(exc), code=status.HTTP_503_SERVICE_UNAVAILABLE) from exc
    if not service_key or not hmac.compare_digest(service_key, expected):
        raise AuthError("Invalid or missing X-Service-Key.", code=status.HTTP_403_FORBIDDEN)
