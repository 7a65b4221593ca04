"""
Caller authorization for the collection endpoints.

Scheduled and chained calls present the static CRON_SECRET as a bearer
token. Anything else must be a user access token the identity provider
(Supabase auth) accepts.
"""

from __future__ import annotations

import hmac

import httpx
from fastapi import Depends, Header
from loguru import logger

from config import Settings, get_settings

IDENTITY_TIMEOUT_SECONDS = 10.0


class Unauthorized(Exception):
    """Raised when a caller presents no acceptable credential."""


def _bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def validate_identity_token(token: str, settings: Settings) -> bool:
    """Ask the identity provider whether `token` belongs to a signed-in user."""
    if not settings.has_identity_provider():
        return False
    try:
        response = httpx.get(
            f"{settings.supabase_url.rstrip('/')}/auth/v1/user",
            headers={"Authorization": f"Bearer {token}", "apikey": settings.supabase_anon_key},
            timeout=IDENTITY_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.warning("Identity provider unreachable: {}", e)
        return False
    return response.is_success


def verify_caller(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Authorize a request.

    Returns:
        "cron" for the static secret, "user" for a validated user token

    Raises:
        Unauthorized: If neither credential is accepted
    """
    token = _bearer(authorization)
    if token is None:
        raise Unauthorized()
    if settings.cron_secret and hmac.compare_digest(token, settings.cron_secret):
        return "cron"
    if validate_identity_token(token, settings):
        return "user"
    raise Unauthorized()
