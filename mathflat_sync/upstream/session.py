"""
Upstream session: acquires and caches the MathFlat auth token.

The login response carries no expiry, so a token is trusted for a fixed,
conservative lifetime (MATHFLAT_TOKEN_TTL_SECONDS) and then replaced by a
fresh login. One session lives for one invocation; nothing is persisted.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
from loguru import logger

from config import Settings, get_settings
from mathflat_sync.core.exceptions import AuthError

LOGIN_PATH = "/mathFLAT/login"


class UpstreamSession:
    """Token holder passed explicitly to the client."""

    def __init__(
        self,
        http: httpx.Client,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._http = http
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0
        self.login_count = 0

    @property
    def platform(self) -> str:
        return self._settings.mathflat_platform

    @property
    def has_valid_token(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    def ensure_token(self) -> str:
        """Return a cached token, logging in first when none is valid."""
        if not self.has_valid_token:
            self.login()
        assert self._token is not None
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call logs in again."""
        self._token = None
        self._expires_at = 0.0

    def login(self) -> str:
        """
        Exchange the configured credentials for a token.

        Raises:
            AuthError: If credentials are missing, the request fails, or the
                response carries no token
        """
        login_id = self._settings.mathflat_login_id
        password = self._settings.mathflat_login_pw
        if not login_id or not password:
            raise AuthError("MATHFLAT_LOGIN_ID or MATHFLAT_LOGIN_PW is not configured")

        url = f"{self._settings.mathflat_base_url.rstrip('/')}{LOGIN_PATH}"
        try:
            response = self._http.post(
                url,
                json={"id": login_id, "password": password},
                headers={"Content-Type": "application/json", "x-platform": self.platform},
            )
        except httpx.HTTPError as e:
            raise AuthError(f"MathFlat login request failed: {e}") from e

        if not response.is_success:
            raise AuthError(f"MathFlat login rejected: {response.status_code} - {response.text[:300]}")

        token = _extract_token(response)
        if not token:
            raise AuthError(f"MathFlat login response carried no token: {response.text[:300]}")

        self._token = token
        self._expires_at = self._clock() + self._settings.mathflat_token_ttl_seconds
        self.login_count += 1
        logger.info("MathFlat login succeeded (token valid for {}s)", self._settings.mathflat_token_ttl_seconds)
        return token


def _extract_token(response: httpx.Response) -> str | None:
    try:
        payload: Any = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and data.get("token"):
        return str(data["token"])
    token = payload.get("token")
    return str(token) if token else None
