"""
Error types for the ingestion pipeline.

Fatal errors (configuration, authentication) abort an invocation.
UpstreamError is a per-item failure: collectors record it and move on.
"""

from __future__ import annotations


class MathflatSyncError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(MathflatSyncError):
    """Raised when a required setting is missing."""


class AuthError(MathflatSyncError):
    """Raised when upstream credentials are absent or the login is rejected."""


class UpstreamError(MathflatSyncError):
    """Raised when an upstream call fails or its payload cannot be read."""

    def __init__(self, status: int | None, body: str, url: str = "", reason: str | None = None) -> None:
        self.status = status
        self.body = body
        self.url = url
        label = reason or (f"HTTP {status}" if status is not None else "transport error")
        super().__init__(f"MathFlat API {label}: {body[:300]}")
