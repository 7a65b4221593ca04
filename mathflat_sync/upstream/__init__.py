"""MathFlat upstream access: session, rate-limited client, record types."""

from mathflat_sync.upstream.client import MathflatClient
from mathflat_sync.upstream.session import UpstreamSession

__all__ = ["MathflatClient", "UpstreamSession"]
