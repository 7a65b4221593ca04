"""API routers for mathflat-sync."""

from mathflat_sync.api.routers import collect_router

__all__ = ["collect_router"]
