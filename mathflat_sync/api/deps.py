"""
Request dependencies.

Each collaborator a route needs is built here so tests can swap it through
`app.dependency_overrides`.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator

import httpx
from fastapi import Depends

from config import Settings, get_settings
from mathflat_sync.collectors import ChainOrchestrator
from mathflat_sync.db.database import SessionScope, session_scope
from mathflat_sync.upstream import MathflatClient


def get_session_scope() -> SessionScope:
    return session_scope


def get_clock() -> Callable[[], float]:
    return time.monotonic


def get_mathflat_client(settings: Settings = Depends(get_settings)) -> Generator[MathflatClient, None, None]:
    """One client, and so one upstream login, per request."""
    client = MathflatClient(settings=settings)
    try:
        yield client
    finally:
        client.close()


def get_chain_post() -> Callable[..., httpx.Response]:
    return httpx.post


def get_orchestrator(
    scope: SessionScope = Depends(get_session_scope),
    settings: Settings = Depends(get_settings),
    post: Callable[..., httpx.Response] = Depends(get_chain_post),
) -> ChainOrchestrator:
    return ChainOrchestrator(scope=scope, settings=settings, post=post)
