"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
an in-memory store, a fake clock that pacing sleeps advance, and a fake
MathFlat API served through httpx.MockTransport.
"""
from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from mathflat_sync.db.database import scope_for  # noqa: E402
from mathflat_sync.db.models import Base, DailyWork  # noqa: E402
from mathflat_sync.db.models.mathflat import new_id  # noqa: E402
from mathflat_sync.upstream import MathflatClient, UpstreamSession  # noqa: E402

LOGIN_TOKEN = "tok-1"
CRON_SECRET = "cron-secret"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


# ========================================
# Settings, clock, store
# ========================================


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        mathflat_base_url="https://api.mathflat.test",
        mathflat_login_id="teacher",
        mathflat_login_pw="secret",
        cron_secret=CRON_SECRET,
        supabase_url=None,
        supabase_anon_key=None,
        self_base_url="http://collector.test",
        log_file=None,
    )


class FakeClock:
    """Monotonic clock advanced only by pacing sleeps."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    """Fake clock; every `pacing.delay` advances it instead of sleeping."""
    fake = FakeClock()
    monkeypatch.setattr("mathflat_sync.upstream.pacing.time", SimpleNamespace(sleep=fake.sleep))
    return fake


@pytest.fixture
def engine():
    """Shared in-memory SQLite database with every table created."""
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def scope(engine):
    """`session_scope`-style factory bound to the in-memory database."""
    return scope_for(sessionmaker(bind=engine, autocommit=False, autoflush=False))


@pytest.fixture
def add_daily_work(scope):
    """Insert a daily work row and return its id."""

    def _add(**values: Any) -> str:
        row = {
            "id": new_id(),
            "mathflat_student_id": "1001",
            "student_name": "김철수",
            "work_date": date(2025, 3, 14),
            "work_type": "WORKSHEET",
            "category": "CUSTOM",
            "student_book_id": str(values.get("student_book_id", 7000)),
            "assigned_count": 10,
            "correct_count": 10 - values.get("wrong_count", 0),
            "wrong_count": 0,
            "correct_rate": 100,
        }
        row.update(values)
        row["student_book_id"] = str(row["student_book_id"])
        with scope() as session:
            session.add(DailyWork(**row))
        return row["id"]

    return _add


# ========================================
# Fake MathFlat API
# ========================================


@dataclass
class Call:
    at: float
    method: str
    path: str
    params: dict[str, str]
    headers: dict[str, str]


@dataclass
class FakeMathflat:
    """In-memory MathFlat API; register payloads, then inspect `calls`."""

    clock: FakeClock
    students: list[dict[str, Any]] = field(default_factory=list)
    daily_work: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    homework: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    workbook: dict[tuple[str, int, int, int], list[dict[str, Any]]] = field(default_factory=dict)
    worksheet: dict[int, list[dict[str, Any]]] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)
    login_status: int = 200
    calls: list[Call] = field(default_factory=list)

    @property
    def data_calls(self) -> list[Call]:
        return [c for c in self.calls if c.path != "/mathFLAT/login"]

    def paths(self) -> list[str]:
        return [c.path for c in self.data_calls]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(Call(self.clock.now, request.method, path, dict(request.url.params), dict(request.headers)))

        if path == "/mathFLAT/login":
            if self.login_status != 200:
                return httpx.Response(self.login_status, text="invalid credentials")
            return httpx.Response(200, json={"data": {"token": LOGIN_TOKEN}})

        if request.headers.get("x-auth-token") != LOGIN_TOKEN:
            return httpx.Response(401, text="token expired")
        if path in self.failures:
            return httpx.Response(self.failures[path], text="upstream exploded")

        if path == "/students":
            return httpx.Response(200, json={"data": {"content": self.students}})
        if m := re.fullmatch(r"/student-history/work/student/(\w+)", path):
            return httpx.Response(200, json={"data": self.daily_work.get(m.group(1), [])})
        if m := re.fullmatch(r"/student-history/homework/lesson-class/(\w+)", path):
            return httpx.Response(200, json={"data": self.homework.get(m.group(1), [])})
        if m := re.fullmatch(r"/student-workbook/student/(\w+)/(\d+)/(\d+)/(\d+)", path):
            key = (m.group(1), int(m.group(2)), int(m.group(3)), int(m.group(4)))
            return httpx.Response(200, json={"data": {"content": self.workbook.get(key, [])}})
        if m := re.fullmatch(r"/student-worksheet/assign/(\d+)/problem", path):
            return httpx.Response(200, json={"data": {"content": self.worksheet.get(int(m.group(1)), [])}})
        return httpx.Response(404, text="not found")


@pytest.fixture
def upstream(clock) -> FakeMathflat:
    return FakeMathflat(clock=clock)


@pytest.fixture
def client(upstream, settings, clock):
    """MathflatClient wired to the fake API."""
    http = httpx.Client(transport=httpx.MockTransport(upstream.handler))
    session = UpstreamSession(http, settings=settings, clock=clock.monotonic)
    mathflat = MathflatClient(settings=settings, http=http, session=session)
    yield mathflat
    http.close()
