"""
MathFlat API client.

Wraps every upstream call with the auth token and platform header and
translates non-2xx responses into UpstreamError. The client never sleeps:
pacing between calls is the caller's job (see `pacing.delay`).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import Any, TypeVar

import httpx
from loguru import logger

from config import Settings, get_settings
from mathflat_sync.core.exceptions import ConfigurationError, UpstreamError
from mathflat_sync.upstream.session import UpstreamSession
from mathflat_sync.upstream.types import (
    HomeworkItem,
    MathflatStudent,
    ProblemDetail,
    WorkItem,
)

# The listing endpoints page; one oversized page returns everything.
UNPAGED = {"page": "0", "size": "1000000"}

T = TypeVar("T")


class MathflatClient:
    """Synchronous client for the MathFlat teacher API."""

    def __init__(
        self,
        settings: Settings | None = None,
        http: httpx.Client | None = None,
        session: UpstreamSession | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Settings (default: cached settings)
            http: HTTP client to use (default: a new client owned by this instance)
            session: Token holder (default: a new session sharing `http`)

        Raises:
            ConfigurationError: If MATHFLAT_BASE_URL is empty
        """
        self._settings = settings or get_settings()
        if not self._settings.mathflat_base_url:
            raise ConfigurationError("MATHFLAT_BASE_URL is not configured")
        self._owns_http = http is None
        self.http = http or httpx.Client(
            timeout=httpx.Timeout(self._settings.mathflat_request_timeout_seconds),
            follow_redirects=True,
        )
        self.session = session or UpstreamSession(self.http, settings=self._settings)
        self.base_url = self._settings.mathflat_base_url.rstrip("/")
        self.call_count = 0

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> MathflatClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ========================================
    # Core call
    # ========================================

    def call(
        self,
        path: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Perform one authenticated request and return the parsed JSON body.

        Raises:
            AuthError: If a token cannot be obtained
            UpstreamError: On a non-2xx response, transport failure, or non-JSON body
        """
        token = self.session.ensure_token()
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "x-platform": self.session.platform,
            "x-auth-token": token,
        }

        self.call_count += 1
        logger.debug("MathFlat {} {} params={}", method, path, params)
        try:
            response = self.http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError(None, str(e), url=url) from e

        if response.status_code == 401:
            # Assumed lifetime was wrong; the next call logs in again.
            self.session.invalidate()
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text, url=url)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, f"invalid JSON: {response.text[:200]}", url=url) from e

    def _parse(self, path: str, build: Callable[[], T]) -> T:
        """Map a payload into records; malformed records become UpstreamError."""
        try:
            return build()
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamError(None, str(e), url=f"{self.base_url}{path}", reason="malformed payload") from e

    # ========================================
    # Student directory
    # ========================================

    def list_students(self) -> list[MathflatStudent]:
        """Fetch the full upstream student directory."""
        payload = self.call("/students", params=dict(UNPAGED))
        return self._parse("/students", lambda: [MathflatStudent.from_dict(s) for s in _content(payload)])

    def list_active_students(self) -> list[MathflatStudent]:
        """Fetch directory entries with ACTIVE status."""
        students = [s for s in self.list_students() if s.active]
        logger.info("MathFlat directory: {} active students", len(students))
        return students

    # ========================================
    # Activity and homework listings
    # ========================================

    def get_student_daily_work(self, student_id: str, day: date) -> list[WorkItem]:
        """Fetch one student's work items for a civil date."""
        iso = day.isoformat()
        path = f"/student-history/work/student/{student_id}"
        payload = self.call(path, params={"startDate": iso, "endDate": iso})
        return self._parse(path, lambda: [WorkItem.from_dict(item) for item in _data_list(payload)])

    def get_class_homework(self, class_id: str, start: date, end: date | None = None) -> list[HomeworkItem]:
        """
        Fetch a class's homework in a date range, flattened to per-student items.

        Args:
            class_id: Upstream lesson-class id
            start: First civil date
            end: Last civil date (default: `start`)
        """
        path = f"/student-history/homework/lesson-class/{class_id}"
        payload = self.call(
            path,
            params={"startDate": start.isoformat(), "endDate": (end or start).isoformat()},
        )
        books = _data_list(payload)
        items = self._parse(path, lambda: [
            HomeworkItem.from_component(book, component)
            for book in books
            for component in book.get("components") or []
        ])
        logger.info("Class {}: {} homework items across {} books", class_id, len(items), len(books))
        return items

    # ========================================
    # Problem detail listings
    # ========================================

    def get_workbook_problems(
        self,
        student_id: str,
        student_workbook_id: int,
        student_book_id: int,
        progress_id: int,
    ) -> list[ProblemDetail]:
        """Fetch the scored problems of one workbook progress step."""
        path = f"/student-workbook/student/{student_id}/{student_workbook_id}/{student_book_id}/{progress_id}"
        payload = self.call(path, params=dict(UNPAGED))
        return self._parse(path, lambda: [ProblemDetail.from_workbook(raw) for raw in _content(payload)])

    def get_worksheet_problems(self, student_book_id: int) -> list[ProblemDetail]:
        """Fetch every scored problem of an assigned worksheet."""
        path = f"/student-worksheet/assign/{student_book_id}/problem"
        payload = self.call(path, params=dict(UNPAGED))
        return self._parse(path, lambda: [ProblemDetail.from_worksheet(raw) for raw in _content(payload)])


def _data_list(payload: Any) -> list[dict[str, Any]]:
    data = payload.get("data") if isinstance(payload, dict) else None
    return [d for d in data if isinstance(d, dict)] if isinstance(data, list) else []


def _content(payload: Any) -> list[dict[str, Any]]:
    data = payload.get("data") if isinstance(payload, dict) else None
    content = data.get("content") if isinstance(data, dict) else None
    return [c for c in content if isinstance(c, dict)] if isinstance(content, list) else []
