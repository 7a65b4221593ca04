"""
Daily-activity collector.

A bounded single pass: one paced call per active student, then one bulk
upsert. It does not chain; a student population too large for one run
is truncated by the caller's execution ceiling.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import date

from loguru import logger
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from config import Settings, get_settings
from mathflat_sync.collectors.normalize import (
    DAILY_WORK_KEY,
    DAILY_WORK_UPDATE_COLUMNS,
    daily_work_rows,
    dedupe_rows,
)
from mathflat_sync.collectors.problem_details import ProblemDetailCollector
from mathflat_sync.collectors.results import DailyWorkResult
from mathflat_sync.core.exceptions import UpstreamError
from mathflat_sync.db.database import SessionScope, session_scope
from mathflat_sync.db.models import DailyWork
from mathflat_sync.db.writes import upsert_rows
from mathflat_sync.upstream import MathflatClient
from mathflat_sync.upstream.pacing import delay
from mathflat_sync.upstream.types import MathflatStudent


class DailyWorkCollector:
    """Per-student daily activity pull."""

    def __init__(
        self,
        client: MathflatClient,
        scope: SessionScope = session_scope,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.scope = scope
        self.settings = settings or get_settings()
        self.clock = clock

    def collect(
        self,
        target: date,
        student_ids: Sequence[str] | None = None,
        collect_details: bool = False,
    ) -> DailyWorkResult:
        """
        Collect every active student's activity for a civil date.

        Args:
            target: Date to collect
            student_ids: Upstream student ids to restrict to
            collect_details: Run one unchained wrong-detail pass afterwards

        Raises:
            AuthError: If the upstream login fails
            UpstreamError: If the student directory cannot be fetched
            OperationalError: If the store is unreachable
        """
        result = DailyWorkResult(target_date=target)
        students = self.students(student_ids)
        result.total_students = len(students)
        logger.info("Collecting daily work for {} students on {}", len(students), target)

        rows = []
        for student in students:
            delay(self.settings.student_delay_ms)
            try:
                items = self.client.get_student_daily_work(student.id, target)
            except UpstreamError as e:
                result.errors.append(f"{student.name} ({student.id}): {e}")
                logger.warning("Daily work fetch failed for {} ({}): {}", student.name, student.id, e)
                continue
            student_rows = daily_work_rows(student.id, student.name, items, target)
            logger.debug("{}: {} work items, {} rows", student.name, len(items), len(student_rows))
            rows.extend(student_rows)

        rows = dedupe_rows(rows, DAILY_WORK_KEY)
        if rows:
            try:
                with self.scope() as session:
                    upsert_rows(
                        session,
                        DailyWork,
                        rows,
                        conflict_columns=DAILY_WORK_KEY,
                        update_columns=DAILY_WORK_UPDATE_COLUMNS,
                    )
                result.total_work_count = len(rows)
            except OperationalError:
                raise
            except SQLAlchemyError as e:
                result.errors.append(f"Daily work save failed: {e}")
                logger.error("Daily work save failed for {} rows: {}", len(rows), e)

        logger.info(
            "Daily work for {}: {} rows from {} students, {} errors",
            target,
            result.total_work_count,
            result.total_students,
            len(result.errors),
        )

        if collect_details:
            details = ProblemDetailCollector(
                self.client,
                scope=self.scope,
                settings=self.settings,
                clock=self.clock,
                budget_seconds=self.settings.daily_work_detail_budget_seconds,
            ).collect(target)
            result.details = details
            result.errors.extend(details.errors)

        result.timer.finish()
        return result

    def students(self, student_ids: Sequence[str] | None = None) -> list[MathflatStudent]:
        """Active upstream students, restricted to `student_ids` when given."""
        students = self.client.list_active_students()
        if student_ids:
            wanted = {str(s) for s in student_ids}
            students = [s for s in students if s.id in wanted]
        return students
