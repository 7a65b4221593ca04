"""
Homework collector.

Pulls each target class's homework for a date, resolves every item's
upstream student id, counts worksheet problems with one supplementary call
per worksheet, and upserts the rows keyed by
(class, student, homework date, upstream homework id).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any, NamedTuple

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from config import Settings, get_settings
from mathflat_sync.collectors.normalize import dedupe_rows
from mathflat_sync.collectors.resolver import ReferenceResolver
from mathflat_sync.collectors.results import HomeworkResult, ProcessedClass
from mathflat_sync.core.dates import day_label
from mathflat_sync.core.exceptions import UpstreamError
from mathflat_sync.db.database import SessionScope, session_scope
from mathflat_sync.db.models import ClassRoom, ClassSchedule, Homework
from mathflat_sync.db.models.mathflat import new_id
from mathflat_sync.db.writes import upsert_rows
from mathflat_sync.upstream import MathflatClient
from mathflat_sync.upstream.pacing import delay
from mathflat_sync.upstream.types import BookType, HomeworkItem

HOMEWORK_KEY = ("mathflat_class_id", "mathflat_student_id", "homework_date", "student_homework_id")
HOMEWORK_UPDATE_COLUMNS = (
    "completed",
    "score",
    "title",
    "page",
    "progress_id_list",
    "worksheet_problem_ids",
    "total_problems",
)
# A failed worksheet lookup must not erase a count stored by an earlier run.
KEEP_WHEN_NULL = ("worksheet_problem_ids", "total_problems")

DEFAULT_TITLE = "숙제"
COLLECTION_TYPES = ("first",)


class TargetClass(NamedTuple):
    id: str
    name: str
    mathflat_class_id: str


class HomeworkCollector:
    """Per-class homework collection with per-class failure isolation."""

    def __init__(
        self,
        client: MathflatClient,
        scope: SessionScope = session_scope,
        settings: Settings | None = None,
    ) -> None:
        self.client = client
        self.scope = scope
        self.settings = settings or get_settings()
        self.resolver = ReferenceResolver(client, delay_ms=self.settings.student_delay_ms)

    def collect(
        self,
        collection_type: str,
        target: date,
        class_ids: Sequence[str] | None = None,
        homework_date: date | None = None,
    ) -> HomeworkResult:
        """
        Collect homework for the target date.

        Args:
            collection_type: Collection round label (required)
            target: Date the upstream is queried for
            class_ids: Upstream class ids to restrict to (default: classes
                scheduled on the target date's weekday)
            homework_date: Date stored on the rows (default: `target`)

        Raises:
            ValueError: If `collection_type` is empty
            AuthError: If the upstream login fails
        """
        if not collection_type:
            raise ValueError("collectionType is required")

        result = HomeworkResult(
            collection_type=collection_type,
            target_date=target,
            homework_date=homework_date or target,
        )
        self.resolver = ReferenceResolver(self.client, delay_ms=self.settings.student_delay_ms)
        classes = self.target_classes(target, class_ids)
        if not classes:
            message = f"No classes to collect for {target.isoformat()} ({day_label(target)})"
            logger.warning(message)
            result.errors.append(message)
            result.timer.finish()
            return result

        logger.info("Collecting homework for {} classes on {}", len(classes), target)
        for target_class in classes:
            processed = ProcessedClass(
                class_id=target_class.id,
                class_name=target_class.name,
                mathflat_class_id=target_class.mathflat_class_id,
            )
            try:
                self._collect_class(target_class, result, processed)
            except OperationalError:
                raise
            except (UpstreamError, SQLAlchemyError) as e:
                processed.error = str(e)
                result.errors.append(f"{target_class.name}: {e}")
                logger.warning("Homework collection failed for class {}: {}", target_class.name, e)
            result.processed_classes.append(processed)

        result.errors.extend(self.resolver.errors)
        result.timer.finish()
        logger.info(
            "Homework collection done: {} items across {} classes, {} errors",
            result.total_homework_count,
            len(result.processed_classes),
            len(result.errors),
        )
        return result

    # ========================================
    # Class resolution
    # ========================================

    def target_classes(self, target: date, class_ids: Sequence[str] | None = None) -> list[TargetClass]:
        """Active, upstream-linked classes: the given ids, else those scheduled on the target weekday."""
        stmt = select(ClassRoom.id, ClassRoom.name, ClassRoom.mathflat_class_id).where(
            ClassRoom.is_active.is_(True),
            ClassRoom.mathflat_class_id.is_not(None),
        )
        if class_ids:
            stmt = stmt.where(ClassRoom.mathflat_class_id.in_([str(c) for c in class_ids]))
        else:
            stmt = stmt.join(ClassSchedule, ClassSchedule.class_id == ClassRoom.id).where(
                ClassSchedule.day_of_week == day_label(target)
            )

        with self.scope() as session:
            rows = session.execute(stmt.order_by(ClassRoom.name)).all()

        seen: set[str] = set()
        classes = []
        for class_id, name, mathflat_class_id in rows:
            if class_id in seen:
                continue
            seen.add(class_id)
            classes.append(TargetClass(class_id, name, str(mathflat_class_id)))
        return classes

    # ========================================
    # Per-class collection
    # ========================================

    def _collect_class(self, target_class: TargetClass, result: HomeworkResult, processed: ProcessedClass) -> None:
        with self.scope() as session:
            local_map = self.resolver.local_name_map(session, target_class.id)

        delay(self.settings.student_delay_ms)
        items = self.client.get_class_homework(target_class.mathflat_class_id, result.target_date)

        rows = []
        students: set[str] = set()
        for item in items:
            if item.student_homework_id is None:
                logger.debug("Skipping homework item without id in class {}", target_class.name)
                continue
            student_id = self.resolver.resolve_student_id(item.student_name, item.student_id, local_map)
            if student_id is None:
                continue
            students.add(student_id)
            rows.append(self._row(target_class, item, student_id, result.homework_date, result))

        rows = dedupe_rows(rows, HOMEWORK_KEY)
        processed.student_count = len(students)
        processed.homework_count = len(rows)
        if not rows:
            return

        with self.scope() as session:
            existing = self._existing_keys(session, target_class.mathflat_class_id, result.homework_date)
            upsert_rows(
                session,
                Homework,
                rows,
                conflict_columns=HOMEWORK_KEY,
                update_columns=HOMEWORK_UPDATE_COLUMNS,
                keep_existing_when_null=KEEP_WHEN_NULL,
            )

        processed.updated = sum(
            1 for r in rows if (r["mathflat_student_id"], r["student_homework_id"]) in existing
        )
        processed.inserted = len(rows) - processed.updated
        logger.info(
            "Class {}: {} students, {} homework ({} new, {} updated)",
            target_class.name,
            processed.student_count,
            processed.homework_count,
            processed.inserted,
            processed.updated,
        )

    def _row(
        self,
        target_class: TargetClass,
        item: HomeworkItem,
        student_id: str,
        homework_date: date,
        result: HomeworkResult,
    ) -> dict[str, Any]:
        problem_ids, total = None, None
        if item.book_type is BookType.WORKSHEET and item.student_book_id:
            problem_ids, total = self._worksheet_problems(item, result)

        book_id = item.book_id or item.student_workbook_id
        return {
            "id": new_id(),
            "class_id": target_class.id,
            "mathflat_class_id": target_class.mathflat_class_id,
            "mathflat_student_id": student_id,
            "student_name": item.student_name or "",
            "homework_date": homework_date,
            "book_type": item.book_type.value,
            "book_id": str(book_id) if book_id else None,
            "student_book_id": str(item.student_book_id) if item.student_book_id else None,
            "student_homework_id": str(item.student_homework_id),
            "progress_id_list": item.progress_id_list or None,
            "worksheet_problem_ids": problem_ids,
            "total_problems": total,
            "title": item.title or DEFAULT_TITLE,
            "page": item.page,
            "completed": item.completed,
            "score": item.score,
        }

    def _worksheet_problems(self, item: HomeworkItem, result: HomeworkResult) -> tuple[list[int] | None, int | None]:
        """Problem ids and count of a worksheet; (None, None) when the lookup fails."""
        delay(self.settings.problem_delay_ms)
        try:
            problems = self.client.get_worksheet_problems(item.student_book_id)
        except UpstreamError as e:
            result.errors.append(f"Worksheet {item.student_book_id} problems: {e}")
            logger.warning("Worksheet problem lookup failed for {}: {}", item.student_book_id, e)
            return None, None
        ids = [p.worksheet_problem_id for p in problems if p.worksheet_problem_id is not None]
        logger.debug("Worksheet {} '{}': {} problems", item.student_book_id, item.title, len(problems))
        return ids, len(problems)

    @staticmethod
    def _existing_keys(session, mathflat_class_id: str, homework_date: date) -> set[tuple[str, str]]:
        rows = session.execute(
            select(Homework.mathflat_student_id, Homework.student_homework_id).where(
                Homework.mathflat_class_id == mathflat_class_id,
                Homework.homework_date == homework_date,
            )
        ).all()
        return {(student_id, hw_id) for student_id, hw_id in rows}
