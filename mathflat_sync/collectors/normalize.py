"""
Upstream records -> store rows.

Row dictionaries carry every column of their table so a multi-row
`INSERT ... ON CONFLICT` statement gets a uniform VALUES shape.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator
from datetime import date
from typing import Any

from mathflat_sync.core.dates import civil_date_of
from mathflat_sync.db.models.mathflat import new_id
from mathflat_sync.upstream.types import ProblemDetail, WorkCategory, WorkComponent, WorkItem

DAILY_WORK_KEY = ("mathflat_student_id", "work_date", "student_book_id")

# Refreshed on every re-collection of the same key.
DAILY_WORK_UPDATE_COLUMNS = (
    "student_name",
    "work_type",
    "category",
    "book_id",
    "student_workbook_id",
    "progress_id_list",
    "title",
    "subtitle",
    "chapter",
    "page",
    "assigned_count",
    "correct_count",
    "wrong_count",
    "correct_rate",
    "update_datetime",
)


def _str(value: Any) -> str | None:
    return str(value) if value is not None else None


def correct_rate(correct: int, assigned: int) -> int:
    """Whole-percent correct rate, halves rounded up; 0 when nothing was assigned."""
    if assigned <= 0:
        return 0
    return math.floor(correct / assigned * 100 + 0.5)


def iter_components(items: Iterable[WorkItem]) -> Iterator[tuple[WorkItem, WorkComponent]]:
    """Yield (item, component) pairs, self-learning sub-items included."""
    for item in items:
        for component in item.components:
            yield item, component
        yield from iter_components(item.self_learnings)


def daily_work_rows(student_id: str, student_name: str, items: Iterable[WorkItem], target: date) -> list[dict[str, Any]]:
    """
    Flatten one student's work items into `mathflat_daily_work` rows.

    Components with nothing assigned, or without a book id to key on, are
    skipped. Each row is dated by the civil date of its last update, else
    by the target date.
    """
    rows = []
    for item, component in iter_components(items):
        if component.assigned_count <= 0 or component.student_book_id is None:
            continue
        work_type = component.book_type or item.book_type
        rows.append({
            "id": new_id(),
            "mathflat_student_id": student_id,
            "student_name": component.student_name or student_name,
            "work_date": civil_date_of(component.update_datetime) or target,
            "work_type": work_type.value,
            "category": WorkCategory.from_work_type(item.type).value,
            "book_id": _str(item.book_id),
            "student_book_id": str(component.student_book_id),
            "student_workbook_id": _str(component.student_workbook_id),
            "progress_id_list": component.progress_id_list or None,
            "title": item.title,
            "subtitle": item.subtitle,
            "chapter": item.chapter,
            "page": component.page,
            "assigned_count": component.assigned_count,
            "correct_count": component.correct_count,
            "wrong_count": component.wrong_count,
            "correct_rate": correct_rate(component.correct_count, component.assigned_count),
            "update_datetime": component.update_datetime,
        })
    return rows


def dedupe_rows(rows: Iterable[dict[str, Any]], key: Iterable[str]) -> list[dict[str, Any]]:
    """
    Keep the last row per key.

    A single ON CONFLICT statement may not touch the same row twice, and the
    upstream can report one book under both a regular item and a self-learning.
    """
    columns = tuple(key)
    unique: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        unique[tuple(row[c] for c in columns)] = row
    return list(unique.values())


def problem_result_row(daily_work_id: str, detail: ProblemDetail) -> dict[str, Any]:
    """Map a scored problem onto a `mathflat_problem_results` row."""
    return {
        "id": new_id(),
        "daily_work_id": daily_work_id,
        "progress_id": detail.progress_id,
        "problem_id": str(detail.problem_id),
        "workbook_problem_id": _str(detail.workbook_problem_id),
        "worksheet_problem_id": _str(detail.worksheet_problem_id),
        "problem_title": detail.title,
        "problem_number": detail.number,
        "concept_id": _str(detail.concept_id),
        "concept_name": detail.concept_name,
        "topic_id": _str(detail.topic_id),
        "sub_topic_id": _str(detail.sub_topic_id),
        "level": detail.level,
        "type": detail.type,
        "tag_top": detail.tag_top,
        "correct_answer": detail.correct_answer,
        "user_answer": detail.user_answer,
        "result": detail.result.value,
        "total_used": detail.total_used,
        "correct_times": detail.correct_times,
        "wrong_times": detail.wrong_times,
        "answer_rate": detail.answer_rate,
        "problem_image_url": detail.problem_image_url,
        "solution_image_url": detail.solution_image_url,
    }
