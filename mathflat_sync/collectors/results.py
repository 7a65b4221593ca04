"""Run results returned by the collectors and rendered by the API/CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


class RunTimer:
    """Start/finish timestamps of a collection run."""

    def __init__(self) -> None:
        self.started_at = datetime.now()
        self.completed_at: datetime | None = None

    def finish(self) -> None:
        self.completed_at = datetime.now()

    def duration_ms(self) -> int:
        end = self.completed_at or datetime.now()
        return int((end - self.started_at).total_seconds() * 1000)


@dataclass
class DailyWorkResult:
    """Outcome of a daily-activity collection."""

    target_date: date
    total_students: int = 0
    total_work_count: int = 0
    errors: list[str] = field(default_factory=list)
    details: ProblemDetailResult | None = None
    timer: RunTimer = field(default_factory=RunTimer)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "targetDate": self.target_date.isoformat(),
            "totalStudents": self.total_students,
            "totalWorkCount": self.total_work_count,
            "errorCount": len(self.errors),
            "durationMs": self.timer.duration_ms(),
        }
        if self.details is not None:
            data.update(
                batchesProcessed=self.details.batches_processed,
                wrongProblemsCollected=self.details.wrong_problems_collected,
                remainingDailyWorks=self.details.remaining,
            )
        return data


@dataclass
class ProcessedClass:
    """Per-class slice of a homework collection."""

    class_id: str
    class_name: str
    mathflat_class_id: str
    student_count: int = 0
    homework_count: int = 0
    inserted: int = 0
    updated: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "className": self.class_name,
            "studentCount": self.student_count,
            "homeworkCount": self.homework_count,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class HomeworkResult:
    """Outcome of a homework collection."""

    collection_type: str
    target_date: date
    homework_date: date
    processed_classes: list[ProcessedClass] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    timer: RunTimer = field(default_factory=RunTimer)

    @property
    def total_homework_count(self) -> int:
        return sum(c.homework_count for c in self.processed_classes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collectionType": self.collection_type,
            "targetDate": self.target_date.isoformat(),
            "homeworkDate": self.homework_date.isoformat(),
            "processedClasses": [c.to_dict() for c in self.processed_classes],
            "totalHomeworkCount": self.total_homework_count,
            "errorCount": len(self.errors),
            "durationMs": self.timer.duration_ms(),
        }


@dataclass
class ProblemDetailResult:
    """Outcome of one wrong-detail invocation (one chain hop)."""

    target_date: date
    chain_depth: int = 0
    batches_processed: int = 0
    wrong_problems_collected: int = 0
    rows_inserted: int = 0
    remaining: int = 0
    budget_exhausted: bool = False
    errors: list[str] = field(default_factory=list)
    timer: RunTimer = field(default_factory=RunTimer)

    @property
    def complete(self) -> bool:
        return self.remaining == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetDate": self.target_date.isoformat(),
            "chainDepth": self.chain_depth,
            "batchesProcessed": self.batches_processed,
            "wrongProblemsCollected": self.wrong_problems_collected,
            "rowsInserted": self.rows_inserted,
            "remainingDailyWorks": self.remaining,
            "errorCount": len(self.errors),
            "durationMs": self.timer.duration_ms(),
        }
