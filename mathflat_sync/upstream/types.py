"""
Typed views of MathFlat API payloads.

Each record parses one raw JSON object with `from_dict`; missing keys fall
back to empty values instead of raising, because the upstream omits fields
freely (e.g. `scoring` on unanswered workbook problems).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BookType(str, Enum):
    """Structured workbook vs. flat worksheet."""

    WORKBOOK = "WORKBOOK"
    WORKSHEET = "WORKSHEET"

    @classmethod
    def parse(cls, value: Any, default: BookType | None = None) -> BookType | None:
        try:
            return cls(str(value).upper())
        except ValueError:
            return default


class WorkCategory(str, Enum):
    """Stored category of a daily activity."""

    CHALLENGE = "CHALLENGE"
    CHALLENGE_WRONG = "CHALLENGE_WRONG"
    CUSTOM = "CUSTOM"

    @classmethod
    def from_work_type(cls, work_type: str | None) -> WorkCategory:
        """Map the upstream item type onto the stored category."""
        if work_type == "CHALLENGE":
            return cls.CHALLENGE
        if work_type == "SUPPLEMENTARY_WRONG_CHALLENGE":
            return cls.CHALLENGE_WRONG
        return cls.CUSTOM


class ProblemOutcome(str, Enum):
    """Scoring outcome of a single problem."""

    CORRECT = "CORRECT"
    WRONG = "WRONG"
    NONE = "NONE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> ProblemOutcome:
        if value is None or value == "":
            return cls.NONE
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


# Outcomes worth a detail row; correct and unanswered problems are skipped.
DETAIL_OUTCOMES = frozenset({ProblemOutcome.WRONG, ProblemOutcome.UNKNOWN})


def _int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _int_list(value: Any) -> list[int]:
    if not isinstance(value, list):
        return []
    return [v for v in (_int(x) for x in value) if v is not None]


@dataclass
class MathflatStudent:
    """Entry of the upstream student directory."""

    id: str
    name: str
    school_name: str | None = None
    grade: int | None = None
    status: str | None = None

    @property
    def active(self) -> bool:
        return self.status == "ACTIVE"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MathflatStudent:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            school_name=data.get("schoolName"),
            grade=_int(data.get("grade")),
            status=data.get("status"),
        )


@dataclass
class WorkComponent:
    """Per-student counts of one daily work item."""

    student_book_id: int | None
    assigned_count: int = 0
    correct_count: int = 0
    wrong_count: int = 0
    book_type: BookType | None = None
    student_name: str = ""
    student_workbook_id: int | None = None
    page: str | None = None
    progress_id_list: list[int] = field(default_factory=list)
    update_datetime: str | None = None
    status: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkComponent:
        return cls(
            student_book_id=_int(data.get("studentBookId")),
            assigned_count=_int(data.get("assignedCount")) or 0,
            correct_count=_int(data.get("correctCount")) or 0,
            wrong_count=_int(data.get("wrongCount")) or 0,
            book_type=BookType.parse(data.get("bookType")),
            student_name=data.get("studentName") or "",
            student_workbook_id=_int(data.get("studentWorkbookId")),
            page=data.get("page"),
            progress_id_list=_int_list(data.get("progressIdList")),
            update_datetime=data.get("updateDatetime"),
            status=data.get("status"),
        )


@dataclass
class WorkItem:
    """One book of a student's daily work, possibly with nested self-learnings."""

    book_type: BookType
    book_id: int | None
    type: str | None
    title: str | None = None
    subtitle: str | None = None
    chapter: str | None = None
    components: list[WorkComponent] = field(default_factory=list)
    self_learnings: list[WorkItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkItem:
        return cls(
            book_type=BookType.parse(data.get("bookType"), BookType.WORKSHEET),
            book_id=_int(data.get("bookId")),
            type=data.get("type"),
            title=data.get("title"),
            subtitle=data.get("subtitle"),
            chapter=data.get("chapter"),
            components=[WorkComponent.from_dict(c) for c in data.get("components") or []],
            self_learnings=[cls.from_dict(s) for s in data.get("selfLearnings") or []],
        )


@dataclass
class HomeworkItem:
    """One student's copy of a class homework book."""

    student_homework_id: int | None
    student_book_id: int | None
    book_type: BookType
    completed: bool = False
    book_id: int | None = None
    student_workbook_id: int | None = None
    progress_id_list: list[int] = field(default_factory=list)
    title: str | None = None
    page: str | None = None
    score: float | None = None
    status: str | None = None
    create_datetime: str | None = None
    student_name: str | None = None
    student_id: str | None = None

    @classmethod
    def from_component(cls, book: dict[str, Any], component: dict[str, Any]) -> HomeworkItem:
        """Build from a homework book and one of its per-student components."""
        score = component.get("score")
        student_id = component.get("studentId")
        return cls(
            student_homework_id=_int(component.get("studentHomeworkId")),
            student_book_id=_int(component.get("studentBookId")),
            book_type=(
                BookType.parse(component.get("bookType"))
                or BookType.parse(book.get("bookType"), BookType.WORKSHEET)
            ),
            completed=bool(component.get("completed", False)),
            book_id=_int(book.get("bookId")),
            student_workbook_id=_int(component.get("studentWorkbookId")),
            progress_id_list=_int_list(component.get("progressIdList")),
            title=book.get("title"),
            page=component.get("page"),
            score=float(score) if score is not None else None,
            status=component.get("status"),
            create_datetime=component.get("createDatetime"),
            student_name=component.get("studentName"),
            student_id=str(student_id) if student_id else None,
        )


@dataclass
class ProblemDetail:
    """
    Scored problem from either detail listing.

    Workbook problems carry `workbook_problem_id` and the progress step they
    belong to; worksheet problems carry `worksheet_problem_id` and usage
    statistics.
    """

    problem_id: int
    result: ProblemOutcome
    book_type: BookType
    workbook_problem_id: int | None = None
    worksheet_problem_id: int | None = None
    progress_id: int | None = None
    title: str | None = None
    number: str | None = None
    concept_id: int | None = None
    concept_name: str | None = None
    topic_id: int | None = None
    sub_topic_id: int | None = None
    level: int | None = None
    type: str | None = None
    tag_top: str | None = None
    correct_answer: str | None = None
    user_answer: str | None = None
    total_used: int | None = None
    correct_times: int | None = None
    wrong_times: int | None = None
    answer_rate: float | None = None
    problem_image_url: str | None = None
    solution_image_url: str | None = None

    @classmethod
    def from_workbook(cls, raw: dict[str, Any]) -> ProblemDetail:
        scoring = raw.get("scoring") or {}
        return cls(
            problem_id=_int(raw.get("problemId")) or 0,
            result=ProblemOutcome.parse(scoring.get("result")),
            book_type=BookType.WORKBOOK,
            workbook_problem_id=_int(raw.get("id")),
            progress_id=_int(scoring.get("studentWorkbookProgressId")),
            title=raw.get("title"),
            number=raw.get("number"),
            concept_id=_int(raw.get("conceptId")),
            concept_name=raw.get("conceptName"),
            topic_id=_int(raw.get("topicId")),
            sub_topic_id=_int(raw.get("subTopicId")),
            level=_int(raw.get("level")),
            type=raw.get("type"),
            tag_top=raw.get("tagTop"),
            correct_answer=raw.get("answer"),
            user_answer=scoring.get("userAnswer"),
            problem_image_url=raw.get("problemImageUrl"),
            solution_image_url=raw.get("solutionImageUrl"),
        )

    @classmethod
    def from_worksheet(cls, raw: dict[str, Any]) -> ProblemDetail:
        problem = raw.get("problem") or {}
        summary = problem.get("problemSummary") or {}
        answer_rate = summary.get("answerRate")
        return cls(
            problem_id=_int(problem.get("id")) or 0,
            result=ProblemOutcome.parse(raw.get("result")),
            book_type=BookType.WORKSHEET,
            worksheet_problem_id=_int(raw.get("worksheetProblemId")),
            title=problem.get("title"),
            number=problem.get("number"),
            concept_id=_int(problem.get("conceptId")),
            concept_name=problem.get("conceptName"),
            topic_id=_int(problem.get("topicId")),
            sub_topic_id=_int(problem.get("subTopicId")),
            level=_int(problem.get("level")),
            type=problem.get("type"),
            tag_top=problem.get("tagTop"),
            correct_answer=problem.get("answer"),
            user_answer=raw.get("userAnswer"),
            total_used=_int(summary.get("totalUsed")),
            correct_times=_int(summary.get("correctTimes")),
            wrong_times=_int(summary.get("wrongTimes")),
            answer_rate=float(answer_rate) if answer_rate is not None else None,
            problem_image_url=problem.get("problemImageUrl"),
            solution_image_url=problem.get("solutionImageUrl"),
        )

    @property
    def needs_detail(self) -> bool:
        return self.result in DETAIL_OUTCOMES
