"""
Tables written by the MathFlat collectors.

Uniqueness that the collectors rely on lives in the schema, so re-runs and
overlapping runs upsert or skip instead of duplicating rows.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp (chain job ages are compared in Python)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DailyWork(Base):
    """One student's counts for one book on one civil date."""

    __tablename__ = "mathflat_daily_work"
    __table_args__ = (
        UniqueConstraint(
            "mathflat_student_id", "work_date", "student_book_id",
            name="uq_mathflat_daily_work_student_date_book",
        ),
        Index("ix_mathflat_daily_work_date_wrong", "work_date", "wrong_count"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    mathflat_student_id: Mapped[str] = mapped_column(Text, nullable=False)
    student_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    work_type: Mapped[str] = mapped_column(Text, nullable=False)  # WORKBOOK | WORKSHEET
    category: Mapped[str] = mapped_column(Text, nullable=False)  # CHALLENGE | CHALLENGE_WRONG | CUSTOM
    book_id: Mapped[str | None] = mapped_column(Text)
    student_book_id: Mapped[str] = mapped_column(Text, nullable=False)
    student_workbook_id: Mapped[str | None] = mapped_column(Text)
    progress_id_list: Mapped[list[int] | None] = mapped_column(JSON)
    title: Mapped[str | None] = mapped_column(Text)
    subtitle: Mapped[str | None] = mapped_column(Text)
    chapter: Mapped[str | None] = mapped_column(Text)
    page: Mapped[str | None] = mapped_column(Text)
    assigned_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wrong_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    update_datetime: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())


class ProblemResult(Base):
    """A wrong (or unknown-outcome) problem inside a daily work row."""

    __tablename__ = "mathflat_problem_results"
    __table_args__ = (
        UniqueConstraint("daily_work_id", "problem_id", name="uq_mathflat_problem_results_work_problem"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    daily_work_id: Mapped[str] = mapped_column(
        ForeignKey("mathflat_daily_work.id", ondelete="CASCADE"), nullable=False, index=True
    )
    progress_id: Mapped[int | None] = mapped_column(Integer)
    problem_id: Mapped[str] = mapped_column(Text, nullable=False)
    workbook_problem_id: Mapped[str | None] = mapped_column(Text)
    worksheet_problem_id: Mapped[str | None] = mapped_column(Text)
    problem_title: Mapped[str | None] = mapped_column(Text)
    problem_number: Mapped[str | None] = mapped_column(Text)
    concept_id: Mapped[str | None] = mapped_column(Text)
    concept_name: Mapped[str | None] = mapped_column(Text)
    topic_id: Mapped[str | None] = mapped_column(Text)
    sub_topic_id: Mapped[str | None] = mapped_column(Text)
    level: Mapped[int | None] = mapped_column(Integer)
    type: Mapped[str | None] = mapped_column(Text)
    tag_top: Mapped[str | None] = mapped_column(Text)
    correct_answer: Mapped[str | None] = mapped_column(Text)
    user_answer: Mapped[str | None] = mapped_column(Text)
    result: Mapped[str] = mapped_column(Text, nullable=False)
    total_used: Mapped[int | None] = mapped_column(Integer)
    correct_times: Mapped[int | None] = mapped_column(Integer)
    wrong_times: Mapped[int | None] = mapped_column(Integer)
    answer_rate: Mapped[float | None] = mapped_column(Float)
    problem_image_url: Mapped[str | None] = mapped_column(Text)
    solution_image_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class Homework(Base):
    """One student's homework book for a class on a civil date."""

    __tablename__ = "mathflat_homework"
    __table_args__ = (
        UniqueConstraint(
            "mathflat_class_id", "mathflat_student_id", "homework_date", "student_homework_id",
            name="uq_mathflat_homework_class_student_date_hw",
        ),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    class_id: Mapped[str | None] = mapped_column(ForeignKey("classes.id"))
    mathflat_class_id: Mapped[str] = mapped_column(Text, nullable=False)
    mathflat_student_id: Mapped[str] = mapped_column(Text, nullable=False)
    student_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    homework_date: Mapped[date] = mapped_column(Date, nullable=False)
    book_type: Mapped[str] = mapped_column(Text, nullable=False)
    book_id: Mapped[str | None] = mapped_column(Text)
    student_book_id: Mapped[str | None] = mapped_column(Text)
    student_homework_id: Mapped[str] = mapped_column(Text, nullable=False)
    progress_id_list: Mapped[list[int] | None] = mapped_column(JSON)
    worksheet_problem_ids: Mapped[list[int] | None] = mapped_column(JSON)
    total_problems: Mapped[int | None] = mapped_column(Integer)
    title: Mapped[str | None] = mapped_column(Text)
    page: Mapped[str | None] = mapped_column(Text)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    score: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())


class ChainJob(Base):
    """
    Durable record of one wrong-detail continuation hop.

    Status flow: pending -> triggered -> running -> completed | failed.
    A job left pending (or stuck triggered/running) is picked up by the
    resume worker.
    """

    __tablename__ = "mathflat_chain_jobs"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    target_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    chain_depth: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    remaining: Mapped[int | None] = mapped_column(Integer)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_date": self.target_date.isoformat(),
            "chain_depth": self.chain_depth,
            "status": self.status,
            "remaining": self.remaining,
            "error": self.error,
        }
