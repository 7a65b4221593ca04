"""
Reference directory tables (students, classes, weekly schedule).

Owned by the academy's CRUD side; the collectors only read them.
"""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Student(Base):
    """Local student record, optionally linked to a MathFlat student id."""

    __tablename__ = "students"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str | None] = mapped_column(Text)
    mathflat_student_id: Mapped[str | None] = mapped_column(Text, index=True)


class ClassRoom(Base):
    """Local class, optionally linked to a MathFlat lesson class."""

    __tablename__ = "classes"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    mathflat_class_id: Mapped[str | None] = mapped_column(Text, index=True)


class ClassSchedule(Base):
    """Weekly slot of a class; `day_of_week` is a label such as '월'."""

    __tablename__ = "class_schedules"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    class_id: Mapped[str] = mapped_column(ForeignKey("classes.id"), nullable=False)
    day_of_week: Mapped[str] = mapped_column(Text, nullable=False)


class ClassStudent(Base):
    """Class membership."""

    __tablename__ = "class_students"

    class_id: Mapped[str] = mapped_column(ForeignKey("classes.id"), primary_key=True)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id"), primary_key=True)
