# SQLAlchemy models
from .base import Base
from .directory import ClassRoom, ClassSchedule, ClassStudent, Student
from .mathflat import ChainJob, DailyWork, Homework, ProblemResult

__all__ = [
    "Base",
    "ChainJob",
    "ClassRoom",
    "ClassSchedule",
    "ClassStudent",
    "DailyWork",
    "Homework",
    "ProblemResult",
    "Student",
]
