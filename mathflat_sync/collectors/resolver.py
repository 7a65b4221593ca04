"""
Reference resolver: local student/class records -> upstream identifiers.

The academy's own tables are the primary source of truth. The upstream
student directory is only a fallback, fetched at most once per resolver.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from mathflat_sync.core.exceptions import UpstreamError
from mathflat_sync.db.models import ClassStudent, Student
from mathflat_sync.upstream import MathflatClient
from mathflat_sync.upstream.pacing import delay


class ReferenceResolver:
    """Resolve upstream student ids for homework items."""

    def __init__(self, client: MathflatClient, delay_ms: int = 0) -> None:
        self.client = client
        self.delay_ms = delay_ms
        self._directory: dict[str, str] | None = None
        self.errors: list[str] = []

    @staticmethod
    def local_name_map(session: Session, class_id: str) -> dict[str, str]:
        """Name -> upstream student id for the linked members of a local class."""
        rows = session.execute(
            select(Student.name, Student.mathflat_student_id)
            .join(ClassStudent, ClassStudent.student_id == Student.id)
            .where(ClassStudent.class_id == class_id)
            .where(Student.mathflat_student_id.is_not(None))
        ).all()
        return {name: str(mathflat_id) for name, mathflat_id in rows if name}

    def directory(self) -> dict[str, str]:
        """
        Upstream directory as name -> id, fetched on first use.

        A failed fetch is recorded in `errors` once and leaves the directory
        empty, so unresolved students fall through to their names.
        """
        if self._directory is None:
            delay(self.delay_ms)
            try:
                students = self.client.list_students()
            except UpstreamError as e:
                self.errors.append(f"Student directory lookup failed: {e}")
                logger.warning("Student directory lookup failed: {}", e)
                self._directory = {}
                return self._directory
            self._directory = {s.name: s.id for s in students if s.name and s.id}
            logger.debug("Loaded upstream directory fallback ({} names)", len(self._directory))
        return self._directory

    def resolve_student_id(
        self,
        student_name: str | None,
        embedded_id: str | None,
        local_map: dict[str, str],
    ) -> str | None:
        """
        Resolve a homework item's upstream student id.

        Order: local name map, the id embedded in the item, the upstream
        directory by name, and finally the name itself as the stored key.

        Returns:
            The resolved key, or None when the item has neither id nor name
        """
        name = (student_name or "").strip()
        if name and name in local_map:
            return local_map[name]
        if embedded_id:
            return embedded_id
        if not name:
            return None
        found = self.directory().get(name)
        if found:
            return found
        logger.warning("No upstream id for student '{}'; keying by name", name)
        return name
