"""
Wrong-answer detail collector.

One invocation runs a single loop bounded by a wall-clock budget:

1. select the date's daily work rows with wrong answers, cheapest first
2. drop rows that already have detail, or were handled earlier in this loop
3. batch greedily up to a soft cap of estimated wrong answers (always at
   least one row, so an oversized row still makes progress)
4. fetch each batched row's problems, re-checking the budget per row
5. insert the wrong/unknown ones, skipping rows that already exist

Progress is derived from the store on every pass; nothing records a cursor.
When the budget runs out with work left, the caller decides whether to
continue in another invocation (see `chain`).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from config import Settings, get_settings
from mathflat_sync.collectors.normalize import problem_result_row
from mathflat_sync.collectors.results import ProblemDetailResult
from mathflat_sync.core.exceptions import UpstreamError
from mathflat_sync.db.database import SessionScope, session_scope
from mathflat_sync.db.models import DailyWork, ProblemResult
from mathflat_sync.db.writes import chunked, insert_ignore_rows
from mathflat_sync.upstream import MathflatClient
from mathflat_sync.upstream.pacing import delay
from mathflat_sync.upstream.types import BookType, ProblemDetail

PROBLEM_RESULT_KEY = ("daily_work_id", "problem_id")

# Bound on ids per IN (...) clause.
LOOKUP_CHUNK = 500


@dataclass(frozen=True)
class Candidate:
    """Daily work row that needs detail collection."""

    id: str
    mathflat_student_id: str
    work_type: str
    student_book_id: str
    student_workbook_id: str | None
    progress_id_list: tuple[int, ...] = field(default_factory=tuple)
    wrong_count: int = 0


def build_batch(candidates: Sequence[Candidate], soft_cap: int) -> tuple[list[Candidate], list[Candidate]]:
    """
    Split off the leading candidates whose wrong counts fit under `soft_cap`.

    The first candidate is always taken, even when it alone exceeds the cap.

    Returns:
        Tuple of (batch, rest)
    """
    batch: list[Candidate] = []
    total = 0
    for index, candidate in enumerate(candidates):
        if batch and total + candidate.wrong_count > soft_cap:
            return batch, list(candidates[index:])
        batch.append(candidate)
        total += candidate.wrong_count
    return batch, []


class ProblemDetailCollector:
    """Time-boxed, cost-bounded wrong-answer detail loop."""

    def __init__(
        self,
        client: MathflatClient,
        scope: SessionScope = session_scope,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        budget_seconds: float | None = None,
    ) -> None:
        """
        Initialize the collector.

        Args:
            client: Upstream client
            scope: Transaction scope factory
            settings: Settings (default: cached settings)
            clock: Monotonic clock the budget is measured with
            budget_seconds: Wall-clock budget (default: PROBLEM_BUDGET_SECONDS)
        """
        self.client = client
        self.scope = scope
        self.settings = settings or get_settings()
        self.clock = clock
        self.budget_seconds = (
            budget_seconds if budget_seconds is not None else self.settings.problem_budget_seconds
        )
        self._started = 0.0

    def _over_budget(self) -> bool:
        return self.clock() - self._started > self.budget_seconds

    def collect(self, target: date, chain_depth: int = 0) -> ProblemDetailResult:
        """
        Run the detail loop for one civil date.

        Args:
            target: Date whose daily work rows are processed
            chain_depth: Continuation depth, reported back unchanged

        Returns:
            Result with the remaining candidate count when the budget ran out

        Raises:
            AuthError: If the upstream login fails
            OperationalError: If the store is unreachable
        """
        result = ProblemDetailResult(target_date=target, chain_depth=chain_depth)
        self._started = self.clock()
        processed: set[str] = set()
        soft_cap = self.settings.problem_soft_cap

        logger.info("Wrong-detail collection for {} (depth {}, budget {}s)", target, chain_depth, self.budget_seconds)
        while True:
            candidates = self.select_candidates(target)
            if not candidates:
                result.remaining = 0
                break

            done = self.with_existing_detail(c.id for c in candidates)
            pending = [c for c in candidates if c.id not in done and c.id not in processed]
            if not pending:
                result.remaining = 0
                break

            batch, rest = build_batch(pending, soft_cap)
            result.remaining = len(rest)
            logger.info(
                "Batch {}: {} rows (~{} wrong answers), {} pending after it",
                result.batches_processed + 1,
                len(batch),
                sum(c.wrong_count for c in batch),
                len(rest),
            )

            rows: list[dict[str, Any]] = []
            for index, candidate in enumerate(batch):
                if self._over_budget():
                    result.remaining = len(batch) - index + len(rest)
                    result.budget_exhausted = True
                    logger.info("Budget exhausted mid-batch; {} rows remaining", result.remaining)
                    break
                processed.add(candidate.id)
                try:
                    details = self.fetch_details(candidate)
                except UpstreamError as e:
                    result.errors.append(f"daily_work {candidate.id}: {e}")
                    logger.warning("Detail fetch failed for daily_work {}: {}", candidate.id, e)
                    continue
                rows.extend(problem_result_row(candidate.id, d) for d in details if d.needs_detail)

            result.wrong_problems_collected += len(rows)
            result.rows_inserted += self._persist(rows, result)
            result.batches_processed += 1

            if result.budget_exhausted or self._over_budget():
                result.budget_exhausted = True
                break

        result.timer.finish()
        logger.info(
            "Wrong-detail collection for {} finished: {} batches, {} problems, {} remaining",
            target,
            result.batches_processed,
            result.wrong_problems_collected,
            result.remaining,
        )
        return result

    # ========================================
    # Store queries
    # ========================================

    def select_candidates(self, target: date) -> list[Candidate]:
        """Daily work rows of the date with wrong answers, ascending by wrong count."""
        with self.scope() as session:
            rows = session.execute(
                select(
                    DailyWork.id,
                    DailyWork.mathflat_student_id,
                    DailyWork.work_type,
                    DailyWork.student_book_id,
                    DailyWork.student_workbook_id,
                    DailyWork.progress_id_list,
                    DailyWork.wrong_count,
                )
                .where(DailyWork.work_date == target, DailyWork.wrong_count > 0)
                .order_by(DailyWork.wrong_count.asc(), DailyWork.id.asc())
            ).all()
        return [
            Candidate(
                id=row.id,
                mathflat_student_id=row.mathflat_student_id,
                work_type=row.work_type,
                student_book_id=row.student_book_id,
                student_workbook_id=row.student_workbook_id,
                progress_id_list=tuple(row.progress_id_list or ()),
                wrong_count=row.wrong_count,
            )
            for row in rows
        ]

    def with_existing_detail(self, daily_work_ids: Iterable[str]) -> set[str]:
        """Subset of the ids that already own at least one problem result."""
        ids = list(daily_work_ids)
        found: set[str] = set()
        with self.scope() as session:
            for chunk in chunked(ids, LOOKUP_CHUNK):
                found.update(
                    session.scalars(
                        select(ProblemResult.daily_work_id)
                        .where(ProblemResult.daily_work_id.in_(list(chunk)))
                        .distinct()
                    ).all()
                )
        return found

    # ========================================
    # Upstream fetch
    # ========================================

    def fetch_details(self, candidate: Candidate) -> list[ProblemDetail]:
        """
        Fetch every scored problem of one daily work row.

        Workbook rows take one call per progress id; worksheet rows take a
        single call. Any failed call fails the whole row so none of its
        problems are stored and a later run retries it.
        """
        if candidate.work_type == BookType.WORKBOOK.value:
            if not candidate.student_workbook_id or not candidate.progress_id_list:
                logger.debug("daily_work {} has no workbook progress to fetch", candidate.id)
                return []
            details: list[ProblemDetail] = []
            for progress_id in candidate.progress_id_list:
                delay(self.settings.problem_delay_ms)
                problems = self.client.get_workbook_problems(
                    candidate.mathflat_student_id,
                    int(candidate.student_workbook_id),
                    int(candidate.student_book_id),
                    progress_id,
                )
                for problem in problems:
                    if problem.progress_id is None:
                        problem.progress_id = progress_id
                details.extend(problems)
            return details

        delay(self.settings.problem_delay_ms)
        return self.client.get_worksheet_problems(int(candidate.student_book_id))

    # ========================================
    # Persistence
    # ========================================

    def _persist(self, rows: list[dict[str, Any]], result: ProblemDetailResult) -> int:
        """Insert rows in fixed-size sub-batches; failures are recorded, not raised."""
        inserted = 0
        for chunk in chunked(rows, self.settings.problem_insert_batch_size):
            try:
                with self.scope() as session:
                    inserted += insert_ignore_rows(session, ProblemResult, chunk, PROBLEM_RESULT_KEY)
            except OperationalError:
                raise
            except SQLAlchemyError as e:
                result.errors.append(f"Problem result insert failed ({len(chunk)} rows): {e}")
                logger.warning("Problem result insert failed for {} rows: {}", len(chunk), e)
        return inserted
