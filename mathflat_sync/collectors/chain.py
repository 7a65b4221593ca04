"""
Chain orchestrator for wrong-detail continuation.

When a detail hop runs out of budget with work left, the next hop is
recorded as a `mathflat_chain_jobs` row and triggered with a short-timeout
POST to the service's own endpoint. The POST is fire-and-forget: the
timeout fires long before the next hop finishes, and that is a successful
trigger. Jobs that never start are picked up by the resume worker.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import httpx
from loguru import logger
from sqlalchemy import and_, or_, select, update

from config import Settings, get_settings
from mathflat_sync.collectors.problem_details import ProblemDetailCollector
from mathflat_sync.collectors.results import ProblemDetailResult
from mathflat_sync.db.database import SessionScope, session_scope
from mathflat_sync.db.models import ChainJob
from mathflat_sync.db.models.mathflat import utcnow

CONTINUATION_PATH = "/api/collect/problem-details"

PENDING = "pending"
TRIGGERED = "triggered"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class HopOutcome:
    """What one detail hop did and whether another should follow."""

    depth: int
    message: str
    result: ProblemDetailResult | None = None
    next_depth: int | None = None
    next_job: dict[str, Any] | None = None
    ceiling_reached: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict() if self.result else {"chainDepth": self.depth}
        data["maxDepthReached"] = self.ceiling_reached
        if self.next_depth is not None:
            data["nextChainDepth"] = self.next_depth
        if self.next_job is not None:
            data["nextJob"] = self.next_job
        return data


class ChainOrchestrator:
    """Records, triggers and tracks continuation hops."""

    def __init__(
        self,
        scope: SessionScope = session_scope,
        settings: Settings | None = None,
        post: Callable[..., httpx.Response] = httpx.post,
    ) -> None:
        self.scope = scope
        self.settings = settings or get_settings()
        self._post = post

    @property
    def max_depth(self) -> int:
        return self.settings.max_chain_depth

    def at_ceiling(self, depth: int) -> bool:
        """True when a hop at `depth` must not run at all."""
        return depth >= self.max_depth

    def should_continue(self, result: ProblemDetailResult) -> bool:
        """Continue only with work left and room below the ceiling for one more hop."""
        return result.remaining > 0 and result.chain_depth < self.max_depth - 1

    # ========================================
    # Triggering
    # ========================================

    def trigger(self, target: date, depth: int) -> dict[str, Any] | None:
        """
        Record the hop at `depth` and fire its continuation request.

        Returns:
            The job record; status `triggered` once sent, `pending` otherwise
        """
        with self.scope() as session:
            job = ChainJob(target_date=target, chain_depth=depth, status=PENDING)
            session.add(job)
            session.flush()
            job_id = job.id

        secret = self.settings.cron_secret
        if not secret:
            logger.warning("CRON_SECRET is not configured; chain job {} left pending", job_id)
            return self._settle(job_id, status=PENDING, error="CRON_SECRET is not configured")

        url = f"{self.settings.self_base_url.rstrip('/')}{CONTINUATION_PATH}"
        body = {"targetDate": target.isoformat(), "chainDepth": depth, "jobId": job_id}
        try:
            response = self._post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {secret}", "Content-Type": "application/json"},
                timeout=self.settings.chain_trigger_timeout_seconds,
            )
        except httpx.TimeoutException:
            # The next hop is running; only the wait was cut short.
            logger.info("Chain hop {} for {} triggered (job {})", depth, target, job_id)
            return self._settle(job_id, status=TRIGGERED)
        except httpx.HTTPError as e:
            logger.warning("Chain trigger failed for job {}: {}", job_id, e)
            return self._settle(job_id, status=PENDING, error=str(e))

        if not response.is_success:
            logger.warning("Chain trigger rejected for job {}: {}", job_id, response.status_code)
            return self._settle(job_id, status=PENDING, error=f"HTTP {response.status_code}: {response.text[:300]}")

        logger.info("Chain hop {} for {} triggered (job {})", depth, target, job_id)
        return self._settle(job_id, status=TRIGGERED)

    # ========================================
    # Job bookkeeping
    # ========================================

    def mark_running(self, job_id: str | None) -> None:
        if job_id:
            self._update(job_id, status=RUNNING, error=None)

    def mark_completed(self, job_id: str | None, remaining: int | None) -> None:
        if job_id:
            self._update(job_id, status=COMPLETED, remaining=remaining)

    def mark_failed(self, job_id: str | None, error: str) -> None:
        if job_id:
            self._update(job_id, status=FAILED, error=error)

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        with self.scope() as session:
            job = session.get(ChainJob, job_id)
            return job.to_dict() if job else None

    def find_resumable(self, now=None) -> list[dict[str, Any]]:
        """
        Jobs a worker should run: pending ones, and triggered/running ones
        that have not moved for CHAIN_JOB_STALE_MINUTES.
        """
        cutoff = (now or utcnow()) - timedelta(minutes=self.settings.chain_job_stale_minutes)
        with self.scope() as session:
            jobs = session.scalars(
                select(ChainJob)
                .where(
                    or_(
                        ChainJob.status == PENDING,
                        and_(ChainJob.status.in_((TRIGGERED, RUNNING)), ChainJob.updated_at < cutoff),
                    )
                )
                .order_by(ChainJob.target_date, ChainJob.chain_depth)
            ).all()
            return [job.to_dict() for job in jobs]

    def _settle(self, job_id: str, **values: Any) -> dict[str, Any] | None:
        """
        Record the trigger outcome only while the job is still pending.

        The hop may already have moved the job on before the POST returned;
        a job is never moved back to an earlier state.
        """
        with self.scope() as session:
            session.execute(
                update(ChainJob)
                .where(ChainJob.id == job_id, ChainJob.status == PENDING)
                .values(updated_at=utcnow(), **values)
            )
        return self.get_job(job_id)

    def _update(self, job_id: str, **values: Any) -> dict[str, Any] | None:
        with self.scope() as session:
            job = session.get(ChainJob, job_id)
            if job is None:
                logger.warning("Chain job {} not found; status not recorded", job_id)
                return None
            for name, value in values.items():
                setattr(job, name, value)
            job.updated_at = utcnow()
            session.flush()
            return job.to_dict()


def run_hop(
    collector: ProblemDetailCollector,
    orchestrator: ChainOrchestrator,
    target: date,
    depth: int = 0,
    job_id: str | None = None,
    trigger: bool = True,
) -> HopOutcome:
    """
    Run one wrong-detail hop and decide on the next.

    Args:
        collector: Detail collector for this hop
        orchestrator: Chain bookkeeping
        target: Civil date being processed
        depth: Depth of this hop
        job_id: Chain job this hop was started for, if any
        trigger: Fire the continuation request (False leaves it to the caller)

    Returns:
        Outcome with `next_depth` set when another hop is warranted
    """
    max_depth = orchestrator.max_depth
    if orchestrator.at_ceiling(depth):
        logger.warning("Chain depth {} reached the ceiling {}; stopping", depth, max_depth)
        orchestrator.mark_completed(job_id, None)
        return HopOutcome(
            depth=depth,
            message=f"Max chain depth ({max_depth}) reached; stopping",
            ceiling_reached=True,
        )

    orchestrator.mark_running(job_id)
    try:
        result = collector.collect(target, chain_depth=depth)
    except Exception as e:  # Intentionally broad - the job records any failure before re-raising
        orchestrator.mark_failed(job_id, str(e))
        raise
    orchestrator.mark_completed(job_id, result.remaining)

    summary = (
        f"{result.wrong_problems_collected} wrong problems collected in "
        f"{result.batches_processed} batches"
    )
    if result.complete:
        return HopOutcome(depth=depth, message=f"Wrong-answer detail complete: {summary}", result=result)

    if not orchestrator.should_continue(result):
        return HopOutcome(
            depth=depth,
            message=f"{summary}; {result.remaining} remaining, max chain depth ({max_depth}) reached",
            result=result,
            ceiling_reached=True,
        )

    outcome = HopOutcome(
        depth=depth,
        message=f"{summary}; {result.remaining} remaining, continuing at depth {depth + 1}",
        result=result,
        next_depth=depth + 1,
    )
    if trigger:
        outcome.next_job = orchestrator.trigger(target, depth + 1)
    return outcome


def follow_chain(
    collector: ProblemDetailCollector,
    orchestrator: ChainOrchestrator,
    target: date,
    depth: int = 0,
    job_id: str | None = None,
) -> list[HopOutcome]:
    """Run successive hops in-process until the work is done or the ceiling is hit."""
    outcomes = [run_hop(collector, orchestrator, target, depth, job_id, trigger=False)]
    while outcomes[-1].next_depth is not None:
        outcomes.append(run_hop(collector, orchestrator, target, outcomes[-1].next_depth, trigger=False))
    return outcomes
