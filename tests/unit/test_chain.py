"""
Unit tests for wrong-detail chaining.
"""

from datetime import date, timedelta

import httpx
import pytest

from mathflat_sync.collectors import ChainOrchestrator, ProblemDetailCollector, follow_chain, run_hop
from mathflat_sync.collectors.chain import CONTINUATION_PATH
from mathflat_sync.core.exceptions import AuthError
from mathflat_sync.db.models import ChainJob
from mathflat_sync.db.models.mathflat import utcnow

from payloads import worksheet_problem

TARGET = date(2025, 3, 14)


class RecordingPost:
    """Stand-in for `httpx.post` that records calls and replays one behaviour."""

    def __init__(self, behaviour=None):
        self.behaviour = behaviour or httpx.ReadTimeout("timed out")
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.behaviour, Exception):
            raise self.behaviour
        return self.behaviour


@pytest.fixture
def post():
    return RecordingPost()


@pytest.fixture
def orchestrator(scope, settings, post):
    return ChainOrchestrator(scope=scope, settings=settings, post=post)


@pytest.fixture
def backlog(upstream, add_daily_work):
    """200 single-wrong worksheet rows; at 0.3s per call a 45.1s hop leaves 49."""
    for i in range(200):
        add_daily_work(student_book_id=8000 + i, wrong_count=1)
        upstream.worksheet[8000 + i] = [worksheet_problem(1, "WRONG")]
    return upstream


@pytest.fixture
def collector(client, scope, settings, clock):
    return ProblemDetailCollector(client, scope=scope, settings=settings, clock=clock.monotonic, budget_seconds=45.1)


class FailingCollector:
    def collect(self, target, chain_depth=0):
        raise AuthError("MathFlat login rejected (HTTP 401)")


def _add_job(scope, status, age_minutes=0, depth=1):
    stamp = utcnow() - timedelta(minutes=age_minutes)
    with scope() as session:
        job = ChainJob(target_date=TARGET, chain_depth=depth, status=status, created_at=stamp, updated_at=stamp)
        session.add(job)
        session.flush()
        return job.id


class TestRunHop:
    """Tests for one hop and the continuation decision."""

    def test_complete_hop_does_not_continue(self, collector, orchestrator, post, upstream, add_daily_work):
        add_daily_work(student_book_id=7002, wrong_count=1)
        upstream.worksheet[7002] = [worksheet_problem(1, "WRONG")]

        outcome = run_hop(collector, orchestrator, TARGET)

        assert outcome.message.startswith("Wrong-answer detail complete")
        assert outcome.result.complete is True
        assert outcome.next_depth is None
        assert outcome.ceiling_reached is False
        assert post.calls == []

    def test_budget_exhaustion_triggers_next_hop(self, collector, orchestrator, post, backlog, settings):
        outcome = run_hop(collector, orchestrator, TARGET, depth=0)

        assert outcome.result.remaining == 49
        assert outcome.next_depth == 1
        assert outcome.result.complete is False
        assert outcome.next_job["status"] == "triggered"
        assert outcome.next_job["chain_depth"] == 1
        assert "continuing at depth 1" in outcome.message

        url, kwargs = post.calls[0]
        assert url == f"http://collector.test{CONTINUATION_PATH}"
        assert kwargs["json"] == {"targetDate": "2025-03-14", "chainDepth": 1, "jobId": outcome.next_job["id"]}
        assert kwargs["headers"]["Authorization"] == f"Bearer {settings.cron_secret}"
        assert kwargs["timeout"] == settings.chain_trigger_timeout_seconds

        data = outcome.to_dict()
        assert data["nextChainDepth"] == 1
        assert data["remainingDailyWorks"] == 49
        assert data["maxDepthReached"] is False

    def test_last_hop_below_ceiling_does_not_trigger(self, collector, orchestrator, post, backlog, settings):
        outcome = run_hop(collector, orchestrator, TARGET, depth=settings.max_chain_depth - 1)

        assert outcome.result.remaining == 49
        assert outcome.next_depth is None
        assert outcome.ceiling_reached is True
        assert f"max chain depth ({settings.max_chain_depth}) reached" in outcome.message
        assert post.calls == []

    def test_hop_at_ceiling_does_no_work(self, collector, orchestrator, post, backlog, settings):
        outcome = run_hop(collector, orchestrator, TARGET, depth=settings.max_chain_depth)

        assert outcome.message == f"Max chain depth ({settings.max_chain_depth}) reached; stopping"
        assert outcome.result is None
        assert backlog.data_calls == []
        assert post.calls == []

    def test_job_marked_completed_with_remaining(self, collector, orchestrator, backlog, scope):
        job_id = _add_job(scope, "triggered")

        run_hop(collector, orchestrator, TARGET, depth=1, job_id=job_id)

        job = orchestrator.get_job(job_id)
        assert job["status"] == "completed"
        assert job["remaining"] == 49

    def test_failure_marks_job_and_propagates(self, orchestrator, scope):
        job_id = _add_job(scope, "triggered")

        with pytest.raises(AuthError):
            run_hop(FailingCollector(), orchestrator, TARGET, depth=1, job_id=job_id)

        job = orchestrator.get_job(job_id)
        assert job["status"] == "failed"
        assert "401" in job["error"]

    def test_unknown_job_id_does_not_break_hop(self, collector, orchestrator, upstream):
        outcome = run_hop(collector, orchestrator, TARGET, job_id="no-such-job")

        assert outcome.result.remaining == 0


class TestTrigger:
    """Tests for continuation triggering outcomes."""

    def test_non_2xx_leaves_job_pending(self, scope, settings):
        orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=RecordingPost(httpx.Response(503, text="busy")))

        job = orchestrator.trigger(TARGET, 2)

        assert job["status"] == "pending"
        assert "503" in job["error"]

    def test_connection_error_leaves_job_pending(self, scope, settings):
        failure = httpx.ConnectError("refused", request=httpx.Request("POST", "http://collector.test"))
        orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=RecordingPost(failure))

        job = orchestrator.trigger(TARGET, 2)

        assert job["status"] == "pending"
        assert "refused" in job["error"]

    def test_fast_2xx_is_triggered(self, scope, settings):
        orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=RecordingPost(httpx.Response(200, json={})))

        assert orchestrator.trigger(TARGET, 2)["status"] == "triggered"

    def test_hop_finished_before_response_stays_completed(self, collector, scope, settings, upstream):
        """A hop that completes while the POST is in flight is not moved back to triggered."""
        hop_orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=RecordingPost())

        def post(url, json, **kwargs):
            run_hop(collector, hop_orchestrator, TARGET, json["chainDepth"], json["jobId"])
            return httpx.Response(200, json={})

        orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=post)

        job = orchestrator.trigger(TARGET, 1)

        assert job["status"] == "completed"
        assert job["remaining"] == 0
        assert orchestrator.find_resumable(now=utcnow() + timedelta(days=1)) == []

    def test_hop_failed_before_timeout_stays_failed(self, scope, settings):
        hop_orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=RecordingPost())

        def post(url, json, **kwargs):
            with pytest.raises(AuthError):
                run_hop(FailingCollector(), hop_orchestrator, TARGET, json["chainDepth"], json["jobId"])
            raise httpx.ReadTimeout("timed out")

        orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=post)

        assert orchestrator.trigger(TARGET, 1)["status"] == "failed"

    def test_missing_secret_skips_request(self, scope, settings, post):
        settings.cron_secret = None
        orchestrator = ChainOrchestrator(scope=scope, settings=settings, post=post)

        job = orchestrator.trigger(TARGET, 2)

        assert job["status"] == "pending"
        assert post.calls == []


class TestResume:
    """Tests for finding jobs the resume worker should run."""

    def test_find_resumable(self, orchestrator, scope, settings):
        stale = settings.chain_job_stale_minutes + 5
        pending = _add_job(scope, "pending", depth=1)
        stuck = _add_job(scope, "triggered", age_minutes=stale, depth=2)
        _add_job(scope, "triggered", depth=3)
        _add_job(scope, "completed", age_minutes=stale, depth=4)
        _add_job(scope, "failed", age_minutes=stale, depth=5)

        jobs = orchestrator.find_resumable()

        assert [j["id"] for j in jobs] == [pending, stuck]


class TestFollowChain:
    """Tests for running hops in-process."""

    def test_runs_until_done(self, collector, orchestrator, post, backlog):
        outcomes = follow_chain(collector, orchestrator, TARGET)

        assert [o.depth for o in outcomes] == [0, 1]
        assert outcomes[0].result.remaining == 49
        assert outcomes[1].result.remaining == 0
        assert len(backlog.data_calls) == 200
        assert post.calls == []

    def test_stops_at_ceiling(self, collector, orchestrator, backlog, settings):
        settings.max_chain_depth = 1

        outcomes = follow_chain(collector, orchestrator, TARGET)

        assert len(outcomes) == 1
        assert outcomes[0].ceiling_reached is True
