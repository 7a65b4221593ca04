"""
Collection router.

One POST endpoint per collection phase, each answering with
`{success, message, data, errors?}`. A non-empty `errors` list next to
`success: true` is a partial success. GET on each path describes it.

Routes are plain `def` so the blocking upstream calls and pacing sleeps
run in the threadpool.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from config import Settings, get_settings
from mathflat_sync.api.auth import verify_caller
from mathflat_sync.api.deps import get_clock, get_mathflat_client, get_orchestrator, get_session_scope
from mathflat_sync.collectors import (
    ChainOrchestrator,
    DailyWorkCollector,
    HomeworkCollector,
    ProblemDetailCollector,
    run_hop,
)
from mathflat_sync.collectors.homework import COLLECTION_TYPES
from mathflat_sync.core.dates import parse_date
from mathflat_sync.db.database import SessionScope
from mathflat_sync.upstream import MathflatClient

router = APIRouter()


# ========================================
# Request Models
# ========================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DailyWorkRequest(_CamelModel):
    """Body of a daily-activity collection."""

    target_date: str | None = Field(default=None, alias="targetDate")
    student_ids: list[str | int] | None = Field(default=None, alias="studentIds")
    collect_problem_details: bool = Field(default=False, alias="collectProblemDetails")


class HomeworkRequest(_CamelModel):
    """Body of a homework collection."""

    collection_type: str | None = Field(default=None, alias="collectionType")
    class_ids: list[str | int] | None = Field(default=None, alias="classIds")
    target_date: str | None = Field(default=None, alias="targetDate")
    homework_date: str | None = Field(default=None, alias="homeworkDate")


class ProblemDetailRequest(_CamelModel):
    """Body of a wrong-detail hop."""

    target_date: str | None = Field(default=None, alias="targetDate")
    chain_depth: int = Field(default=0, alias="chainDepth", ge=0)
    job_id: str | None = Field(default=None, alias="jobId")


# ========================================
# Response helpers
# ========================================


def _ok(message: str, data: dict[str, Any], errors: list[str]) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "message": message, "data": data}
    if errors:
        body["errors"] = errors
    return body


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": error})


def _server_error(e: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "message": str(e)},
    )


# ========================================
# Daily activity
# ========================================


@router.get("/daily-work", summary="Describe the daily-activity endpoint")
def describe_daily_work() -> dict[str, Any]:
    return {
        "endpoint": "/api/collect/daily-work",
        "method": "POST",
        "auth": "Bearer CRON_SECRET or user access token",
        "body": {
            "targetDate": "YYYY-MM-DD (default: today, Asia/Seoul)",
            "studentIds": "optional list of MathFlat student ids",
            "collectProblemDetails": (
                "run one wrong-detail pass afterwards (default: false; the legacy collector "
                "ran it unless false was sent)"
            ),
        },
    }


@router.post("/daily-work", summary="Collect daily activity")
def collect_daily_work(
    request: DailyWorkRequest = DailyWorkRequest(),
    caller: str = Depends(verify_caller),
    client: MathflatClient = Depends(get_mathflat_client),
    scope: SessionScope = Depends(get_session_scope),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], float] = Depends(get_clock),
) -> Any:
    """
    Collect every active student's daily activity for a date.

    **Request Body:**
    - `targetDate` (str): Civil date to collect (default: today)
    - `studentIds` (list): Restrict to these MathFlat student ids
    - `collectProblemDetails` (bool): Run one unchained wrong-detail pass
    """
    try:
        target = parse_date(request.target_date)
    except ValueError:
        return _bad_request(f"Invalid targetDate: {request.target_date}")

    logger.info("Daily work collection requested by {} for {}", caller, target)
    try:
        collector = DailyWorkCollector(client, scope=scope, settings=settings, clock=clock)
        student_ids = [str(s) for s in request.student_ids] if request.student_ids else None
        result = collector.collect(target, student_ids, collect_details=request.collect_problem_details)
    except Exception as e:
        logger.exception("Daily work collection failed")
        return _server_error(e)

    message = (
        f"Collected {result.total_work_count} daily work rows from "
        f"{result.total_students} students for {target.isoformat()}"
    )
    return _ok(message, result.to_dict(), result.errors)


# ========================================
# Homework
# ========================================


@router.get("/homework", summary="Describe the homework endpoint")
def describe_homework() -> dict[str, Any]:
    return {
        "endpoint": "/api/collect/homework",
        "method": "POST",
        "auth": "Bearer CRON_SECRET or user access token",
        "body": {
            "collectionType": f"required, one of {list(COLLECTION_TYPES)}",
            "classIds": "optional list of MathFlat class ids (default: classes scheduled today)",
            "targetDate": "YYYY-MM-DD (default: today, Asia/Seoul)",
            "homeworkDate": "YYYY-MM-DD date stored on the rows (default: targetDate)",
        },
    }


@router.post("/homework", summary="Collect class homework")
def collect_homework(
    request: HomeworkRequest = HomeworkRequest(),
    caller: str = Depends(verify_caller),
    client: MathflatClient = Depends(get_mathflat_client),
    scope: SessionScope = Depends(get_session_scope),
    settings: Settings = Depends(get_settings),
) -> Any:
    """
    Collect homework for each target class.

    **Request Body:**
    - `collectionType` (str): Collection round (required)
    - `classIds` (list): MathFlat class ids (default: today's scheduled classes)
    - `targetDate` (str): Date queried upstream (default: today)
    - `homeworkDate` (str): Date stored on the rows (default: targetDate)
    """
    if not request.collection_type:
        return _bad_request("collectionType is required")
    try:
        target = parse_date(request.target_date)
        homework_date = parse_date(request.homework_date) if request.homework_date else target
    except ValueError:
        return _bad_request("Invalid targetDate or homeworkDate")

    logger.info("Homework collection ({}) requested by {} for {}", request.collection_type, caller, target)
    try:
        collector = HomeworkCollector(client, scope=scope, settings=settings)
        class_ids = [str(c) for c in request.class_ids] if request.class_ids else None
        result = collector.collect(request.collection_type, target, class_ids, homework_date)
    except Exception as e:
        logger.exception("Homework collection failed")
        return _server_error(e)

    message = (
        f"Collected {result.total_homework_count} homework rows from "
        f"{len(result.processed_classes)} classes for {result.homework_date.isoformat()}"
    )
    return _ok(message, result.to_dict(), result.errors)


# ========================================
# Wrong-answer detail
# ========================================


@router.get("/problem-details", summary="Describe the wrong-detail endpoint")
def describe_problem_details(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    return {
        "endpoint": "/api/collect/problem-details",
        "method": "POST",
        "auth": "Bearer CRON_SECRET or user access token",
        "body": {
            "targetDate": "YYYY-MM-DD (default: today, Asia/Seoul)",
            "chainDepth": "continuation depth (default: 0)",
            "jobId": "chain job id (set by continuations)",
        },
        "limits": {
            "budgetSeconds": settings.problem_budget_seconds,
            "softCap": settings.problem_soft_cap,
            "maxChainDepth": settings.max_chain_depth,
        },
    }


@router.post("/problem-details", summary="Collect wrong-answer detail (self-chaining)")
def collect_problem_details(
    request: ProblemDetailRequest = ProblemDetailRequest(),
    caller: str = Depends(verify_caller),
    client: MathflatClient = Depends(get_mathflat_client),
    scope: SessionScope = Depends(get_session_scope),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], float] = Depends(get_clock),
    orchestrator: ChainOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    Run one time-boxed wrong-detail hop, triggering the next when work remains.

    **Request Body:**
    - `targetDate` (str): Civil date to process (default: today)
    - `chainDepth` (int): Depth of this hop (default: 0)
    - `jobId` (str): Chain job record this hop runs for
    """
    try:
        target = parse_date(request.target_date)
    except ValueError:
        return _bad_request(f"Invalid targetDate: {request.target_date}")

    logger.info(
        "Wrong-detail hop requested by {} for {} (depth {}, job {})",
        caller,
        target,
        request.chain_depth,
        request.job_id,
    )
    try:
        collector = ProblemDetailCollector(client, scope=scope, settings=settings, clock=clock)
        outcome = run_hop(collector, orchestrator, target, request.chain_depth, request.job_id)
    except Exception as e:
        logger.exception("Wrong-detail collection failed")
        return _server_error(e)

    errors = outcome.result.errors if outcome.result else []
    return _ok(outcome.message, outcome.to_dict(), errors)
