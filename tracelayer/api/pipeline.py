"""API endpoints for extraction runs: start, status, cancel, history and logs."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, HTTPException, Path, Query

from tracelayer.api.errors import to_http_exception
from tracelayer.core.logging import get_logger
from tracelayer.core.run_state_machine import RunStage
from tracelayer.core.schemas_extraction import (
    CancelResponse,
    RunStatusResponse,
    StartRunRequest,
    StartRunResponse,
)
from tracelayer.db import agent_logs, extraction_runs
from tracelayer.db import projects as projects_db
from tracelayer.graphs.extraction_pipeline_graph import execute_extraction_run, start_extraction_run

logger = get_logger(__name__)

router = APIRouter()


@router.post("/projects/{project_id}/extraction-runs", status_code=202, response_model=StartRunResponse)
async def start_run(
    background_tasks: BackgroundTasks,
    project_id: UUID = Path(..., description="Project UUID"),
    body: StartRunRequest | None = None,
) -> StartRunResponse:
    """
    Start an extraction run in the background.

    The run is created (and the concurrency guard claimed) before this
    returns, so a second start for the same project is refused with 409.

    Returns:
        The queued run's id
    """
    body = body or StartRunRequest()

    try:
        run_id, agent = start_extraction_run(project_id)
    except Exception as e:
        raise to_http_exception(e, "starting extraction run") from e

    background_tasks.add_task(
        execute_extraction_run,
        project_id,
        run_id,
        agent,
        regenerate=body.regenerate,
        related_context=body.related_context,
    )

    logger.info(
        f"Queued extraction run {run_id}",
        extra={"run_id": str(run_id), "project_id": str(project_id), "regenerate": body.regenerate},
    )
    return StartRunResponse(run_id=run_id, project_id=project_id, status=RunStage.QUEUED.value)


@router.get("/projects/{project_id}/extraction-runs")
async def list_runs(
    project_id: UUID = Path(..., description="Project UUID"),
    limit: int | None = Query(None, ge=1, le=200),
) -> list[dict[str, Any]]:
    """Run history, newest first. Failed and cancelled runs are included."""
    try:
        return extraction_runs.list_runs(project_id, limit=limit)
    except Exception as e:
        raise to_http_exception(e, "listing runs") from e


@router.get("/projects/{project_id}/extraction-runs/status", response_model=RunStatusResponse)
async def run_status(project_id: UUID = Path(..., description="Project UUID")) -> RunStatusResponse:
    try:
        return RunStatusResponse(**extraction_runs.is_running(project_id))
    except Exception as e:
        raise to_http_exception(e, "checking run status") from e


@router.get("/projects/{project_id}/extraction-runs/latest")
async def latest_run(project_id: UUID = Path(..., description="Project UUID")) -> dict[str, Any]:
    try:
        run = extraction_runs.get_latest_run(project_id)
    except Exception as e:
        raise to_http_exception(e, "getting latest run") from e

    if not run:
        raise HTTPException(status_code=404, detail=f"Project {project_id} has no runs")
    return run


@router.post("/projects/{project_id}/extraction-runs/cancel", response_model=CancelResponse)
async def cancel_runs(project_id: UUID = Path(..., description="Project UUID")) -> CancelResponse:
    """
    Cancel every in-progress run of a project.

    Workers stop before their next stage. The project returns to ``draft``.
    """
    try:
        projects_db.get_project(project_id)
        return CancelResponse(**extraction_runs.cancel_runs(project_id))
    except Exception as e:
        raise to_http_exception(e, "cancelling runs") from e


@router.delete("/projects/{project_id}/extraction-runs/history")
async def clear_history(
    project_id: UUID = Path(..., description="Project UUID"),
    keep_latest: int = Query(1, ge=0),
) -> dict[str, int]:
    """Delete older finished runs and their logs."""
    try:
        return extraction_runs.clear_run_history(project_id, keep_latest=keep_latest)
    except Exception as e:
        raise to_http_exception(e, "clearing run history") from e


@router.get("/extraction-runs/{run_id}")
async def get_run(run_id: UUID = Path(..., description="Run UUID")) -> dict[str, Any]:
    try:
        run = extraction_runs.get_run(run_id)
    except Exception as e:
        raise to_http_exception(e, "getting run") from e

    if not run:
        raise HTTPException(status_code=404, detail=f"Extraction run {run_id} not found")
    return run


@router.get("/extraction-runs/{run_id}/logs")
async def run_logs(run_id: UUID = Path(..., description="Run UUID")) -> list[dict[str, Any]]:
    """Agent log lines of a run, in the order they were written."""
    try:
        return agent_logs.get_logs_for_run(run_id)
    except Exception as e:
        raise to_http_exception(e, "listing run logs") from e


@router.get("/projects/{project_id}/logs")
async def project_logs(
    project_id: UUID = Path(..., description="Project UUID"),
    limit: int = Query(200, ge=1, le=1000),
) -> list[dict[str, Any]]:
    try:
        return agent_logs.get_logs_for_project(project_id, limit=limit)
    except Exception as e:
        raise to_http_exception(e, "listing project logs") from e


@router.get("/activity")
async def recent_activity(limit: int = Query(30, ge=1, le=200)) -> list[dict[str, Any]]:
    """Most recent agent log lines across all projects."""
    try:
        return agent_logs.get_recent_activity(limit=limit)
    except Exception as e:
        raise to_http_exception(e, "listing recent activity") from e
