"""Extraction run lifecycle database operations.

A project has at most one non-terminal run. The guard is the project's
``active_run_id`` column, claimed with a compare-and-set update before the
run row exists and released when the run reaches a terminal stage.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from tracelayer.core.config import get_settings
from tracelayer.core.errors import ConcurrentRunError, NotFoundError, RunCancelledError, StageTransitionError
from tracelayer.core.logging import get_logger
from tracelayer.core.run_state_machine import (
    ACTIVE_STAGES,
    RUN_COUNTER_FIELDS,
    RunStage,
    is_active,
    is_terminal,
    validate_transition,
)
from tracelayer.db import projects
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_STAGES]


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def get_run(run_id: UUID) -> dict[str, Any] | None:
    """
    Fetch a run by ID.

    Returns:
        Run dict or None if not found
    """
    response = (
        get_supabase()
        .table("extraction_runs")
        .select("*")
        .eq("id", str(run_id))
        .maybe_single()
        .execute()
    )

    return response.data if response else None


def _recent_runs(project_id: UUID, limit: int) -> list[dict[str, Any]]:
    response = (
        get_supabase()
        .table("extraction_runs")
        .select("*")
        .eq("project_id", str(project_id))
        .order("started_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data or []


def is_running(project_id: UUID) -> dict[str, Any]:
    """
    Check whether a run is in progress for a project.

    Scans the most recent ``RUN_SCAN_LIMIT`` runs.

    Returns:
        ``{"is_running": False}`` or ``{"is_running": True, "run_id", "stage"}``
    """
    for run in _recent_runs(project_id, get_settings().RUN_SCAN_LIMIT):
        if is_active(run["status"]):
            return {"is_running": True, "run_id": run["id"], "stage": run["status"]}
    return {"is_running": False}


def _claim(project_id: UUID, run_id: UUID) -> None:
    """Claim the project's active run slot, clearing a stale claim once."""
    if projects.claim_active_run(project_id, run_id):
        return

    holder = projects.get_project(project_id).get("active_run_id")
    if holder:
        holder_run = get_run(holder)
        if holder_run and is_active(holder_run["status"]):
            raise ConcurrentRunError(str(project_id), holder, holder_run["status"])

        # Holder finished or vanished without releasing
        logger.warning(
            f"Clearing stale active run {holder} on project {project_id}",
            extra={"project_id": str(project_id), "run_id": str(holder)},
        )
        projects.release_active_run(project_id, holder)

    if not projects.claim_active_run(project_id, run_id):
        raise ConcurrentRunError(str(project_id))


def create_run(project_id: UUID) -> UUID:
    """
    Create a queued run, refusing if one is already in progress.

    Args:
        project_id: Project UUID

    Returns:
        New run UUID

    Raises:
        NotFoundError: If the project does not exist
        ConcurrentRunError: If a non-terminal run exists; no run row is created
    """
    projects.get_project(project_id)

    run_id = uuid4()
    _claim(project_id, run_id)

    # Runs created before the claim column existed hold no claim
    running = is_running(project_id)
    if running["is_running"]:
        projects.release_active_run(project_id, run_id)
        raise ConcurrentRunError(str(project_id), running["run_id"], running["stage"])

    try:
        response = (
            get_supabase()
            .table("extraction_runs")
            .insert(
                {
                    "id": str(run_id),
                    "project_id": str(project_id),
                    "status": RunStage.QUEUED.value,
                    "started_at": _utc_now_iso(),
                    "completed_at": None,
                    "error": None,
                    **{field: 0 for field in RUN_COUNTER_FIELDS},
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from create_run")

    except Exception as e:
        projects.release_active_run(project_id, run_id)
        logger.error(f"Failed to create run: {e}", extra={"project_id": str(project_id)})
        raise

    logger.info(
        f"Created extraction run {run_id}",
        extra={"run_id": str(run_id), "project_id": str(project_id)},
    )
    return run_id


def advance_run(
    run_id: UUID,
    stage: str | RunStage,
    counters: dict[str, int] | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    """
    Move a run to ``stage``, patching only the supplied counters.

    The update is conditional on the status read, so a concurrent cancel is
    never overwritten. Reaching a terminal stage stamps ``completed_at`` and
    releases the project's active run slot.

    Args:
        run_id: Run UUID
        stage: Target stage
        counters: Subset of run counter columns to set
        error: Failure text (stored verbatim)

    Returns:
        Updated run row

    Raises:
        NotFoundError: If the run does not exist
        RunCancelledError: If the run was cancelled
        StageTransitionError: If the transition is not allowed
    """
    run = get_run(run_id)
    if not run:
        raise NotFoundError(f"Extraction run {run_id} not found")

    current = run["status"]
    if current == RunStage.CANCELLED.value:
        raise RunCancelledError(f"Run {run_id} was cancelled")

    target = validate_transition(current, stage)

    patch: dict[str, Any] = {"status": target.value}
    for field, value in (counters or {}).items():
        if field not in RUN_COUNTER_FIELDS:
            raise ValueError(f"Unknown run counter: {field}")
        if value is not None:
            patch[field] = value
    if error is not None:
        patch["error"] = error
    if is_terminal(target):
        patch["completed_at"] = _utc_now_iso()

    response = (
        get_supabase()
        .table("extraction_runs")
        .update(patch)
        .eq("id", str(run_id))
        .eq("status", current)
        .execute()
    )

    if not response.data:
        latest = get_run(run_id)
        if latest and latest["status"] == RunStage.CANCELLED.value:
            raise RunCancelledError(f"Run {run_id} was cancelled")
        raise StageTransitionError(
            f"Run {run_id} changed from {current} while moving to {target.value}"
        )

    if is_terminal(target):
        projects.release_active_run(UUID(str(run["project_id"])), run_id)

    logger.info(
        f"Run {run_id}: {current} -> {target.value}",
        extra={"run_id": str(run_id), "stage": target.value},
    )
    return response.data[0]


def cancel_runs(project_id: UUID) -> dict[str, int]:
    """
    Cancel every non-terminal run of a project.

    The project's active run slot is released and it returns to ``draft``
    with progress 0. Stage workers notice the cancellation before their next
    stage and stop.

    Returns:
        ``{"cancelled_count": n}``
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("extraction_runs")
            .update({"status": RunStage.CANCELLED.value, "completed_at": _utc_now_iso()})
            .eq("project_id", str(project_id))
            .in_("status", _ACTIVE_VALUES)
            .execute()
        )
        cancelled = len(response.data or [])

        projects.release_active_run(project_id)
        projects.update_project(project_id, {"status": "draft", "progress": 0})

    except Exception as e:
        logger.error(f"Failed to cancel runs: {e}", extra={"project_id": str(project_id)})
        raise

    logger.info(
        f"Cancelled {cancelled} run(s) for project {project_id}",
        extra={"project_id": str(project_id), "cancelled_count": cancelled},
    )
    return {"cancelled_count": cancelled}


def get_latest_run(project_id: UUID) -> dict[str, Any] | None:
    runs = _recent_runs(project_id, 1)
    return runs[0] if runs else None


def list_runs(project_id: UUID, limit: int | None = None) -> list[dict[str, Any]]:
    """Run history, newest first (``RUN_HISTORY_LIMIT`` by default)."""
    return _recent_runs(project_id, limit or get_settings().RUN_HISTORY_LIMIT)


def list_all_runs(limit: int | None = None) -> list[dict[str, Any]]:
    """Runs across every project, newest first."""
    query = get_supabase().table("extraction_runs").select("*").order("started_at", desc=True)
    if limit:
        query = query.limit(limit)
    return query.execute().data or []


def clear_run_history(project_id: UUID, keep_latest: int = 1) -> dict[str, int]:
    """
    Delete all but the newest ``keep_latest`` finished runs, with their logs.

    Returns:
        ``{"deleted": n}``
    """
    supabase = get_supabase()

    response = (
        supabase.table("extraction_runs")
        .select("id, status")
        .eq("project_id", str(project_id))
        .order("started_at", desc=True)
        .execute()
    )
    # An in-progress run is never deleted
    stale_ids = [
        row["id"]
        for row in (response.data or [])[max(0, keep_latest):]
        if is_terminal(row["status"])
    ]

    if not stale_ids:
        return {"deleted": 0}

    try:
        supabase.table("agent_logs").delete().in_("extraction_run_id", stale_ids).execute()
        supabase.table("extraction_runs").delete().in_("id", stale_ids).execute()
    except Exception as e:
        logger.error(f"Failed to clear run history: {e}", extra={"project_id": str(project_id)})
        raise

    logger.info(
        f"Cleared {len(stale_ids)} run(s) for project {project_id}",
        extra={"project_id": str(project_id)},
    )
    return {"deleted": len(stale_ids)}
