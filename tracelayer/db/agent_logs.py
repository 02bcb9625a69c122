"""Agent activity trail for extraction runs.

These rows feed the live pipeline view. Appending a line must never break
the run that writes it, so ``log`` swallows and reports its own failures.
"""

from typing import Any
from uuid import UUID

from tracelayer.core.logging import get_logger
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)


def log(
    project_id: UUID,
    run_id: UUID,
    agent: str,
    stage: str,
    level: str,
    message: str,
    detail: str | None = None,
) -> str | None:
    """
    Append one agent log line.

    Args:
        project_id: Project UUID
        run_id: Extraction run UUID
        agent: Agent name (e.g. ``requirement_agent``)
        stage: Run stage the line belongs to
        level: info, processing, success, warning or error
        message: Human-readable line
        detail: Optional longer detail

    Returns:
        Log row id, or None if the append failed
    """
    try:
        response = (
            get_supabase()
            .table("agent_logs")
            .insert(
                {
                    "project_id": str(project_id),
                    "extraction_run_id": str(run_id),
                    "agent": agent,
                    "stage": stage,
                    "level": level,
                    "message": message,
                    "detail": detail,
                }
            )
            .execute()
        )
        return response.data[0]["id"] if response.data else None

    except Exception as e:
        logger.error(f"Failed to append agent log: {e}", extra={"run_id": str(run_id), "agent": agent})
        return None


def get_logs_for_run(run_id: UUID) -> list[dict[str, Any]]:
    """All lines of a run in insertion order."""
    response = (
        get_supabase()
        .table("agent_logs")
        .select("*")
        .eq("extraction_run_id", str(run_id))
        .order("created_at", desc=False)
        .execute()
    )

    return response.data or []


def get_logs_for_project(project_id: UUID, limit: int = 200) -> list[dict[str, Any]]:
    """Most recent lines across a project's runs, newest first."""
    response = (
        get_supabase()
        .table("agent_logs")
        .select("*")
        .eq("project_id", str(project_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )

    return response.data or []


def get_recent_activity(limit: int = 30) -> list[dict[str, Any]]:
    """Most recent lines across every project, newest first."""
    response = (
        get_supabase()
        .table("agent_logs")
        .select("*")
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )

    return response.data or []
