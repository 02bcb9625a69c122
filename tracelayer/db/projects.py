"""Projects database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.errors import NotFoundError
from tracelayer.core.logging import get_logger
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)

# Denormalized counter column → table it counts
COUNTER_TABLES = {
    "source_count": "sources",
    "requirement_count": "requirements",
    "stakeholder_count": "stakeholders",
    "decision_count": "decisions",
    "conflict_count": "conflicts",
}


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def create_project(
    name: str,
    description: str = "",
    output_format: str = "brd",
) -> dict[str, Any]:
    """
    Create a new project in draft status with zeroed counters.

    Args:
        name: Project name
        description: Project description
        output_format: brd, prd or both

    Returns:
        Created project row as dict

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        data = {
            "name": name,
            "description": description,
            "output_format": output_format,
            "status": "draft",
            "progress": 0,
            "active_run_id": None,
            **{column: 0 for column in COUNTER_TABLES},
        }

        response = supabase.table("projects").insert(data).execute()

        if not response.data:
            raise ValueError("No data returned from create_project")

        project = response.data[0]
        logger.info(
            f"Created project {project['id']}: {name}",
            extra={"project_id": project["id"], "project_name": name},
        )
        return project

    except Exception as e:
        logger.error(f"Failed to create project {name}: {e}")
        raise


def list_projects(limit: int = 50) -> list[dict[str, Any]]:
    """List projects, newest first."""
    supabase = get_supabase()

    response = (
        supabase.table("projects")
        .select("*")
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )

    return response.data or []


def get_project(project_id: UUID) -> dict[str, Any]:
    """
    Get a single project by ID.

    Args:
        project_id: Project UUID

    Returns:
        Project row as dict

    Raises:
        NotFoundError: If the project does not exist
    """
    supabase = get_supabase()

    response = (
        supabase.table("projects")
        .select("*")
        .eq("id", str(project_id))
        .maybe_single()
        .execute()
    )

    if not response or not response.data:
        raise NotFoundError(f"Project {project_id} not found")

    return response.data


def update_project(project_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    """
    Patch a project. Keys with value None are ignored.

    Args:
        project_id: Project UUID
        updates: Columns to patch (name, description, status, progress, ...)

    Returns:
        Updated project row

    Raises:
        NotFoundError: If the project does not exist
    """
    supabase = get_supabase()

    patch = {k: v for k, v in updates.items() if v is not None}
    patch["updated_at"] = _utc_now_iso()

    try:
        response = supabase.table("projects").update(patch).eq("id", str(project_id)).execute()
    except Exception as e:
        logger.error(f"Failed to update project {project_id}: {e}", extra={"project_id": str(project_id)})
        raise

    if not response.data:
        raise NotFoundError(f"Project {project_id} not found")

    return response.data[0]


def set_progress(project_id: UUID, progress: int, status: str | None = None) -> None:
    """Update the progress shown for a project, optionally with its status."""
    update_project(project_id, {"progress": progress, "status": status})


def delete_project(project_id: UUID) -> None:
    """Delete a project. Child rows go with it (ON DELETE CASCADE)."""
    supabase = get_supabase()

    try:
        supabase.table("projects").delete().eq("id", str(project_id)).execute()
        logger.info(f"Deleted project {project_id}", extra={"project_id": str(project_id)})
    except Exception as e:
        logger.error(f"Failed to delete project {project_id}: {e}", extra={"project_id": str(project_id)})
        raise


def increment_counter(project_id: UUID, column: str, delta: int = 1) -> int:
    """
    Adjust a denormalized counter, never below zero.

    Read-modify-write; concurrent writers can drift, which ``refresh_counts``
    repairs.

    Returns:
        New counter value
    """
    if column not in COUNTER_TABLES:
        raise ValueError(f"Unknown counter column: {column}")

    project = get_project(project_id)
    value = max(0, int(project.get(column) or 0) + delta)

    get_supabase().table("projects").update(
        {column: value, "updated_at": _utc_now_iso()}
    ).eq("id", str(project_id)).execute()

    return value


def _count_rows(table: str, project_id: UUID) -> int:
    response = (
        get_supabase()
        .table(table)
        .select("id", count="exact")
        .eq("project_id", str(project_id))
        .execute()
    )
    if response.count is not None:
        return response.count
    return len(response.data or [])


def refresh_counts(project_id: UUID) -> dict[str, int]:
    """
    Recompute every denormalized counter from the actual rows.

    Returns:
        Dict of counter column → value written
    """
    counts = {column: _count_rows(table, project_id) for column, table in COUNTER_TABLES.items()}

    try:
        get_supabase().table("projects").update(
            {**counts, "updated_at": _utc_now_iso()}
        ).eq("id", str(project_id)).execute()
    except Exception as e:
        logger.error(f"Failed to refresh counts for project {project_id}: {e}")
        raise

    logger.info(f"Refreshed counts for project {project_id}", extra={"project_id": str(project_id), **counts})
    return counts


def clear_extraction_data(project_id: UUID) -> dict[str, int]:
    """
    Remove agent-authored extraction output so the pipeline can re-run.

    Requirements a user has edited (``modified_by = 'user'``) survive along
    with their source links; everything else the pipeline produced is
    deleted. Ready documents are kept as ``outdated`` history and sources
    return to ``uploaded``.

    Args:
        project_id: Project UUID

    Returns:
        Dict of what was cleared, per entity type, plus ``kept_requirements``
    """
    supabase = get_supabase()
    pid = str(project_id)

    def _delete(table: str, **filters: str) -> int:
        query = supabase.table(table).delete().eq("project_id", pid)
        for column, value in filters.items():
            query = query.eq(column, value)
        return len(query.execute().data or [])

    try:
        cleared = {
            "requirements": _delete("requirements", modified_by="agent"),
            "stakeholders": _delete("stakeholders"),
            "decisions": _delete("decisions"),
            "conflicts": _delete("conflicts"),
            "timeline_events": _delete("timeline_events"),
            "traceability_links": _delete("traceability_links"),
        }

        outdated = (
            supabase.table("documents")
            .update({"status": "outdated"})
            .eq("project_id", pid)
            .eq("status", "ready")
            .execute()
        )
        cleared["documents"] = len(outdated.data or [])

        supabase.table("sources").update(
            {"status": "uploaded", "relevance_score": None, "updated_at": _utc_now_iso()}
        ).eq("project_id", pid).execute()

        kept = (
            supabase.table("requirements")
            .update({"stakeholder_ids": []})
            .eq("project_id", pid)
            .execute()
        ).data or []

        # Kept requirements keep their evidence edge
        evidence_links = [
            {
                "project_id": pid,
                "from_type": "source",
                "from_id": req["source_id"],
                "to_type": "requirement",
                "to_id": req["id"],
                "relationship": "extracted_from",
                "strength": req.get("confidence_score", 0.7),
            }
            for req in kept
            if req.get("source_id")
        ]
        if evidence_links:
            supabase.table("traceability_links").insert(evidence_links).execute()

        update_project(project_id, {"status": "draft", "progress": 0})
        refresh_counts(project_id)

    except Exception as e:
        logger.error(f"Failed to clear extraction data for project {project_id}: {e}", extra={"project_id": pid})
        raise

    cleared["kept_requirements"] = len(kept)
    logger.info(f"Cleared extraction data for project {project_id}", extra={"project_id": pid, **cleared})
    return cleared


# ============================================================================
# Active run claim
# ============================================================================


def claim_active_run(project_id: UUID, run_id: UUID) -> bool:
    """
    Atomically mark ``run_id`` as the project's active run.

    Compare-and-set: succeeds only while ``active_run_id`` is null, so two
    concurrent starters cannot both win.

    Returns:
        True if this caller now owns the project's active run slot
    """
    response = (
        get_supabase()
        .table("projects")
        .update({"active_run_id": str(run_id), "updated_at": _utc_now_iso()})
        .eq("id", str(project_id))
        .is_("active_run_id", "null")
        .execute()
    )
    return bool(response.data)


def release_active_run(project_id: UUID, run_id: UUID | None = None) -> bool:
    """
    Clear the project's active run slot.

    Args:
        project_id: Project UUID
        run_id: Only clear if this run still owns the slot. None clears
            unconditionally (used by cancel).

    Returns:
        True if the project row was updated
    """
    query = (
        get_supabase()
        .table("projects")
        .update({"active_run_id": None, "updated_at": _utc_now_iso()})
        .eq("id", str(project_id))
    )
    if run_id is not None:
        query = query.eq("active_run_id", str(run_id))

    response = query.execute()
    return bool(response.data)
