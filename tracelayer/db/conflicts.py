"""Conflicts database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.errors import NotFoundError, StoreInvariantError
from tracelayer.core.logging import get_logger
from tracelayer.core.requirement_dedup import CONFLICT_ID_PREFIX, format_human_id, highest_sequence_number
from tracelayer.db.projects import increment_counter
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)

REVIEW_STATUSES = ("reviewing", "accepted")


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def list_conflicts(project_id: UUID) -> list[dict[str, Any]]:
    """List a project's conflicts ordered by human id."""
    response = (
        get_supabase()
        .table("conflicts")
        .select("*")
        .eq("project_id", str(project_id))
        .order("conflict_id", desc=False)
        .execute()
    )

    return response.data or []


def next_conflict_id(project_id: UUID) -> str:
    """Human id following the highest ``CON-nnn`` in the project."""
    existing = [c.get("conflict_id") for c in list_conflicts(project_id)]
    return format_human_id(CONFLICT_ID_PREFIX, highest_sequence_number(existing, CONFLICT_ID_PREFIX) + 1)


def _live_requirement_ids(project_id: UUID, requirement_ids: list[str]) -> set[str]:
    response = (
        get_supabase()
        .table("requirements")
        .select("id")
        .eq("project_id", str(project_id))
        .in_("id", requirement_ids)
        .execute()
    )
    return {str(row["id"]) for row in response.data or []}


def store_conflict(
    project_id: UUID,
    conflict_id: str,
    title: str,
    description: str,
    severity: str,
    requirement_ids: list[str],
    kind: str = "requirement_contradiction",
) -> dict[str, Any]:
    """
    Insert a detected conflict and bump the project's conflict counter.

    Args:
        project_id: Project UUID
        conflict_id: Human id, e.g. ``CON-002``
        title: Short conflict title
        description: What conflicts and why
        severity: critical, major or minor
        requirement_ids: Requirement row UUIDs involved (at least one)
        kind: What was found contradictory

    Returns:
        Created conflict row

    Raises:
        StoreInvariantError: No requirement given, or one is not a live
            requirement of this project
    """
    ids = list(dict.fromkeys(str(r) for r in requirement_ids))
    if not ids:
        raise StoreInvariantError("A conflict must reference at least one requirement")

    missing = set(ids) - _live_requirement_ids(project_id, ids)
    if missing:
        raise StoreInvariantError(f"Conflict references unknown requirements: {sorted(missing)}")

    try:
        response = (
            get_supabase()
            .table("conflicts")
            .insert(
                {
                    "project_id": str(project_id),
                    "conflict_id": conflict_id,
                    "title": title,
                    "description": description,
                    "kind": kind,
                    "severity": severity,
                    "status": "detected",
                    "requirement_ids": ids,
                    "resolution": None,
                    "detected_at": _utc_now_iso(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_conflict")

        row = response.data[0]
        increment_counter(project_id, "conflict_count")

        logger.info(
            f"Stored {conflict_id} [{severity}]: {title}",
            extra={"project_id": str(project_id), "conflict_id": row["id"]},
        )
        return row

    except Exception as e:
        logger.error(f"Failed to store conflict {conflict_id}: {e}", extra={"project_id": str(project_id)})
        raise


def get_conflict(conflict_id: UUID) -> dict[str, Any] | None:
    response = (
        get_supabase()
        .table("conflicts")
        .select("*")
        .eq("id", str(conflict_id))
        .maybe_single()
        .execute()
    )

    return response.data if response else None


def _patch_conflict(conflict_id: UUID, patch: dict[str, Any]) -> dict[str, Any]:
    response = (
        get_supabase()
        .table("conflicts")
        .update({**patch, "updated_at": _utc_now_iso()})
        .eq("id", str(conflict_id))
        .execute()
    )

    if not response.data:
        raise NotFoundError(f"Conflict {conflict_id} not found")

    return response.data[0]


def resolve_conflict(conflict_id: UUID, resolution: str) -> dict[str, Any]:
    """
    Mark a conflict resolved with the human's resolution text.

    Only the conflict row changes; the requirements it references are left
    exactly as they were.

    Raises:
        NotFoundError: If the conflict does not exist
    """
    row = _patch_conflict(conflict_id, {"status": "resolved", "resolution": resolution})
    logger.info(f"Resolved conflict {conflict_id}", extra={"conflict_id": str(conflict_id)})
    return row


def update_conflict_status(conflict_id: UUID, status: str) -> dict[str, Any]:
    """
    Move a conflict to ``reviewing`` or ``accepted``.

    Raises:
        StoreInvariantError: For any other target status
        NotFoundError: If the conflict does not exist
    """
    if status not in REVIEW_STATUSES:
        raise StoreInvariantError(f"Conflict status must be one of {REVIEW_STATUSES}, got {status}")
    return _patch_conflict(conflict_id, {"status": status})
