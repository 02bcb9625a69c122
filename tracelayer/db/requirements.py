"""Requirements database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.errors import NotFoundError, StoreInvariantError
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import RequirementCandidate
from tracelayer.db.projects import increment_counter
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)

# Fields a human edit may patch
EDITABLE_FIELDS = ("title", "description", "priority", "status", "category", "tags")


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def _check_evidence(confidence: float, source_id: UUID | None, excerpt: str) -> None:
    if not 0.0 <= confidence <= 1.0:
        raise StoreInvariantError(f"Confidence {confidence} outside [0, 1]")
    if not source_id:
        raise StoreInvariantError("Requirement has no source")
    if not (excerpt or "").strip():
        raise StoreInvariantError("Requirement has no source excerpt")


def store_requirement(
    project_id: UUID,
    requirement_id: str,
    candidate: RequirementCandidate,
    source_id: UUID,
    run_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Insert an agent-extracted requirement.

    New requirements start as ``discovered`` and ``modified_by='agent'``.
    The project's requirement counter is bumped.

    Args:
        project_id: Project UUID
        requirement_id: Human id, e.g. ``REQ-007``
        candidate: Validated agent candidate
        source_id: Source the excerpt was quoted from
        run_id: Extraction run that produced it (for logging)

    Returns:
        Created requirement row

    Raises:
        StoreInvariantError: Confidence outside [0, 1] or missing evidence
    """
    _check_evidence(candidate.confidence, source_id, candidate.source_excerpt)

    supabase = get_supabase()
    now = _utc_now_iso()

    try:
        response = (
            supabase.table("requirements")
            .insert(
                {
                    "project_id": str(project_id),
                    "requirement_id": requirement_id,
                    "title": candidate.title,
                    "description": candidate.description,
                    "category": candidate.category.value,
                    "priority": candidate.priority.value,
                    "status": "discovered",
                    "confidence_score": candidate.confidence,
                    "source_id": str(source_id),
                    "source_excerpt": candidate.source_excerpt,
                    "extraction_reasoning": candidate.reasoning,
                    "tags": candidate.tags,
                    "stakeholder_names": candidate.stakeholder_names,
                    "stakeholder_ids": [],
                    "modified_by": "agent",
                    "extracted_at": now,
                    "last_modified": now,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_requirement")

        row = response.data[0]
        increment_counter(project_id, "requirement_count")

        logger.info(
            f"Stored {requirement_id}: {candidate.title}",
            extra={"run_id": str(run_id) if run_id else None, "requirement_id": row["id"]},
        )
        return row

    except Exception as e:
        logger.error(f"Failed to store requirement {requirement_id}: {e}", extra={"project_id": str(project_id)})
        raise


def get_requirement(requirement_id: UUID) -> dict[str, Any] | None:
    """
    Get a single requirement by row ID.

    Returns:
        Requirement dict or None if not found
    """
    response = (
        get_supabase()
        .table("requirements")
        .select("*")
        .eq("id", str(requirement_id))
        .maybe_single()
        .execute()
    )

    return response.data if response else None


def list_requirements(project_id: UUID) -> list[dict[str, Any]]:
    """List a project's requirements ordered by human id."""
    response = (
        get_supabase()
        .table("requirements")
        .select("*")
        .eq("project_id", str(project_id))
        .order("requirement_id", desc=False)
        .execute()
    )

    return response.data or []


def list_requirements_by_source(source_id: UUID) -> list[dict[str, Any]]:
    """List requirements extracted from one source."""
    response = (
        get_supabase()
        .table("requirements")
        .select("*")
        .eq("source_id", str(source_id))
        .order("requirement_id", desc=False)
        .execute()
    )

    return response.data or []


def update_requirement(requirement_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
    """
    Apply a human edit to a requirement.

    Only supplied editable fields are patched. The edit stamps
    ``last_modified`` and flips ``modified_by`` to ``user``, which protects
    the requirement from a regenerate.

    Args:
        requirement_id: Requirement row UUID
        fields: Columns to patch; None values and non-editable keys are ignored

    Returns:
        Updated requirement row

    Raises:
        NotFoundError: If the requirement does not exist
    """
    patch = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
    patch["last_modified"] = _utc_now_iso()
    patch["modified_by"] = "user"

    try:
        response = (
            get_supabase()
            .table("requirements")
            .update(patch)
            .eq("id", str(requirement_id))
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to update requirement {requirement_id}: {e}")
        raise

    if not response.data:
        raise NotFoundError(f"Requirement {requirement_id} not found")

    logger.info(
        f"User edited requirement {requirement_id}",
        extra={"requirement_id": str(requirement_id), "fields": sorted(k for k in patch if k in EDITABLE_FIELDS)},
    )
    return response.data[0]


def set_requirement_stakeholders(requirement_id: UUID, stakeholder_ids: list[str]) -> None:
    """Record linked stakeholders. Pipeline bookkeeping, not a user edit."""
    get_supabase().table("requirements").update(
        {"stakeholder_ids": [str(s) for s in stakeholder_ids]}
    ).eq("id", str(requirement_id)).execute()
