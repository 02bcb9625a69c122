"""Decisions database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.errors import StoreInvariantError
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import DecisionCandidate, parse_decision_type
from tracelayer.db.projects import increment_counter
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def store_decision(
    project_id: UUID,
    decision_id: str,
    candidate: DecisionCandidate,
    source_id: UUID,
    made_by: UUID | None = None,
    impacted_requirement_ids: list[str] | None = None,
) -> dict[str, Any]:
    """
    Insert an agent-extracted decision and bump the project's decision counter.

    The free-form agent type is stored as the tagged variant
    ``{"kind": ..., "label": ...}``.

    Args:
        project_id: Project UUID
        decision_id: Human id, e.g. ``DEC-003``
        candidate: Validated agent candidate
        source_id: Source the excerpt was quoted from
        made_by: Stakeholder UUID when the decision maker was resolved
        impacted_requirement_ids: Requirement row UUIDs the decision affects

    Returns:
        Created decision row

    Raises:
        StoreInvariantError: Confidence outside [0, 1] or missing evidence
    """
    if not 0.0 <= candidate.confidence <= 1.0:
        raise StoreInvariantError(f"Confidence {candidate.confidence} outside [0, 1]")
    if not source_id or not candidate.source_excerpt.strip():
        raise StoreInvariantError("Decision has no source evidence")

    decision_type = parse_decision_type(candidate.type)

    try:
        response = (
            get_supabase()
            .table("decisions")
            .insert(
                {
                    "project_id": str(project_id),
                    "decision_id": decision_id,
                    "title": candidate.title,
                    "description": candidate.description,
                    "type": {"kind": decision_type.kind, "label": decision_type.label},
                    "status": candidate.status.value,
                    "made_by": str(made_by) if made_by else None,
                    "source_id": str(source_id),
                    "source_excerpt": candidate.source_excerpt,
                    "confidence_score": candidate.confidence,
                    "impacted_requirement_ids": [str(r) for r in impacted_requirement_ids or []],
                    "extracted_at": _utc_now_iso(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_decision")

        row = response.data[0]
        increment_counter(project_id, "decision_count")

        logger.info(
            f"Stored {decision_id}: {candidate.title} [{decision_type.label}]",
            extra={"project_id": str(project_id), "decision_id": row["id"]},
        )
        return row

    except Exception as e:
        logger.error(f"Failed to store decision {decision_id}: {e}", extra={"project_id": str(project_id)})
        raise


def list_decisions(project_id: UUID) -> list[dict[str, Any]]:
    """List a project's decisions ordered by human id."""
    response = (
        get_supabase()
        .table("decisions")
        .select("*")
        .eq("project_id", str(project_id))
        .order("decision_id", desc=False)
        .execute()
    )

    return response.data or []


def update_decision_status(decision_id: UUID, status: str) -> dict[str, Any] | None:
    """Set a decision's status (proposed, approved, rejected, deferred)."""
    response = (
        get_supabase()
        .table("decisions")
        .update({"status": status, "updated_at": _utc_now_iso()})
        .eq("id", str(decision_id))
        .execute()
    )

    return response.data[0] if response.data else None
