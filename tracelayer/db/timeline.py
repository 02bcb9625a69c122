"""Timeline event database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.errors import StoreInvariantError
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import TimelineCandidate
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def store_timeline_event(
    project_id: UUID,
    candidate: TimelineCandidate,
    source_id: UUID,
) -> dict[str, Any]:
    """
    Insert an agent-extracted timeline event.

    Raises:
        StoreInvariantError: Confidence outside [0, 1] or missing evidence
    """
    if not 0.0 <= candidate.confidence <= 1.0:
        raise StoreInvariantError(f"Confidence {candidate.confidence} outside [0, 1]")
    if not source_id or not candidate.source_excerpt.strip():
        raise StoreInvariantError("Timeline event has no source evidence")

    try:
        response = (
            get_supabase()
            .table("timeline_events")
            .insert(
                {
                    "project_id": str(project_id),
                    "title": candidate.title,
                    "description": candidate.description,
                    "date": candidate.date,
                    "type": candidate.type.value,
                    "source_id": str(source_id),
                    "source_excerpt": candidate.source_excerpt,
                    "confidence_score": candidate.confidence,
                    "extracted_at": _utc_now_iso(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_timeline_event")

        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to store timeline event {candidate.title}: {e}", extra={"project_id": str(project_id)})
        raise


def list_timeline_events(project_id: UUID) -> list[dict[str, Any]]:
    """List a project's timeline events, dated events first in date order."""
    response = (
        get_supabase()
        .table("timeline_events")
        .select("*")
        .eq("project_id", str(project_id))
        .order("created_at", desc=False)
        .execute()
    )

    events = response.data or []
    return sorted(events, key=lambda e: (e.get("date") is None, e.get("date") or ""))
