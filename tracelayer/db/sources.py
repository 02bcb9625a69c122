"""Source (uploaded communication) database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.errors import NotFoundError, StageTransitionError
from tracelayer.core.logging import get_logger
from tracelayer.db.projects import increment_counter
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)

# Allowed source status moves. Any processed state may restart at classifying.
SOURCE_TRANSITIONS: dict[str, set[str]] = {
    "uploaded": {"classifying", "failed"},
    "classifying": {"classified", "failed"},
    "classified": {"extracting", "classifying", "failed"},
    "extracting": {"extracted", "classifying", "failed"},
    "extracted": {"classifying", "failed"},
    "failed": {"uploaded", "classifying"},
}


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def count_words(content: str) -> int:
    return len((content or "").split())


def upload_source(
    project_id: UUID,
    name: str,
    source_type: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Store a new source and bump the project's source counter.

    Args:
        project_id: Project UUID
        name: Display name (file name, email subject, ...)
        source_type: email, meeting_transcript, chat_log, document, uploaded_file
        content: Plain text content
        metadata: Optional author, date, channel, subject, participants

    Returns:
        Created source row

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    meta = dict(metadata or {})
    meta["word_count"] = count_words(content)

    try:
        response = (
            supabase.table("sources")
            .insert(
                {
                    "project_id": str(project_id),
                    "name": name,
                    "type": source_type,
                    "content": content,
                    "metadata": meta,
                    "status": "uploaded",
                    "relevance_score": None,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from upload_source")

        source = response.data[0]
        increment_counter(project_id, "source_count")

        logger.info(
            f"Uploaded source {source['id']} ({source_type}, {meta['word_count']} words)",
            extra={"project_id": str(project_id), "source_id": source["id"]},
        )
        return source

    except Exception as e:
        logger.error(f"Failed to upload source {name}: {e}", extra={"project_id": str(project_id)})
        raise


def list_sources(project_id: UUID) -> list[dict[str, Any]]:
    """List a project's sources in upload order."""
    supabase = get_supabase()

    response = (
        supabase.table("sources")
        .select("*")
        .eq("project_id", str(project_id))
        .order("created_at", desc=False)
        .execute()
    )

    return response.data or []


def get_source(source_id: UUID) -> dict[str, Any] | None:
    """
    Get a single source by ID.

    Returns:
        Source dict or None if not found
    """
    supabase = get_supabase()

    response = (
        supabase.table("sources")
        .select("*")
        .eq("id", str(source_id))
        .maybe_single()
        .execute()
    )

    return response.data if response else None


def update_source_status(
    source_id: UUID,
    status: str,
    relevance_score: float | None = None,
) -> dict[str, Any]:
    """
    Move a source through its processing lifecycle.

    Args:
        source_id: Source UUID
        status: Target status
        relevance_score: Optional relevance from classification, clamped to [0, 1]

    Returns:
        Updated source row

    Raises:
        NotFoundError: If the source does not exist
        StageTransitionError: If the move is not allowed from the current status
    """
    source = get_source(source_id)
    if not source:
        raise NotFoundError(f"Source {source_id} not found")

    current = source.get("status", "uploaded")
    if status != current and status not in SOURCE_TRANSITIONS.get(current, set()):
        raise StageTransitionError(f"Source cannot move from {current} to {status}")

    patch: dict[str, Any] = {"status": status, "updated_at": _utc_now_iso()}
    if relevance_score is not None:
        patch["relevance_score"] = max(0.0, min(1.0, float(relevance_score)))

    response = get_supabase().table("sources").update(patch).eq("id", str(source_id)).execute()

    logger.debug(f"Source {source_id}: {current} -> {status}", extra={"source_id": str(source_id)})
    return response.data[0] if response.data else {**source, **patch}


def delete_source(source_id: UUID) -> bool:
    """
    Delete a source and decrement the project's source counter.

    Returns:
        True if a source was deleted, False if it did not exist
    """
    source = get_source(source_id)
    if not source:
        return False

    try:
        get_supabase().table("sources").delete().eq("id", str(source_id)).execute()
        increment_counter(UUID(str(source["project_id"])), "source_count", -1)
    except Exception as e:
        logger.error(f"Failed to delete source {source_id}: {e}", extra={"source_id": str(source_id)})
        raise

    logger.info(f"Deleted source {source_id}", extra={"source_id": str(source_id)})
    return True
