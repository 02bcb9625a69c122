"""Generated document database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.logging import get_logger
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def store_document(
    project_id: UUID,
    doc_type: str,
    content: dict[str, Any],
    generated_from: dict[str, int],
) -> dict[str, Any]:
    """
    Store a new version of a generated document.

    The version is the number of existing documents of this type plus one;
    previous ``ready`` versions become ``outdated``.

    Args:
        project_id: Project UUID
        doc_type: brd, prd or traceability_matrix
        content: Structured document body
        generated_from: Entity counts the document was built from

    Returns:
        Created document row
    """
    supabase = get_supabase()
    pid = str(project_id)

    try:
        existing = (
            supabase.table("documents")
            .select("id, status")
            .eq("project_id", pid)
            .eq("type", doc_type)
            .execute()
        ).data or []

        version = len(existing) + 1

        supabase.table("documents").update({"status": "outdated"}).eq("project_id", pid).eq(
            "type", doc_type
        ).eq("status", "ready").execute()

        response = (
            supabase.table("documents")
            .insert(
                {
                    "project_id": pid,
                    "type": doc_type,
                    "version": version,
                    "content": content,
                    "status": "ready",
                    "generated_from": generated_from,
                    "generated_at": _utc_now_iso(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_document")

        logger.info(
            f"Stored {doc_type} v{version} for project {project_id}",
            extra={"project_id": pid, "document_id": response.data[0]["id"]},
        )
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to store {doc_type} document: {e}", extra={"project_id": pid})
        raise


def list_documents(project_id: UUID, doc_type: str | None = None) -> list[dict[str, Any]]:
    """List a project's documents, newest version first."""
    query = get_supabase().table("documents").select("*").eq("project_id", str(project_id))
    if doc_type:
        query = query.eq("type", doc_type)
    response = query.order("version", desc=True).execute()

    return response.data or []


def get_latest_document(project_id: UUID, doc_type: str = "brd") -> dict[str, Any] | None:
    """Highest version of a document type, or None."""
    docs = list_documents(project_id, doc_type)
    return docs[0] if docs else None
