"""Stakeholders database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import StakeholderCandidate, StakeholderInfluence
from tracelayer.db.projects import increment_counter
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def list_stakeholders(project_id: UUID) -> list[dict[str, Any]]:
    """
    List all stakeholders for a project.

    Args:
        project_id: Project UUID

    Returns:
        List of stakeholder dicts
    """
    response = (
        get_supabase()
        .table("stakeholders")
        .select("*")
        .eq("project_id", str(project_id))
        .order("created_at", desc=False)
        .execute()
    )

    return response.data or []


def find_stakeholder_by_name(project_id: UUID, name: str) -> dict[str, Any] | None:
    """Case-insensitive exact name lookup within a project."""
    key = (name or "").strip().lower()
    for stakeholder in list_stakeholders(project_id):
        if (stakeholder.get("name") or "").strip().lower() == key:
            return stakeholder
    return None


def store_stakeholder(
    project_id: UUID,
    candidate: StakeholderCandidate,
    source_ids: list[str],
) -> dict[str, Any]:
    """
    Insert a stakeholder, or merge into the one with the same name.

    Names match case-insensitively within the project. On a match the
    source ids are unioned, ``mention_count`` goes up by one, and role and
    influence are replaced only by non-empty incoming values. Otherwise a
    new row starts at ``mention_count=1`` and the project counter is bumped.

    Args:
        project_id: Project UUID
        candidate: Validated agent candidate
        source_ids: Sources that reference this stakeholder

    Returns:
        Stored stakeholder row, with ``merged`` set to whether it already existed
    """
    supabase = get_supabase()
    existing = find_stakeholder_by_name(project_id, candidate.name)

    try:
        if existing:
            merged_sources = list(dict.fromkeys([*(existing.get("source_ids") or []), *map(str, source_ids)]))
            patch = {
                "mention_count": int(existing.get("mention_count") or 0) + 1,
                "source_ids": merged_sources,
                "role": candidate.role or existing.get("role") or "",
                "influence": (
                    candidate.influence.value if candidate.influence else existing.get("influence")
                ),
                "updated_at": _utc_now_iso(),
            }
            response = supabase.table("stakeholders").update(patch).eq("id", existing["id"]).execute()
            row = response.data[0] if response.data else {**existing, **patch}

            logger.info(
                f"Merged stakeholder {candidate.name} (mentions: {patch['mention_count']})",
                extra={"project_id": str(project_id), "stakeholder_id": existing["id"]},
            )
            return {**row, "merged": True}

        response = (
            supabase.table("stakeholders")
            .insert(
                {
                    "project_id": str(project_id),
                    "name": candidate.name,
                    "role": candidate.role,
                    "department": candidate.department,
                    "influence": (candidate.influence or StakeholderInfluence.CONTRIBUTOR).value,
                    "sentiment": candidate.sentiment.value,
                    "concerns": candidate.concerns,
                    "mention_count": 1,
                    "source_ids": list(dict.fromkeys(map(str, source_ids))),
                    "extracted_at": _utc_now_iso(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_stakeholder")

        row = response.data[0]
        increment_counter(project_id, "stakeholder_count")

        logger.info(
            f"Stored stakeholder {candidate.name}",
            extra={"project_id": str(project_id), "stakeholder_id": row["id"]},
        )
        return {**row, "merged": False}

    except Exception as e:
        logger.error(f"Failed to store stakeholder {candidate.name}: {e}", extra={"project_id": str(project_id)})
        raise
