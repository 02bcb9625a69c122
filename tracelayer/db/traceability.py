"""Traceability link database operations. Links are append-only."""

from typing import Any
from uuid import UUID

from tracelayer.core.logging import get_logger
from tracelayer.core.traceability import PlannedLink, build_graph, clamp_strength
from tracelayer.db.conflicts import list_conflicts
from tracelayer.db.decisions import list_decisions
from tracelayer.db.requirements import list_requirements
from tracelayer.db.sources import list_sources
from tracelayer.db.stakeholders import list_stakeholders
from tracelayer.db.supabase_client import get_supabase

logger = get_logger(__name__)


def store_link(
    project_id: UUID,
    from_type: str,
    from_id: str,
    to_type: str,
    to_id: str,
    relationship: str,
    strength: float,
) -> dict[str, Any]:
    """
    Append a traceability edge. Strength is clamped into [0, 1].

    Returns:
        Created link row
    """
    try:
        response = (
            get_supabase()
            .table("traceability_links")
            .insert(
                {
                    "project_id": str(project_id),
                    "from_type": from_type,
                    "from_id": str(from_id),
                    "to_type": to_type,
                    "to_id": str(to_id),
                    "relationship": relationship,
                    "strength": clamp_strength(strength),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from store_link")

        return response.data[0]

    except Exception as e:
        logger.error(
            f"Failed to store link {from_type}:{from_id} -{relationship}-> {to_type}:{to_id}: {e}",
            extra={"project_id": str(project_id)},
        )
        raise


def store_links(project_id: UUID, links: list[PlannedLink]) -> int:
    """Append a batch of planned links. Returns how many were stored."""
    if not links:
        return 0

    rows = [
        {
            "project_id": str(project_id),
            "from_type": link.from_type,
            "from_id": link.from_id,
            "to_type": link.to_type,
            "to_id": link.to_id,
            "relationship": link.relationship,
            "strength": clamp_strength(link.strength),
        }
        for link in links
    ]

    try:
        response = get_supabase().table("traceability_links").insert(rows).execute()
    except Exception as e:
        logger.error(f"Failed to store {len(rows)} links: {e}", extra={"project_id": str(project_id)})
        raise

    return len(response.data or [])


def list_links(project_id: UUID) -> list[dict[str, Any]]:
    """List a project's links in creation order."""
    response = (
        get_supabase()
        .table("traceability_links")
        .select("*")
        .eq("project_id", str(project_id))
        .order("created_at", desc=False)
        .execute()
    )

    return response.data or []


def get_project_graph(project_id: UUID) -> dict[str, list[dict[str, Any]]]:
    """
    Nodes and edges of a project's traceability graph.

    Returns:
        ``{"nodes": [...], "edges": [...]}``; both empty for an empty project
    """
    return build_graph(
        requirements=list_requirements(project_id),
        stakeholders=list_stakeholders(project_id),
        sources=list_sources(project_id),
        decisions=list_decisions(project_id),
        conflicts=list_conflicts(project_id),
        links=list_links(project_id),
    )
