"""API endpoints for the traceability graph."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Path

from tracelayer.api.errors import to_http_exception
from tracelayer.core.logging import get_logger
from tracelayer.db import traceability as traceability_db

logger = get_logger(__name__)

router = APIRouter(prefix="/projects/{project_id}")


@router.get("/graph")
async def get_graph(project_id: UUID = Path(..., description="Project UUID")) -> dict[str, list[dict[str, Any]]]:
    """
    Nodes and edges of the project's traceability graph.

    Returns:
        ``{"nodes": [...], "edges": [...]}``; both empty for an empty project
    """
    try:
        return traceability_db.get_project_graph(project_id)
    except Exception as e:
        raise to_http_exception(e, "building traceability graph") from e


@router.get("/links")
async def list_links(project_id: UUID = Path(..., description="Project UUID")) -> list[dict[str, Any]]:
    try:
        return traceability_db.list_links(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing links") from e
