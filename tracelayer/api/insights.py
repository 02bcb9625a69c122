"""API endpoints for insights and pipeline diagnostics."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Path

from tracelayer.api.errors import to_http_exception
from tracelayer.core.insight_scoring import Insight
from tracelayer.core.logging import get_logger
from tracelayer.db import insights as insights_db

logger = get_logger(__name__)

router = APIRouter()


@router.get("/insights/dashboard", response_model=list[Insight])
async def dashboard_insights() -> list[Insight]:
    """Ranked insights across every project."""
    try:
        return insights_db.get_dashboard_insights()
    except Exception as e:
        raise to_http_exception(e, "building dashboard insights") from e


@router.get("/projects/{project_id}/insights", response_model=list[Insight])
async def project_insights(project_id: UUID = Path(..., description="Project UUID")) -> list[Insight]:
    try:
        return insights_db.get_project_insights(project_id)
    except Exception as e:
        raise to_http_exception(e, "building project insights") from e


@router.get("/projects/{project_id}/diagnostics")
async def diagnostics(project_id: UUID = Path(..., description="Project UUID")) -> dict[str, Any]:
    """
    Pipeline health for a project.

    Returns:
        Sections ``project``, ``sources``, ``extraction``, ``quality``,
        ``runs`` and ``errors``
    """
    try:
        return insights_db.get_diagnostics(project_id)
    except Exception as e:
        raise to_http_exception(e, "building diagnostics") from e
