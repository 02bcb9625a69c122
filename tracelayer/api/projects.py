"""API endpoints for projects."""

from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel

from tracelayer.api.errors import to_http_exception
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import ProjectCreate
from tracelayer.db import projects as projects_db

logger = get_logger(__name__)

router = APIRouter()


class ProjectUpdate(BaseModel):
    """Request body for updating a project. Only supplied fields change."""

    name: str | None = None
    description: str | None = None
    output_format: Literal["brd", "prd", "both"] | None = None


@router.post("", status_code=201)
async def create_project(body: ProjectCreate) -> dict[str, Any]:
    """Create a project in ``draft`` with zeroed counters."""
    try:
        return projects_db.create_project(body.name, body.description, body.output_format)
    except Exception as e:
        raise to_http_exception(e, "creating project") from e


@router.get("")
async def list_projects(limit: int = Query(50, ge=1, le=500)) -> list[dict[str, Any]]:
    try:
        return projects_db.list_projects(limit=limit)
    except Exception as e:
        raise to_http_exception(e, "listing projects") from e


@router.get("/{project_id}")
async def get_project(project_id: UUID = Path(..., description="Project UUID")) -> dict[str, Any]:
    try:
        return projects_db.get_project(project_id)
    except Exception as e:
        raise to_http_exception(e, "getting project") from e


@router.patch("/{project_id}")
async def update_project(
    body: ProjectUpdate,
    project_id: UUID = Path(..., description="Project UUID"),
) -> dict[str, Any]:
    try:
        return projects_db.update_project(project_id, body.model_dump(exclude_none=True))
    except Exception as e:
        raise to_http_exception(e, "updating project") from e


@router.delete("/{project_id}", status_code=204)
async def delete_project(project_id: UUID = Path(..., description="Project UUID")) -> None:
    """Delete a project and everything extracted for it."""
    try:
        projects_db.get_project(project_id)
        projects_db.delete_project(project_id)
    except Exception as e:
        raise to_http_exception(e, "deleting project") from e


@router.post("/{project_id}/refresh-counts")
async def refresh_counts(project_id: UUID = Path(..., description="Project UUID")) -> dict[str, int]:
    """
    Recompute the project's denormalized counters from the stored rows.

    Returns:
        Counter column → recomputed value
    """
    try:
        projects_db.get_project(project_id)
        return projects_db.refresh_counts(project_id)
    except Exception as e:
        raise to_http_exception(e, "refreshing counts") from e
