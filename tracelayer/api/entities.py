"""API endpoints for extracted records: requirements, stakeholders, decisions, timeline and conflicts."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query
from pydantic import BaseModel

from tracelayer.api.errors import to_http_exception
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import (
    ConflictCreate,
    ConflictResolve,
    ConflictStatusUpdate,
    DecisionStatus,
    RequirementUpdate,
)
from tracelayer.db import conflicts as conflicts_db
from tracelayer.db import decisions as decisions_db
from tracelayer.db import projects as projects_db
from tracelayer.db import requirements as requirements_db
from tracelayer.db import stakeholders as stakeholders_db
from tracelayer.db import timeline as timeline_db

logger = get_logger(__name__)

router = APIRouter()


class DecisionStatusUpdate(BaseModel):
    status: DecisionStatus


# ============================================================================
# Requirements
# ============================================================================


@router.get("/projects/{project_id}/requirements")
async def list_requirements(
    project_id: UUID = Path(..., description="Project UUID"),
    source_id: UUID | None = Query(None, description="Only requirements quoted from this source"),
    category: str | None = Query(None),
    priority: str | None = Query(None),
) -> list[dict[str, Any]]:
    """List a project's requirements by REQ id, optionally filtered."""
    try:
        if source_id:
            requirements = requirements_db.list_requirements_by_source(source_id)
        else:
            requirements = requirements_db.list_requirements(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing requirements") from e

    if category:
        requirements = [r for r in requirements if r.get("category") == category]
    if priority:
        requirements = [r for r in requirements if r.get("priority") == priority]
    return requirements


@router.get("/requirements/{requirement_id}")
async def get_requirement(requirement_id: UUID = Path(..., description="Requirement UUID")) -> dict[str, Any]:
    try:
        requirement = requirements_db.get_requirement(requirement_id)
    except Exception as e:
        raise to_http_exception(e, "getting requirement") from e

    if not requirement:
        raise HTTPException(status_code=404, detail=f"Requirement {requirement_id} not found")
    return requirement


@router.patch("/requirements/{requirement_id}")
async def update_requirement(
    body: RequirementUpdate,
    requirement_id: UUID = Path(..., description="Requirement UUID"),
) -> dict[str, Any]:
    """
    Edit a requirement.

    The edit marks the requirement as user-modified, so a regenerate keeps it.
    """
    try:
        return requirements_db.update_requirement(requirement_id, body.model_dump(mode="json", exclude_none=True))
    except Exception as e:
        raise to_http_exception(e, "updating requirement") from e


# ============================================================================
# Stakeholders, decisions, timeline
# ============================================================================


@router.get("/projects/{project_id}/stakeholders")
async def list_stakeholders(project_id: UUID = Path(..., description="Project UUID")) -> list[dict[str, Any]]:
    try:
        return stakeholders_db.list_stakeholders(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing stakeholders") from e


@router.get("/projects/{project_id}/decisions")
async def list_decisions(project_id: UUID = Path(..., description="Project UUID")) -> list[dict[str, Any]]:
    try:
        return decisions_db.list_decisions(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing decisions") from e


@router.patch("/decisions/{decision_id}/status")
async def update_decision_status(
    body: DecisionStatusUpdate,
    decision_id: UUID = Path(..., description="Decision UUID"),
) -> dict[str, Any]:
    try:
        decision = decisions_db.update_decision_status(decision_id, body.status.value)
    except Exception as e:
        raise to_http_exception(e, "updating decision status") from e

    if not decision:
        raise HTTPException(status_code=404, detail=f"Decision {decision_id} not found")
    return decision


@router.get("/projects/{project_id}/timeline")
async def list_timeline(project_id: UUID = Path(..., description="Project UUID")) -> list[dict[str, Any]]:
    """Timeline events, dated events first in date order."""
    try:
        return timeline_db.list_timeline_events(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing timeline") from e


# ============================================================================
# Conflicts
# ============================================================================


@router.get("/projects/{project_id}/conflicts")
async def list_conflicts(
    project_id: UUID = Path(..., description="Project UUID"),
    status: str | None = Query(None, description="Filter by status"),
) -> list[dict[str, Any]]:
    try:
        conflicts = conflicts_db.list_conflicts(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing conflicts") from e

    if status:
        conflicts = [c for c in conflicts if c.get("status") == status]
    return conflicts


@router.post("/projects/{project_id}/conflicts", status_code=201)
async def create_conflict(
    body: ConflictCreate,
    project_id: UUID = Path(..., description="Project UUID"),
) -> dict[str, Any]:
    """
    Record a conflict by hand.

    Every referenced requirement must belong to the project (422 otherwise).
    """
    try:
        projects_db.get_project(project_id)
        return conflicts_db.store_conflict(
            project_id,
            conflicts_db.next_conflict_id(project_id),
            body.title,
            body.description,
            body.severity.value,
            [str(r) for r in body.requirement_ids],
            kind=body.kind.value,
        )
    except Exception as e:
        raise to_http_exception(e, "creating conflict") from e


@router.get("/conflicts/{conflict_id}")
async def get_conflict(conflict_id: UUID = Path(..., description="Conflict UUID")) -> dict[str, Any]:
    try:
        conflict = conflicts_db.get_conflict(conflict_id)
    except Exception as e:
        raise to_http_exception(e, "getting conflict") from e

    if not conflict:
        raise HTTPException(status_code=404, detail=f"Conflict {conflict_id} not found")
    return conflict


@router.post("/conflicts/{conflict_id}/resolve")
async def resolve_conflict(
    body: ConflictResolve,
    conflict_id: UUID = Path(..., description="Conflict UUID"),
) -> dict[str, Any]:
    """Resolve a conflict. The requirements it references are not changed."""
    try:
        return conflicts_db.resolve_conflict(conflict_id, body.resolution)
    except Exception as e:
        raise to_http_exception(e, "resolving conflict") from e


@router.patch("/conflicts/{conflict_id}/status")
async def update_conflict_status(
    body: ConflictStatusUpdate,
    conflict_id: UUID = Path(..., description="Conflict UUID"),
) -> dict[str, Any]:
    try:
        return conflicts_db.update_conflict_status(conflict_id, body.status)
    except Exception as e:
        raise to_http_exception(e, "updating conflict status") from e
