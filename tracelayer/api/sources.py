"""API endpoints for uploaded sources."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path

from tracelayer.api.errors import to_http_exception
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import SourceUpload
from tracelayer.db import projects as projects_db
from tracelayer.db import sources as sources_db

logger = get_logger(__name__)

router = APIRouter()


@router.post("/projects/{project_id}/sources", status_code=201)
async def upload_source(
    body: SourceUpload,
    project_id: UUID = Path(..., description="Project UUID"),
) -> dict[str, Any]:
    """
    Upload a communication for extraction.

    Args:
        project_id: Project UUID
        body: Name, type, plain-text content and optional metadata

    Returns:
        Created source with ``metadata.word_count`` filled in
    """
    try:
        projects_db.get_project(project_id)
        return sources_db.upload_source(
            project_id, body.name, body.type.value, body.content, body.metadata
        )
    except Exception as e:
        raise to_http_exception(e, "uploading source") from e


@router.get("/projects/{project_id}/sources")
async def list_sources(project_id: UUID = Path(..., description="Project UUID")) -> list[dict[str, Any]]:
    try:
        return sources_db.list_sources(project_id)
    except Exception as e:
        raise to_http_exception(e, "listing sources") from e


@router.get("/sources/{source_id}")
async def get_source(source_id: UUID = Path(..., description="Source UUID")) -> dict[str, Any]:
    try:
        source = sources_db.get_source(source_id)
    except Exception as e:
        raise to_http_exception(e, "getting source") from e

    if not source:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return source


@router.delete("/sources/{source_id}", status_code=204)
async def delete_source(source_id: UUID = Path(..., description="Source UUID")) -> None:
    try:
        deleted = sources_db.delete_source(source_id)
    except Exception as e:
        raise to_http_exception(e, "deleting source") from e

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
