"""API endpoints for generated documents."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query

from tracelayer.api.errors import to_http_exception
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import DocumentType
from tracelayer.db import documents as documents_db

logger = get_logger(__name__)

router = APIRouter(prefix="/projects/{project_id}/documents")


@router.get("")
async def list_documents(
    project_id: UUID = Path(..., description="Project UUID"),
    doc_type: DocumentType | None = Query(None, alias="type", description="Filter by document type"),
) -> list[dict[str, Any]]:
    """Document versions, newest first."""
    try:
        return documents_db.list_documents(project_id, doc_type.value if doc_type else None)
    except Exception as e:
        raise to_http_exception(e, "listing documents") from e


@router.get("/latest")
async def latest_document(
    project_id: UUID = Path(..., description="Project UUID"),
    doc_type: DocumentType = Query(DocumentType.BRD, alias="type"),
) -> dict[str, Any]:
    try:
        document = documents_db.get_latest_document(project_id, doc_type.value)
    except Exception as e:
        raise to_http_exception(e, "getting latest document") from e

    if not document:
        raise HTTPException(status_code=404, detail=f"No {doc_type.value} generated for project {project_id}")
    return document
