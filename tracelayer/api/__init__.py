"""API router for v1 endpoints."""

from fastapi import APIRouter

from tracelayer.api import documents, entities, insights, pipeline, projects, sources, traceability

router = APIRouter()

# Projects and their uploaded sources
router.include_router(projects.router, prefix="/projects", tags=["projects"])
router.include_router(sources.router, tags=["sources"])

# Extraction runs, logs and activity
router.include_router(pipeline.router, tags=["pipeline"])

# Extracted records
router.include_router(entities.router, tags=["entities"])
router.include_router(traceability.router, tags=["traceability"])

# Read-time aggregation and generated documents
router.include_router(insights.router, tags=["insights"])
router.include_router(documents.router, tags=["documents"])
