"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tracelayer.api import router as api_router
from tracelayer.core.config import get_settings

app = FastAPI(
    title="TraceLayer Extraction Engine",
    description="LangGraph pipeline that turns project communications into traceable requirements",
    version="0.1.0",
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Liveness plus extraction readiness.

    ``extraction_configured`` is false when no model API key is set; starting
    a run then returns 503.
    """
    settings = get_settings()
    return JSONResponse(
        content={
            "status": "ok",
            "env": settings.TRACELAYER_ENV,
            "extraction_configured": bool(settings.ANTHROPIC_API_KEY),
        },
        status_code=200,
    )


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
