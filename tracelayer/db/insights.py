"""Read-time insights and diagnostics over stored extraction data."""

from typing import Any
from uuid import UUID

from tracelayer.core.config import get_settings
from tracelayer.core.insight_scoring import (
    Insight,
    build_dashboard_insights,
    build_diagnostics,
    build_project_insights,
)
from tracelayer.core.logging import get_logger
from tracelayer.db import agent_logs, extraction_runs
from tracelayer.db.conflicts import list_conflicts
from tracelayer.db.decisions import list_decisions
from tracelayer.db.documents import list_documents
from tracelayer.db.projects import get_project, list_projects
from tracelayer.db.requirements import list_requirements
from tracelayer.db.sources import list_sources
from tracelayer.db.stakeholders import list_stakeholders
from tracelayer.db.supabase_client import get_supabase
from tracelayer.db.timeline import list_timeline_events

logger = get_logger(__name__)


def _all_rows(table: str) -> list[dict[str, Any]]:
    return get_supabase().table(table).select("*").execute().data or []


def get_project_insights(project_id: UUID) -> list[Insight]:
    """
    Ranked insights for one project.

    Raises:
        NotFoundError: If the project does not exist
    """
    get_project(project_id)

    return build_project_insights(
        requirements=list_requirements(project_id),
        stakeholders=list_stakeholders(project_id),
        conflicts=list_conflicts(project_id),
        decisions=list_decisions(project_id),
        sources=list_sources(project_id),
        documents=list_documents(project_id),
        runs=extraction_runs.list_runs(project_id),
    )


def get_dashboard_insights() -> list[Insight]:
    """Ranked insights across every project."""
    return build_dashboard_insights(
        projects=list_projects(limit=1000),
        requirements=_all_rows("requirements"),
        stakeholders=_all_rows("stakeholders"),
        conflicts=_all_rows("conflicts"),
        decisions=_all_rows("decisions"),
        sources=_all_rows("sources"),
        runs=extraction_runs.list_all_runs(),
    )


def get_diagnostics(project_id: UUID) -> dict[str, Any]:
    """
    Pipeline health for one project.

    Counts in the extraction section are the sizes of the same listings the
    entity endpoints return. Errors come from the latest run's log lines.

    Raises:
        NotFoundError: If the project does not exist
    """
    settings = get_settings()
    project = get_project(project_id)
    runs = extraction_runs.list_runs(project_id)
    latest_logs = agent_logs.get_logs_for_run(runs[0]["id"]) if runs else []

    return build_diagnostics(
        project=project,
        sources=list_sources(project_id),
        requirements=list_requirements(project_id),
        stakeholders=list_stakeholders(project_id),
        decisions=list_decisions(project_id),
        timeline_events=list_timeline_events(project_id),
        conflicts=list_conflicts(project_id),
        documents=list_documents(project_id),
        runs=runs,
        latest_run_logs=latest_logs,
        low_threshold=settings.LOW_CONFIDENCE_THRESHOLD,
        high_threshold=settings.HIGH_CONFIDENCE_THRESHOLD,
    )
