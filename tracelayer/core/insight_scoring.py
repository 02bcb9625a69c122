"""Insight scoring and diagnostics aggregation.

Everything here is computed at read time from rows already loaded by the
caller. No table is written and no model is called.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

# =========================
# Thresholds
# =========================

CONFIDENCE_GAP_THRESHOLD = 0.6
HIGH_CONFIDENCE_SHARE_THRESHOLD = 0.85
STRONG_EVIDENCE_MIN_PCT = 70
HEALTHY_AVG_CONFIDENCE = 0.7
COVERAGE_MIN_REQUIREMENTS = 3
FULL_COVERAGE_MIN_REQUIREMENTS = 6
DIVERSE_CHANNEL_COUNT = 3

EXPECTED_CATEGORIES = (
    "functional",
    "non_functional",
    "security",
    "performance",
    "business",
    "technical",
)

InsightType = Literal["quality", "risk", "coverage", "suggestion", "alert", "achievement"]
InsightSeverity = Literal["critical", "warning", "info", "success"]

SEVERITY_RANK = {"critical": 0, "warning": 1, "info": 2, "success": 3}


class Insight(BaseModel):
    """One computed observation about a project or the whole workspace."""

    id: str
    type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    metric: int | None = None
    category: str


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _humanize(value: str) -> str:
    return value.replace("_", " ")


def rank_insights(insights: list[Insight]) -> list[Insight]:
    """Most severe first; insertion order within a severity."""
    return sorted(insights, key=lambda i: SEVERITY_RANK[i.severity])


# =========================
# Scores
# =========================


def average_confidence(requirements: list[dict[str, Any]]) -> float:
    """Mean requirement confidence, 0 when there are none."""
    if not requirements:
        return 0.0
    return sum(float(r.get("confidence_score") or 0) for r in requirements) / len(requirements)


def count_unresolved(conflicts: list[dict[str, Any]]) -> int:
    return sum(1 for c in conflicts if c.get("status") != "resolved")


def health_score(
    requirement_count: int,
    stakeholder_count: int,
    avg_confidence: float,
    unresolved_conflicts: int,
    completed_runs: int,
) -> int:
    """
    Intelligence health score, 0-100.

    Base 50; +10 for any requirement, +5 above 5, +5 above 10; +5 for any
    stakeholder, +5 above 3; +10 when average confidence >= 0.7; +5 with no
    unresolved conflicts, otherwise -3 per unresolved conflict; +5 once a run
    has completed.
    """
    score = 50
    if requirement_count > 0:
        score += 10
    if requirement_count > 5:
        score += 5
    if requirement_count > 10:
        score += 5
    if stakeholder_count > 0:
        score += 5
    if stakeholder_count > 3:
        score += 5
    if avg_confidence >= HEALTHY_AVG_CONFIDENCE:
        score += 10
    if unresolved_conflicts == 0:
        score += 5
    else:
        score -= unresolved_conflicts * 3
    if completed_runs > 0:
        score += 5
    return max(0, min(100, score))


def pipeline_reliability(completed: int, failed: int) -> float | None:
    """completed / (completed + failed); None when no run has finished either way."""
    total = completed + failed
    if total == 0:
        return None
    return completed / total


def format_reliability(reliability: float | None) -> str:
    if reliability is None:
        return "—"
    return f"{round(reliability * 100)}%"


def coverage_gaps(requirements: list[dict[str, Any]]) -> list[str]:
    """
    Expected categories with no requirement.

    Only meaningful once a project has more than three requirements; smaller
    projects report no gap.
    """
    if len(requirements) <= COVERAGE_MIN_REQUIREMENTS:
        return []
    observed = {r.get("category") for r in requirements}
    return [c for c in EXPECTED_CATEGORIES if c not in observed]


def unlinked_stakeholders(
    stakeholders: list[dict[str, Any]], requirements: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Stakeholders no requirement lists in its stakeholder_ids."""
    linked = {str(sid) for r in requirements for sid in r.get("stakeholder_ids") or []}
    return [s for s in stakeholders if str(s["id"]) not in linked]


# =========================
# Insight builders
# =========================


def _health_insight(score: int, requirement_count: int, project_count: int) -> Insight:
    quality = "excellent" if score >= 80 else "good" if score >= 60 else "needs attention"
    return Insight(
        id="health-score",
        type="quality",
        severity="success" if score >= 80 else "info" if score >= 60 else "warning",
        title="Intelligence Health Score",
        description=(
            f"Your overall intelligence quality is {quality}. {requirement_count} requirements "
            f"extracted across {_plural(project_count, 'project')}."
        ),
        metric=score,
        category="Quality",
    )


def _confidence_insights(requirements: list[dict[str, Any]]) -> list[Insight]:
    total = len(requirements)
    if total == 0:
        return []

    insights = []
    low = [r for r in requirements if float(r.get("confidence_score") or 0) < CONFIDENCE_GAP_THRESHOLD]
    if low:
        pct = round(len(low) / total * 100)
        insights.append(
            Insight(
                id="low-confidence",
                type="risk",
                severity="critical" if pct > 40 else "warning" if pct > 20 else "info",
                title="Confidence Gap Detected",
                description=(
                    f"{_plural(len(low), 'requirement')} ({pct}%) have confidence scores below "
                    f"{CONFIDENCE_GAP_THRESHOLD}. These need additional source evidence or "
                    "stakeholder validation."
                ),
                metric=100 - pct,
                category="Quality",
            )
        )

    high = [
        r for r in requirements
        if float(r.get("confidence_score") or 0) >= HIGH_CONFIDENCE_SHARE_THRESHOLD
    ]
    if high:
        pct = round(len(high) / total * 100)
        if pct >= STRONG_EVIDENCE_MIN_PCT:
            insights.append(
                Insight(
                    id="high-confidence",
                    type="achievement",
                    severity="success",
                    title="Strong Evidence Base",
                    description=(
                        f"{pct}% of requirements have high confidence scores "
                        f"(>={HIGH_CONFIDENCE_SHARE_THRESHOLD}). Source documents provide clear, "
                        "traceable evidence."
                    ),
                    metric=pct,
                    category="Quality",
                )
            )
    return insights


def _conflict_insights(conflicts: list[dict[str, Any]]) -> list[Insight]:
    unresolved = count_unresolved(conflicts)
    if unresolved:
        critical = [
            c for c in conflicts if c.get("severity") == "critical" and c.get("status") != "resolved"
        ]
        if critical:
            description = (
                f"{_plural(len(critical), 'critical conflict')} require immediate attention. "
                "Contradictory requirements may impact architecture decisions."
            )
        else:
            description = (
                f"{_plural(unresolved, 'conflict')} between requirements need stakeholder review "
                "for resolution."
            )
        return [
            Insight(
                id="unresolved-conflicts",
                type="alert",
                severity="critical" if critical else "warning",
                title=f"{_plural(unresolved, 'Unresolved Conflict')}",
                description=description,
                category="Risk",
            )
        ]

    if conflicts:
        return [
            Insight(
                id="conflicts-resolved",
                type="achievement",
                severity="success",
                title="All Conflicts Resolved",
                description=(
                    f"All {len(conflicts)} detected conflicts have been resolved. "
                    "The requirement set is consistent."
                ),
                category="Risk",
            )
        ]
    return []


def _coverage_insights(requirements: list[dict[str, Any]]) -> list[Insight]:
    missing = coverage_gaps(requirements)
    if missing:
        covered = len(EXPECTED_CATEGORIES) - len(missing)
        return [
            Insight(
                id="missing-categories",
                type="coverage",
                severity="warning" if "security" in missing else "info",
                title="Coverage Gap",
                description=(
                    f"No {', '.join(_humanize(c) for c in missing)} requirements detected. "
                    "Consider whether these areas need explicit requirements."
                ),
                metric=round(covered / len(EXPECTED_CATEGORIES) * 100),
                category="Coverage",
            )
        ]

    observed = {r.get("category") for r in requirements}
    if len(requirements) >= FULL_COVERAGE_MIN_REQUIREMENTS and observed.issuperset(EXPECTED_CATEGORIES):
        return [
            Insight(
                id="full-coverage",
                type="achievement",
                severity="success",
                title="Full Category Coverage",
                description="Requirements span every major category.",
                metric=100,
                category="Coverage",
            )
        ]
    return []


def _stakeholder_insights(
    stakeholders: list[dict[str, Any]], requirements: list[dict[str, Any]]
) -> list[Insight]:
    orphans = unlinked_stakeholders(stakeholders, requirements)
    if not orphans:
        return []
    names = ", ".join(s.get("name") or "" for s in orphans[:3])
    more = "..." if len(orphans) > 3 else ""
    return [
        Insight(
            id="stakeholder-orphans",
            type="coverage",
            severity="info",
            title="Unlinked Stakeholders",
            description=(
                f"{_plural(len(orphans), 'stakeholder')} ({names}{more}) have no linked "
                "requirements. Consider reviewing their contributions."
            ),
            category="Coverage",
        )
    ]


def _reliability_insights(runs: list[dict[str, Any]]) -> list[Insight]:
    completed = sum(1 for r in runs if r.get("status") == "completed")
    failed = sum(1 for r in runs if r.get("status") == "failed")
    reliability = pipeline_reliability(completed, failed)
    if reliability is None or completed == 0:
        return []
    pct = round(reliability * 100)
    return [
        Insight(
            id="pipeline-health",
            type="quality",
            severity="success" if pct >= 90 else "info" if pct >= 70 else "warning",
            title="Pipeline Reliability",
            description=(
                f"{format_reliability(reliability)} success rate across "
                f"{_plural(completed + failed, 'pipeline run')}. "
                f"{completed} completed, {failed} failed."
            ),
            metric=pct,
            category="System",
        )
    ]


def _decision_insights(decisions: list[dict[str, Any]]) -> list[Insight]:
    if not decisions:
        return []

    insights = []
    pending = [d for d in decisions if d.get("status") == "proposed"]
    approved = [d for d in decisions if d.get("status") == "approved"]

    if pending:
        titles = ", ".join(d.get("title") or "" for d in pending[:2])
        more = f" and {len(pending) - 2} more" if len(pending) > 2 else ""
        insights.append(
            Insight(
                id="pending-decisions",
                type="suggestion",
                severity="info",
                title=f"{_plural(len(pending), 'Pending Decision')}",
                description=f"{titles}{more} await approval. Unresolved decisions may block implementation.",
                category="Decisions",
            )
        )

    if approved and len(approved) == len(decisions):
        insights.append(
            Insight(
                id="decisions-approved",
                type="achievement",
                severity="success",
                title="All Decisions Approved",
                description=f"All {len(decisions)} decisions have been approved.",
                category="Decisions",
            )
        )
    return insights


def _source_insights(sources: list[dict[str, Any]]) -> list[Insight]:
    channels = sorted({s.get("type") for s in sources if s.get("type")})
    if len(channels) >= DIVERSE_CHANNEL_COUNT:
        return [
            Insight(
                id="source-diversity",
                type="achievement",
                severity="success",
                title="Multi-Channel Intelligence",
                description=(
                    f"Data ingested from {len(channels)} distinct channel types: "
                    f"{', '.join(_humanize(c) for c in channels)}."
                ),
                category="Data",
            )
        ]
    if sources and len(channels) == 1:
        return [
            Insight(
                id="single-source-type",
                type="suggestion",
                severity="info",
                title="Single Channel Data",
                description=(
                    "All sources are from one channel type. Adding meetings, emails or chat logs "
                    "would improve requirement coverage and conflict detection."
                ),
                category="Data",
            )
        ]
    return []


def build_dashboard_insights(
    projects: list[dict[str, Any]],
    requirements: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    conflicts: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    sources: list[dict[str, Any]],
    runs: list[dict[str, Any]],
) -> list[Insight]:
    """Workspace-wide insights, ranked."""
    if not projects:
        return [
            Insight(
                id="no-projects",
                type="suggestion",
                severity="info",
                title="Get Started",
                description="Create a project and upload sources to begin extracting requirements.",
                category="Setup",
            )
        ]

    avg = average_confidence(requirements)
    score = health_score(
        requirement_count=len(requirements),
        stakeholder_count=len(stakeholders),
        avg_confidence=avg,
        unresolved_conflicts=count_unresolved(conflicts),
        completed_runs=sum(1 for r in runs if r.get("status") == "completed"),
    )

    insights = [_health_insight(score, len(requirements), len(projects))]
    insights += _confidence_insights(requirements)
    insights += _conflict_insights(conflicts)
    insights += _coverage_insights(requirements)
    insights += _stakeholder_insights(stakeholders, requirements)
    insights += _reliability_insights(runs)
    insights += _decision_insights(decisions)
    insights += _source_insights(sources)
    return rank_insights(insights)


def build_project_insights(
    requirements: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    conflicts: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    sources: list[dict[str, Any]],
    documents: list[dict[str, Any]],
    runs: list[dict[str, Any]] | None = None,
) -> list[Insight]:
    """Insights for a single project, ranked."""
    if not requirements and not sources:
        return [
            Insight(
                id="empty-project",
                type="suggestion",
                severity="info",
                title="Upload Sources to Begin",
                description="Upload emails, meeting transcripts or chat logs and run extraction.",
                category="Setup",
            )
        ]

    insights: list[Insight] = []

    if sources and not requirements:
        insights.append(
            Insight(
                id="sources-unprocessed",
                type="suggestion",
                severity="warning",
                title="Sources Ready for Analysis",
                description=(
                    f"{_plural(len(sources), 'source')} uploaded but no requirements extracted yet. "
                    "Run the extraction pipeline to process them."
                ),
                category="Pipeline",
            )
        )

    if requirements:
        avg = average_confidence(requirements)
        unconfirmed_critical = [
            r for r in requirements
            if r.get("priority") == "critical" and r.get("status") != "confirmed"
        ]
        if unconfirmed_critical:
            ids = ", ".join(r.get("requirement_id") or "" for r in unconfirmed_critical[:3])
            insights.append(
                Insight(
                    id="unconfirmed-critical",
                    type="risk",
                    severity="critical",
                    title=f"{len(unconfirmed_critical)} Critical Requirements Unconfirmed",
                    description=(
                        "Critical-priority requirements need stakeholder confirmation before "
                        f"implementation: {ids}"
                    ),
                    category="Quality",
                )
            )

        quality = round(avg * 100)
        if stakeholders:
            quality = min(100, quality + 5)
        if decisions:
            quality = min(100, quality + 5)
        if conflicts and count_unresolved(conflicts) == 0:
            quality = min(100, quality + 5)

        insights.append(
            Insight(
                id="project-quality",
                type="quality",
                severity="success" if quality >= 80 else "info" if quality >= 60 else "warning",
                title="Requirement Quality Score",
                description=(
                    f"Average confidence: {avg * 100:.0f}%. {len(requirements)} requirements, "
                    f"{len(stakeholders)} stakeholders, {len(decisions)} decisions traced."
                ),
                metric=quality,
                category="Quality",
            )
        )

    insights += _confidence_insights(requirements)
    insights += _conflict_insights(conflicts)
    insights += _coverage_insights(requirements)
    insights += _stakeholder_insights(stakeholders, requirements)
    insights += _reliability_insights(runs or [])
    insights += _decision_insights(decisions)

    brds = [d for d in documents if d.get("type") == "brd"]
    if brds:
        latest = max(brds, key=lambda d: d.get("version") or 0)
        generated_from = latest.get("generated_from") or {}
        insights.append(
            Insight(
                id="brd-ready",
                type="achievement",
                severity="success",
                title="BRD Document Generated",
                description=(
                    f"Version {latest.get('version')} generated from "
                    f"{generated_from.get('requirement_count', 0)} requirements and "
                    f"{generated_from.get('source_count', 0)} sources. Ready for review."
                ),
                category="Document",
            )
        )

    return rank_insights(insights)


# =========================
# Diagnostics
# =========================


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def average_duration_seconds(runs: list[dict[str, Any]]) -> int:
    """Mean wall time of completed runs, rounded to whole seconds."""
    durations = []
    for run in runs:
        if run.get("status") != "completed":
            continue
        started = _parse_ts(run.get("started_at"))
        finished = _parse_ts(run.get("completed_at"))
        if started and finished:
            durations.append((finished - started).total_seconds())
    if not durations:
        return 0
    return round(sum(durations) / len(durations))


def build_diagnostics(
    project: dict[str, Any] | None,
    sources: list[dict[str, Any]],
    requirements: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    timeline_events: list[dict[str, Any]],
    conflicts: list[dict[str, Any]],
    documents: list[dict[str, Any]],
    runs: list[dict[str, Any]],
    latest_run_logs: list[dict[str, Any]],
    low_threshold: float = 0.5,
    high_threshold: float = 0.8,
) -> dict[str, Any]:
    """
    Pipeline health diagnostics for one project.

    Args:
        runs: Run history, newest first
        latest_run_logs: Log lines of ``runs[0]`` in insertion order

    Returns:
        Dict with project, sources, extraction, quality, runs and errors
        sections. Extraction counts are the cardinalities of the passed lists.
    """
    errors = [log for log in latest_run_logs if log.get("level") == "error"]
    warnings = [log for log in latest_run_logs if log.get("level") == "warning"]

    def _with_status(status: str) -> int:
        return sum(1 for s in sources if s.get("status") == status)

    def _runs_with(status: str) -> int:
        return sum(1 for r in runs if r.get("status") == status)

    confidences = [float(r.get("confidence_score") or 0) for r in requirements]

    return {
        "project": (
            {
                "name": project.get("name"),
                "status": project.get("status"),
                "progress": project.get("progress", 0),
            }
            if project
            else None
        ),
        "sources": {
            "total": len(sources),
            "uploaded": _with_status("uploaded"),
            "extracted": _with_status("extracted"),
            "failed": _with_status("failed"),
            "total_words": sum(int((s.get("metadata") or {}).get("word_count") or 0) for s in sources),
        },
        "extraction": {
            "requirements": len(requirements),
            "stakeholders": len(stakeholders),
            "decisions": len(decisions),
            "timeline_events": len(timeline_events),
            "conflicts": len(conflicts),
            "documents": len(documents),
        },
        "quality": {
            "avg_confidence": average_confidence(requirements),
            "high_confidence": sum(1 for c in confidences if c >= high_threshold),
            "low_confidence": sum(1 for c in confidences if c < low_threshold),
            "total": len(requirements),
        },
        "runs": {
            "total": len(runs),
            "completed": _runs_with("completed"),
            "failed": _runs_with("failed"),
            "cancelled": _runs_with("cancelled"),
            "avg_duration_sec": average_duration_seconds(runs),
            "latest_run": runs[0] if runs else None,
        },
        "errors": {
            "count": len(errors),
            "warnings": len(warnings),
            "recent_errors": [
                {
                    "agent": log.get("agent"),
                    "message": log.get("message"),
                    "created_at": log.get("created_at"),
                }
                for log in errors[-5:][::-1]
            ],
        },
    }
