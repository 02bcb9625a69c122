"""Conflict detection over a project's extracted records.

The conflict agent sees the requirements (by REQ id) alongside the project's
decisions, stakeholders and timeline. Its candidates are resolved to live
requirement rows, de-duplicated by requirement set and stored as
``detected`` conflicts. Requirements themselves are never modified.
"""

from typing import Any, Callable
from uuid import UUID

from tracelayer.chains.extraction_agents import ExtractionAgent
from tracelayer.core.logging import get_logger
from tracelayer.core.requirement_dedup import CONFLICT_ID_PREFIX, format_human_id, highest_sequence_number
from tracelayer.core.schemas_extraction import (
    AgentName,
    ConflictCandidate,
    ConflictKind,
    LogLevel,
    ProjectContext,
    decision_type_label,
)
from tracelayer.db import agent_logs
from tracelayer.db.conflicts import list_conflicts, store_conflict
from tracelayer.db.decisions import list_decisions
from tracelayer.db.requirements import list_requirements
from tracelayer.db.stakeholders import list_stakeholders
from tracelayer.db.timeline import list_timeline_events

logger = get_logger(__name__)

# Kinds that only make sense between two requirements
PAIRWISE_KINDS = frozenset({ConflictKind.REQUIREMENT_CONTRADICTION, ConflictKind.PERFORMANCE_INFEASIBLE})

MIN_REQUIREMENTS = 2


def render_conflict_context(
    requirements: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    timeline_events: list[dict[str, Any]],
) -> str:
    """Render project records as the conflict agent's input text."""
    lines = [f"REQUIREMENTS ({len(requirements)}):"]
    for r in requirements:
        lines.append(
            f"{r.get('requirement_id')} [{r.get('category')}/{r.get('priority')}]: {r.get('title')}"
            f" - {r.get('description') or ''}"
        )

    if decisions:
        lines += ["", f"DECISIONS ({len(decisions)}):"]
        for d in decisions:
            lines.append(
                f"{d.get('decision_id')} [{decision_type_label(d.get('type'))}/{d.get('status')}]: "
                f"{d.get('title')} - {d.get('description') or ''}"
            )

    if stakeholders:
        lines += ["", f"STAKEHOLDERS ({len(stakeholders)}):"]
        for s in stakeholders:
            concerns = ", ".join(s.get("concerns") or [])
            lines.append(
                f"- {s.get('name')} ({s.get('role') or 'role unknown'})"
                + (f" concerns: {concerns}" if concerns else "")
            )

    if timeline_events:
        lines += ["", f"TIMELINE ({len(timeline_events)}):"]
        for t in timeline_events:
            lines.append(f"- {t.get('date') or 'undated'} [{t.get('type')}]: {t.get('title')}")

    return "\n".join(lines)


def resolve_requirement_refs(refs: list[str], requirements: list[dict[str, Any]]) -> list[str]:
    """
    Map REQ ids (or row ids) to live requirement row ids.

    Unknown references are dropped; order is kept and repeats removed.
    """
    by_human_id = {str(r.get("requirement_id") or "").upper(): str(r["id"]) for r in requirements}
    row_ids = {str(r["id"]) for r in requirements}

    resolved: list[str] = []
    for ref in refs:
        key = str(ref).strip()
        row_id = by_human_id.get(key.upper()) or (key if key in row_ids else None)
        if row_id and row_id not in resolved:
            resolved.append(row_id)
    return resolved


def select_conflicts(
    candidates: list[ConflictCandidate],
    requirements: list[dict[str, Any]],
    existing_sets: set[frozenset[str]] | None = None,
) -> list[tuple[ConflictCandidate, list[str]]]:
    """
    Keep candidates that reference live requirements, one per requirement set.

    Args:
        candidates: Agent output
        requirements: Live requirement rows
        existing_sets: Requirement sets already covered by stored conflicts

    Returns:
        (candidate, resolved row ids) pairs in agent order
    """
    seen = set(existing_sets or ())
    selected = []

    for candidate in candidates:
        ids = resolve_requirement_refs(candidate.requirement_ids, requirements)
        needed = 2 if candidate.kind in PAIRWISE_KINDS else 1
        if len(ids) < needed:
            logger.debug(
                f"Dropping conflict '{candidate.title}': {len(ids)} live requirement(s), need {needed}"
            )
            continue

        key = frozenset(ids)
        if key in seen:
            continue
        seen.add(key)
        selected.append((candidate, ids))

    return selected


def detect_and_store_conflicts(
    project_id: UUID,
    run_id: UUID | None,
    agent: ExtractionAgent,
    project_context: ProjectContext,
    check_cancelled: Callable[[], None] | None = None,
) -> list[dict[str, Any]]:
    """
    Run the conflict agent over the project and store what it finds.

    Skips the agent call when the project has fewer than two requirements.
    ``check_cancelled`` runs once the agent returns and before anything is
    stored; it raises to discard the candidates.

    Returns:
        Stored conflict rows
    """
    requirements = list_requirements(project_id)
    if len(requirements) < MIN_REQUIREMENTS:
        logger.info(
            f"Skipping conflict detection: {len(requirements)} requirement(s)",
            extra={"project_id": str(project_id)},
        )
        return []

    context_text = render_conflict_context(
        requirements,
        list_decisions(project_id),
        list_stakeholders(project_id),
        list_timeline_events(project_id),
    )
    candidates = agent.detect_conflicts(context_text, project_context)
    if check_cancelled:
        check_cancelled()

    existing = list_conflicts(project_id)
    existing_sets = {frozenset(map(str, c.get("requirement_ids") or [])) for c in existing}
    next_number = highest_sequence_number([c.get("conflict_id") for c in existing], CONFLICT_ID_PREFIX) + 1

    stored = []
    for candidate, ids in select_conflicts(candidates, requirements, existing_sets):
        conflict_id = format_human_id(CONFLICT_ID_PREFIX, next_number)
        next_number += 1

        description = candidate.description
        if candidate.explanation and candidate.explanation not in description:
            description = f"{description}\n\n{candidate.explanation}".strip()

        row = store_conflict(
            project_id,
            conflict_id,
            candidate.title,
            description,
            candidate.severity.value,
            ids,
            kind=candidate.kind.value,
        )
        stored.append(row)

        if run_id:
            agent_logs.log(
                project_id,
                run_id,
                AgentName.CONFLICT.value,
                "detecting_conflicts",
                LogLevel.WARNING.value,
                f"{conflict_id} [{candidate.severity.value}]: {candidate.title}",
            )

    logger.info(
        f"Detected {len(stored)} conflict(s) from {len(candidates)} candidate(s)",
        extra={"project_id": str(project_id)},
    )
    return stored
