"""LangGraph pipeline that turns a project's sources into traceable records.

One node per run stage, executed strictly in order:

  ingest → classify → extract_requirements → extract_stakeholders →
  extract_decisions → extract_timeline → detect_conflicts →
  build_traceability → generate_documents → complete

Every node re-reads the run before starting its stage, and again after each
agent or generator call returns. A cancelled run routes to END; output from
a call that was in flight at cancel time is dropped before anything is
stored. Failures are caught at the run boundary: the run is marked
``failed`` with the error text and the project returns to ``draft``.
Records written by earlier stages are kept.
"""

from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import UUID

from langgraph.graph import END, StateGraph

from tracelayer.chains.detect_conflicts import detect_and_store_conflicts, resolve_requirement_refs
from tracelayer.chains.extraction_agents import ExtractionAgent, get_extraction_agent
from tracelayer.chains.generate_brd import generate_brd
from tracelayer.core.config import get_settings
from tracelayer.core.errors import RunCancelledError
from tracelayer.core.logging import get_logger
from tracelayer.core.requirement_dedup import (
    DECISION_ID_PREFIX,
    REQUIREMENT_ID_PREFIX,
    TitleIndex,
    chunk_content,
    dedupe_by_title,
    format_human_id,
    highest_sequence_number,
)
from tracelayer.core.run_state_machine import STAGE_PROGRESS, RunStage
from tracelayer.core.schemas_extraction import AgentName, LogLevel, ProjectContext
from tracelayer.core.traceability import (
    EXTRACTED_FROM,
    PlannedLink,
    conflict_requirement_links,
    decision_requirement_links,
    match_source_by_excerpt,
    requirement_stakeholder_links,
    sources_mentioning,
    stakeholder_source_links,
    unseen_links,
)
from tracelayer.db import agent_logs, extraction_runs, projects
from tracelayer.db.conflicts import list_conflicts
from tracelayer.db.decisions import list_decisions, store_decision
from tracelayer.db.documents import store_document
from tracelayer.db.requirements import list_requirements, set_requirement_stakeholders, store_requirement
from tracelayer.db.sources import list_sources, update_source_status
from tracelayer.db.stakeholders import find_stakeholder_by_name, list_stakeholders, store_stakeholder
from tracelayer.db.timeline import store_timeline_event
from tracelayer.db.traceability import list_links, store_links

logger = get_logger(__name__)

DocumentGenerator = Callable[..., dict[str, Any]]


@dataclass
class ExtractionPipelineState:
    """State for the extraction pipeline graph."""

    # Input fields
    project_id: UUID
    run_id: UUID
    agent: Any = None
    generate_document: Any = None
    regenerate: bool = False
    related_context: list[str] = field(default_factory=list)

    # Processing state
    project_context: ProjectContext | None = None
    sources: list[dict[str, Any]] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)

    # Output
    cancelled: bool = False
    document_id: str | None = None


# =============================================================================
# Stage helpers
# =============================================================================


def _log(state: ExtractionPipelineState, agent: AgentName, stage: RunStage, level: LogLevel, message: str) -> None:
    agent_logs.log(state.project_id, state.run_id, agent.value, stage.value, level.value, message)


def _check_cancelled(state: ExtractionPipelineState) -> None:
    """Raise RunCancelledError if the run was cancelled."""
    run = extraction_runs.get_run(state.run_id)
    if run and run["status"] == RunStage.CANCELLED.value:
        raise RunCancelledError(f"Run {state.run_id} was cancelled")


def _enter_stage(state: ExtractionPipelineState, stage: RunStage) -> bool:
    """
    Move the run into ``stage``, carrying the counters gathered so far.

    Returns:
        False if the run was cancelled and the stage must not start
    """
    try:
        _check_cancelled(state)
        extraction_runs.advance_run(state.run_id, stage, counters=state.counters or None)
    except RunCancelledError:
        logger.info(
            f"Run {state.run_id} cancelled before {stage.value}",
            extra={"run_id": str(state.run_id), "stage": stage.value},
        )
        return False
    return True


def _finish_stage(state: ExtractionPipelineState, stage: RunStage) -> None:
    # Cancel already reset the project to draft/0
    run = extraction_runs.get_run(state.run_id)
    if run and run["status"] == RunStage.CANCELLED.value:
        return
    projects.set_progress(state.project_id, STAGE_PROGRESS[stage])


def _combined_content(sources: list[dict[str, Any]]) -> str:
    """All sources as one labelled text, capped at MAX_CONTEXT_CHARS."""
    combined = "\n\n".join(f"--- {s.get('name')} ({s.get('type')}) ---\n{s.get('content') or ''}" for s in sources)
    return combined[: get_settings().MAX_CONTEXT_CHARS]


def _evidence_link(source: dict[str, Any], to_type: str, row: dict[str, Any], confidence: float) -> PlannedLink:
    return PlannedLink("source", str(source["id"]), to_type, str(row["id"]), EXTRACTED_FROM, confidence)


# =============================================================================
# Nodes
# =============================================================================


def ingest(state: ExtractionPipelineState) -> dict[str, Any]:
    """Load sources and project context; clear prior output when regenerating."""
    stage = RunStage.INGESTING
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    if state.regenerate:
        cleared = projects.clear_extraction_data(state.project_id)
        _log(
            state, AgentName.ORCHESTRATOR, stage, LogLevel.INFO,
            f"Cleared previous extraction output ({cleared['kept_requirements']} user-edited requirements kept)",
        )

    project = projects.get_project(state.project_id)
    sources = list_sources(state.project_id)
    if not sources:
        raise ValueError("No sources found")

    projects.update_project(state.project_id, {"status": "processing", "progress": STAGE_PROGRESS[stage]})

    total_words = sum(int((s.get("metadata") or {}).get("word_count") or 0) for s in sources)
    _log(
        state, AgentName.INGESTION, stage, LogLevel.SUCCESS,
        f"Loaded {len(sources)} source(s), {total_words} words",
    )

    context = ProjectContext(
        project_id=state.project_id,
        name=project.get("name") or "",
        description=project.get("description") or "",
        related_context=state.related_context,
    )

    return {
        "sources": sources,
        "project_context": context,
        "counters": {**state.counters, "sources_processed": len(sources)},
    }


def classify(state: ExtractionPipelineState) -> dict[str, Any]:
    """Score each source's relevance to the project."""
    stage = RunStage.CLASSIFYING
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    agent: ExtractionAgent = state.agent
    for source in state.sources:
        _check_cancelled(state)
        update_source_status(source["id"], "classifying")
        classification = agent.classify(source.get("content") or "", state.project_context)
        _check_cancelled(state)
        update_source_status(source["id"], "classified", relevance_score=classification.relevance)
        _log(
            state, AgentName.CLASSIFICATION, stage, LogLevel.INFO,
            f"{source.get('name')}: relevance {classification.relevance:.0%}",
        )

    _finish_stage(state, stage)
    return {}


def extract_requirements(state: ExtractionPipelineState) -> dict[str, Any]:
    """Extract requirements per source, chunked, de-duplicated by title."""
    stage = RunStage.EXTRACTING_REQUIREMENTS
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    settings = get_settings()
    agent: ExtractionAgent = state.agent

    existing = list_requirements(state.project_id)
    titles = TitleIndex(r.get("title") or "" for r in existing)
    next_number = highest_sequence_number((r.get("requirement_id") for r in existing), REQUIREMENT_ID_PREFIX) + 1
    stored_count = 0

    for source in state.sources:
        _check_cancelled(state)
        update_source_status(source["id"], "extracting")

        chunks = chunk_content(
            source.get("content") or "", settings.CHUNK_SIZE_CHARS, settings.CHUNK_OVERLAP_CHARS
        )
        candidates = []
        for chunk in chunks:
            candidates.extend(agent.extract_requirements(chunk, state.project_context))
            _check_cancelled(state)
        candidates = dedupe_by_title(candidates)

        links = []
        for candidate in candidates:
            duplicate_of = titles.find_similar(candidate.title)
            if duplicate_of:
                logger.debug(f"Skipping '{candidate.title}', overlaps '{duplicate_of}'")
                continue
            if not candidate.source_excerpt.strip():
                logger.warning(
                    f"Skipping requirement without excerpt: {candidate.title}",
                    extra={"run_id": str(state.run_id)},
                )
                continue

            requirement_id = format_human_id(REQUIREMENT_ID_PREFIX, next_number)
            row = store_requirement(state.project_id, requirement_id, candidate, source["id"], run_id=state.run_id)
            next_number += 1
            stored_count += 1
            titles.add(candidate.title)
            links.append(_evidence_link(source, "requirement", row, candidate.confidence))

        store_links(state.project_id, links)
        update_source_status(source["id"], "extracted")
        _log(
            state, AgentName.REQUIREMENT, stage, LogLevel.SUCCESS,
            f"{source.get('name')}: {len(links)} new requirement(s) from {len(chunks)} chunk(s)",
        )

    _finish_stage(state, stage)
    return {"counters": {**state.counters, "requirements_found": stored_count}}


def extract_stakeholders(state: ExtractionPipelineState) -> dict[str, Any]:
    """Identify stakeholders across all sources and merge them by name."""
    stage = RunStage.EXTRACTING_STAKEHOLDERS
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    agent: ExtractionAgent = state.agent
    candidates = dedupe_by_title(
        agent.extract_stakeholders(_combined_content(state.sources), state.project_context),
        title_attr="name",
    )
    _check_cancelled(state)

    links = []
    for candidate in candidates:
        mentioning = sources_mentioning(candidate.name, state.sources) or state.sources
        row = store_stakeholder(state.project_id, candidate, [str(s["id"]) for s in mentioning])
        if not row["merged"]:
            _, mention_links = stakeholder_source_links(row["id"], candidate.name, state.sources)
            links.extend(mention_links)

    store_links(state.project_id, links)
    _log(state, AgentName.STAKEHOLDER, stage, LogLevel.SUCCESS, f"Identified {len(candidates)} stakeholder(s)")

    _finish_stage(state, stage)
    return {"counters": {**state.counters, "stakeholders_found": len(candidates)}}


def extract_decisions(state: ExtractionPipelineState) -> dict[str, Any]:
    """Extract decisions, resolving the decision maker and impacted requirements."""
    stage = RunStage.EXTRACTING_DECISIONS
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    agent: ExtractionAgent = state.agent
    candidates = dedupe_by_title(agent.extract_decisions(_combined_content(state.sources), state.project_context))
    _check_cancelled(state)

    requirements = list_requirements(state.project_id)
    existing = list_decisions(state.project_id)
    next_number = highest_sequence_number((d.get("decision_id") for d in existing), DECISION_ID_PREFIX) + 1

    links = []
    for candidate in candidates:
        if not candidate.source_excerpt.strip():
            logger.warning(f"Skipping decision without excerpt: {candidate.title}", extra={"run_id": str(state.run_id)})
            continue

        source = match_source_by_excerpt(candidate.source_excerpt, state.sources)
        maker = find_stakeholder_by_name(state.project_id, candidate.made_by) if candidate.made_by else None

        row = store_decision(
            state.project_id,
            format_human_id(DECISION_ID_PREFIX, next_number),
            candidate,
            source["id"],
            made_by=maker["id"] if maker else None,
            impacted_requirement_ids=resolve_requirement_refs(candidate.impacted_requirements, requirements),
        )
        next_number += 1
        links.append(_evidence_link(source, "decision", row, candidate.confidence))

    store_links(state.project_id, links)
    _log(state, AgentName.DECISION, stage, LogLevel.SUCCESS, f"Extracted {len(links)} decision(s)")

    _finish_stage(state, stage)
    return {"counters": {**state.counters, "decisions_found": len(links)}}


def extract_timeline(state: ExtractionPipelineState) -> dict[str, Any]:
    """Extract milestones, deadlines and other dated events."""
    stage = RunStage.EXTRACTING_TIMELINE
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    agent: ExtractionAgent = state.agent
    candidates = dedupe_by_title(agent.extract_timeline(_combined_content(state.sources), state.project_context))
    _check_cancelled(state)

    links = []
    for candidate in candidates:
        if not candidate.source_excerpt.strip():
            logger.warning(f"Skipping event without excerpt: {candidate.title}", extra={"run_id": str(state.run_id)})
            continue

        source = match_source_by_excerpt(candidate.source_excerpt, state.sources)
        row = store_timeline_event(state.project_id, candidate, source["id"])
        links.append(_evidence_link(source, "timeline", row, candidate.confidence))

    store_links(state.project_id, links)
    _log(state, AgentName.TIMELINE, stage, LogLevel.SUCCESS, f"Extracted {len(links)} timeline event(s)")

    _finish_stage(state, stage)
    return {"counters": {**state.counters, "timeline_events_found": len(links)}}


def detect_conflicts(state: ExtractionPipelineState) -> dict[str, Any]:
    """Find contradictions among the extracted records."""
    stage = RunStage.DETECTING_CONFLICTS
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    stored = detect_and_store_conflicts(
        state.project_id,
        state.run_id,
        state.agent,
        state.project_context,
        check_cancelled=lambda: _check_cancelled(state),
    )
    level = LogLevel.WARNING if stored else LogLevel.SUCCESS
    _log(state, AgentName.CONFLICT, stage, level, f"Detected {len(stored)} conflict(s)")

    _finish_stage(state, stage)
    return {"counters": {**state.counters, "conflicts_found": len(stored)}}


def build_traceability(state: ExtractionPipelineState) -> dict[str, Any]:
    """Link requirements to stakeholders, decisions and conflicts."""
    stage = RunStage.BUILDING_TRACEABILITY
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    requirements = list_requirements(state.project_id)
    stakeholders = list_stakeholders(state.project_id)

    for req in requirements:
        excerpt = (req.get("source_excerpt") or "").lower()
        named = {n.strip().lower() for n in req.get("stakeholder_names") or [] if n}
        linked = [
            str(s["id"]) for s in stakeholders
            if (s.get("name") or "").lower() in named
            or ((s.get("name") or "") and s["name"].lower() in excerpt)
        ]
        if linked != [str(i) for i in req.get("stakeholder_ids") or []]:
            set_requirement_stakeholders(req["id"], linked)
        req["stakeholder_ids"] = linked

    planned = [
        *requirement_stakeholder_links(requirements, stakeholders),
        *decision_requirement_links(list_decisions(state.project_id), requirements),
        *conflict_requirement_links(list_conflicts(state.project_id)),
    ]
    # Earlier runs already linked the rows they created
    stored = store_links(state.project_id, unseen_links(planned, list_links(state.project_id)))
    _log(state, AgentName.TRACEABILITY, stage, LogLevel.SUCCESS, f"Built {stored} traceability link(s)")

    _finish_stage(state, stage)
    return {}


def generate_documents(state: ExtractionPipelineState) -> dict[str, Any]:
    """Generate and store a new BRD version."""
    stage = RunStage.GENERATING_DOCUMENTS
    if not _enter_stage(state, stage):
        return {"cancelled": True}

    generator: DocumentGenerator = state.generate_document or generate_brd
    document = generator(
        projects.get_project(state.project_id),
        list_requirements(state.project_id),
        list_stakeholders(state.project_id),
        list_decisions(state.project_id),
        list_conflicts(state.project_id),
        state.sources,
    )
    _check_cancelled(state)
    row = store_document(state.project_id, document["type"], document["content"], document["generated_from"])
    _log(
        state, AgentName.DOCUMENT, stage, LogLevel.SUCCESS,
        f"Generated {document['type'].upper()} v{row.get('version')}",
    )

    _finish_stage(state, stage)
    return {"document_id": str(row["id"])}


def complete(state: ExtractionPipelineState) -> dict[str, Any]:
    """Close the run and publish final counts on the project."""
    if not _enter_stage(state, RunStage.COMPLETED):
        return {"cancelled": True}

    projects.refresh_counts(state.project_id)
    projects.update_project(state.project_id, {"status": "active", "progress": STAGE_PROGRESS[RunStage.COMPLETED]})

    counters = state.counters
    _log(
        state, AgentName.ORCHESTRATOR, RunStage.COMPLETED, LogLevel.SUCCESS,
        f"Pipeline complete: {counters.get('requirements_found', 0)} requirements, "
        f"{counters.get('stakeholders_found', 0)} stakeholders, "
        f"{counters.get('decisions_found', 0)} decisions",
    )
    return {}


# =============================================================================
# Graph
# =============================================================================

STAGE_NODES: tuple[tuple[str, Callable[[ExtractionPipelineState], dict[str, Any]]], ...] = (
    ("ingest", ingest),
    ("classify", classify),
    ("extract_requirements", extract_requirements),
    ("extract_stakeholders", extract_stakeholders),
    ("extract_decisions", extract_decisions),
    ("extract_timeline", extract_timeline),
    ("detect_conflicts", detect_conflicts),
    ("build_traceability", build_traceability),
    ("generate_documents", generate_documents),
    ("complete", complete),
)


def _continue_to(next_node: str) -> Callable[[ExtractionPipelineState], str]:
    def route(state: ExtractionPipelineState) -> str:
        return END if state.cancelled else next_node

    return route


def _build_graph() -> StateGraph:
    """Build the extraction pipeline graph."""
    graph = StateGraph(ExtractionPipelineState)

    for name, node in STAGE_NODES:
        graph.add_node(name, node)

    graph.set_entry_point(STAGE_NODES[0][0])
    for (name, _), (next_name, _) in zip(STAGE_NODES, STAGE_NODES[1:]):
        graph.add_conditional_edges(name, _continue_to(next_name), [next_name, END])
    graph.add_edge(STAGE_NODES[-1][0], END)

    return graph


# Compile the graph once at module load
_compiled_graph = _build_graph().compile()


# =============================================================================
# Entry points
# =============================================================================


def _fail_run(project_id: UUID, run_id: UUID, error: Exception) -> None:
    """Record a failed run. Never raises."""
    message = str(error) or type(error).__name__
    logger.error(
        f"Extraction run {run_id} failed: {message}",
        extra={"run_id": str(run_id), "project_id": str(project_id)},
        exc_info=True,
    )
    agent_logs.log(
        project_id, run_id, AgentName.ORCHESTRATOR.value, RunStage.FAILED.value,
        LogLevel.ERROR.value, f"Pipeline failed: {message}",
    )

    try:
        extraction_runs.advance_run(run_id, RunStage.FAILED, error=message)
        projects.update_project(project_id, {"status": "draft", "progress": 0})
    except RunCancelledError:
        logger.info(f"Run {run_id} was cancelled while failing", extra={"run_id": str(run_id)})
    except Exception as e:
        logger.error(f"Could not record failure of run {run_id}: {e}", extra={"run_id": str(run_id)})


def execute_extraction_run(
    project_id: UUID,
    run_id: UUID,
    agent: ExtractionAgent,
    regenerate: bool = False,
    generate_document: DocumentGenerator | None = None,
    related_context: list[str] | None = None,
) -> dict[str, Any]:
    """
    Run the graph for an existing queued run. Safe to call from a background task.

    Returns:
        ``{"run_id", "status", "counters"}``; status is completed, cancelled or failed
    """
    initial_state = ExtractionPipelineState(
        project_id=project_id,
        run_id=run_id,
        agent=agent,
        generate_document=generate_document,
        regenerate=regenerate,
        related_context=list(related_context or []),
    )

    logger.info(
        f"Starting extraction pipeline for project {project_id}",
        extra={"run_id": str(run_id), "project_id": str(project_id)},
    )

    try:
        final_state = _compiled_graph.invoke(initial_state)
    except RunCancelledError:
        logger.info(f"Run {run_id} cancelled mid-stage", extra={"run_id": str(run_id)})
        return {"run_id": str(run_id), "status": RunStage.CANCELLED.value, "counters": {}}
    except Exception as e:
        _fail_run(project_id, run_id, e)
        return {"run_id": str(run_id), "status": RunStage.FAILED.value, "counters": {}}

    status = RunStage.CANCELLED if final_state.get("cancelled") else RunStage.COMPLETED
    return {"run_id": str(run_id), "status": status.value, "counters": final_state.get("counters") or {}}


def start_extraction_run(project_id: UUID, agent: ExtractionAgent | None = None) -> tuple[UUID, ExtractionAgent]:
    """
    Check configuration and create a queued run.

    Returns:
        Tuple of (run_id, agent to execute it with)

    Raises:
        ExtractionNotConfiguredError: If no agent is given and none is configured;
            no run is created
        NotFoundError: If the project does not exist
        ConcurrentRunError: If the project already has a run in progress
    """
    agent = agent or get_extraction_agent()
    run_id = extraction_runs.create_run(project_id)
    return run_id, agent


def run_extraction_pipeline(
    project_id: UUID,
    regenerate: bool = False,
    agent: ExtractionAgent | None = None,
    generate_document: DocumentGenerator | None = None,
    related_context: list[str] | None = None,
) -> dict[str, Any]:
    """
    Start and run an extraction for a project, blocking until it ends.

    Args:
        project_id: Project UUID
        regenerate: Clear previous agent output first (user edits are kept)
        agent: Extraction agent (the configured one when omitted)
        generate_document: Document generator (``generate_brd`` when omitted)
        related_context: Excerpts from other projects to share with the agents

    Returns:
        ``{"run_id", "status", "counters"}``

    Raises:
        ExtractionNotConfiguredError: Before any run exists
        ConcurrentRunError: If the project already has a run in progress
    """
    run_id, agent = start_extraction_run(project_id, agent)
    return execute_extraction_run(
        project_id,
        run_id,
        agent,
        regenerate=regenerate,
        generate_document=generate_document,
        related_context=related_context,
    )
