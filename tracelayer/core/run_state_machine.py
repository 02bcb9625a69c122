"""
Extraction run state machine.

Linear stage flow:
  queued → ingesting → classifying → extracting_requirements →
  extracting_stakeholders → extracting_decisions → extracting_timeline →
  detecting_conflicts → building_traceability → generating_documents → completed

``failed`` and ``cancelled`` are reachable from any non-terminal stage.
Terminal runs accept no further transitions.
"""

from enum import Enum

from tracelayer.core.errors import StageTransitionError


class RunStage(str, Enum):
    """Stage of an extraction run."""
    QUEUED = "queued"
    INGESTING = "ingesting"
    CLASSIFYING = "classifying"
    EXTRACTING_REQUIREMENTS = "extracting_requirements"
    EXTRACTING_STAKEHOLDERS = "extracting_stakeholders"
    EXTRACTING_DECISIONS = "extracting_decisions"
    EXTRACTING_TIMELINE = "extracting_timeline"
    DETECTING_CONFLICTS = "detecting_conflicts"
    BUILDING_TRACEABILITY = "building_traceability"
    GENERATING_DOCUMENTS = "generating_documents"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


STAGE_ORDER: tuple[RunStage, ...] = (
    RunStage.QUEUED,
    RunStage.INGESTING,
    RunStage.CLASSIFYING,
    RunStage.EXTRACTING_REQUIREMENTS,
    RunStage.EXTRACTING_STAKEHOLDERS,
    RunStage.EXTRACTING_DECISIONS,
    RunStage.EXTRACTING_TIMELINE,
    RunStage.DETECTING_CONFLICTS,
    RunStage.BUILDING_TRACEABILITY,
    RunStage.GENERATING_DOCUMENTS,
    RunStage.COMPLETED,
)

TERMINAL_STAGES = frozenset({RunStage.COMPLETED, RunStage.FAILED, RunStage.CANCELLED})

ACTIVE_STAGES: tuple[RunStage, ...] = tuple(s for s in STAGE_ORDER if s not in TERMINAL_STAGES)

# Project progress once each stage has finished
STAGE_PROGRESS: dict[RunStage, int] = {
    RunStage.INGESTING: 5,
    RunStage.CLASSIFYING: 25,
    RunStage.EXTRACTING_REQUIREMENTS: 45,
    RunStage.EXTRACTING_STAKEHOLDERS: 55,
    RunStage.EXTRACTING_DECISIONS: 65,
    RunStage.EXTRACTING_TIMELINE: 75,
    RunStage.DETECTING_CONFLICTS: 85,
    RunStage.BUILDING_TRACEABILITY: 90,
    RunStage.GENERATING_DOCUMENTS: 100,
    RunStage.COMPLETED: 100,
}

# Counter columns a stage transition may patch
RUN_COUNTER_FIELDS = (
    "sources_processed",
    "requirements_found",
    "stakeholders_found",
    "decisions_found",
    "timeline_events_found",
    "conflicts_found",
)


def coerce_stage(value: str | RunStage) -> RunStage:
    """Parse a stage name, raising StageTransitionError on unknown names."""
    if isinstance(value, RunStage):
        return value
    try:
        return RunStage(value)
    except ValueError as e:
        raise StageTransitionError(f"Unknown stage: {value}") from e


def is_terminal(stage: str | RunStage) -> bool:
    return coerce_stage(stage) in TERMINAL_STAGES


def is_active(stage: str | RunStage) -> bool:
    return coerce_stage(stage) not in TERMINAL_STAGES


def validate_transition(current: str | RunStage, target: str | RunStage) -> RunStage:
    """
    Validate that ``current → target`` is a legal run transition.

    Forward moves may skip stages (a run with nothing to extract in one
    stage still passes through the next). Staying on the current stage is
    allowed so counters can be patched mid-stage.

    Args:
        current: Stage the run is in
        target: Requested stage

    Returns:
        The target stage

    Raises:
        StageTransitionError: If the run is terminal or the move is backward
    """
    current_stage = coerce_stage(current)
    target_stage = coerce_stage(target)

    if current_stage in TERMINAL_STAGES:
        raise StageTransitionError(
            f"Run is already {current_stage.value}; cannot move to {target_stage.value}"
        )

    if target_stage in (RunStage.FAILED, RunStage.CANCELLED):
        return target_stage

    current_idx = STAGE_ORDER.index(current_stage)
    target_idx = STAGE_ORDER.index(target_stage)
    if target_idx < current_idx:
        raise StageTransitionError(
            f"Cannot move backward from {current_stage.value} to {target_stage.value}"
        )

    return target_stage


def next_stage(stage: str | RunStage) -> RunStage | None:
    """Stage that follows ``stage`` in the linear flow, or None at the end."""
    current = coerce_stage(stage)
    if current in TERMINAL_STAGES:
        return None
    return STAGE_ORDER[STAGE_ORDER.index(current) + 1]
