"""Extraction agents: turn source text into typed, evidence-bearing candidates.

The pipeline depends only on the ``ExtractionAgent`` protocol. The Claude
implementation uses forced tool_use so every response arrives as JSON that
matches the tool schema, then validates each item with pydantic.

Usage:
    from tracelayer.chains.extraction_agents import get_extraction_agent

    agent = get_extraction_agent()
    candidates = agent.extract_requirements(chunk, context)
"""

from typing import Any, Protocol, TypeVar

from anthropic import Anthropic
from pydantic import BaseModel, ValidationError

from tracelayer.core.config import Settings, get_settings
from tracelayer.core.errors import AgentResponseError
from tracelayer.core.llm import call_tool, get_anthropic_client
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import (
    ConflictCandidate,
    DecisionCandidate,
    ProjectContext,
    RequirementCandidate,
    SourceClassification,
    StakeholderCandidate,
    TimelineCandidate,
)

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class ExtractionAgent(Protocol):
    """Capability the pipeline calls at each extraction stage."""

    def classify(self, source_content: str, project_context: ProjectContext) -> SourceClassification: ...

    def extract_requirements(
        self, source_content: str, project_context: ProjectContext
    ) -> list[RequirementCandidate]: ...

    def extract_stakeholders(
        self, source_content: str, project_context: ProjectContext
    ) -> list[StakeholderCandidate]: ...

    def extract_decisions(
        self, source_content: str, project_context: ProjectContext
    ) -> list[DecisionCandidate]: ...

    def extract_timeline(
        self, source_content: str, project_context: ProjectContext
    ) -> list[TimelineCandidate]: ...

    def detect_conflicts(
        self, source_content: str, project_context: ProjectContext
    ) -> list[ConflictCandidate]: ...


# =============================================================================
# Prompts
# =============================================================================

EVIDENCE_RULES = """Rules:
- Every item must quote the source verbatim in source_excerpt. Never paraphrase the excerpt.
- confidence is your certainty from 0.0 to 1.0: 0.9+ explicitly stated, 0.7-0.9 strongly implied,
  0.5-0.7 inferred from context, below 0.5 speculative. Keep low-confidence items; do not drop them.
- Only extract what the communication supports. Never invent names, dates or numbers."""

CLASSIFY_SYSTEM = "You are a source classification agent. Judge how relevant a communication is to the project."

REQUIREMENT_SYSTEM = f"""You are a precision requirements extraction agent.
Extract every requirement the communication states or clearly implies: capabilities, constraints,
quality attributes, business rules, integrations, performance, security and compliance needs.
Write a 2-3 sentence description for each requirement.

{EVIDENCE_RULES}"""

STAKEHOLDER_SYSTEM = """You are a stakeholder intelligence agent.
A stakeholder is anyone who proposes, approves, influences or is affected by requirements:
named people, teams, departments, external parties and implied decision makers."""

DECISION_SYSTEM = f"""You are a decision intelligence agent.
Extract confirmed or proposed architectural, functional, business, technical and process decisions.

{EVIDENCE_RULES}"""

TIMELINE_SYSTEM = f"""You are a timeline intelligence agent.
Extract milestones, deadlines, approvals, dependencies and dated decisions.

{EVIDENCE_RULES}"""

CONFLICT_SYSTEM = """You are a conflict detection agent.
Find contradictions among the project's requirements and between requirements and the other
extracted records. Report only real conflicts; an empty list is a valid answer.

Kinds:
- requirement_contradiction: two requirements contradict each other on the same capability
- decision_contradiction: a requirement contradicts an approved decision
- stakeholder_exclusive: stakeholders demand mutually exclusive features
- timeline_infeasible: timeline constraints cannot all be met
- performance_infeasible: a performance requirement is infeasible given a functional one

Always reference requirements by their REQ-nnn ids."""


def _context_block(project_context: ProjectContext) -> str:
    parts = [f"Project: {project_context.name or 'Untitled project'}"]
    if project_context.description:
        parts.append(f"Description: {project_context.description}")
    if project_context.related_context:
        parts.append("Related context shared by the user:\n" + "\n".join(f"- {c}" for c in project_context.related_context))
    return "\n".join(parts)


# =============================================================================
# Tool schemas
# =============================================================================

_CONFIDENCE = {"type": "number", "minimum": 0, "maximum": 1}
_STR = {"type": "string"}
_STR_LIST = {"type": "array", "items": {"type": "string"}}


def _list_tool(name: str, description: str, key: str, properties: dict[str, Any], required: list[str]) -> dict:
    return {
        "name": name,
        "description": description,
        "input_schema": {
            "type": "object",
            "properties": {
                key: {
                    "type": "array",
                    "items": {"type": "object", "properties": properties, "required": required},
                }
            },
            "required": [key],
        },
    }


CLASSIFY_TOOL = {
    "name": "submit_classification",
    "description": "Submit the relevance classification of the source.",
    "input_schema": {
        "type": "object",
        "properties": {
            "relevance": _CONFIDENCE,
            "type_detected": _STR,
            "summary": _STR,
            "has_requirements": {"type": "boolean"},
            "has_decisions": {"type": "boolean"},
            "has_stakeholders": {"type": "boolean"},
            "key_topics": _STR_LIST,
        },
        "required": ["relevance", "summary"],
    },
}

REQUIREMENT_TOOL = _list_tool(
    "submit_requirements",
    "Submit the requirements extracted from the source.",
    "requirements",
    {
        "title": _STR,
        "description": _STR,
        "category": {
            "type": "string",
            "enum": [
                "functional", "non_functional", "business", "technical",
                "security", "performance", "compliance", "integration",
            ],
        },
        "priority": {"type": "string", "enum": ["critical", "high", "medium", "low"]},
        "confidence": _CONFIDENCE,
        "source_excerpt": _STR,
        "reasoning": _STR,
        "tags": _STR_LIST,
        "stakeholder_names": _STR_LIST,
    },
    ["title", "description", "confidence", "source_excerpt"],
)

STAKEHOLDER_TOOL = _list_tool(
    "submit_stakeholders",
    "Submit the stakeholders identified across the sources.",
    "stakeholders",
    {
        "name": _STR,
        "role": _STR,
        "department": _STR,
        "influence": {"type": "string", "enum": ["decision_maker", "influencer", "contributor", "observer"]},
        "sentiment": {"type": "string", "enum": ["supportive", "neutral", "resistant", "unknown"]},
        "mention_context": _STR,
        "concerns": _STR_LIST,
    },
    ["name"],
)

DECISION_TOOL = _list_tool(
    "submit_decisions",
    "Submit the decisions extracted from the sources.",
    "decisions",
    {
        "title": _STR,
        "description": _STR,
        "type": {
            "type": "string",
            "description": "architectural, functional, business, technical, process, or another short label",
        },
        "status": {"type": "string", "enum": ["proposed", "approved", "rejected", "deferred"]},
        "made_by": _STR,
        "source_excerpt": _STR,
        "confidence": _CONFIDENCE,
        "impacted_requirements": _STR_LIST,
    },
    ["title", "source_excerpt", "confidence"],
)

TIMELINE_TOOL = _list_tool(
    "submit_timeline_events",
    "Submit the timeline events extracted from the sources.",
    "events",
    {
        "title": _STR,
        "description": _STR,
        "date": {"type": ["string", "null"]},
        "type": {"type": "string", "enum": ["milestone", "deadline", "decision", "approval", "dependency"]},
        "source_excerpt": _STR,
        "confidence": _CONFIDENCE,
    },
    ["title", "source_excerpt", "confidence"],
)

CONFLICT_TOOL = _list_tool(
    "submit_conflicts",
    "Submit the conflicts found among the project's records.",
    "conflicts",
    {
        "title": _STR,
        "description": _STR,
        "kind": {
            "type": "string",
            "enum": [
                "requirement_contradiction", "decision_contradiction", "stakeholder_exclusive",
                "timeline_infeasible", "performance_infeasible",
            ],
        },
        "severity": {"type": "string", "enum": ["critical", "major", "minor"]},
        "requirement_ids": _STR_LIST,
        "explanation": _STR,
    },
    ["title", "kind", "severity", "requirement_ids"],
)


# =============================================================================
# Response validation
# =============================================================================


def validate_items(data: dict[str, Any], key: str, model: type[T]) -> list[T]:
    """
    Validate the list under ``key`` of a tool response.

    Raises:
        AgentResponseError: If the list is missing or any item does not validate
    """
    items = data.get(key)
    if items is None:
        raise AgentResponseError(f"Agent response has no '{key}' list")
    if not isinstance(items, list):
        raise AgentResponseError(f"Agent response '{key}' is {type(items).__name__}, expected list")

    validated = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise AgentResponseError(f"Agent response '{key}[{index}]' is not an object")
        try:
            validated.append(model.model_validate(item))
        except ValidationError as e:
            raise AgentResponseError(f"Agent response '{key}[{index}]' is invalid: {e}") from e
    return validated


# =============================================================================
# Claude implementation
# =============================================================================


class AnthropicExtractionAgent:
    """ExtractionAgent backed by Claude tool_use calls."""

    def __init__(self, client: Anthropic | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.client = client or get_anthropic_client()

    def _call(self, system: str, user: str, tool: dict[str, Any]) -> dict[str, Any]:
        return call_tool(
            self.client,
            model=self.settings.EXTRACTION_MODEL,
            max_tokens=self.settings.EXTRACTION_MAX_TOKENS,
            system=system,
            user=user,
            tool=tool,
        )

    def classify(self, source_content: str, project_context: ProjectContext) -> SourceClassification:
        user = (
            f"{_context_block(project_context)}\n\n"
            "Classify this communication: how relevant is it to the project, and does it contain "
            "requirements, decisions or stakeholders?\n\n"
            f"{source_content[:8000]}"
        )
        data = self._call(CLASSIFY_SYSTEM, user, CLASSIFY_TOOL)
        try:
            return SourceClassification.model_validate(data)
        except ValidationError as e:
            raise AgentResponseError(f"Classification response is invalid: {e}") from e

    def extract_requirements(
        self, source_content: str, project_context: ProjectContext
    ) -> list[RequirementCandidate]:
        user = f"{_context_block(project_context)}\n\nExtract ALL requirements from:\n\n{source_content}"
        data = self._call(REQUIREMENT_SYSTEM, user, REQUIREMENT_TOOL)
        return validate_items(data, "requirements", RequirementCandidate)

    def extract_stakeholders(
        self, source_content: str, project_context: ProjectContext
    ) -> list[StakeholderCandidate]:
        user = f"{_context_block(project_context)}\n\nIdentify ALL stakeholders in:\n\n{source_content}"
        data = self._call(STAKEHOLDER_SYSTEM, user, STAKEHOLDER_TOOL)
        return validate_items(data, "stakeholders", StakeholderCandidate)

    def extract_decisions(
        self, source_content: str, project_context: ProjectContext
    ) -> list[DecisionCandidate]:
        user = f"{_context_block(project_context)}\n\nExtract ALL decisions from:\n\n{source_content}"
        data = self._call(DECISION_SYSTEM, user, DECISION_TOOL)
        return validate_items(data, "decisions", DecisionCandidate)

    def extract_timeline(
        self, source_content: str, project_context: ProjectContext
    ) -> list[TimelineCandidate]:
        user = f"{_context_block(project_context)}\n\nExtract ALL timeline events from:\n\n{source_content}"
        data = self._call(TIMELINE_SYSTEM, user, TIMELINE_TOOL)
        return validate_items(data, "events", TimelineCandidate)

    def detect_conflicts(
        self, source_content: str, project_context: ProjectContext
    ) -> list[ConflictCandidate]:
        user = f"{_context_block(project_context)}\n\nAnalyze these records for conflicts:\n\n{source_content}"
        data = self._call(CONFLICT_SYSTEM, user, CONFLICT_TOOL)
        return validate_items(data, "conflicts", ConflictCandidate)


def get_extraction_agent() -> ExtractionAgent:
    """
    Build the configured extraction agent.

    Raises:
        ExtractionNotConfiguredError: If no model provider is configured
    """
    return AnthropicExtractionAgent()
