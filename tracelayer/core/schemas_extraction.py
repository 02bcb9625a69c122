"""Pydantic schemas for extraction entities, agent candidates and runs."""

from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, Field, TypeAdapter, field_validator

# ============================================================================
# Enums
# ============================================================================


class SourceType(str, Enum):
    """Communication channel a source came from."""
    EMAIL = "email"
    MEETING_TRANSCRIPT = "meeting_transcript"
    CHAT_LOG = "chat_log"
    DOCUMENT = "document"
    UPLOADED_FILE = "uploaded_file"


class SourceStatus(str, Enum):
    """Source lifecycle."""
    UPLOADED = "uploaded"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    FAILED = "failed"


class RequirementCategory(str, Enum):
    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non_functional"
    BUSINESS = "business"
    TECHNICAL = "technical"
    SECURITY = "security"
    PERFORMANCE = "performance"
    COMPLIANCE = "compliance"
    INTEGRATION = "integration"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RequirementStatus(str, Enum):
    DISCOVERED = "discovered"
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class ModifiedBy(str, Enum):
    AGENT = "agent"
    USER = "user"


class StakeholderInfluence(str, Enum):
    DECISION_MAKER = "decision_maker"
    INFLUENCER = "influencer"
    CONTRIBUTOR = "contributor"
    OBSERVER = "observer"


class Sentiment(str, Enum):
    SUPPORTIVE = "supportive"
    NEUTRAL = "neutral"
    RESISTANT = "resistant"
    UNKNOWN = "unknown"


class DecisionStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class TimelineEventType(str, Enum):
    MILESTONE = "milestone"
    DEADLINE = "deadline"
    DECISION = "decision"
    APPROVAL = "approval"
    DEPENDENCY = "dependency"


class ConflictSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class ConflictStatus(str, Enum):
    DETECTED = "detected"
    REVIEWING = "reviewing"
    RESOLVED = "resolved"
    ACCEPTED = "accepted"


class ConflictKind(str, Enum):
    """What the detector found contradictory."""
    REQUIREMENT_CONTRADICTION = "requirement_contradiction"
    DECISION_CONTRADICTION = "decision_contradiction"
    STAKEHOLDER_EXCLUSIVE = "stakeholder_exclusive"
    TIMELINE_INFEASIBLE = "timeline_infeasible"
    PERFORMANCE_INFEASIBLE = "performance_infeasible"


class EntityType(str, Enum):
    """Node types of the traceability graph."""
    SOURCE = "source"
    REQUIREMENT = "requirement"
    STAKEHOLDER = "stakeholder"
    DECISION = "decision"
    CONFLICT = "conflict"
    TIMELINE = "timeline"


class LogLevel(str, Enum):
    INFO = "info"
    PROCESSING = "processing"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class AgentName(str, Enum):
    """Who wrote an agent log line."""
    ORCHESTRATOR = "orchestrator"
    INGESTION = "ingestion_agent"
    CLASSIFICATION = "classification_agent"
    REQUIREMENT = "requirement_agent"
    STAKEHOLDER = "stakeholder_agent"
    DECISION = "decision_agent"
    TIMELINE = "timeline_agent"
    CONFLICT = "conflict_agent"
    TRACEABILITY = "traceability_agent"
    DOCUMENT = "document_agent"


class DocumentType(str, Enum):
    BRD = "brd"
    PRD = "prd"
    TRACEABILITY_MATRIX = "traceability_matrix"


# ============================================================================
# Decision type (tagged variant with an open fallback)
# ============================================================================

KNOWN_DECISION_KINDS = ("architectural", "functional", "business", "technical", "process")

# Labels the agents produce that belong to a known kind
_DECISION_KIND_ALIASES = {
    "scope": "business",
    "architecture": "architectural",
    "tech": "technical",
}


class KnownDecisionType(BaseModel):
    kind: Literal["architectural", "functional", "business", "technical", "process"]

    @property
    def label(self) -> str:
        return self.kind


class OtherDecisionType(BaseModel):
    kind: Literal["other"] = "other"
    label: str


DecisionType = Annotated[
    Union[KnownDecisionType, OtherDecisionType],
    Field(discriminator="kind"),
]

_decision_type_adapter: TypeAdapter = TypeAdapter(DecisionType)


def parse_decision_type(raw: Any) -> KnownDecisionType | OtherDecisionType:
    """
    Map an agent-produced or stored decision type onto the tagged variant.

    Accepts a plain string ("technical", "Scope") or a stored dict
    ({"kind": "other", "label": "legal"}). Blank input means technical.
    """
    if isinstance(raw, (KnownDecisionType, OtherDecisionType)):
        return raw
    if isinstance(raw, dict):
        return _decision_type_adapter.validate_python(raw)

    text = str(raw or "").strip()
    if not text:
        return KnownDecisionType(kind="technical")

    key = text.lower().replace(" ", "_")
    key = _DECISION_KIND_ALIASES.get(key, key)
    if key in KNOWN_DECISION_KINDS:
        return KnownDecisionType(kind=key)
    return OtherDecisionType(label=text)


def decision_type_label(raw: Any) -> str:
    """Display label of a stored decision type."""
    return parse_decision_type(raw).label


# ============================================================================
# Agent candidates
# ============================================================================


def _clamp_confidence(value: Any) -> float:
    if value is None or value == "":
        return 0.7
    return max(0.0, min(1.0, float(value)))


def _text_or(default: str):
    """Before-validator turning null/blank agent text into a default."""

    def _validate(value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        return text or default

    return _validate


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    if isinstance(value, enum_cls):
        return value
    text = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return enum_cls(text)
    except ValueError:
        return default


class SourceClassification(BaseModel):
    """Relevance assessment of one source."""

    relevance: float = Field(default=0.5, description="Relevance to the project, 0-1")
    type_detected: str | None = None
    summary: str = ""
    has_requirements: bool = False
    has_decisions: bool = False
    has_stakeholders: bool = False
    key_topics: list[str] = Field(default_factory=list)

    @field_validator("relevance", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        if v is None or v == "":
            return 0.5
        return max(0.0, min(1.0, float(v)))


class RequirementCandidate(BaseModel):
    """A requirement proposed by the requirement agent."""

    title: Annotated[str, BeforeValidator(_text_or("Untitled Requirement"))] = "Untitled Requirement"
    description: str = ""
    category: RequirementCategory = RequirementCategory.FUNCTIONAL
    priority: Priority = Priority.MEDIUM
    confidence: float = Field(default=0.7, description="Extraction certainty, 0-1")
    source_excerpt: str = Field(default="", description="Verbatim quote supporting the requirement")
    reasoning: str = ""
    tags: list[str] = Field(default_factory=list)
    stakeholder_names: list[str] = Field(default_factory=list)

    @field_validator("description", "source_excerpt", "reasoning", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> str:
        return v or ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_confidence(v)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> RequirementCategory:
        return _coerce_enum(RequirementCategory, v, RequirementCategory.FUNCTIONAL)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> Priority:
        return _coerce_enum(Priority, v, Priority.MEDIUM)


class StakeholderCandidate(BaseModel):
    """A stakeholder proposed by the stakeholder agent."""

    name: Annotated[str, BeforeValidator(_text_or("Unknown"))] = "Unknown"
    role: str = ""
    department: str | None = None
    influence: StakeholderInfluence | None = None
    sentiment: Sentiment = Sentiment.UNKNOWN
    mention_context: str = ""
    concerns: list[str] = Field(default_factory=list)

    @field_validator("role", "mention_context", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> str:
        return v or ""

    @field_validator("influence", mode="before")
    @classmethod
    def _influence(cls, v: Any) -> StakeholderInfluence | None:
        if v is None or v == "":
            return None
        return _coerce_enum(StakeholderInfluence, v, StakeholderInfluence.CONTRIBUTOR)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _sentiment(cls, v: Any) -> Sentiment:
        return _coerce_enum(Sentiment, v, Sentiment.UNKNOWN)


class DecisionCandidate(BaseModel):
    """A decision proposed by the decision agent."""

    title: Annotated[str, BeforeValidator(_text_or("Untitled Decision"))] = "Untitled Decision"
    description: str = ""
    type: str = "technical"
    status: DecisionStatus = DecisionStatus.PROPOSED
    made_by: str | None = None
    source_excerpt: str = ""
    confidence: float = 0.7
    impacted_requirements: list[str] = Field(default_factory=list)

    @field_validator("description", "source_excerpt", "type", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> str:
        return v or ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_confidence(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> DecisionStatus:
        return _coerce_enum(DecisionStatus, v, DecisionStatus.PROPOSED)


class TimelineCandidate(BaseModel):
    """A timeline event proposed by the timeline agent."""

    title: Annotated[str, BeforeValidator(_text_or("Untitled Event"))] = "Untitled Event"
    description: str = ""
    date: str | None = None
    type: TimelineEventType = TimelineEventType.MILESTONE
    source_excerpt: str = ""
    confidence: float = 0.7

    @field_validator("description", "source_excerpt", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> str:
        return v or ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_confidence(v)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> TimelineEventType:
        return _coerce_enum(TimelineEventType, v, TimelineEventType.MILESTONE)


class ConflictCandidate(BaseModel):
    """A conflict proposed by the conflict agent, referencing human requirement ids."""

    title: str
    description: str = ""
    kind: ConflictKind = ConflictKind.REQUIREMENT_CONTRADICTION
    severity: ConflictSeverity = ConflictSeverity.MINOR
    requirement_ids: list[str] = Field(default_factory=list, description="e.g. ['REQ-001', 'REQ-004']")
    explanation: str = ""

    @field_validator("kind", mode="before")
    @classmethod
    def _kind(cls, v: Any) -> ConflictKind:
        return _coerce_enum(ConflictKind, v, ConflictKind.REQUIREMENT_CONTRADICTION)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v: Any) -> ConflictSeverity:
        return _coerce_enum(ConflictSeverity, v, ConflictSeverity.MINOR)


class ProjectContext(BaseModel):
    """Context handed to every agent call. Cross-project context is opt-in."""

    project_id: UUID
    name: str = ""
    description: str = ""
    related_context: list[str] = Field(
        default_factory=list, description="Excerpts from other projects the caller chose to share"
    )


# ============================================================================
# API request/response models
# ============================================================================


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    output_format: Literal["brd", "prd", "both"] = "brd"


class SourceUpload(BaseModel):
    name: str = Field(..., min_length=1)
    type: SourceType
    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RequirementUpdate(BaseModel):
    """Human edit of a requirement. Only supplied fields are patched."""

    title: str | None = None
    description: str | None = None
    priority: Priority | None = None
    status: RequirementStatus | None = None
    category: RequirementCategory | None = None
    tags: list[str] | None = None


class ConflictCreate(BaseModel):
    """Manual conflict entry."""

    title: str
    description: str = ""
    severity: ConflictSeverity = ConflictSeverity.MINOR
    kind: ConflictKind = ConflictKind.REQUIREMENT_CONTRADICTION
    requirement_ids: list[UUID] = Field(..., min_length=1)


class ConflictResolve(BaseModel):
    resolution: str = Field(..., min_length=1)


class ConflictStatusUpdate(BaseModel):
    status: Literal["reviewing", "accepted"]


class StartRunRequest(BaseModel):
    regenerate: bool = Field(default=False, description="Clear agent-authored data before running")
    related_context: list[str] = Field(default_factory=list)


class StartRunResponse(BaseModel):
    run_id: UUID
    project_id: UUID
    status: str


class RunStatusResponse(BaseModel):
    is_running: bool
    run_id: UUID | None = None
    stage: str | None = None


class CancelResponse(BaseModel):
    cancelled_count: int
