"""Tests for decision type parsing and agent candidate coercion."""

import pytest

from tracelayer.core.schemas_extraction import (
    ConflictCandidate,
    ConflictKind,
    KnownDecisionType,
    OtherDecisionType,
    Priority,
    RequirementCandidate,
    RequirementCategory,
    StakeholderCandidate,
    TimelineCandidate,
    TimelineEventType,
    decision_type_label,
    parse_decision_type,
)


@pytest.mark.parametrize(
    "raw,kind",
    [
        ("technical", "technical"),
        ("Architectural", "architectural"),
        ("scope", "business"),
        ("Architecture", "architectural"),
        ("tech", "technical"),
        ("", "technical"),
        (None, "technical"),
    ],
)
def test_known_kinds(raw, kind):
    parsed = parse_decision_type(raw)
    assert isinstance(parsed, KnownDecisionType)
    assert parsed.kind == kind
    assert parsed.label == kind


def test_unknown_type_keeps_original_label():
    parsed = parse_decision_type("Vendor Selection")
    assert isinstance(parsed, OtherDecisionType)
    assert parsed.kind == "other"
    assert parsed.label == "Vendor Selection"


def test_stored_variant_round_trips():
    assert parse_decision_type({"kind": "other", "label": "legal"}) == OtherDecisionType(label="legal")
    assert decision_type_label({"kind": "process", "label": "process"}) == "process"


def test_requirement_candidate_coerces_agent_output():
    candidate = RequirementCandidate(
        title="  ",
        category="Non-Functional",
        priority="urgent",
        confidence="0.4",
        source_excerpt=None,
    )

    assert candidate.title == "Untitled Requirement"
    assert candidate.category is RequirementCategory.NON_FUNCTIONAL
    assert candidate.priority is Priority.MEDIUM
    assert candidate.confidence == 0.4
    assert candidate.source_excerpt == ""


def test_stakeholder_candidate_defaults():
    candidate = StakeholderCandidate(name=None, influence="", sentiment="thrilled")

    assert candidate.name == "Unknown"
    assert candidate.influence is None
    assert candidate.sentiment.value == "unknown"


def test_timeline_and_conflict_candidates():
    event = TimelineCandidate(title="Launch", type="Deadline", date="2026-11-01")
    conflict = ConflictCandidate(title="Clash", kind="performance infeasible", requirement_ids=["REQ-001"])

    assert event.type is TimelineEventType.DEADLINE
    assert conflict.kind is ConflictKind.PERFORMANCE_INFEASIBLE
