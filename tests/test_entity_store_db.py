"""Tests for entity store invariants against the in-memory database."""

from uuid import UUID, uuid4

import pytest

from tracelayer.core.errors import NotFoundError, StageTransitionError, StoreInvariantError
from tracelayer.core.schemas_extraction import (
    DecisionCandidate,
    RequirementCandidate,
    StakeholderCandidate,
)
from tracelayer.db import conflicts, decisions, documents, projects, requirements, sources, stakeholders


@pytest.fixture
def pid(project) -> UUID:
    return UUID(project["id"])


@pytest.fixture
def source(pid) -> dict:
    return sources.upload_source(
        pid,
        "kickoff.txt",
        "meeting_transcript",
        "Sarah: the checkout must support Apple Pay and finish in under two seconds.",
    )


def _candidate(title: str = "Support Apple Pay", **overrides) -> RequirementCandidate:
    data = {
        "title": title,
        "description": "Customers can pay with Apple Pay",
        "category": "functional",
        "priority": "high",
        "confidence": 0.85,
        "source_excerpt": "the checkout must support Apple Pay",
    }
    data.update(overrides)
    return RequirementCandidate(**data)


# ============================================================================
# Sources
# ============================================================================


def test_upload_source_counts_words_and_bumps_counter(fake_db, pid, source):
    assert source["status"] == "uploaded"
    assert source["metadata"]["word_count"] == 13
    assert projects.get_project(pid)["source_count"] == 1


def test_source_status_follows_lifecycle(fake_db, source):
    sid = UUID(source["id"])
    sources.update_source_status(sid, "classifying")
    updated = sources.update_source_status(sid, "classified", relevance_score=1.7)

    assert updated["status"] == "classified"
    assert updated["relevance_score"] == 1.0


def test_source_cannot_skip_to_extracted(fake_db, source):
    with pytest.raises(StageTransitionError):
        sources.update_source_status(UUID(source["id"]), "extracted")


def test_update_missing_source(fake_db):
    with pytest.raises(NotFoundError):
        sources.update_source_status(uuid4(), "classifying")


def test_delete_source_decrements_counter(fake_db, pid, source):
    assert sources.delete_source(UUID(source["id"])) is True
    assert sources.delete_source(UUID(source["id"])) is False
    assert projects.get_project(pid)["source_count"] == 0


# ============================================================================
# Requirements
# ============================================================================


def test_store_requirement_starts_discovered_and_agent_owned(fake_db, pid, source):
    row = requirements.store_requirement(pid, "REQ-001", _candidate(), UUID(source["id"]))

    assert row["requirement_id"] == "REQ-001"
    assert row["status"] == "discovered"
    assert row["modified_by"] == "agent"
    assert row["confidence_score"] == 0.85
    assert row["category"] == "functional"
    assert projects.get_project(pid)["requirement_count"] == 1


def test_store_requirement_requires_excerpt(fake_db, pid, source):
    with pytest.raises(StoreInvariantError, match="excerpt"):
        requirements.store_requirement(pid, "REQ-001", _candidate(source_excerpt="  "), UUID(source["id"]))
    assert fake_db.rows("requirements") == []


def test_store_requirement_rejects_out_of_range_confidence(fake_db, pid, source):
    candidate = _candidate()
    candidate.confidence = 1.4
    with pytest.raises(StoreInvariantError, match="Confidence"):
        requirements.store_requirement(pid, "REQ-001", candidate, UUID(source["id"]))


def test_candidate_confidence_is_clamped():
    assert _candidate(confidence=3).confidence == 1.0
    assert _candidate(confidence=None).confidence == 0.7


def test_user_edit_flips_modified_by(fake_db, pid, source):
    row = requirements.store_requirement(pid, "REQ-001", _candidate(), UUID(source["id"]))

    updated = requirements.update_requirement(
        UUID(row["id"]), {"priority": "critical", "status": "confirmed", "confidence_score": 0.1}
    )

    assert updated["priority"] == "critical"
    assert updated["status"] == "confirmed"
    assert updated["modified_by"] == "user"
    # Not an editable field
    assert updated["confidence_score"] == 0.85


def test_update_missing_requirement(fake_db):
    with pytest.raises(NotFoundError):
        requirements.update_requirement(uuid4(), {"title": "x"})


# ============================================================================
# Stakeholders
# ============================================================================


def test_stakeholder_merge_unions_sources_and_counts_mentions(fake_db, pid):
    first = stakeholders.store_stakeholder(
        pid, StakeholderCandidate(name="Sarah Chen", role="VP Product", influence="decision_maker"), ["s1"]
    )
    second = stakeholders.store_stakeholder(pid, StakeholderCandidate(name="sarah chen", role=""), ["s2", "s1"])

    assert first["merged"] is False
    assert second["merged"] is True
    assert second["id"] == first["id"]
    assert second["mention_count"] == 2
    assert second["source_ids"] == ["s1", "s2"]
    assert second["role"] == "VP Product"
    assert second["influence"] == "decision_maker"
    assert len(fake_db.rows("stakeholders")) == 1
    assert projects.get_project(pid)["stakeholder_count"] == 1


def test_new_stakeholder_defaults_to_contributor(fake_db, pid):
    row = stakeholders.store_stakeholder(pid, StakeholderCandidate(name="Marcus"), [])
    assert row["influence"] == "contributor"
    assert row["mention_count"] == 1


# ============================================================================
# Decisions
# ============================================================================


def test_decision_type_stored_as_tagged_variant(fake_db, pid, source):
    candidate = DecisionCandidate(
        title="Use Stripe", type="Legal", source_excerpt="we go with Stripe", status="approved"
    )

    row = decisions.store_decision(pid, "DEC-001", candidate, UUID(source["id"]))

    assert row["type"] == {"kind": "other", "label": "Legal"}
    assert row["status"] == "approved"
    assert projects.get_project(pid)["decision_count"] == 1


def test_decision_requires_evidence(fake_db, pid, source):
    with pytest.raises(StoreInvariantError):
        decisions.store_decision(pid, "DEC-001", DecisionCandidate(title="Use Stripe"), UUID(source["id"]))


# ============================================================================
# Conflicts
# ============================================================================


def test_conflict_requires_a_requirement(fake_db, pid):
    with pytest.raises(StoreInvariantError, match="at least one"):
        conflicts.store_conflict(pid, "CON-001", "Clash", "", "major", [])


def test_conflict_rejects_unknown_requirement(fake_db, pid, source):
    row = requirements.store_requirement(pid, "REQ-001", _candidate(), UUID(source["id"]))

    with pytest.raises(StoreInvariantError, match="unknown requirements"):
        conflicts.store_conflict(pid, "CON-001", "Clash", "", "major", [row["id"], str(uuid4())])
    assert fake_db.rows("conflicts") == []


def test_resolve_conflict_leaves_requirements_untouched(fake_db, pid, source):
    a = requirements.store_requirement(pid, "REQ-001", _candidate(), UUID(source["id"]))
    b = requirements.store_requirement(
        pid, "REQ-002", _candidate("Checkout under two seconds", category="performance"), UUID(source["id"])
    )
    conflict = conflicts.store_conflict(pid, "CON-001", "Latency vs wallet", "", "major", [a["id"], b["id"]])
    before = fake_db.rows("requirements")

    resolved = conflicts.resolve_conflict(UUID(conflict["id"]), "Wallet call is async")

    assert resolved["status"] == "resolved"
    assert resolved["resolution"] == "Wallet call is async"
    assert fake_db.rows("requirements") == before
    assert conflicts.next_conflict_id(pid) == "CON-002"


def test_conflict_status_limited_to_review_states(fake_db, pid, source):
    a = requirements.store_requirement(pid, "REQ-001", _candidate(), UUID(source["id"]))
    conflict = conflicts.store_conflict(pid, "CON-001", "Clash", "", "minor", [a["id"]])

    assert conflicts.update_conflict_status(UUID(conflict["id"]), "accepted")["status"] == "accepted"
    with pytest.raises(StoreInvariantError):
        conflicts.update_conflict_status(UUID(conflict["id"]), "resolved")
    with pytest.raises(NotFoundError):
        conflicts.resolve_conflict(uuid4(), "n/a")


# ============================================================================
# Documents
# ============================================================================


def test_document_versions_increase_and_previous_become_outdated(fake_db, pid):
    first = documents.store_document(pid, "brd", {"executive_summary": "v1"}, {"requirement_count": 1})
    second = documents.store_document(pid, "brd", {"executive_summary": "v2"}, {"requirement_count": 2})

    assert first["version"] == 1
    assert second["version"] == 2
    statuses = {row["version"]: row["status"] for row in fake_db.rows("documents")}
    assert statuses == {1: "outdated", 2: "ready"}
    assert documents.get_latest_document(pid)["content"] == {"executive_summary": "v2"}


# ============================================================================
# Project maintenance
# ============================================================================


def test_clear_extraction_data_keeps_user_edited_requirements(fake_db, pid, source):
    sid = UUID(source["id"])
    edited = requirements.store_requirement(pid, "REQ-001", _candidate(), sid)
    requirements.store_requirement(pid, "REQ-002", _candidate("Guest checkout"), sid)
    requirements.update_requirement(UUID(edited["id"]), {"title": "Support Apple Pay and Google Pay"})
    stakeholders.store_stakeholder(pid, StakeholderCandidate(name="Sarah"), [str(sid)])
    documents.store_document(pid, "brd", {}, {})
    sources.update_source_status(sid, "classifying")

    cleared = projects.clear_extraction_data(pid)

    assert cleared["requirements"] == 1
    assert cleared["stakeholders"] == 1
    assert cleared["documents"] == 1
    assert cleared["kept_requirements"] == 1
    kept = fake_db.rows("requirements")
    assert [r["title"] for r in kept] == ["Support Apple Pay and Google Pay"]
    assert fake_db.rows("traceability_links")[0]["to_id"] == edited["id"]
    assert fake_db.rows("documents")[0]["status"] == "outdated"
    assert sources.get_source(sid)["status"] == "uploaded"
    project = projects.get_project(pid)
    assert project["requirement_count"] == 1
    assert project["stakeholder_count"] == 0
    assert project["status"] == "draft"


def test_refresh_counts_repairs_drift(fake_db, pid, source):
    requirements.store_requirement(pid, "REQ-001", _candidate(), UUID(source["id"]))
    fake_db.table("projects").update({"requirement_count": 42, "source_count": 0}).eq("id", str(pid)).execute()

    counts = projects.refresh_counts(pid)

    assert counts["requirement_count"] == 1
    assert counts["source_count"] == 1
    assert projects.get_project(pid)["requirement_count"] == 1


def test_counter_never_goes_negative(fake_db, pid):
    assert projects.increment_counter(pid, "conflict_count", -5) == 0
    with pytest.raises(ValueError):
        projects.increment_counter(pid, "widget_count")
