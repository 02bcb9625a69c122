"""Tests for traceability link policy and graph projection."""

from tracelayer.core.traceability import (
    AFFECTS,
    BLOCKS,
    EXTRACTED_FROM,
    INVOLVES,
    MENTIONED_IN,
    PlannedLink,
    blocks_strength,
    build_graph,
    clamp_strength,
    conflict_requirement_links,
    decision_requirement_links,
    match_source_by_excerpt,
    requirement_stakeholder_links,
    stakeholder_source_links,
    unseen_links,
)

SOURCES = [
    {"id": "src-1", "name": "kickoff.txt", "type": "meeting_transcript",
     "content": "Sarah Chen wants Apple Pay at checkout.", "relevance_score": 0.9},
    {"id": "src-2", "name": "email.eml", "type": "email",
     "content": "Marcus: refunds must complete within 24 hours.", "relevance_score": 0.6},
]

REQUIREMENTS = [
    {"id": "req-1", "requirement_id": "REQ-001", "title": "Support Apple Pay", "category": "functional",
     "priority": "high", "confidence_score": 0.9, "source_excerpt": "Sarah Chen wants Apple Pay",
     "stakeholder_ids": []},
    {"id": "req-2", "requirement_id": "REQ-002", "title": "Refund turnaround", "category": "business",
     "priority": "medium", "confidence_score": 0.7, "source_excerpt": "refunds must complete within 24 hours",
     "stakeholder_ids": ["sh-2"]},
]

STAKEHOLDERS = [
    {"id": "sh-1", "name": "Sarah Chen", "influence": "decision_maker"},
    {"id": "sh-2", "name": "Marcus", "influence": "contributor"},
]


def test_clamp_strength():
    assert clamp_strength(None) == 0.0
    assert clamp_strength(1.5) == 1.0
    assert clamp_strength(-1) == 0.0


def test_blocks_strength_by_severity():
    assert blocks_strength("critical") == 0.95
    assert blocks_strength("major") == 0.8
    assert blocks_strength("unheard-of") == 0.6


def test_stakeholder_links_to_mentioning_sources():
    source_ids, links = stakeholder_source_links("sh-1", "sarah chen", SOURCES)

    assert source_ids == ["src-1"]
    assert links == [PlannedLink("stakeholder", "sh-1", "source", "src-1", MENTIONED_IN, 0.9)]


def test_unmentioned_stakeholder_falls_back_to_all_sources():
    source_ids, links = stakeholder_source_links("sh-9", "Priya", SOURCES)

    assert source_ids == ["src-1", "src-2"]
    assert len(links) == 1
    assert links[0].to_id == "src-1"
    assert links[0].strength == 0.5


def test_match_source_by_excerpt():
    assert match_source_by_excerpt("refunds must complete within", SOURCES)["id"] == "src-2"
    # Too short to match reliably
    assert match_source_by_excerpt("refunds", SOURCES)["id"] == "src-1"
    assert match_source_by_excerpt("not quoted from anything here", SOURCES)["id"] == "src-1"
    assert match_source_by_excerpt("anything at all", []) is None


def test_requirement_stakeholder_links_by_excerpt_and_listing():
    links = requirement_stakeholder_links(REQUIREMENTS, STAKEHOLDERS)

    assert {(link.from_id, link.to_id) for link in links} == {("req-1", "sh-1"), ("req-2", "sh-2")}
    assert all(link.relationship == INVOLVES for link in links)


def test_decision_links_to_mentioned_requirement():
    decisions = [{"id": "dec-1", "title": "Stripe handles REQ-002", "description": ""}]

    links = decision_requirement_links(decisions, REQUIREMENTS)

    assert links == [PlannedLink("decision", "dec-1", "requirement", "req-2", AFFECTS, 0.75)]


def test_decision_uses_impacted_ids():
    decisions = [{"id": "dec-1", "title": "Vendor", "description": "", "impacted_requirement_ids": ["req-1"]}]

    links = decision_requirement_links(decisions, REQUIREMENTS)

    assert [link.to_id for link in links] == ["req-1"]


def test_unmatched_decision_falls_back_to_best_keyword_overlap():
    decisions = [{"id": "dec-1", "title": "Outsource refund processing", "description": ""}]

    links = decision_requirement_links(decisions, REQUIREMENTS)

    assert links == [PlannedLink("decision", "dec-1", "requirement", "req-2", AFFECTS, 0.5)]


def test_decision_links_empty_without_requirements():
    assert decision_requirement_links([{"id": "dec-1", "title": "x"}], []) == []


def test_conflict_blocks_each_referenced_requirement():
    links = conflict_requirement_links(
        [{"id": "con-1", "severity": "critical", "requirement_ids": ["req-1", "req-2"]}]
    )

    assert [link.to_id for link in links] == ["req-1", "req-2"]
    assert {link.relationship for link in links} == {BLOCKS}
    assert {link.strength for link in links} == {0.95}


def test_build_graph_projects_nodes_and_edges():
    decisions = [{"id": "dec-1", "decision_id": "DEC-001", "title": "Use Stripe",
                  "type": {"kind": "business", "label": "business"}, "confidence_score": 0.8}]
    conflicts = [{"id": "con-1", "conflict_id": "CON-001", "title": "Clash", "severity": "major"}]
    links = [{"from_id": "src-1", "to_id": "req-1", "relationship": EXTRACTED_FROM, "strength": 0.9}]

    graph = build_graph(REQUIREMENTS, STAKEHOLDERS, SOURCES, decisions, conflicts, links)

    by_id = {node["id"]: node for node in graph["nodes"]}
    assert len(graph["nodes"]) == 8
    assert by_id["req-1"]["label"] == "REQ-001: Support Apple Pay"
    assert by_id["req-1"]["confidence"] == 0.9
    assert by_id["dec-1"]["category"] == "business"
    assert by_id["src-2"]["type"] == "source"
    assert by_id["con-1"]["category"] == "major"
    assert graph["edges"] == [
        {"source": "src-1", "target": "req-1", "relationship": "extracted_from", "strength": 0.9}
    ]


def test_build_graph_empty_project():
    assert build_graph([], [], [], [], [], []) == {"nodes": [], "edges": []}


def test_unseen_links_skips_stored_and_repeated_links():
    stored = [
        {"from_type": "requirement", "from_id": "req-1", "to_type": "stakeholder", "to_id": "stk-1",
         "relationship": INVOLVES, "strength": 0.9},
    ]
    planned = [
        # Same edge as the stored row with a different strength
        PlannedLink("requirement", "req-1", "stakeholder", "stk-1", INVOLVES, 0.5),
        PlannedLink("conflict", "con-1", "requirement", "req-2", BLOCKS, 0.8),
        PlannedLink("conflict", "con-1", "requirement", "req-2", BLOCKS, 0.8),
        PlannedLink("requirement", "req-1", "stakeholder", "stk-2", INVOLVES, 0.9),
    ]

    fresh = unseen_links(planned, stored)

    assert [(link.from_id, link.to_id) for link in fresh] == [("con-1", "req-2"), ("req-1", "stk-2")]
    assert unseen_links(fresh, []) == fresh
