"""Tests for BRD generation with a mocked Anthropic client."""

from unittest.mock import MagicMock

from tracelayer.chains.generate_brd import BRD_TOOL, build_brd_prompt, generate_brd

PROJECT = {"id": "p1", "name": "Checkout Revamp", "description": "Rebuild the checkout flow"}

REQUIREMENTS = [
    {"requirement_id": "REQ-001", "title": "Support Apple Pay", "category": "functional", "priority": "high",
     "confidence_score": 0.92, "description": "Wallet payments", "source_excerpt": "must support Apple Pay"},
    {"requirement_id": "REQ-002", "title": "PCI scope reduction", "category": "security", "priority": "critical",
     "confidence_score": 0.65, "description": "Tokenize cards", "source_excerpt": "keep us out of PCI"},
    {"requirement_id": "REQ-003", "title": "Dark mode", "category": "functional", "priority": "low",
     "confidence_score": 0.3, "description": "", "source_excerpt": "maybe dark mode"},
]

STAKEHOLDERS = [{"name": "Sarah Chen", "role": "VP Product", "department": "Product",
                 "influence": "decision_maker", "sentiment": "supportive"}]

DECISIONS = [{"decision_id": "DEC-001", "type": {"kind": "other", "label": "vendor"}, "status": "approved",
              "title": "Use Stripe", "description": "", "source_excerpt": "we go with Stripe"}]

CONFLICTS = [{"conflict_id": "CON-001", "severity": "major", "status": "detected", "title": "Latency vs fraud",
              "description": "", "resolution": None}]

SOURCES = [
    {"name": "kickoff.txt", "type": "meeting_transcript", "metadata": {"word_count": 1200}, "content": "Sarah: ..."},
    {"name": "thread.eml", "type": "email", "metadata": {"word_count": 300}, "content": "Stripe it is."},
]


def _client(payload: dict) -> MagicMock:
    client = MagicMock()
    response = MagicMock()
    response.content = [MagicMock(type="tool_use", input=payload)]
    client.messages.create.return_value = response
    return client


def test_prompt_includes_records_and_breakdowns():
    prompt = build_brd_prompt(PROJECT, REQUIREMENTS, STAKEHOLDERS, DECISIONS, CONFLICTS, SOURCES)

    assert 'Project: "Checkout Revamp"' in prompt
    assert "REQUIREMENTS (3):" in prompt
    assert "Category breakdown: functional: 2, security: 1" in prompt
    assert "REQ-002 [security/critical] (confidence: 65%): PCI scope reduction" in prompt
    assert "Sarah Chen (VP Product, Product)" in prompt
    assert "DEC-001 [vendor/approved]: Use Stripe" in prompt
    assert "CON-001 [major/detected]" in prompt
    assert '"kickoff.txt" (meeting_transcript, 1200 words)' in prompt


def test_prompt_for_empty_project():
    prompt = build_brd_prompt({"name": "Empty"}, [], [], [], [], [])

    assert "No decisions identified." in prompt
    assert "No conflicts detected." in prompt
    assert "SOURCE CONTENT" not in prompt


def test_generate_brd_adds_computed_sections():
    client = _client(
        {
            "executive_summary": "Checkout Revamp consolidates payments (REQ-001).",
            "project_overview": "Overview",
            "business_objectives": [{"id": "OBJ-1", "title": "Wallets", "description": "Add wallets"}],
        }
    )

    doc = generate_brd(PROJECT, REQUIREMENTS, STAKEHOLDERS, DECISIONS, CONFLICTS, SOURCES, client=client)

    assert doc["type"] == "brd"
    assert doc["generated_from"] == {
        "requirement_count": 3,
        "source_count": 2,
        "stakeholder_count": 1,
        "decision_count": 1,
    }
    content = doc["content"]
    assert content["executive_summary"].startswith("Checkout Revamp")
    assert content["intelligence_summary"]["communication_channels"] == ["email", "meeting_transcript"]
    assert content["intelligence_summary"]["total_conflicts"] == 1
    assert content["confidence_report"] == {
        "high_confidence": 1,
        "medium_confidence": 1,
        "low_confidence": 1,
        "overall_score": 0.62,
    }

    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["tool_choice"] == {"type": "tool", "name": BRD_TOOL["name"]}
