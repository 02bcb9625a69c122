"""Generate a Business Requirements Document from extracted project records."""

from collections import Counter
from typing import Any

from anthropic import Anthropic

from tracelayer.core.config import get_settings
from tracelayer.core.llm import call_tool, get_anthropic_client
from tracelayer.core.logging import get_logger
from tracelayer.core.schemas_extraction import decision_type_label

logger = get_logger(__name__)

EXCERPT_CHARS = 1000
SOURCE_SNIPPET_CHARS = 15_000
SOURCE_CONTEXT_CHARS = 50_000


SYSTEM_PROMPT = """You are a senior business analyst writing an evidence-driven Business Requirements Document.

Rules:
- Generate ONLY from the extracted records provided. Never invent requirements, people or dates.
- Cite requirement ids (REQ-001), decision ids (DEC-001) and stakeholder names inline in every section.
- Synthesize: group related requirements, surface patterns and risks, and note where several
  sources converge on the same need.
- Write analysis sections as prose paragraphs, not bullet lists.
- Write in active voice with a clear topic sentence per paragraph."""


_TEXT = {"type": "string"}
_TEXT_LIST = {"type": "array", "items": {"type": "string"}}

BRD_TOOL = {
    "name": "submit_brd",
    "description": "Submit the generated Business Requirements Document.",
    "input_schema": {
        "type": "object",
        "properties": {
            "executive_summary": _TEXT,
            "project_overview": _TEXT,
            "business_objectives": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": _TEXT,
                        "title": _TEXT,
                        "description": _TEXT,
                        "success_criteria": _TEXT,
                        "linked_requirements": _TEXT_LIST,
                        "owner": _TEXT,
                    },
                    "required": ["id", "title", "description"],
                },
            },
            "scope": {
                "type": "object",
                "properties": {
                    "in_scope": _TEXT_LIST,
                    "out_of_scope": _TEXT_LIST,
                    "assumptions": _TEXT_LIST,
                    "constraints": _TEXT_LIST,
                },
            },
            "stakeholder_analysis": _TEXT,
            "functional_analysis": _TEXT,
            "non_functional_analysis": _TEXT,
            "decision_analysis": _TEXT,
            "risk_assessment": _TEXT,
            "coverage_gaps": _TEXT_LIST,
            "recommendations": _TEXT_LIST,
        },
        "required": ["executive_summary", "project_overview", "business_objectives"],
    },
}


def _breakdown(requirements: list[dict[str, Any]], field: str) -> str:
    counts = Counter(r.get(field) or "unknown" for r in requirements)
    return ", ".join(f"{key}: {count}" for key, count in counts.most_common())


def _confidence_report(requirements: list[dict[str, Any]]) -> dict[str, Any]:
    settings = get_settings()
    scores = [float(r.get("confidence_score") or 0) for r in requirements]
    return {
        "high_confidence": sum(1 for s in scores if s >= settings.HIGH_CONFIDENCE_THRESHOLD),
        "medium_confidence": sum(
            1 for s in scores
            if settings.LOW_CONFIDENCE_THRESHOLD <= s < settings.HIGH_CONFIDENCE_THRESHOLD
        ),
        "low_confidence": sum(1 for s in scores if s < settings.LOW_CONFIDENCE_THRESHOLD),
        "overall_score": round(sum(scores) / len(scores), 2) if scores else 0,
    }


def build_brd_prompt(
    project: dict[str, Any],
    requirements: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    conflicts: list[dict[str, Any]],
    source_meta: list[dict[str, Any]],
) -> str:
    """Render the extracted records into the BRD user prompt."""
    sources_block = "\n".join(
        f'- "{s.get("name")}" ({s.get("type")}, {(s.get("metadata") or {}).get("word_count", "?")} words)'
        for s in source_meta
    )

    reqs_block = "\n\n".join(
        f"{r.get('requirement_id')} [{r.get('category')}/{r.get('priority')}] "
        f"(confidence: {float(r.get('confidence_score') or 0):.0%}): {r.get('title')}\n"
        f"  Description: {r.get('description')}\n"
        f"  Evidence: \"{(r.get('source_excerpt') or 'N/A')[:EXCERPT_CHARS]}\""
        for r in requirements
    )

    stakeholders_block = "\n".join(
        f"- {s.get('name')} ({s.get('role') or 'role unknown'}"
        f"{', ' + s['department'] if s.get('department') else ''})"
        f" influence: {s.get('influence')}, sentiment: {s.get('sentiment') or 'unknown'}"
        for s in stakeholders
    )

    decisions_block = "\n\n".join(
        f"{d.get('decision_id')} [{decision_type_label(d.get('type'))}/{d.get('status')}]: {d.get('title')}\n"
        f"  {d.get('description') or ''}\n"
        f"  Evidence: \"{(d.get('source_excerpt') or 'N/A')[:EXCERPT_CHARS]}\""
        for d in decisions
    )

    conflicts_block = "\n\n".join(
        f"{c.get('conflict_id')} [{c.get('severity')}/{c.get('status')}]: {c.get('title')}\n"
        f"  {c.get('description') or ''}\n"
        f"  Resolution: {c.get('resolution') or 'None yet'}"
        for c in conflicts
    )

    snippets = "\n\n".join(
        f"--- {s.get('name')} ({s.get('type')}) ---\n{(s.get('content') or '')[:SOURCE_SNIPPET_CHARS]}"
        for s in source_meta
        if s.get("content")
    )[:SOURCE_CONTEXT_CHARS]

    parts = [
        f'Project: "{project.get("name") or "Untitled project"}"',
        f"Description: {project['description']}" if project.get("description") else "",
        "",
        f"SOURCES ANALYZED ({len(source_meta)}):",
        sources_block or "None.",
        "",
        f"REQUIREMENTS ({len(requirements)}):",
        f"Category breakdown: {_breakdown(requirements, 'category')}",
        f"Priority breakdown: {_breakdown(requirements, 'priority')}",
        reqs_block or "None.",
        "",
        f"STAKEHOLDERS ({len(stakeholders)}):",
        stakeholders_block or "None identified.",
        "",
        f"DECISIONS ({len(decisions)}):",
        decisions_block or "No decisions identified.",
        "",
        f"CONFLICTS ({len(conflicts)}):",
        conflicts_block or "No conflicts detected.",
    ]
    if snippets:
        parts += ["", "SOURCE CONTENT (for context):", snippets]

    return "\n".join(parts)


def generate_brd(
    project: dict[str, Any],
    requirements: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    conflicts: list[dict[str, Any]],
    source_meta: list[dict[str, Any]],
    client: Anthropic | None = None,
) -> dict[str, Any]:
    """
    Generate a BRD from the project's extracted records.

    The model writes the narrative sections; counts and the confidence
    report are computed here so they always match the stored records.

    Args:
        project: Project row
        requirements: Requirement rows
        stakeholders: Stakeholder rows
        decisions: Decision rows
        conflicts: Conflict rows
        source_meta: Source rows (name, type, metadata, content)
        client: Anthropic client (built from settings when omitted)

    Returns:
        ``{"type": "brd", "content": ..., "generated_from": ...}`` ready for
        ``store_document``

    Raises:
        ExtractionNotConfiguredError: If no client is given and no key is configured
        AgentResponseError: If the model returns no usable document
    """
    settings = get_settings()
    client = client or get_anthropic_client()

    logger.info(
        f"Generating BRD for {project.get('name')}: {len(requirements)} requirements, "
        f"{len(source_meta)} sources",
        extra={"project_id": str(project.get("id"))},
    )

    content = call_tool(
        client,
        model=settings.DOCUMENT_MODEL,
        max_tokens=settings.DOCUMENT_MAX_TOKENS,
        system=SYSTEM_PROMPT,
        user=build_brd_prompt(project, requirements, stakeholders, decisions, conflicts, source_meta),
        tool=BRD_TOOL,
    )

    content["intelligence_summary"] = {
        "total_sources": len(source_meta),
        "communication_channels": sorted({s.get("type") for s in source_meta if s.get("type")}),
        "total_requirements": len(requirements),
        "total_stakeholders": len(stakeholders),
        "total_decisions": len(decisions),
        "total_conflicts": len(conflicts),
        "category_breakdown": _breakdown(requirements, "category"),
        "priority_breakdown": _breakdown(requirements, "priority"),
    }
    content["confidence_report"] = _confidence_report(requirements)

    return {
        "type": "brd",
        "content": content,
        "generated_from": {
            "requirement_count": len(requirements),
            "source_count": len(source_meta),
            "stakeholder_count": len(stakeholders),
            "decision_count": len(decisions),
        },
    }
