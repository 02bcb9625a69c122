"""Traceability edge policy and graph projection.

Pure functions only. The pipeline decides which links to store with the
helpers here; ``tracelayer.db.traceability`` persists them; the graph
endpoint projects stored rows into nodes and edges with ``build_graph``.
"""

from dataclasses import dataclass
from typing import Any

from tracelayer.core.schemas_extraction import decision_type_label

# Relationship names
EXTRACTED_FROM = "extracted_from"
MENTIONED_IN = "mentioned_in"
INVOLVES = "involves"
AFFECTS = "affects"
BLOCKS = "blocks"

STAKEHOLDER_MENTION_STRENGTH = 0.9
STAKEHOLDER_FALLBACK_STRENGTH = 0.5
INVOLVES_STRENGTH = 0.85
AFFECTS_MATCH_STRENGTH = 0.75
AFFECTS_FALLBACK_STRENGTH = 0.5

SEVERITY_STRENGTH = {
    "critical": 0.95,
    "major": 0.8,
    "minor": 0.6,
}

# Excerpt prefix used to locate the source an excerpt was quoted from
EXCERPT_MATCH_CHARS = 100
MIN_EXCERPT_MATCH_CHARS = 10


@dataclass(frozen=True)
class PlannedLink:
    """A traceability edge the pipeline is about to store."""

    from_type: str
    from_id: str
    to_type: str
    to_id: str
    relationship: str
    strength: float

    @property
    def key(self) -> tuple[str, str, str, str, str]:
        return (self.from_type, self.from_id, self.to_type, self.to_id, self.relationship)


def link_key(row: dict[str, Any]) -> tuple[str, str, str, str, str]:
    """Identity of a stored link row; strength is not part of it."""
    return (
        str(row.get("from_type")),
        str(row.get("from_id")),
        str(row.get("to_type")),
        str(row.get("to_id")),
        str(row.get("relationship")),
    )


def unseen_links(planned: list[PlannedLink], existing: list[dict[str, Any]]) -> list[PlannedLink]:
    """Drop planned links already stored, or repeated within ``planned``."""
    seen = {link_key(row) for row in existing}
    fresh = []
    for link in planned:
        if link.key in seen:
            continue
        seen.add(link.key)
        fresh.append(link)
    return fresh


def clamp_strength(value: float | None) -> float:
    if value is None:
        return 0.0
    return max(0.0, min(1.0, float(value)))


def blocks_strength(severity: str) -> float:
    """Strength of a conflict → requirement ``blocks`` edge."""
    return SEVERITY_STRENGTH.get(severity, SEVERITY_STRENGTH["minor"])


def sources_mentioning(name: str, sources: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sources whose content mentions ``name`` (case-insensitive)."""
    needle = (name or "").lower().strip()
    if not needle:
        return []
    return [s for s in sources if needle in (s.get("content") or "").lower()]


def stakeholder_source_links(
    stakeholder_id: str, name: str, sources: list[dict[str, Any]]
) -> tuple[list[str], list[PlannedLink]]:
    """
    Resolve which sources reference a stakeholder.

    Returns:
        Tuple of (source ids to record on the stakeholder, ``mentioned_in``
        links). When no source mentions the name, every source is recorded
        and a single weaker link points at the first source.
    """
    mentioning = sources_mentioning(name, sources)
    if mentioning:
        source_ids = [str(s["id"]) for s in mentioning]
        link_sources = mentioning
        strength = STAKEHOLDER_MENTION_STRENGTH
    else:
        source_ids = [str(s["id"]) for s in sources]
        link_sources = sources[:1]
        strength = STAKEHOLDER_FALLBACK_STRENGTH

    links = [
        PlannedLink("stakeholder", str(stakeholder_id), "source", str(s["id"]), MENTIONED_IN, strength)
        for s in link_sources
    ]
    return source_ids, links


def match_source_by_excerpt(excerpt: str | None, sources: list[dict[str, Any]]) -> dict[str, Any] | None:
    """
    Find the source an excerpt was quoted from.

    Matches the first 100 characters of the excerpt against each source's
    content. Falls back to the first source; None only when there are none.
    """
    if not sources:
        return None

    text = (excerpt or "").lower()
    if len(text) > MIN_EXCERPT_MATCH_CHARS:
        prefix = text[:EXCERPT_MATCH_CHARS]
        for source in sources:
            if prefix in (source.get("content") or "").lower():
                return source

    return sources[0]


def requirement_stakeholder_links(
    requirements: list[dict[str, Any]], stakeholders: list[dict[str, Any]]
) -> list[PlannedLink]:
    """``involves`` edges for stakeholders named in a requirement's excerpt or listed on it."""
    links = []
    for req in requirements:
        excerpt = (req.get("source_excerpt") or "").lower()
        listed = {str(sid) for sid in req.get("stakeholder_ids") or []}
        for sh in stakeholders:
            name = (sh.get("name") or "").lower()
            if str(sh["id"]) in listed or (name and name in excerpt):
                links.append(
                    PlannedLink(
                        "requirement", str(req["id"]), "stakeholder", str(sh["id"]),
                        INVOLVES, INVOLVES_STRENGTH,
                    )
                )
    return links


def _decision_mentions(decision_text: str, req: dict[str, Any]) -> bool:
    title = (req.get("title") or "").lower()
    human_id = (req.get("requirement_id") or "").lower()
    if len(title) > 5 and title[:30] in decision_text:
        return True
    return bool(human_id) and human_id in decision_text


def decision_requirement_links(
    decisions: list[dict[str, Any]], requirements: list[dict[str, Any]]
) -> list[PlannedLink]:
    """
    ``affects`` edges from decisions to requirements.

    A decision whose title/description mentions a requirement's title or id
    links to it at 0.75. A decision matching nothing links at 0.5 to the
    requirement with the best keyword overlap (first requirement on ties).
    """
    if not requirements:
        return []

    links = []
    for dec in decisions:
        text = f"{dec.get('description') or ''} {dec.get('title') or ''}".lower()
        impacted = {str(r) for r in dec.get("impacted_requirement_ids") or []}

        matched = [
            r for r in requirements
            if str(r["id"]) in impacted or _decision_mentions(text, r)
        ]
        if matched:
            links.extend(
                PlannedLink("decision", str(dec["id"]), "requirement", str(r["id"]),
                            AFFECTS, AFFECTS_MATCH_STRENGTH)
                for r in matched
            )
            continue

        best = requirements[0]
        best_score = 0
        for req in requirements:
            words = (req.get("title") or "").lower().split()
            score = sum(1 for w in words if len(w) > 3 and w in text)
            if score > best_score:
                best, best_score = req, score
        links.append(
            PlannedLink("decision", str(dec["id"]), "requirement", str(best["id"]),
                        AFFECTS, AFFECTS_FALLBACK_STRENGTH)
        )
    return links


def conflict_requirement_links(conflicts: list[dict[str, Any]]) -> list[PlannedLink]:
    """``blocks`` edges for every requirement a conflict references."""
    return [
        PlannedLink("conflict", str(c["id"]), "requirement", str(req_id),
                    BLOCKS, blocks_strength(c.get("severity") or "minor"))
        for c in conflicts
        for req_id in c.get("requirement_ids") or []
    ]


# ============================================================================
# Graph projection
# ============================================================================


def _node(
    id_: Any, type_: str, label: str, category: Any = None, priority: Any = None, confidence: Any = None
) -> dict[str, Any]:
    return {
        "id": str(id_),
        "type": type_,
        "label": label,
        "category": category,
        "priority": priority,
        "confidence": confidence,
    }


def _prefixed(human_id: str | None, title: str | None) -> str:
    return f"{human_id}: {title}" if human_id else (title or "")


def build_graph(
    requirements: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
    sources: list[dict[str, Any]],
    decisions: list[dict[str, Any]],
    conflicts: list[dict[str, Any]],
    links: list[dict[str, Any]],
) -> dict[str, list[dict[str, Any]]]:
    """
    Project stored rows into display nodes and edges.

    Returns:
        ``{"nodes": [...], "edges": [...]}``; both empty for an empty project
    """
    nodes = [
        *(
            _node(r["id"], "requirement", _prefixed(r.get("requirement_id"), r.get("title")),
                  r.get("category"), r.get("priority"), r.get("confidence_score"))
            for r in requirements
        ),
        *(_node(s["id"], "stakeholder", s.get("name") or "", s.get("influence")) for s in stakeholders),
        *(
            _node(s["id"], "source", s.get("name") or "", s.get("type"),
                  confidence=s.get("relevance_score"))
            for s in sources
        ),
        *(
            _node(d["id"], "decision", _prefixed(d.get("decision_id"), d.get("title")),
                  decision_type_label(d.get("type")), confidence=d.get("confidence_score"))
            for d in decisions
        ),
        *(
            _node(c["id"], "conflict", _prefixed(c.get("conflict_id"), c.get("title")), c.get("severity"))
            for c in conflicts
        ),
    ]

    edges = [
        {
            "source": str(link["from_id"]),
            "target": str(link["to_id"]),
            "relationship": link.get("relationship"),
            "strength": link.get("strength"),
        }
        for link in links
    ]

    return {"nodes": nodes, "edges": edges}
