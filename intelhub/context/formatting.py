"""Render assembled context as markdown, JSON or a one-line summary, within a token budget.

Output is built from whole sections. When the rendered text is over budget the
lowest-priority section is dropped and the rest re-rendered, so a section is
either present in full or absent. The entity header is always kept.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict

from intelhub.models import EntityReference, EntitySummary, RelatedEntities

# Higher survives longer under a tight budget
SECTION_PRIORITY = {
    "capability": 6,
    "knowledge": 5,
    "governance": 4,
    "impact": 3,
    "history": 2,
    "references": 1,
}

SECTION_SEPARATOR = "\n\n---\n\n"
MAX_LISTED_REFERENCES = 20
MAX_LISTED_RISKS = 5


def estimate_tokens(text: str, chars_per_token: float) -> int:
    """Approximate token count from character length."""
    return math.ceil(len(text) / chars_per_token)


# --- Markdown ---


def format_header(entity: EntitySummary) -> str:
    lines = [
        f"# Entity Context: {entity.title}",
        f"**Type:** {entity.type} | **ID:** {entity.id}",
    ]
    if entity.status:
        lines.append(f"**Status:** {entity.status}")

    if entity.type == "task" and entity.record is not None:
        task = entity.record
        if task.description:
            lines.append(f"\n## Description\n{task.description}")
        if task.acceptance_criteria:
            lines.append("\n## Acceptance Criteria")
            for i, criterion in enumerate(task.acceptance_criteria, 1):
                mark = "[x]" if criterion.completed else "[ ]"
                lines.append(f"{mark} {i}. {criterion.description}")

    return "\n".join(lines)


def _item_line(item: EntitySummary) -> str:
    status = f" [{item.status}]" if item.status else ""
    rel = f" ({item.relationship})" if item.relationship else ""
    return f"- **{item.type}:** {item.title}{status}{rel}"


def _list_block(title: str, items: list[EntitySummary]) -> str | None:
    if not items:
        return None
    return "\n".join([f"## {title}", *(_item_line(item) for item in items)])


def _impact_block(items: list[EntitySummary]) -> str | None:
    if not items:
        return None
    lines = ["## Impact Analysis"]
    for item in items:
        impact = item.record
        if impact is None:
            lines.append(_item_line(item))
            continue
        lines.append(f"**Status:** {impact.status} | **Change Type:** {impact.change_type}")
        if impact.blockers:
            lines.append("**Blockers:**")
            lines.extend(f"  - {blocker}" for blocker in impact.blockers)
        if impact.risks:
            lines.append("**Risks:**")
            for risk in impact.risks[:MAX_LISTED_RISKS]:
                label = risk.get("title") or risk.get("description") or "Unknown risk"
                lines.append(f"  - [{risk.get('severity', 'unknown')}] {label}")
    return "\n".join(lines)


def _rules_block(items: list[EntitySummary]) -> str | None:
    if not items:
        return None
    lines = ["## Rules"]
    for item in items:
        rule = item.record
        lines.append(f"- **[{rule.level.upper()}]** {rule.name}: {rule.content[:200]}")
    return "\n".join(lines)


def _skills_block(items: list[EntitySummary]) -> str | None:
    if not items:
        return None
    lines = ["## Skills"]
    for item in items:
        skill = item.record
        lines.append(f"- **{skill.name}** ({skill.type}): {skill.description or skill.content[:150]}")
    return "\n".join(lines)


def _lessons_block(items: list[EntitySummary]) -> str | None:
    if not items:
        return None
    lines = ["## Lessons"]
    for item in items:
        lesson = item.record
        lines.append(f"- **{lesson.title}** [{lesson.status}]: {lesson.solution}")
    return "\n".join(lines)


def _references_block(references: list[EntityReference]) -> str | None:
    if not references:
        return None
    lines = ["## Entity References"]
    for ref in references[:MAX_LISTED_REFERENCES]:
        lines.append(
            f"- {ref.source_type}:{ref.source_id} --[{ref.relationship}]--> {ref.target_type}:{ref.target_id}"
        )
    if len(references) > MAX_LISTED_REFERENCES:
        lines.append(f"... and {len(references) - MAX_LISTED_REFERENCES} more references")
    return "\n".join(lines)


def _join_blocks(*blocks: str | None) -> str | None:
    present = [b for b in blocks if b]
    return "\n\n".join(present) if present else None


def _split_knowledge(related: RelatedEntities) -> tuple[list[EntitySummary], list[EntitySummary]]:
    capabilities = [item for item in related.knowledge if item.type == "capability"]
    knowledge = [item for item in related.knowledge if item.type != "capability"]
    return capabilities, knowledge


def markdown_sections(
    related: RelatedEntities,
    references: list[EntityReference],
    sections: list[str],
) -> list[tuple[str, str]]:
    """Render each requested, populated section; highest priority first."""
    capabilities, knowledge = _split_knowledge(related)
    renderers = {
        "capability": lambda: _list_block("Capabilities", capabilities),
        "knowledge": lambda: _list_block("Related Knowledge", knowledge),
        "impact": lambda: _impact_block(related.impact),
        "governance": lambda: _join_blocks(
            _rules_block(related.rules),
            _skills_block(related.skills),
            _lessons_block(related.lessons),
            _list_block("Incidents", related.incidents),
        ),
        "history": lambda: _join_blocks(
            _list_block("Session History", related.sessions),
            _list_block("Related Tasks", related.tasks),
            _list_block("Tickets", related.tickets),
        ),
        "references": lambda: _references_block(references),
    }
    parts = []
    for section in sorted(sections, key=lambda s: -SECTION_PRIORITY[s]):
        content = renderers[section]()
        if content:
            parts.append((section, content))
    return parts


def fit_sections(
    parts: list,
    render,
    max_tokens: int,
    chars_per_token: float,
) -> tuple[str, list[str]]:
    """Drop whole sections, lowest priority first, until ``render(parts)`` fits.

    ``parts`` is a list of ``(section, payload)`` pairs; ``render`` turns the
    surviving pairs into text. Returns the text and the dropped section names.
    """
    kept = sorted(parts, key=lambda p: -SECTION_PRIORITY[p[0]])
    dropped: list[str] = []
    text = render(kept)
    while kept and estimate_tokens(text, chars_per_token) > max_tokens:
        section, _ = kept.pop()
        dropped.append(section)
        text = render(kept)
    return text, dropped


def format_claude(
    entity: EntitySummary,
    related: RelatedEntities,
    references: list[EntityReference],
    sections: list[str],
    max_tokens: int,
    chars_per_token: float,
) -> tuple[str, list[str]]:
    header = format_header(entity)
    parts = markdown_sections(related, references, sections)
    return fit_sections(
        parts,
        lambda kept: SECTION_SEPARATOR.join([header, *(content for _, content in kept)]),
        max_tokens,
        chars_per_token,
    )


# --- JSON ---


def _summaries(items: list[EntitySummary]) -> list[dict]:
    return [asdict(item) for item in items]


def json_sections(
    related: RelatedEntities,
    references: list[EntityReference],
    sections: list[str],
) -> list[tuple[str, dict]]:
    capabilities, knowledge = _split_knowledge(related)
    payloads = {
        "capability": lambda: {"capability": _summaries(capabilities)},
        "knowledge": lambda: {"knowledge": _summaries(knowledge)},
        "impact": lambda: {"impact": _summaries(related.impact)},
        "governance": lambda: {
            "rules": _summaries(related.rules),
            "skills": _summaries(related.skills),
            "lessons": _summaries(related.lessons),
            "incidents": _summaries(related.incidents),
        },
        "history": lambda: {
            "sessions": _summaries(related.sessions),
            "tasks": _summaries(related.tasks),
            "tickets": _summaries(related.tickets),
        },
        "references": lambda: {"references": [asdict(ref) for ref in references]},
    }
    return [(section, payloads[section]()) for section in sections]


def format_json(
    entity: EntitySummary,
    related: RelatedEntities,
    references: list[EntityReference],
    sections: list[str],
    max_tokens: int,
    chars_per_token: float,
) -> tuple[str, list[str]]:
    root = asdict(entity)

    def render(kept: list[tuple[str, dict]]) -> str:
        body: dict = {"entity": root, "related": {}}
        for section, payload in kept:
            if section == "references":
                body["references"] = payload["references"]
            else:
                body["related"].update(payload)
        return json.dumps(body, indent=2, default=str)

    return fit_sections(json_sections(related, references, sections), render, max_tokens, chars_per_token)


# --- Compact ---


def format_compact(entity: EntitySummary, related: RelatedEntities) -> str:
    """One line: root identity plus non-zero neighbour counts."""
    counts = [f"{count} {name}" for name, count in related.counts().items() if count]
    return (
        f'{entity.type}:{entity.id} "{entity.title}" [{entity.status or "unknown"}]'
        f" | Connected: {', '.join(counts) or 'none'}"
    )
