"""Tests for intelhub.context (builder + formatting)."""

from __future__ import annotations

import json
import sqlite3
from unittest.mock import MagicMock

import pytest

from intelhub.context.builder import ContextBuilder
from intelhub.context.formatting import (
    SECTION_SEPARATOR,
    estimate_tokens,
    fit_sections,
    format_compact,
)
from intelhub.errors import ConstraintViolation, NotFound
from intelhub.graph.references import ReferenceGraph
from intelhub.models import EntitySummary, RelatedEntities, Task
from intelhub.training.pipeline import TrainingPipeline

PROJECT = "/work/acme-webapp"


@pytest.fixture
def linked_task(
    sample_task: Task, sample_session, graph: ReferenceGraph, pipeline: TrainingPipeline
) -> Task:
    """A task linked to a session, a capability, a knowledge doc and some governance."""
    graph.create_reference("task", sample_task.id, "session", sample_session.id, "implemented_by")
    graph.create_reference("capability", "auth-login", "task", sample_task.id, "enables")
    graph.create_reference("task", sample_task.id, "knowledge", "docs/auth/rate-limits.md", "requires_context")

    applies = pipeline.create_rule(
        PROJECT, "Log auth failures", "must", "hook", "Every rejected login is logged",
        applicability={"modules": ["auth"]},
    )
    other_module = pipeline.create_rule(
        PROJECT, "Idempotent webhooks", "must", "manual", "Webhooks must be idempotent",
        applicability={"modules": ["billing"]},
    )
    skill = pipeline.create_skill(PROJECT, "Rate limit recipe", "procedure", "Use the token bucket helper")
    pipeline.update_skill(skill.id, status="active")
    draft = pipeline.create_skill(PROJECT, "Unreviewed", "procedure", "x")

    for record, kind in ((applies, "rule"), (other_module, "rule"), (skill, "skill"), (draft, "skill")):
        graph.create_reference("task", sample_task.id, kind, record.id, "governed_by")
    return sample_task


class TestBuild:
    def test_missing_root(self, builder: ContextBuilder):
        with pytest.raises(NotFound, match="Task task-nope not found"):
            builder.build("task", "task-nope")

    def test_invalid_arguments(self, builder: ContextBuilder, sample_task: Task):
        with pytest.raises(ConstraintViolation):
            builder.build("widget", "w1")
        with pytest.raises(ConstraintViolation):
            builder.build("task", sample_task.id, format="html")
        with pytest.raises(ConstraintViolation):
            builder.build("task", sample_task.id, sections=["gossip"])

    def test_buckets(self, builder: ContextBuilder, linked_task: Task):
        result = builder.build("task", linked_task.id)
        assert [s.title for s in result.related.sessions] == ["Implement login rate limiting"]
        assert {s.type for s in result.related.knowledge} == {"capability", "knowledge"}
        assert result.related_counts["knowledge"] == 2
        # knowledge/capability are placeholders titled by id
        titles = {s.title for s in result.related.knowledge}
        assert titles == {"auth-login", "docs/auth/rate-limits.md"}

    def test_relationship_tag(self, builder: ContextBuilder, linked_task: Task):
        result = builder.build("task", linked_task.id)
        assert result.related.sessions[0].relationship == "implemented_by"

    def test_governance_filtered_for_task(self, builder: ContextBuilder, linked_task: Task):
        result = builder.build("task", linked_task.id)
        assert [r.title for r in result.related.rules] == ["Log auth failures"]
        assert [s.title for s in result.related.skills] == ["Rate limit recipe"]

    def test_governance_unfiltered_for_other_roots(
        self, builder: ContextBuilder, graph: ReferenceGraph, pipeline: TrainingPipeline
    ):
        rule = pipeline.create_rule(PROJECT, "R", "must", "manual", "x", applicability={"modules": ["billing"]})
        graph.create_reference("capability", "payments", "rule", rule.id, "governed_by")
        result = builder.build("capability", "payments")
        assert [r.id for r in result.related.rules] == [rule.id]

    def test_dangling_reference_skipped(
        self, builder: ContextBuilder, graph: ReferenceGraph, sample_task: Task
    ):
        graph.create_reference("task", sample_task.id, "ticket", "ticket-gone", "related_to")
        result = builder.build("task", sample_task.id)
        assert result.related.tickets == []
        assert len(result.references) == 1

    def test_impact_enriched_by_task_id(self, builder: ContextBuilder, sample_impact, sample_task: Task):
        result = builder.build("task", sample_task.id)
        assert [i.id for i in result.related.impact] == [sample_impact.id]
        assert result.related.impact[0].title == "Impact Analysis (feature)"

    def test_depth(self, builder: ContextBuilder, graph: ReferenceGraph, repo):
        a = repo.create_task(PROJECT, "A")
        b = repo.create_task(PROJECT, "B")
        c = repo.create_task(PROJECT, "C")
        graph.create_reference("task", a.id, "task", b.id, "depends_on")
        graph.create_reference("task", b.id, "task", c.id, "depends_on")
        assert [t.id for t in builder.build("task", a.id).related.tasks] == [b.id]
        deep = builder.build("task", a.id, depth=2)
        assert {t.id: t.depth for t in deep.related.tasks} == {b.id: 1, c.id: 2}

    def test_cycle_does_not_list_root(self, builder: ContextBuilder, graph: ReferenceGraph, repo):
        a = repo.create_task(PROJECT, "A")
        b = repo.create_task(PROJECT, "B")
        graph.create_reference("task", a.id, "task", b.id, "depends_on")
        graph.create_reference("task", b.id, "task", a.id, "blocks")
        result = builder.build("task", a.id, depth=3)
        assert [t.id for t in result.related.tasks] == [b.id]


class TestDegradedPaths:
    def test_traversal_failure_gives_empty_context(self, repo, training_repo, sample_task: Task):
        graph = MagicMock()
        graph.traverse.side_effect = sqlite3.OperationalError("database is locked")
        builder = ContextBuilder(repo, training_repo, graph)
        result = builder.build("task", sample_task.id)
        assert result.references == []
        assert sum(result.related_counts.values()) == 0
        assert result.formatted.startswith("# Entity Context: Add rate limiting")

    def test_neighbour_failure_skips_only_that_entity(
        self, repo, training_repo, graph: ReferenceGraph, linked_task: Task
    ):
        failing_training = MagicMock(wraps=training_repo)
        failing_training.get_rule.side_effect = sqlite3.OperationalError("disk I/O error")
        builder = ContextBuilder(repo, failing_training, graph)
        result = builder.build("task", linked_task.id)
        assert result.related.rules == []
        assert len(result.related.sessions) == 1


class TestClaudeFormat:
    def test_header(self, builder: ContextBuilder, linked_task: Task):
        text = builder.build("task", linked_task.id).formatted
        lines = text.splitlines()
        assert lines[0] == "# Entity Context: Add rate limiting to the login endpoint"
        assert lines[1] == f"**Type:** task | **ID:** {linked_task.id}"
        assert "**Status:** pending" in text
        assert "[ ] 1. Returns 429 after 5 failed attempts" in text
        assert "[x] 2. Limits reset after 15 minutes" in text

    def test_sections_in_priority_order(self, builder: ContextBuilder, linked_task: Task):
        text = builder.build("task", linked_task.id).formatted
        parts = text.split(SECTION_SEPARATOR)
        headings = [p.splitlines()[0] for p in parts[1:]]
        assert headings == ["## Capabilities", "## Related Knowledge", "## Rules", "## Session History",
                            "## Entity References"]

    def test_section_filter(self, builder: ContextBuilder, linked_task: Task):
        text = builder.build("task", linked_task.id, sections=["governance"]).formatted
        assert "## Rules" in text
        assert "- **[MUST]** Log auth failures: Every rejected login is logged" in text
        assert "## Skills" in text
        assert "## Session History" not in text
        assert "## Entity References" not in text

    def test_impact_section(self, builder: ContextBuilder, sample_impact, sample_task: Task):
        text = builder.build("task", sample_task.id, sections=["impact"]).formatted
        assert "## Impact Analysis" in text
        assert "**Status:** completed | **Change Type:** feature" in text
        assert "  - Redis not provisioned in staging" in text
        assert "  - [high] Legitimate users locked out behind NAT" in text

    def test_impact_with_bare_string_risks(self, builder: ContextBuilder, db_conn, sample_task: Task):
        db_conn.execute(
            "INSERT INTO impact_analyses (id, task_id, change_type, status, risks, blockers, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            ("impact-raw", sample_task.id, "refactor", "pending",
             '["Session table lock", {"title": "Cache stampede"}]', "[]", "2026-01-01T00:00:00"),
        )
        db_conn.commit()
        text = builder.build("task", sample_task.id, sections=["impact"]).formatted
        assert "  - [unknown] Session table lock" in text
        assert "  - [unknown] Cache stampede" in text

    def test_references_overflow_line(self, builder: ContextBuilder, graph: ReferenceGraph, sample_task: Task):
        for i in range(25):
            graph.create_reference("task", sample_task.id, "knowledge", f"doc-{i}", "mentions")
        text = builder.build("task", sample_task.id, sections=["references"]).formatted
        assert "... and 5 more references" in text

    def test_truncation_drops_lowest_priority_first(self, builder: ContextBuilder, linked_task: Task):
        full = builder.build("task", linked_task.id)
        assert full.truncated is False

        # Budget that fits everything except the references section
        without_refs = builder.build("task", linked_task.id, sections=[
            "capability", "knowledge", "impact", "governance", "history",
        ]).formatted
        budget = estimate_tokens(without_refs, 4) + 1
        result = builder.build("task", linked_task.id, max_tokens=budget)
        assert result.truncated is True
        assert result.dropped_sections == ["references"]
        assert "## Capabilities" in result.formatted
        assert "## Entity References" not in result.formatted

    def test_tiny_budget_keeps_header_only(self, builder: ContextBuilder, linked_task: Task):
        result = builder.build("task", linked_task.id, max_tokens=1)
        assert result.dropped_sections == ["references", "history", "governance", "knowledge", "capability"]
        assert result.formatted.startswith("# Entity Context:")
        assert SECTION_SEPARATOR not in result.formatted

    def test_chars_per_token_is_configurable(self, repo, training_repo, graph, linked_task: Task):
        generous = ContextBuilder(repo, training_repo, graph, chars_per_token=1000)
        assert generous.build("task", linked_task.id, max_tokens=5).truncated is False


class TestJsonAndCompact:
    def test_json(self, builder: ContextBuilder, linked_task: Task):
        result = builder.build("task", linked_task.id, format="json")
        data = json.loads(result.formatted)
        assert data["entity"]["id"] == linked_task.id
        assert [r["title"] for r in data["related"]["rules"]] == ["Log auth failures"]
        assert len(data["related"]["capability"]) == 1
        assert len(data["references"]) == len(result.references)

    def test_json_budget_drops_references(self, builder: ContextBuilder, linked_task: Task):
        result = builder.build("task", linked_task.id, format="json", max_tokens=1)
        data = json.loads(result.formatted)
        assert "references" not in data
        assert data["related"] == {}
        assert result.dropped_sections[0] == "references"

    def test_compact(self, builder: ContextBuilder, linked_task: Task):
        text = builder.build("task", linked_task.id, format="compact").formatted
        assert text == (
            f'task:{linked_task.id} "Add rate limiting to the login endpoint" [pending]'
            " | Connected: 1 sessions, 2 knowledge, 1 rules, 1 skills"
        )

    def test_compact_without_neighbours(self):
        entity = EntitySummary(type="knowledge", id="docs/a.md", title="docs/a.md")
        assert format_compact(entity, RelatedEntities()) == (
            'knowledge:docs/a.md "docs/a.md" [unknown] | Connected: none'
        )


class TestFitSections:
    def test_keeps_all_when_under_budget(self):
        text, dropped = fit_sections(
            [("history", "h"), ("capability", "c")], lambda kept: "".join(p for _, p in kept), 10, 4
        )
        assert text == "ch"
        assert dropped == []

    def test_never_splits_a_section(self):
        parts = [("knowledge", "k" * 40), ("references", "r" * 40)]
        text, dropped = fit_sections(parts, lambda kept: "".join(p for _, p in kept), 12, 4)
        assert text == "k" * 40
        assert dropped == ["references"]
