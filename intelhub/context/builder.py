"""Context assembly: root entity -> graph neighbourhood -> buckets -> formatted, budgeted text."""

from __future__ import annotations

import logging
import sqlite3

from intelhub.config import DEFAULT_CHARS_PER_TOKEN, DEFAULT_MAX_TOKENS
from intelhub.context.formatting import format_claude, format_compact, format_json
from intelhub.errors import ConstraintViolation, IntelHubError, NotFound, check_choice
from intelhub.graph.references import Hop, ReferenceGraph
from intelhub.models import (
    CONTEXT_FORMATS,
    CONTEXT_SECTIONS,
    ENTITY_TYPES,
    ContextResult,
    EntitySummary,
    RelatedEntities,
    Task,
)
from intelhub.storage.repository import Repository
from intelhub.storage.training import TrainingRepository
from intelhub.training.applicability import is_applicable

logger = logging.getLogger(__name__)

MAX_DEPTH = 5
SESSION_TITLE_LENGTH = 80


class ContextBuilder:
    """Assembles a prioritized summary of an entity and everything linked to it."""

    def __init__(
        self,
        repo: Repository,
        training_repo: TrainingRepository,
        graph: ReferenceGraph,
        chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
    ) -> None:
        self._repo = repo
        self._training = training_repo
        self._graph = graph
        self._chars_per_token = chars_per_token

    def build(
        self,
        entity_type: str,
        entity_id: str,
        format: str = "claude",
        sections: list[str] | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        depth: int = 1,
    ) -> ContextResult:
        """Build context for one entity.

        Raises NotFound when the root does not exist. Lookup failures on
        neighbours only shrink the result.
        """
        check_choice("entityType", entity_type, ENTITY_TYPES)
        check_choice("format", format, CONTEXT_FORMATS)
        sections = list(sections) if sections else list(CONTEXT_SECTIONS)
        for section in sections:
            check_choice("sections", section, CONTEXT_SECTIONS)
        if max_tokens <= 0:
            raise ConstraintViolation("maxTokens", "must be positive")
        depth = max(1, min(int(depth), MAX_DEPTH))

        entity = self.load_summary(entity_type, entity_id)
        if entity is None:
            raise NotFound(entity_type, entity_id)

        try:
            hops = self._graph.traverse(entity_type, entity_id, max_depth=depth)
        except sqlite3.Error as e:
            logger.warning(f"Traversal from {entity_type}:{entity_id} failed: {e}")
            hops = []

        related = self._collect(entity, hops)
        if isinstance(entity.record, Task):
            self._filter_governance(entity.record, related)
            self._enrich_task(entity.record, related)

        references = [hop.reference for hop in hops]
        result = ContextResult(
            entity=entity,
            related=related,
            references=references,
            related_counts=related.counts(),
        )

        if format == "compact":
            result.formatted = format_compact(entity, related)
        else:
            render = format_claude if format == "claude" else format_json
            result.formatted, result.dropped_sections = render(
                entity, related, references, sections, max_tokens, self._chars_per_token
            )
            result.truncated = bool(result.dropped_sections)

        logger.debug(
            f"Built {format} context for {entity_type}:{entity_id} "
            f"({len(references)} references, dropped={result.dropped_sections})"
        )
        return result

    def load_summary(
        self,
        entity_type: str,
        entity_id: str,
        relationship: str | None = None,
        depth: int = 0,
    ) -> EntitySummary | None:
        """Resolve an entity to its display summary, or None if it does not exist."""
        summary = EntitySummary(
            type=entity_type, id=entity_id, title=entity_id, relationship=relationship, depth=depth
        )

        if entity_type in ("knowledge", "capability"):
            # Stored as documents outside the database; only the id is known here
            return summary

        if entity_type == "task":
            record = self._repo.get_task(entity_id)
            title = record.title if record else None
        elif entity_type == "session":
            record = self._repo.get_session(entity_id)
            title = record and (
                (record.initial_prompt or "")[:SESSION_TITLE_LENGTH] or f"Session {entity_id[:12]}"
            )
        elif entity_type == "ticket":
            record = self._repo.get_ticket(entity_id)
            title = record.title if record else None
        elif entity_type == "impact":
            record = self._repo.get_impact(entity_id)
            title = record and f"Impact Analysis ({record.change_type})"
        elif entity_type == "incident":
            record = self._training.get_incident(entity_id)
            title = record.title if record else None
        elif entity_type == "lesson":
            record = self._training.get_lesson(entity_id)
            title = record.title if record else None
        elif entity_type == "skill":
            record = self._training.get_skill(entity_id)
            title = record.name if record else None
        elif entity_type == "rule":
            record = self._training.get_rule(entity_id)
            title = record.name if record else None
        else:
            return None

        if record is None:
            return None
        summary.title = title
        summary.status = record.status
        summary.record = record
        return summary

    def _collect(self, root: EntitySummary, hops: list[Hop]) -> RelatedEntities:
        """Bucket each reached entity once, tagged with the edge that first reached it."""
        related = RelatedEntities()
        seen = {(root.type, root.id)}
        for hop in hops:
            key = (hop.entity_type, hop.entity_id)
            if key in seen:
                continue
            seen.add(key)
            try:
                summary = self.load_summary(
                    hop.entity_type, hop.entity_id, hop.reference.relationship, hop.depth
                )
            except (sqlite3.Error, IntelHubError) as e:
                logger.warning(f"Skipping {hop.entity_type}:{hop.entity_id} in context: {e}")
                continue
            if summary is None:
                logger.debug(f"Dangling reference to {hop.entity_type}:{hop.entity_id}")
                continue
            related.bucket_for(summary.type).append(summary)
        return related

    def _filter_governance(self, task: Task, related: RelatedEntities) -> None:
        """Keep only active rules and skills that apply to the task's module, role and type."""
        related.rules = [
            s for s in related.rules
            if is_applicable(s.record, task.module_id, task.assigned_agent, task.task_type)
        ]
        related.skills = [
            s for s in related.skills
            if is_applicable(s.record, task.module_id, task.assigned_agent, task.task_type)
        ]

    def _enrich_task(self, task: Task, related: RelatedEntities) -> None:
        """Pull in an impact analysis keyed by task id when no edge links one."""
        if related.impact:
            return
        try:
            impact = self._repo.get_impact_by_task(task.id)
        except sqlite3.Error as e:
            logger.warning(f"Impact lookup for task {task.id} failed: {e}")
            return
        if impact is not None:
            related.impact.append(EntitySummary(
                type="impact",
                id=impact.id,
                title=f"Impact Analysis ({impact.change_type})",
                status=impact.status,
                record=impact,
            ))
