"""Core data models for intelhub."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ENTITY_TYPES = (
    "task", "session", "knowledge", "capability", "impact",
    "ticket", "incident", "lesson", "rule", "skill",
)

RELATIONSHIPS = (
    "converts_to", "implemented_by", "analyzed_by", "requires_context",
    "governed_by", "creates", "discovers", "describes", "codified_from",
    "originates_from", "generates", "enables", "depends_on", "feeds_into",
    "blocks", "related_to", "mentions",
)

TASK_STATUSES = ("pending", "in_progress", "completed", "blocked", "failed", "cancelled")
TASK_PRIORITIES = ("low", "medium", "high")
WORK_SESSION_STATUSES = ("active", "completed", "error")

TRAINING_SESSION_STATUSES = ("active", "archived")
INCIDENT_TYPES = ("mistake", "failure", "confusion", "slow", "other")
INCIDENT_SEVERITIES = ("low", "medium", "high", "critical")
INCIDENT_STATUSES = ("open", "analyzed", "lesson_created", "closed")
LESSON_STATUSES = ("draft", "reviewed", "approved", "archived")
SKILL_TYPES = ("procedure", "checklist", "template", "rule")
SKILL_STATUSES = ("draft", "active", "deprecated")
TRIGGER_WHEN = ("always", "task_start", "task_end", "before_commit", "on_error")
RULE_LEVELS = ("must", "should", "may")
RULE_ENFORCEMENTS = ("manual", "hook", "gate")
RULE_STATUSES = ("active", "deprecated")
FEEDBACK_ENTITY_TYPES = ("skill", "rule")
FEEDBACK_OUTCOMES = ("helped", "ignored", "hindered")


def now_iso() -> str:
    return datetime.now().isoformat()


@dataclass
class EntityReference:
    id: str
    source_type: str  # one of ENTITY_TYPES
    source_id: str
    target_type: str
    target_id: str
    relationship: str  # one of RELATIONSHIPS
    created_by: str = "agent"  # "user" | "agent" | "system" | "agent:<session-id>"
    created_at: str = field(default_factory=now_iso)
    metadata: dict | None = None

    def other_end(self, entity_type: str, entity_id: str) -> tuple[str, str]:
        """Return the (type, id) on the opposite side of the edge from the given entity."""
        if self.source_type == entity_type and self.source_id == entity_id:
            return self.target_type, self.target_id
        return self.source_type, self.source_id


# --- Governance value objects ---


@dataclass
class Applicability:
    modules: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    task_types: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.modules or self.roles or self.task_types)


@dataclass
class TriggerConfig:
    when: str = "always"  # one of TRIGGER_WHEN
    conditions: list[str] = field(default_factory=list)


@dataclass
class IncidentContext:
    task_id: str | None = None
    agent_role: str | None = None
    files: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    error_message: str | None = None


@dataclass
class AcceptanceCriterion:
    description: str
    completed: bool = False


# --- Work entities ---


@dataclass
class Task:
    id: str
    project_id: str
    title: str
    description: str = ""
    status: str = "pending"
    priority: str = "medium"
    task_type: str = "feature"  # "feature" | "bugfix" | "refactor" | ...
    module_id: str | None = None
    assigned_agent: str | None = None  # doubles as the role for governance matching
    progress: int = 0
    notes: str | None = None
    acceptance_criteria: list[AcceptanceCriterion] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)


@dataclass
class WorkSession:
    id: str
    workspace_path: str
    initial_prompt: str | None = None
    status: str = "active"
    created_at: str = field(default_factory=now_iso)


@dataclass
class Ticket:
    id: str
    project_id: str
    title: str
    description: str = ""
    status: str = "new"
    priority: str = "medium"
    created_at: str = field(default_factory=now_iso)


@dataclass
class ImpactAnalysis:
    id: str
    change_type: str  # "feature" | "refactor" | "bugfix" | ...
    task_id: str | None = None
    status: str = "pending"
    risks: list[dict] = field(default_factory=list)  # [{"severity": ..., "title": ...}]
    blockers: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)


# --- Training pipeline ---


@dataclass
class TrainingSession:
    id: str
    module_id: str
    project_path: str = ""
    status: str = "active"
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)


@dataclass
class Incident:
    id: str
    session_id: str
    type: str
    severity: str
    title: str
    description: str | None = None
    context: IncidentContext | None = None
    status: str = "open"
    resolution: str | None = None
    created_at: str = field(default_factory=now_iso)


@dataclass
class Lesson:
    id: str
    session_id: str
    title: str
    problem: str
    root_cause: str
    solution: str
    incident_ids: list[str] = field(default_factory=list)
    applicability: Applicability | None = None
    status: str = "draft"
    approved_by: str | None = None
    approved_at: str | None = None
    created_at: str = field(default_factory=now_iso)


@dataclass
class Skill:
    id: str
    project_path: str
    name: str
    type: str
    content: str
    description: str | None = None
    lesson_ids: list[str] = field(default_factory=list)
    trigger: TriggerConfig | None = None
    applicability: Applicability | None = None
    status: str = "draft"
    usage_count: int = 0
    last_used: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)


@dataclass
class Rule:
    id: str
    project_path: str
    name: str
    level: str
    enforcement: str
    content: str
    description: str | None = None
    skill_ids: list[str] = field(default_factory=list)
    applicability: Applicability | None = None
    status: str = "active"
    created_at: str = field(default_factory=now_iso)


@dataclass
class TrainingFeedback:
    id: str
    entity_type: str  # "skill" | "rule"
    entity_id: str
    outcome: str  # "helped" | "ignored" | "hindered"
    task_id: str | None = None
    notes: str | None = None
    created_at: str = field(default_factory=now_iso)


@dataclass
class TrainingContext:
    module_id: str
    project_path: str
    skills: list[Skill] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    recent_lessons: list[Lesson] = field(default_factory=list)
    recent_incidents: list[Incident] = field(default_factory=list)


# --- Context assembly ---

CONTEXT_FORMATS = ("claude", "json", "compact")
CONTEXT_SECTIONS = ("capability", "knowledge", "impact", "governance", "history", "references")


@dataclass
class EntitySummary:
    type: str
    id: str
    title: str
    status: str | None = None
    relationship: str | None = None  # edge through which the entity was first reached
    depth: int = 0
    record: Any = None  # the stored record, when the type has one


@dataclass
class RelatedEntities:
    tasks: list[EntitySummary] = field(default_factory=list)
    sessions: list[EntitySummary] = field(default_factory=list)
    knowledge: list[EntitySummary] = field(default_factory=list)  # knowledge and capability
    impact: list[EntitySummary] = field(default_factory=list)
    rules: list[EntitySummary] = field(default_factory=list)
    skills: list[EntitySummary] = field(default_factory=list)
    tickets: list[EntitySummary] = field(default_factory=list)
    incidents: list[EntitySummary] = field(default_factory=list)
    lessons: list[EntitySummary] = field(default_factory=list)

    def bucket_for(self, entity_type: str) -> list[EntitySummary]:
        if entity_type in ("knowledge", "capability"):
            return self.knowledge
        return {
            "task": self.tasks,
            "session": self.sessions,
            "impact": self.impact,
            "rule": self.rules,
            "skill": self.skills,
            "ticket": self.tickets,
            "incident": self.incidents,
            "lesson": self.lessons,
        }[entity_type]

    def counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in self.__dataclass_fields__}


@dataclass
class ContextResult:
    entity: EntitySummary
    related: RelatedEntities
    references: list[EntityReference] = field(default_factory=list)
    formatted: str = ""
    related_counts: dict[str, int] = field(default_factory=dict)
    truncated: bool = False
    dropped_sections: list[str] = field(default_factory=list)
    generated_at: str = field(default_factory=now_iso)
