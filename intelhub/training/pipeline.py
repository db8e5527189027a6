"""Training pipeline: incidents -> lessons -> skills -> rules, with usage feedback.

Every state change is an explicit call; nothing transitions implicitly. For
example creating a lesson from incidents leaves those incidents ``open`` until
the caller updates them.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from intelhub.errors import ConstraintViolation, DuplicateName, NotFound, check_choice
from intelhub.models import (
    FEEDBACK_ENTITY_TYPES,
    FEEDBACK_OUTCOMES,
    INCIDENT_SEVERITIES,
    INCIDENT_STATUSES,
    INCIDENT_TYPES,
    LESSON_STATUSES,
    RULE_ENFORCEMENTS,
    RULE_LEVELS,
    RULE_STATUSES,
    SKILL_STATUSES,
    SKILL_TYPES,
    TRAINING_SESSION_STATUSES,
    Incident,
    Lesson,
    Rule,
    Skill,
    TrainingContext,
    TrainingFeedback,
    TrainingSession,
    now_iso,
)
from intelhub.storage.repository import new_id
from intelhub.storage.training import TrainingRepository
from intelhub.training.applicability import (
    is_applicable,
    normalize_applicability,
    normalize_incident_context,
    normalize_trigger,
)
from intelhub.training.keywords import is_similar

logger = logging.getLogger(__name__)

# Cluster size (the new incident included) before a lesson is suggested
SIMILAR_INCIDENTS_FOR_LESSON = 2

MAX_CONTEXT_SKILLS = 5
MAX_CONTEXT_RULES = 5
MAX_CONTEXT_LESSONS = 3
MAX_CONTEXT_INCIDENTS = 5


@dataclass
class IncidentResult:
    incident: Incident
    suggestion: dict | None = None


def _incident_text(incident: Incident) -> str:
    return f"{incident.title} {incident.description or ''}"


def _require(field: str, value: str | None) -> str:
    if not value or not value.strip():
        raise ConstraintViolation(field, "is required")
    return value


class TrainingPipeline:
    """State machines and queries for the governance knowledge pipeline."""

    def __init__(self, repo: TrainingRepository) -> None:
        self._repo = repo

    # --- Sessions ---

    def get_session(self, module_id: str, project_path: str = "") -> TrainingSession:
        """Get-or-create: one session per (module, project)."""
        return self._repo.get_or_create_training_session(
            _require("moduleId", module_id), project_path or ""
        )

    def list_sessions(
        self, project_path: str | None = None, status: str | None = None
    ) -> list[TrainingSession]:
        if status:
            check_choice("status", status, TRAINING_SESSION_STATUSES)
        return self._repo.list_training_sessions(project_path, status)

    def _session_id_for(self, module_id: str | None, project_path: str | None) -> str | None:
        """Resolve a module filter to its session id without creating one."""
        session = self._repo.get_training_session_by_module(module_id, project_path or "")
        return session.id if session else None

    # --- Incidents ---

    def create_incident(
        self,
        project_path: str,
        module_id: str,
        type: str,
        severity: str,
        title: str,
        description: str | None = None,
        context=None,
    ) -> IncidentResult:
        """Record an incident and suggest a lesson when it keeps recurring."""
        session = self.get_session(module_id, project_path)
        incident = Incident(
            id=new_id("incident"),
            session_id=session.id,
            type=check_choice("type", type, INCIDENT_TYPES),
            severity=check_choice("severity", severity, INCIDENT_SEVERITIES),
            title=_require("title", title),
            description=description,
            context=normalize_incident_context(context),
        )
        self._repo.insert_incident(incident)

        suggestion = None
        try:
            suggestion = self._suggest_lesson(incident, module_id)
        except sqlite3.Error as e:
            logger.warning(f"Skipping lesson suggestion for incident {incident.id}: {e}")

        return IncidentResult(incident=incident, suggestion=suggestion)

    def _suggest_lesson(self, incident: Incident, module_id: str) -> dict | None:
        text = _incident_text(incident)
        similar = [
            other for other in self._repo.list_incidents(session_id=incident.session_id, status="open")
            if other.id != incident.id and is_similar(_incident_text(other), text)
        ]
        # The new incident counts toward its own cluster
        cluster_size = len(similar) + 1
        if not similar or cluster_size < SIMILAR_INCIDENTS_FOR_LESSON:
            return None
        return {
            "action": "create_lesson",
            "reason": (
                f'Found {cluster_size} similar incidents for module "{module_id}". '
                "Consider creating a lesson to capture the pattern."
            ),
            "similarIncidentIds": [other.id for other in similar],
        }

    def update_incident(
        self,
        incident_id: str,
        status: str | None = None,
        resolution: str | None = None,
        severity: str | None = None,
    ) -> Incident:
        incident = self._repo.get_incident(incident_id)
        if incident is None:
            raise NotFound("incident", incident_id)
        if status:
            incident.status = check_choice("status", status, INCIDENT_STATUSES)
        if severity:
            incident.severity = check_choice("severity", severity, INCIDENT_SEVERITIES)
        if resolution is not None:
            incident.resolution = resolution
        return self._repo.update_incident(incident)

    def list_incidents(
        self,
        project_path: str | None = None,
        module_id: str | None = None,
        status: str | None = None,
        type: str | None = None,
        severity: str | None = None,
    ) -> list[Incident]:
        session_id = None
        if module_id:
            session_id = self._session_id_for(module_id, project_path)
            if session_id is None:
                return []
        return self._repo.list_incidents(session_id, status, type, severity)

    # --- Lessons ---

    def create_lesson(
        self,
        project_path: str,
        module_id: str,
        title: str,
        problem: str,
        root_cause: str,
        solution: str,
        incident_ids: list[str] | None = None,
        applicability=None,
    ) -> Lesson:
        session = self.get_session(module_id, project_path)
        lesson = Lesson(
            id=new_id("lesson"),
            session_id=session.id,
            title=_require("title", title),
            problem=_require("problem", problem),
            root_cause=_require("rootCause", root_cause),
            solution=_require("solution", solution),
            incident_ids=list(incident_ids or []),
            applicability=normalize_applicability(applicability),
        )
        return self._repo.insert_lesson(lesson)

    def approve_lesson(self, lesson_id: str, approver: str) -> Lesson:
        """Mark a lesson approved. Approving again overwrites the approver stamp."""
        lesson = self._repo.get_lesson(lesson_id)
        if lesson is None:
            raise NotFound("lesson", lesson_id)
        lesson.status = "approved"
        lesson.approved_by = _require("approver", approver)
        lesson.approved_at = now_iso()
        return self._repo.update_lesson(lesson)

    def update_lesson(
        self,
        lesson_id: str,
        status: str | None = None,
        title: str | None = None,
        problem: str | None = None,
        root_cause: str | None = None,
        solution: str | None = None,
        applicability=None,
    ) -> Lesson:
        lesson = self._repo.get_lesson(lesson_id)
        if lesson is None:
            raise NotFound("lesson", lesson_id)
        if status:
            lesson.status = check_choice("status", status, LESSON_STATUSES)
        lesson.title = title or lesson.title
        lesson.problem = problem or lesson.problem
        lesson.root_cause = root_cause or lesson.root_cause
        lesson.solution = solution or lesson.solution
        if applicability is not None:
            lesson.applicability = normalize_applicability(applicability)
        return self._repo.update_lesson(lesson)

    @staticmethod
    def skill_suggestion(lesson: Lesson) -> dict:
        """Template for turning an approved lesson into a reusable skill."""
        return {
            "action": "create_skill",
            "reason": "Lesson approved. Consider creating a reusable skill from the solution.",
            "skillTemplate": {
                "name": f"Skill: {lesson.title}",
                "type": "procedure",
                "lessonIds": [lesson.id],
                "content": f"## Problem\n{lesson.problem}\n\n## Solution\n{lesson.solution}",
            },
        }

    def list_lessons(
        self,
        project_path: str | None = None,
        module_id: str | None = None,
        status: str | None = None,
    ) -> list[Lesson]:
        session_id = None
        if module_id:
            session_id = self._session_id_for(module_id, project_path)
            if session_id is None:
                return []
        return self._repo.list_lessons(session_id, status)

    # --- Skills ---

    def create_skill(
        self,
        project_path: str,
        name: str,
        type: str,
        content: str,
        description: str | None = None,
        lesson_ids: list[str] | None = None,
        trigger=None,
        applicability=None,
    ) -> Skill:
        project_path = project_path or ""
        if self._repo.get_skill_by_name(name, project_path):
            raise DuplicateName("skill", name)
        skill = Skill(
            id=new_id("skill"),
            project_path=project_path,
            name=_require("name", name),
            type=check_choice("type", type, SKILL_TYPES),
            content=_require("content", content),
            description=description,
            lesson_ids=list(lesson_ids or []),
            trigger=normalize_trigger(trigger),
            applicability=normalize_applicability(applicability),
        )
        return self._repo.insert_skill(skill)

    def update_skill(
        self,
        skill_id: str,
        name: str | None = None,
        description: str | None = None,
        content: str | None = None,
        status: str | None = None,
        trigger=None,
        applicability=None,
    ) -> Skill:
        """Edit a skill. Any status may be set directly (draft -> active -> deprecated)."""
        skill = self._repo.get_skill(skill_id)
        if skill is None:
            raise NotFound("skill", skill_id)
        if status:
            skill.status = check_choice("status", status, SKILL_STATUSES)
        skill.name = name or skill.name
        skill.content = content or skill.content
        if description is not None:
            skill.description = description
        if trigger is not None:
            skill.trigger = normalize_trigger(trigger)
        if applicability is not None:
            skill.applicability = normalize_applicability(applicability)
        return self._repo.update_skill(skill)

    def list_skills(
        self,
        project_path: str | None = None,
        status: str | None = None,
        type: str | None = None,
    ) -> list[Skill]:
        return self._repo.list_skills(project_path, status, type)

    def applicable_skills(
        self,
        project_path: str,
        module_id: str | None = None,
        role: str | None = None,
        task_type: str | None = None,
    ) -> list[Skill]:
        return [
            skill for skill in self._repo.list_skills(project_path or "", status="active")
            if is_applicable(skill, module_id, role, task_type)
        ]

    # --- Rules ---

    def create_rule(
        self,
        project_path: str,
        name: str,
        level: str,
        enforcement: str,
        content: str,
        description: str | None = None,
        skill_ids: list[str] | None = None,
        applicability=None,
    ) -> Rule:
        project_path = project_path or ""
        if self._repo.get_rule_by_name(name, project_path):
            raise DuplicateName("rule", name)
        rule = Rule(
            id=new_id("rule"),
            project_path=project_path,
            name=_require("name", name),
            level=check_choice("level", level, RULE_LEVELS),
            enforcement=check_choice("enforcement", enforcement, RULE_ENFORCEMENTS),
            content=_require("content", content),
            description=description,
            skill_ids=list(skill_ids or []),
            applicability=normalize_applicability(applicability),
        )
        return self._repo.insert_rule(rule)

    def update_rule(
        self,
        rule_id: str,
        name: str | None = None,
        description: str | None = None,
        content: str | None = None,
        level: str | None = None,
        enforcement: str | None = None,
        status: str | None = None,
        applicability=None,
    ) -> Rule:
        rule = self._repo.get_rule(rule_id)
        if rule is None:
            raise NotFound("rule", rule_id)
        if status:
            rule.status = check_choice("status", status, RULE_STATUSES)
        if level:
            rule.level = check_choice("level", level, RULE_LEVELS)
        if enforcement:
            rule.enforcement = check_choice("enforcement", enforcement, RULE_ENFORCEMENTS)
        rule.name = name or rule.name
        rule.content = content or rule.content
        if description is not None:
            rule.description = description
        if applicability is not None:
            rule.applicability = normalize_applicability(applicability)
        return self._repo.update_rule(rule)

    def list_rules(
        self,
        project_path: str | None = None,
        status: str | None = None,
        level: str | None = None,
        enforcement: str | None = None,
    ) -> list[Rule]:
        return self._repo.list_rules(project_path, status, level, enforcement)

    def check_rules(
        self,
        project_path: str,
        module_id: str | None = None,
        role: str | None = None,
        task_type: str | None = None,
    ) -> list[Rule]:
        """Active rules of the project whose applicability covers the query."""
        return [
            rule for rule in self._repo.list_rules(project_path or "", status="active")
            if is_applicable(rule, module_id, role, task_type)
        ]

    # --- Context ---

    def get_training_context(
        self,
        module_id: str,
        project_path: str = "",
        role: str | None = None,
        task_type: str | None = None,
    ) -> TrainingContext:
        project_path = project_path or ""
        context = TrainingContext(
            module_id=module_id,
            project_path=project_path,
            skills=self.applicable_skills(project_path, module_id, role, task_type)[:MAX_CONTEXT_SKILLS],
            rules=self.check_rules(project_path, module_id, role, task_type)[:MAX_CONTEXT_RULES],
        )
        session_id = self._session_id_for(module_id, project_path)
        if session_id:
            context.recent_lessons = self._repo.list_lessons(session_id, "approved")[:MAX_CONTEXT_LESSONS]
            context.recent_incidents = self._repo.list_incidents(session_id, "open")[:MAX_CONTEXT_INCIDENTS]
        return context

    # --- Feedback ---

    def submit_feedback(
        self,
        entity_type: str,
        entity_id: str,
        outcome: str,
        task_id: str | None = None,
        notes: str | None = None,
    ) -> TrainingFeedback:
        """Append a feedback record. Skill feedback also bumps the skill's usage count."""
        check_choice("entityType", entity_type, FEEDBACK_ENTITY_TYPES)
        check_choice("outcome", outcome, FEEDBACK_OUTCOMES)

        if entity_type == "skill":
            if self._repo.increment_skill_usage(entity_id) is None:
                raise NotFound("skill", entity_id)
        elif self._repo.get_rule(entity_id) is None:
            raise NotFound("rule", entity_id)

        feedback = TrainingFeedback(
            id=new_id("feedback"),
            entity_type=entity_type,
            entity_id=entity_id,
            outcome=outcome,
            task_id=task_id,
            notes=notes,
        )
        return self._repo.insert_feedback(feedback)


def build_training_prompt(context: TrainingContext) -> str:
    """Render a training context as markdown for injection into an agent prompt."""
    lines: list[str] = []

    if context.skills or context.rules or context.recent_lessons:
        lines.append("## Project-Specific Training")
        lines.append("")

    if context.skills:
        lines.append("### Active Skills")
        for skill in context.skills:
            summary = skill.description or f"{skill.content[:100]}..."
            lines.append(f"- **{skill.name}** ({skill.type}): {summary}")
        lines.append("")

    if context.rules:
        lines.append("### Mandatory Rules")
        for rule in context.rules:
            lines.append(f"- **{rule.level.upper()}**: {rule.name} - {rule.content}")
        lines.append("")

    if context.recent_lessons:
        lines.append("### Recent Lessons Learned")
        for lesson in context.recent_lessons:
            lines.append(f"- **{lesson.title}**: {lesson.solution}")
        lines.append("")

    return "\n".join(lines)
