"""Tool handlers: camelCase tool arguments in, ``{"success": ...}`` dicts out.

All components share the single connection handed to ``ToolHandlers``. Errors
from the core are converted to ``{"success": False, "error": ...}`` here and
never propagate to the transport.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, is_dataclass
from typing import Any, Callable

from intelhub.config import Config
from intelhub.context.builder import ContextBuilder
from intelhub.errors import ConstraintViolation, IntelHubError, NotFound, check_choice
from intelhub.graph.references import DIRECTIONS, ReferenceGraph
from intelhub.models import CONTEXT_SECTIONS
from intelhub.storage.repository import Repository
from intelhub.storage.training import TrainingRepository
from intelhub.training.pipeline import TrainingPipeline, build_training_prompt

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if is_dataclass(value):
        return asdict(value)
    return value


def _required(args: dict, key: str) -> Any:
    value = args.get(key)
    if value is None or value == "":
        raise ConstraintViolation(key, "is required")
    return value


class ToolHandlers:
    """One method per tool. ``dispatch`` is the only entry point the server uses."""

    def __init__(self, conn: sqlite3.Connection, config: Config | None = None) -> None:
        self.config = config or Config.load()
        self._conn = conn
        self.repo = Repository(conn)
        self.training_repo = TrainingRepository(conn)
        self.graph = ReferenceGraph(conn)
        self.pipeline = TrainingPipeline(self.training_repo)
        self.builder = ContextBuilder(
            self.repo, self.training_repo, self.graph, self.config.chars_per_token
        )
        self._handlers: dict[str, Callable[[dict], dict]] = {
            "entity_context": self.entity_context,
            "task_start_with_context": self.task_start_with_context,
            "task_complete_with_context": self.task_complete_with_context,
            "entity_link": self.entity_link,
            "entity_unlink": self.entity_unlink,
            "entity_references": self.entity_references,
            "task_create": self.task_create,
            "task_get": self.task_get,
            "task_list": self.task_list,
            "training_session_get": self.training_session_get,
            "training_session_list": self.training_session_list,
            "incident_create": self.incident_create,
            "incident_update": self.incident_update,
            "incident_list": self.incident_list,
            "lesson_create": self.lesson_create,
            "lesson_approve": self.lesson_approve,
            "lesson_update": self.lesson_update,
            "lesson_list": self.lesson_list,
            "skill_create": self.skill_create,
            "skill_update": self.skill_update,
            "skill_list": self.skill_list,
            "rule_create": self.rule_create,
            "rule_update": self.rule_update,
            "rule_list": self.rule_list,
            "rule_check": self.rule_check,
            "training_context_get": self.training_context_get,
            "training_feedback_submit": self.training_feedback_submit,
        }

    def close(self) -> None:
        self._conn.close()

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def dispatch(self, name: str, arguments: dict | None) -> dict:
        """Route a tool call to its handler and convert failures to error results."""
        handler = self._handlers.get(name)
        if handler is None:
            return {"success": False, "error": f"Unknown tool: {name}"}
        try:
            return handler(arguments or {})
        except IntelHubError as e:
            logger.info(f"Tool {name} rejected: {e.message}")
            return {"success": False, "error": e.message, "code": e.code}
        except sqlite3.Error as e:
            logger.error(f"Tool {name} failed with a database error: {e}")
            return {"success": False, "error": f"Database error: {e}"}

    def _project(self, args: dict) -> str:
        return args.get("projectPath") or self.config.project_path

    # --- Context ---

    def entity_context(self, args: dict) -> dict:
        result = self.builder.build(
            _required(args, "entityType"),
            _required(args, "entityId"),
            format=args.get("format") or "claude",
            sections=args.get("sections"),
            max_tokens=args.get("maxTokens") or self.config.max_tokens,
            depth=args.get("depth") or 1,
        )
        return {
            "success": True,
            "context": result.formatted,
            "entity": _dump(result.entity),
            "relatedCounts": result.related_counts,
            "truncated": result.truncated,
            "droppedSections": result.dropped_sections,
            "generatedAt": result.generated_at,
        }

    def task_start_with_context(self, args: dict) -> dict:
        task_id = _required(args, "taskId")
        task = self.repo.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)
        result = self.builder.build(
            "task",
            task_id,
            format=args.get("format") or "claude",
            sections=list(CONTEXT_SECTIONS),
            max_tokens=args.get("maxTokens") or self.config.max_tokens,
            depth=1,
        )
        return {
            "success": True,
            "task": _dump(task),
            "context": result.formatted,
            "relatedCounts": result.related_counts,
            "truncated": result.truncated,
        }

    def task_complete_with_context(self, args: dict) -> dict:
        """Complete a task and record the work artifacts as graph edges.

        Only newly created edges are reported; edges that already existed are
        left as they are.
        """
        task_id = _required(args, "taskId")
        session_id = args.get("sessionId")
        task = self.repo.update_task(
            task_id, status="completed", progress=100, notes=args.get("notes")
        )

        links: list[tuple[str, str, str, str, str]] = []
        if session_id:
            links.append(("task", task_id, "session", session_id, "implemented_by"))
        for knowledge_id in args.get("knowledgeCreated") or []:
            if session_id:
                links.append(("session", session_id, "knowledge", knowledge_id, "creates"))
            links.append(("task", task_id, "knowledge", knowledge_id, "requires_context"))
        if session_id:
            for lesson_id in args.get("lessonsLearned") or []:
                links.append(("session", session_id, "lesson", lesson_id, "creates"))

        created: list[str] = []
        for source_type, source_id, target_type, target_id, relationship in links:
            _, is_new = self.graph.create_reference(
                source_type, source_id, target_type, target_id, relationship, created_by="system"
            )
            if is_new:
                created.append(f"{source_type}:{source_id} -> {target_type}:{target_id} ({relationship})")

        return {
            "success": True,
            "task": _dump(task),
            "referencesCreated": created,
            "summary": f"Task completed. {len(created)} entity references created.",
        }

    # --- References ---

    def entity_link(self, args: dict) -> dict:
        ref, created = self.graph.create_reference(
            _required(args, "sourceType"),
            _required(args, "sourceId"),
            _required(args, "targetType"),
            _required(args, "targetId"),
            _required(args, "relationship"),
            created_by=args.get("createdBy") or "agent",
            metadata=args.get("metadata"),
        )
        return {"success": True, "reference": _dump(ref), "created": created}

    def entity_unlink(self, args: dict) -> dict:
        deleted = self.graph.delete_reference(
            _required(args, "sourceType"),
            _required(args, "sourceId"),
            _required(args, "targetType"),
            _required(args, "targetId"),
            _required(args, "relationship"),
        )
        if not deleted:
            return {"success": False, "error": "Reference not found"}
        return {"success": True}

    def entity_references(self, args: dict) -> dict:
        entity_type = _required(args, "entityType")
        entity_id = _required(args, "entityId")
        direction = check_choice("direction", args.get("direction") or "both", DIRECTIONS)
        relationships = args.get("relationshipTypes")
        max_depth = args.get("maxDepth") or 1

        if max_depth > 1:
            refs = [hop.reference for hop in self.graph.traverse(entity_type, entity_id, max_depth)]
            if relationships:
                refs = [r for r in refs if r.relationship in relationships]
            return {"success": True, "references": _dump(refs), "total": len(refs), "depth": max_depth}

        refs = self.graph.references_for(
            entity_type, entity_id, direction, relationships, limit=args.get("limit") or 100
        )
        total = self.graph.count_references(entity_type, entity_id, direction, relationships)
        return {"success": True, "references": _dump(refs), "total": total}

    # --- Tasks ---

    def task_create(self, args: dict) -> dict:
        task = self.repo.create_task(
            project_id=args.get("projectId") or self.config.project_path,
            title=_required(args, "title"),
            description=args.get("description") or "",
            priority=args.get("priority") or "medium",
            task_type=args.get("taskType") or "feature",
            module_id=args.get("moduleId"),
            assigned_agent=args.get("assignedAgent"),
            acceptance_criteria=args.get("acceptanceCriteria"),
        )
        return {"success": True, "task": _dump(task)}

    def task_get(self, args: dict) -> dict:
        task_id = _required(args, "taskId")
        task = self.repo.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)
        return {"success": True, "task": _dump(task)}

    def task_list(self, args: dict) -> dict:
        tasks = self.repo.list_tasks(
            project_id=args.get("projectId"),
            status=args.get("status"),
            module_id=args.get("moduleId"),
            limit=args.get("limit") or 100,
        )
        return {"success": True, "tasks": _dump(tasks), "total": len(tasks)}

    # --- Training sessions ---

    def training_session_get(self, args: dict) -> dict:
        session = self.pipeline.get_session(_required(args, "moduleId"), self._project(args))
        return {"success": True, "session": _dump(session)}

    def training_session_list(self, args: dict) -> dict:
        sessions = self.pipeline.list_sessions(args.get("projectPath"), args.get("status"))
        return {"success": True, "sessions": _dump(sessions), "total": len(sessions)}

    # --- Incidents ---

    def incident_create(self, args: dict) -> dict:
        result = self.pipeline.create_incident(
            project_path=self._project(args),
            module_id=_required(args, "moduleId"),
            type=_required(args, "type"),
            severity=_required(args, "severity"),
            title=_required(args, "title"),
            description=args.get("description"),
            context=args.get("context"),
        )
        response = {
            "success": True,
            "incident": _dump(result.incident),
            "message": f"Incident created: {result.incident.id}",
        }
        if result.suggestion:
            response["suggestion"] = result.suggestion
        return response

    def incident_update(self, args: dict) -> dict:
        incident = self.pipeline.update_incident(
            _required(args, "incidentId"),
            status=args.get("status"),
            resolution=args.get("resolution"),
            severity=args.get("severity"),
        )
        return {"success": True, "incident": _dump(incident)}

    def incident_list(self, args: dict) -> dict:
        incidents = self.pipeline.list_incidents(
            project_path=args.get("projectPath"),
            module_id=args.get("moduleId"),
            status=args.get("status"),
            type=args.get("type"),
            severity=args.get("severity"),
        )
        return {"success": True, "incidents": _dump(incidents), "total": len(incidents)}

    # --- Lessons ---

    def lesson_create(self, args: dict) -> dict:
        lesson = self.pipeline.create_lesson(
            project_path=self._project(args),
            module_id=_required(args, "moduleId"),
            title=_required(args, "title"),
            problem=_required(args, "problem"),
            root_cause=_required(args, "rootCause"),
            solution=_required(args, "solution"),
            incident_ids=args.get("incidentIds"),
            applicability=args.get("applicability"),
        )
        return {"success": True, "lesson": _dump(lesson), "message": f"Lesson created: {lesson.id}"}

    def lesson_approve(self, args: dict) -> dict:
        approver = _required(args, "approver")
        lesson = self.pipeline.approve_lesson(_required(args, "lessonId"), approver)
        return {
            "success": True,
            "lesson": _dump(lesson),
            "message": f"Lesson approved by {approver}",
            "suggestion": self.pipeline.skill_suggestion(lesson),
        }

    def lesson_update(self, args: dict) -> dict:
        lesson = self.pipeline.update_lesson(
            _required(args, "lessonId"),
            status=args.get("status"),
            title=args.get("title"),
            problem=args.get("problem"),
            root_cause=args.get("rootCause"),
            solution=args.get("solution"),
            applicability=args.get("applicability"),
        )
        return {"success": True, "lesson": _dump(lesson)}

    def lesson_list(self, args: dict) -> dict:
        lessons = self.pipeline.list_lessons(
            project_path=args.get("projectPath"),
            module_id=args.get("moduleId"),
            status=args.get("status"),
        )
        return {"success": True, "lessons": _dump(lessons), "total": len(lessons)}

    # --- Skills ---

    def skill_create(self, args: dict) -> dict:
        skill = self.pipeline.create_skill(
            project_path=self._project(args),
            name=_required(args, "name"),
            type=_required(args, "type"),
            content=_required(args, "content"),
            description=args.get("description"),
            lesson_ids=args.get("lessonIds"),
            trigger=args.get("trigger"),
            applicability=args.get("applicability"),
        )
        return {"success": True, "skill": _dump(skill), "message": f"Skill created: {skill.name}"}

    def skill_update(self, args: dict) -> dict:
        skill = self.pipeline.update_skill(
            _required(args, "skillId"),
            name=args.get("name"),
            description=args.get("description"),
            content=args.get("content"),
            status=args.get("status"),
            trigger=args.get("trigger"),
            applicability=args.get("applicability"),
        )
        return {"success": True, "skill": _dump(skill)}

    def skill_list(self, args: dict) -> dict:
        skills = self.pipeline.list_skills(
            project_path=args.get("projectPath"),
            status=args.get("status"),
            type=args.get("type"),
        )
        return {"success": True, "skills": _dump(skills), "total": len(skills)}

    # --- Rules ---

    def rule_create(self, args: dict) -> dict:
        rule = self.pipeline.create_rule(
            project_path=self._project(args),
            name=_required(args, "name"),
            level=_required(args, "level"),
            enforcement=_required(args, "enforcement"),
            content=_required(args, "content"),
            description=args.get("description"),
            skill_ids=args.get("skillIds"),
            applicability=args.get("applicability"),
        )
        return {"success": True, "rule": _dump(rule), "message": f"Rule created: {rule.name}"}

    def rule_update(self, args: dict) -> dict:
        rule = self.pipeline.update_rule(
            _required(args, "ruleId"),
            name=args.get("name"),
            description=args.get("description"),
            content=args.get("content"),
            level=args.get("level"),
            enforcement=args.get("enforcement"),
            status=args.get("status"),
            applicability=args.get("applicability"),
        )
        return {"success": True, "rule": _dump(rule)}

    def rule_list(self, args: dict) -> dict:
        rules = self.pipeline.list_rules(
            project_path=args.get("projectPath"),
            status=args.get("status"),
            level=args.get("level"),
            enforcement=args.get("enforcement"),
        )
        return {"success": True, "rules": _dump(rules), "total": len(rules)}

    def rule_check(self, args: dict) -> dict:
        rules = self.pipeline.check_rules(
            self._project(args),
            module_id=args.get("moduleId"),
            role=args.get("role"),
            task_type=args.get("taskType"),
        )
        return {
            "success": True,
            "rules": _dump(rules),
            "total": len(rules),
            "message": f"Found {len(rules)} applicable rules" if rules else "No applicable rules found",
        }

    # --- Context + feedback ---

    def training_context_get(self, args: dict) -> dict:
        context = self.pipeline.get_training_context(
            _required(args, "moduleId"),
            self._project(args),
            role=args.get("role"),
            task_type=args.get("taskType"),
        )
        return {
            "success": True,
            "context": _dump(context),
            "contextPrompt": build_training_prompt(context),
            "summary": {
                "skills": len(context.skills),
                "rules": len(context.rules),
                "lessons": len(context.recent_lessons),
                "incidents": len(context.recent_incidents),
            },
        }

    def training_feedback_submit(self, args: dict) -> dict:
        entity_type = _required(args, "entityType")
        entity_id = _required(args, "entityId")
        outcome = _required(args, "outcome")
        feedback = self.pipeline.submit_feedback(
            entity_type, entity_id, outcome, task_id=args.get("taskId"), notes=args.get("notes")
        )
        return {
            "success": True,
            "feedback": _dump(feedback),
            "message": f"Feedback recorded: {outcome} for {entity_type} {entity_id}",
        }
