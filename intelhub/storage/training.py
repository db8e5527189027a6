"""CRUD operations for training records: sessions, incidents, lessons, skills, rules, feedback."""

from __future__ import annotations

import json
import sqlite3

from intelhub.errors import DuplicateName
from intelhub.models import (
    Incident,
    Lesson,
    Rule,
    Skill,
    TrainingFeedback,
    TrainingSession,
    now_iso,
)
from intelhub.storage.repository import new_id
from intelhub.training.applicability import (
    normalize_applicability,
    normalize_incident_context,
    normalize_trigger,
    to_json,
)


def _json_list(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return []
    return data if isinstance(data, list) else []


class TrainingRepository:
    """Data access layer for the incident -> lesson -> skill -> rule pipeline."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # --- Training sessions ---

    def get_training_session(self, session_id: str) -> TrainingSession | None:
        row = self._conn.execute(
            "SELECT * FROM training_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return TrainingSession(**dict(row)) if row else None

    def get_training_session_by_module(
        self, module_id: str, project_path: str = ""
    ) -> TrainingSession | None:
        row = self._conn.execute(
            "SELECT * FROM training_sessions WHERE module_id = ? AND project_path = ?",
            (module_id, project_path),
        ).fetchone()
        return TrainingSession(**dict(row)) if row else None

    def get_or_create_training_session(
        self, module_id: str, project_path: str = ""
    ) -> TrainingSession:
        """Return the module's session, creating it on first use.

        The unique (project_path, module_id) index makes concurrent creation
        collapse onto a single row; the loser's INSERT is ignored.
        """
        existing = self.get_training_session_by_module(module_id, project_path)
        if existing:
            return existing

        now = now_iso()
        self._conn.execute(
            """INSERT OR IGNORE INTO training_sessions
            (id, project_path, module_id, status, created_at, updated_at)
            VALUES (?, ?, ?, 'active', ?, ?)""",
            (new_id("tsession"), project_path, module_id, now, now),
        )
        self._conn.commit()
        return self.get_training_session_by_module(module_id, project_path)

    def list_training_sessions(
        self, project_path: str | None = None, status: str | None = None
    ) -> list[TrainingSession]:
        query = "SELECT * FROM training_sessions WHERE 1=1"
        params: list = []
        if project_path is not None:
            query += " AND project_path = ?"
            params.append(project_path)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [TrainingSession(**dict(r)) for r in self._conn.execute(query, params).fetchall()]

    # --- Incidents ---

    def insert_incident(self, incident: Incident) -> Incident:
        self._conn.execute(
            """INSERT INTO incidents
            (id, session_id, type, severity, title, description, context, resolution, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                incident.id,
                incident.session_id,
                incident.type,
                incident.severity,
                incident.title,
                incident.description,
                to_json(incident.context),
                incident.resolution,
                incident.status,
                incident.created_at,
            ),
        )
        self._conn.commit()
        return incident

    def update_incident(self, incident: Incident) -> Incident:
        self._conn.execute(
            "UPDATE incidents SET status = ?, resolution = ?, severity = ? WHERE id = ?",
            (incident.status, incident.resolution, incident.severity, incident.id),
        )
        self._conn.commit()
        return incident

    def get_incident(self, incident_id: str) -> Incident | None:
        row = self._conn.execute("SELECT * FROM incidents WHERE id = ?", (incident_id,)).fetchone()
        return self._row_to_incident(row) if row else None

    def list_incidents(
        self,
        session_id: str | None = None,
        status: str | None = None,
        type: str | None = None,
        severity: str | None = None,
    ) -> list[Incident]:
        query = "SELECT * FROM incidents WHERE 1=1"
        params: list = []
        for column, value in (
            ("session_id", session_id),
            ("status", status),
            ("type", type),
            ("severity", severity),
        ):
            if value:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [self._row_to_incident(r) for r in self._conn.execute(query, params).fetchall()]

    # --- Lessons ---

    def insert_lesson(self, lesson: Lesson) -> Lesson:
        self._conn.execute(
            """INSERT INTO lessons
            (id, session_id, incident_ids, title, problem, root_cause, solution,
             applicability, status, approved_by, approved_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                lesson.id,
                lesson.session_id,
                json.dumps(lesson.incident_ids),
                lesson.title,
                lesson.problem,
                lesson.root_cause,
                lesson.solution,
                to_json(lesson.applicability),
                lesson.status,
                lesson.approved_by,
                lesson.approved_at,
                lesson.created_at,
            ),
        )
        self._conn.commit()
        return lesson

    def update_lesson(self, lesson: Lesson) -> Lesson:
        self._conn.execute(
            """UPDATE lessons SET title = ?, problem = ?, root_cause = ?, solution = ?,
            applicability = ?, status = ?, approved_by = ?, approved_at = ? WHERE id = ?""",
            (
                lesson.title,
                lesson.problem,
                lesson.root_cause,
                lesson.solution,
                to_json(lesson.applicability),
                lesson.status,
                lesson.approved_by,
                lesson.approved_at,
                lesson.id,
            ),
        )
        self._conn.commit()
        return lesson

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        row = self._conn.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
        return self._row_to_lesson(row) if row else None

    def list_lessons(
        self, session_id: str | None = None, status: str | None = None
    ) -> list[Lesson]:
        query = "SELECT * FROM lessons WHERE 1=1"
        params: list = []
        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [self._row_to_lesson(r) for r in self._conn.execute(query, params).fetchall()]

    # --- Skills ---

    def insert_skill(self, skill: Skill) -> Skill:
        try:
            self._conn.execute(
                """INSERT INTO skills
                (id, project_path, name, description, lesson_ids, type, content, trigger_config,
                 applicability, status, usage_count, last_used, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    skill.id,
                    skill.project_path,
                    skill.name,
                    skill.description,
                    json.dumps(skill.lesson_ids),
                    skill.type,
                    skill.content,
                    to_json(skill.trigger),
                    to_json(skill.applicability),
                    skill.status,
                    skill.usage_count,
                    skill.last_used,
                    skill.created_at,
                    skill.updated_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            if "name" in str(e):
                raise DuplicateName("skill", skill.name) from e
            raise
        self._conn.commit()
        return skill

    def update_skill(self, skill: Skill) -> Skill:
        skill.updated_at = now_iso()
        try:
            self._conn.execute(
                """UPDATE skills SET name = ?, description = ?, content = ?, trigger_config = ?,
                applicability = ?, status = ?, updated_at = ? WHERE id = ?""",
                (
                    skill.name,
                    skill.description,
                    skill.content,
                    to_json(skill.trigger),
                    to_json(skill.applicability),
                    skill.status,
                    skill.updated_at,
                    skill.id,
                ),
            )
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            if "name" in str(e):
                raise DuplicateName("skill", skill.name) from e
            raise
        self._conn.commit()
        return skill

    def increment_skill_usage(self, skill_id: str) -> Skill | None:
        now = now_iso()
        self._conn.execute(
            "UPDATE skills SET usage_count = usage_count + 1, last_used = ?, updated_at = ? WHERE id = ?",
            (now, now, skill_id),
        )
        self._conn.commit()
        return self.get_skill(skill_id)

    def get_skill(self, skill_id: str) -> Skill | None:
        row = self._conn.execute("SELECT * FROM skills WHERE id = ?", (skill_id,)).fetchone()
        return self._row_to_skill(row) if row else None

    def get_skill_by_name(self, name: str, project_path: str = "") -> Skill | None:
        row = self._conn.execute(
            "SELECT * FROM skills WHERE name = ? AND project_path = ?", (name, project_path)
        ).fetchone()
        return self._row_to_skill(row) if row else None

    def list_skills(
        self,
        project_path: str | None = None,
        status: str | None = None,
        type: str | None = None,
    ) -> list[Skill]:
        query = "SELECT * FROM skills WHERE 1=1"
        params: list = []
        if project_path is not None:
            query += " AND project_path = ?"
            params.append(project_path)
        if status:
            query += " AND status = ?"
            params.append(status)
        if type:
            query += " AND type = ?"
            params.append(type)
        query += " ORDER BY usage_count DESC, created_at DESC, rowid DESC"
        return [self._row_to_skill(r) for r in self._conn.execute(query, params).fetchall()]

    # --- Rules ---

    def insert_rule(self, rule: Rule) -> Rule:
        try:
            self._conn.execute(
                """INSERT INTO rules
                (id, project_path, name, description, skill_ids, level, enforcement, content,
                 applicability, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rule.id,
                    rule.project_path,
                    rule.name,
                    rule.description,
                    json.dumps(rule.skill_ids),
                    rule.level,
                    rule.enforcement,
                    rule.content,
                    to_json(rule.applicability),
                    rule.status,
                    rule.created_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            if "name" in str(e):
                raise DuplicateName("rule", rule.name) from e
            raise
        self._conn.commit()
        return rule

    def update_rule(self, rule: Rule) -> Rule:
        try:
            self._conn.execute(
                """UPDATE rules SET name = ?, description = ?, content = ?, level = ?,
                enforcement = ?, applicability = ?, status = ? WHERE id = ?""",
                (
                    rule.name,
                    rule.description,
                    rule.content,
                    rule.level,
                    rule.enforcement,
                    to_json(rule.applicability),
                    rule.status,
                    rule.id,
                ),
            )
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            if "name" in str(e):
                raise DuplicateName("rule", rule.name) from e
            raise
        self._conn.commit()
        return rule

    def get_rule(self, rule_id: str) -> Rule | None:
        row = self._conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
        return self._row_to_rule(row) if row else None

    def get_rule_by_name(self, name: str, project_path: str = "") -> Rule | None:
        row = self._conn.execute(
            "SELECT * FROM rules WHERE name = ? AND project_path = ?", (name, project_path)
        ).fetchone()
        return self._row_to_rule(row) if row else None

    def list_rules(
        self,
        project_path: str | None = None,
        status: str | None = None,
        level: str | None = None,
        enforcement: str | None = None,
    ) -> list[Rule]:
        query = "SELECT * FROM rules WHERE 1=1"
        params: list = []
        if project_path is not None:
            query += " AND project_path = ?"
            params.append(project_path)
        for column, value in (("status", status), ("level", level), ("enforcement", enforcement)):
            if value:
                query += f" AND {column} = ?"
                params.append(value)
        # must > should > may, then newest first
        query += (
            " ORDER BY CASE level WHEN 'must' THEN 0 WHEN 'should' THEN 1 ELSE 2 END,"
            " created_at DESC, rowid DESC"
        )
        return [self._row_to_rule(r) for r in self._conn.execute(query, params).fetchall()]

    # --- Feedback ---

    def insert_feedback(self, feedback: TrainingFeedback) -> TrainingFeedback:
        self._conn.execute(
            """INSERT INTO training_feedback (id, entity_type, entity_id, task_id, outcome, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                feedback.id,
                feedback.entity_type,
                feedback.entity_id,
                feedback.task_id,
                feedback.outcome,
                feedback.notes,
                feedback.created_at,
            ),
        )
        self._conn.commit()
        return feedback

    def list_feedback(
        self, entity_type: str | None = None, entity_id: str | None = None
    ) -> list[TrainingFeedback]:
        query = "SELECT * FROM training_feedback WHERE 1=1"
        params: list = []
        if entity_type:
            query += " AND entity_type = ?"
            params.append(entity_type)
        if entity_id:
            query += " AND entity_id = ?"
            params.append(entity_id)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [TrainingFeedback(**dict(r)) for r in self._conn.execute(query, params).fetchall()]

    # --- Row conversion ---

    def _row_to_incident(self, row: sqlite3.Row) -> Incident:
        d = dict(row)
        d["context"] = normalize_incident_context(d.get("context"))
        return Incident(**d)

    def _row_to_lesson(self, row: sqlite3.Row) -> Lesson:
        d = dict(row)
        d["incident_ids"] = _json_list(d.get("incident_ids"))
        d["applicability"] = normalize_applicability(d.get("applicability"))
        return Lesson(**d)

    def _row_to_skill(self, row: sqlite3.Row) -> Skill:
        d = dict(row)
        d["lesson_ids"] = _json_list(d.get("lesson_ids"))
        d["trigger"] = normalize_trigger(d.pop("trigger_config", None))
        d["applicability"] = normalize_applicability(d.get("applicability"))
        return Skill(**d)

    def _row_to_rule(self, row: sqlite3.Row) -> Rule:
        d = dict(row)
        d["skill_ids"] = _json_list(d.get("skill_ids"))
        d["applicability"] = normalize_applicability(d.get("applicability"))
        return Rule(**d)
