"""CRUD operations for work entities: tasks, sessions, tickets and impact analyses."""

from __future__ import annotations

import json
import sqlite3
import uuid

from intelhub.errors import NotFound, check_choice
from intelhub.models import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    WORK_SESSION_STATUSES,
    ImpactAnalysis,
    Task,
    Ticket,
    WorkSession,
    now_iso,
)
from intelhub.training.applicability import normalize_criteria, normalize_risks, to_json

_TASK_UPDATABLE = (
    "title", "description", "status", "priority", "task_type", "module_id",
    "assigned_agent", "progress", "notes", "acceptance_criteria",
)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class Repository:
    """Data access layer for the work entities the reference graph connects."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # --- Tasks ---

    def save_task(self, task: Task) -> Task:
        """Insert or replace a task."""
        check_choice("status", task.status, TASK_STATUSES)
        check_choice("priority", task.priority, TASK_PRIORITIES)
        self._conn.execute(
            """INSERT OR REPLACE INTO tasks
            (id, project_id, title, description, status, priority, task_type, module_id,
             assigned_agent, progress, notes, acceptance_criteria, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                task.id,
                task.project_id,
                task.title,
                task.description,
                task.status,
                task.priority,
                task.task_type,
                task.module_id,
                task.assigned_agent,
                task.progress,
                task.notes,
                to_json(task.acceptance_criteria),
                task.created_at,
                task.updated_at,
            ),
        )
        self._conn.commit()
        return task

    def create_task(
        self,
        project_id: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        task_type: str = "feature",
        module_id: str | None = None,
        assigned_agent: str | None = None,
        acceptance_criteria: list | None = None,
    ) -> Task:
        task = Task(
            id=new_id("task"),
            project_id=project_id,
            title=title,
            description=description,
            priority=priority,
            task_type=task_type,
            module_id=module_id,
            assigned_agent=assigned_agent,
            acceptance_criteria=normalize_criteria(acceptance_criteria),
        )
        return self.save_task(task)

    def get_task(self, task_id: str) -> Task | None:
        row = self._conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def update_task(self, task_id: str, **changes) -> Task:
        """Apply field changes to a task. Unknown fields are ignored, None means unchanged."""
        task = self.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)
        for key in _TASK_UPDATABLE:
            value = changes.get(key)
            if value is None:
                continue
            if key == "acceptance_criteria":
                value = normalize_criteria(value)
            setattr(task, key, value)
        task.progress = max(0, min(100, int(task.progress)))
        task.updated_at = now_iso()
        return self.save_task(task)

    def list_tasks(
        self,
        project_id: str | None = None,
        status: str | None = None,
        module_id: str | None = None,
        limit: int = 100,
    ) -> list[Task]:
        query = "SELECT * FROM tasks WHERE 1=1"
        params: list = []

        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        if module_id:
            query += " AND module_id = ?"
            params.append(module_id)

        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    # --- Work sessions ---

    def save_session(self, session: WorkSession) -> WorkSession:
        check_choice("status", session.status, WORK_SESSION_STATUSES)
        self._conn.execute(
            """INSERT OR REPLACE INTO work_sessions (id, workspace_path, initial_prompt, status, created_at)
            VALUES (?, ?, ?, ?, ?)""",
            (
                session.id,
                session.workspace_path,
                session.initial_prompt,
                session.status,
                session.created_at,
            ),
        )
        self._conn.commit()
        return session

    def get_session(self, session_id: str) -> WorkSession | None:
        row = self._conn.execute(
            "SELECT * FROM work_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return WorkSession(**dict(row)) if row else None

    # --- Tickets ---

    def save_ticket(self, ticket: Ticket) -> Ticket:
        self._conn.execute(
            """INSERT OR REPLACE INTO tickets (id, project_id, title, description, status, priority, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                ticket.id,
                ticket.project_id,
                ticket.title,
                ticket.description,
                ticket.status,
                ticket.priority,
                ticket.created_at,
            ),
        )
        self._conn.commit()
        return ticket

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        row = self._conn.execute("SELECT * FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
        return Ticket(**dict(row)) if row else None

    # --- Impact analyses ---

    def save_impact(self, impact: ImpactAnalysis) -> ImpactAnalysis:
        impact.risks = normalize_risks(impact.risks)
        self._conn.execute(
            """INSERT OR REPLACE INTO impact_analyses
            (id, task_id, change_type, status, risks, blockers, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                impact.id,
                impact.task_id,
                impact.change_type,
                impact.status,
                json.dumps(impact.risks),
                json.dumps(impact.blockers),
                impact.created_at,
            ),
        )
        self._conn.commit()
        return impact

    def get_impact(self, impact_id: str) -> ImpactAnalysis | None:
        row = self._conn.execute(
            "SELECT * FROM impact_analyses WHERE id = ?", (impact_id,)
        ).fetchone()
        return self._row_to_impact(row) if row else None

    def get_impact_by_task(self, task_id: str) -> ImpactAnalysis | None:
        row = self._conn.execute(
            "SELECT * FROM impact_analyses WHERE task_id = ? ORDER BY created_at DESC LIMIT 1",
            (task_id,),
        ).fetchone()
        return self._row_to_impact(row) if row else None

    # --- Stats ---

    def get_stats(self) -> dict:
        """Get summary counts across all stored record types."""
        tables = {
            "tasks": "tasks",
            "sessions": "work_sessions",
            "tickets": "tickets",
            "impact_analyses": "impact_analyses",
            "training_sessions": "training_sessions",
            "incidents": "incidents",
            "lessons": "lessons",
            "skills": "skills",
            "rules": "rules",
            "feedback": "training_feedback",
            "references": "entity_references",
        }
        return {
            key: self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for key, table in tables.items()
        }

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        d = dict(row)
        d["acceptance_criteria"] = normalize_criteria(d.get("acceptance_criteria"))
        return Task(**d)

    def _row_to_impact(self, row: sqlite3.Row) -> ImpactAnalysis:
        d = dict(row)
        d["risks"] = normalize_risks(d.get("risks"))
        try:
            d["blockers"] = json.loads(d["blockers"]) if d.get("blockers") else []
        except json.JSONDecodeError:
            d["blockers"] = []
        return ImpactAnalysis(**d)
