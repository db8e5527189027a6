"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    priority TEXT NOT NULL DEFAULT 'medium',
    task_type TEXT NOT NULL DEFAULT 'feature',
    module_id TEXT,
    assigned_agent TEXT,
    progress INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    acceptance_criteria TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS work_sessions (
    id TEXT PRIMARY KEY,
    workspace_path TEXT NOT NULL,
    initial_prompt TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS tickets (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'new',
    priority TEXT NOT NULL DEFAULT 'medium',
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS impact_analyses (
    id TEXT PRIMARY KEY,
    task_id TEXT,
    change_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    risks TEXT,
    blockers TEXT,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_module ON tasks(module_id);
CREATE INDEX IF NOT EXISTS idx_impact_task ON impact_analyses(task_id);
"""

TRAINING_SQL = """
CREATE TABLE IF NOT EXISTS training_sessions (
    id TEXT PRIMARY KEY,
    project_path TEXT NOT NULL DEFAULT '',
    module_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'archived')),
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS incidents (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES training_sessions(id) ON DELETE CASCADE,
    type TEXT NOT NULL CHECK(type IN ('mistake', 'failure', 'confusion', 'slow', 'other')),
    severity TEXT NOT NULL CHECK(severity IN ('low', 'medium', 'high', 'critical')),
    title TEXT NOT NULL,
    description TEXT,
    context TEXT,
    resolution TEXT,
    status TEXT NOT NULL DEFAULT 'open'
        CHECK(status IN ('open', 'analyzed', 'lesson_created', 'closed')),
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS lessons (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES training_sessions(id) ON DELETE CASCADE,
    incident_ids TEXT,
    title TEXT NOT NULL,
    problem TEXT NOT NULL,
    root_cause TEXT NOT NULL,
    solution TEXT NOT NULL,
    applicability TEXT,
    status TEXT NOT NULL DEFAULT 'draft'
        CHECK(status IN ('draft', 'reviewed', 'approved', 'archived')),
    approved_by TEXT,
    approved_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS skills (
    id TEXT PRIMARY KEY,
    project_path TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL,
    description TEXT,
    lesson_ids TEXT,
    type TEXT NOT NULL CHECK(type IN ('procedure', 'checklist', 'template', 'rule')),
    content TEXT NOT NULL,
    trigger_config TEXT,
    applicability TEXT,
    status TEXT NOT NULL DEFAULT 'draft' CHECK(status IN ('draft', 'active', 'deprecated')),
    usage_count INTEGER NOT NULL DEFAULT 0,
    last_used TIMESTAMP,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS rules (
    id TEXT PRIMARY KEY,
    project_path TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL,
    description TEXT,
    skill_ids TEXT,
    level TEXT NOT NULL CHECK(level IN ('must', 'should', 'may')),
    enforcement TEXT NOT NULL CHECK(enforcement IN ('manual', 'hook', 'gate')),
    content TEXT NOT NULL,
    applicability TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'deprecated')),
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS training_feedback (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL CHECK(entity_type IN ('skill', 'rule')),
    entity_id TEXT NOT NULL,
    task_id TEXT,
    outcome TEXT NOT NULL CHECK(outcome IN ('helped', 'ignored', 'hindered')),
    notes TEXT,
    created_at TIMESTAMP NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_training_sessions_project_module
    ON training_sessions(project_path, module_id);
CREATE INDEX IF NOT EXISTS idx_incidents_session ON incidents(session_id);
CREATE INDEX IF NOT EXISTS idx_incidents_status ON incidents(status);
CREATE INDEX IF NOT EXISTS idx_lessons_session ON lessons(session_id);
CREATE INDEX IF NOT EXISTS idx_lessons_status ON lessons(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_skills_project_name ON skills(project_path, name);
CREATE INDEX IF NOT EXISTS idx_skills_status ON skills(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_rules_project_name ON rules(project_path, name);
CREATE INDEX IF NOT EXISTS idx_rules_status ON rules(status);
CREATE INDEX IF NOT EXISTS idx_training_feedback_entity ON training_feedback(entity_type, entity_id);
"""

REFERENCES_SQL = """
CREATE TABLE IF NOT EXISTS entity_references (
    id TEXT PRIMARY KEY,
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_id TEXT NOT NULL,
    relationship TEXT NOT NULL,
    metadata TEXT,
    created_by TEXT,
    created_at TIMESTAMP NOT NULL,
    UNIQUE(source_type, source_id, target_type, target_id, relationship)
);

CREATE INDEX IF NOT EXISTS idx_entity_ref_source ON entity_references(source_type, source_id);
CREATE INDEX IF NOT EXISTS idx_entity_ref_target ON entity_references(target_type, target_id);
CREATE INDEX IF NOT EXISTS idx_entity_ref_relationship ON entity_references(relationship);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the intelhub schema."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.executescript(TRAINING_SQL)
    conn.executescript(REFERENCES_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
