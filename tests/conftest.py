"""Shared test fixtures for intelhub."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from intelhub.config import Config
from intelhub.context.builder import ContextBuilder
from intelhub.graph.references import ReferenceGraph
from intelhub.models import ImpactAnalysis, Task, WorkSession
from intelhub.storage.db import get_connection
from intelhub.storage.repository import Repository
from intelhub.storage.training import TrainingRepository
from intelhub.tools.handlers import ToolHandlers
from intelhub.training.pipeline import TrainingPipeline

PROJECT = "/work/acme-webapp"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def config(db_path: Path, tmp_path: Path) -> Config:
    return Config(
        db_path=db_path,
        project_path=PROJECT,
        log_path=tmp_path / "activity.jsonl",
    )


@pytest.fixture
def repo(db_conn: sqlite3.Connection) -> Repository:
    return Repository(db_conn)


@pytest.fixture
def training_repo(db_conn: sqlite3.Connection) -> TrainingRepository:
    return TrainingRepository(db_conn)


@pytest.fixture
def graph(db_conn: sqlite3.Connection) -> ReferenceGraph:
    return ReferenceGraph(db_conn)


@pytest.fixture
def pipeline(training_repo: TrainingRepository) -> TrainingPipeline:
    return TrainingPipeline(training_repo)


@pytest.fixture
def builder(
    repo: Repository, training_repo: TrainingRepository, graph: ReferenceGraph
) -> ContextBuilder:
    return ContextBuilder(repo, training_repo, graph)


@pytest.fixture
def handlers(db_conn: sqlite3.Connection, config: Config) -> ToolHandlers:
    return ToolHandlers(db_conn, config)


@pytest.fixture
def sample_task(repo: Repository) -> Task:
    return repo.create_task(
        project_id=PROJECT,
        title="Add rate limiting to the login endpoint",
        description="Throttle repeated failed logins per IP address.",
        priority="high",
        task_type="feature",
        module_id="auth",
        assigned_agent="dev",
        acceptance_criteria=[
            "Returns 429 after 5 failed attempts",
            {"description": "Limits reset after 15 minutes", "completed": True},
        ],
    )


@pytest.fixture
def sample_session(repo: Repository) -> WorkSession:
    return repo.save_session(WorkSession(
        id="session-7f3a",
        workspace_path=PROJECT,
        initial_prompt="Implement login rate limiting",
    ))


@pytest.fixture
def sample_impact(repo: Repository, sample_task: Task) -> ImpactAnalysis:
    return repo.save_impact(ImpactAnalysis(
        id="impact-1",
        task_id=sample_task.id,
        change_type="feature",
        status="completed",
        risks=[{"severity": "high", "title": "Legitimate users locked out behind NAT"}],
        blockers=["Redis not provisioned in staging"],
    ))
