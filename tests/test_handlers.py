"""Tests for intelhub.tools (handlers, definitions) and server wiring."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from intelhub.config import Config
from intelhub.mcp_server import create_server, resolve_db_path
from intelhub.tools.definitions import ALL_TOOLS
from intelhub.tools.handlers import ToolHandlers

PROJECT = "/work/acme-webapp"


class TestDispatch:
    def test_unknown_tool(self, handlers: ToolHandlers):
        result = handlers.dispatch("task_explode", {})
        assert result == {"success": False, "error": "Unknown tool: task_explode"}

    def test_missing_required_argument(self, handlers: ToolHandlers):
        result = handlers.dispatch("task_get", {})
        assert result["success"] is False
        assert result["code"] == "CONSTRAINT_VIOLATION"
        assert "taskId" in result["error"]

    def test_not_found(self, handlers: ToolHandlers):
        result = handlers.dispatch("task_get", {"taskId": "task-nope"})
        assert result == {"success": False, "error": "Task task-nope not found", "code": "NOT_FOUND"}

    def test_database_error_becomes_result(self, handlers: ToolHandlers):
        with patch.object(handlers.repo, "get_task", side_effect=sqlite3.OperationalError("disk full")):
            result = handlers.dispatch("task_get", {"taskId": "t1"})
        assert result == {"success": False, "error": "Database error: disk full"}

    def test_none_arguments(self, handlers: ToolHandlers):
        assert handlers.dispatch("task_list", None)["success"] is True

    def test_definitions_match_handlers(self, handlers: ToolHandlers):
        assert sorted(tool.name for tool in ALL_TOOLS) == sorted(handlers.tool_names)

    def test_every_definition_has_an_object_schema(self):
        for tool in ALL_TOOLS:
            assert tool.inputSchema["type"] == "object"
            assert tool.description


class TestTaskTools:
    def test_create_defaults_to_configured_project(self, handlers: ToolHandlers):
        result = handlers.dispatch("task_create", {
            "title": "Rotate API keys",
            "moduleId": "auth",
            "acceptanceCriteria": ["Old keys rejected"],
        })
        assert result["success"] is True
        task = result["task"]
        assert task["project_id"] == PROJECT
        assert task["acceptance_criteria"] == [{"description": "Old keys rejected", "completed": False}]

    def test_list(self, handlers: ToolHandlers, sample_task):
        result = handlers.dispatch("task_list", {"moduleId": "auth"})
        assert result["total"] == 1
        assert result["tasks"][0]["id"] == sample_task.id

    def test_start_with_context(self, handlers: ToolHandlers, sample_task, sample_impact):
        result = handlers.dispatch("task_start_with_context", {"taskId": sample_task.id})
        assert result["success"] is True
        assert result["task"]["id"] == sample_task.id
        assert result["context"].startswith("# Entity Context: Add rate limiting")
        assert result["relatedCounts"]["impact"] == 1
        assert result["truncated"] is False

    def test_start_missing_task(self, handlers: ToolHandlers):
        result = handlers.dispatch("task_start_with_context", {"taskId": "task-nope"})
        assert result["success"] is False
        assert result["code"] == "NOT_FOUND"

    def test_complete_with_context(self, handlers: ToolHandlers, sample_task):
        result = handlers.dispatch("task_complete_with_context", {
            "taskId": sample_task.id,
            "sessionId": "session-7f3a",
            "knowledgeCreated": ["docs/auth/rate-limits.md"],
            "lessonsLearned": ["lesson-42"],
            "notes": "Shipped behind a flag",
        })
        assert result["success"] is True
        assert result["task"]["status"] == "completed"
        assert result["task"]["progress"] == 100
        assert result["task"]["notes"] == "Shipped behind a flag"
        assert result["referencesCreated"] == [
            f"task:{sample_task.id} -> session:session-7f3a (implemented_by)",
            "session:session-7f3a -> knowledge:docs/auth/rate-limits.md (creates)",
            f"task:{sample_task.id} -> knowledge:docs/auth/rate-limits.md (requires_context)",
            "session:session-7f3a -> lesson:lesson-42 (creates)",
        ]
        assert result["summary"] == "Task completed. 4 entity references created."

    def test_complete_twice_reports_only_new_edges(self, handlers: ToolHandlers, sample_task):
        args = {"taskId": sample_task.id, "sessionId": "session-7f3a"}
        handlers.dispatch("task_complete_with_context", args)
        again = handlers.dispatch("task_complete_with_context", args)
        assert again["referencesCreated"] == []
        assert handlers.graph.count_references("task", sample_task.id) == 1

    def test_complete_without_session(self, handlers: ToolHandlers, sample_task):
        result = handlers.dispatch("task_complete_with_context", {
            "taskId": sample_task.id,
            "knowledgeCreated": ["docs/a.md"],
            "lessonsLearned": ["lesson-1"],
        })
        assert result["referencesCreated"] == [
            f"task:{sample_task.id} -> knowledge:docs/a.md (requires_context)",
        ]


class TestContextTools:
    def test_entity_context(self, handlers: ToolHandlers, sample_task, sample_session):
        handlers.dispatch("entity_link", {
            "sourceType": "task", "sourceId": sample_task.id,
            "targetType": "session", "targetId": sample_session.id,
            "relationship": "implemented_by",
        })
        result = handlers.dispatch("entity_context", {
            "entityType": "task", "entityId": sample_task.id, "format": "compact",
        })
        assert result["success"] is True
        assert result["context"].endswith("| Connected: 1 sessions")
        assert result["entity"]["id"] == sample_task.id
        assert result["droppedSections"] == []
        assert result["generatedAt"]

    def test_entity_context_counts_all_neighbours(self, handlers: ToolHandlers, sample_task):
        for i in range(150):
            handlers.graph.create_reference("task", sample_task.id, "knowledge", f"docs/{i}.md", "mentions")
        result = handlers.dispatch("entity_context", {
            "entityType": "task", "entityId": sample_task.id, "format": "compact",
        })
        assert result["relatedCounts"]["knowledge"] == 150
        assert result["truncated"] is False

    def test_entity_context_uses_configured_budget(self, db_conn, config: Config, sample_task):
        config.max_tokens = 1
        handlers = ToolHandlers(db_conn, config)
        handlers.graph.create_reference("task", sample_task.id, "knowledge", "docs/a.md", "mentions")
        result = handlers.dispatch("entity_context", {"entityType": "task", "entityId": sample_task.id})
        assert result["truncated"] is True
        assert result["droppedSections"] == ["references", "knowledge"]

    def test_entity_context_bad_section(self, handlers: ToolHandlers, sample_task):
        result = handlers.dispatch("entity_context", {
            "entityType": "task", "entityId": sample_task.id, "sections": ["everything"],
        })
        assert result["success"] is False
        assert result["code"] == "CONSTRAINT_VIOLATION"


class TestReferenceTools:
    LINK = {
        "sourceType": "task", "sourceId": "t1",
        "targetType": "task", "targetId": "t2",
        "relationship": "blocks",
    }

    def test_link_reports_created(self, handlers: ToolHandlers):
        first = handlers.dispatch("entity_link", self.LINK)
        second = handlers.dispatch("entity_link", self.LINK)
        assert first["created"] is True
        assert second["created"] is False
        assert first["reference"]["id"] == second["reference"]["id"]

    def test_link_invalid_relationship(self, handlers: ToolHandlers):
        result = handlers.dispatch("entity_link", {**self.LINK, "relationship": "admires"})
        assert result["success"] is False
        assert result["code"] == "CONSTRAINT_VIOLATION"

    def test_unlink(self, handlers: ToolHandlers):
        handlers.dispatch("entity_link", self.LINK)
        assert handlers.dispatch("entity_unlink", self.LINK) == {"success": True}
        assert handlers.dispatch("entity_unlink", self.LINK) == {
            "success": False, "error": "Reference not found",
        }

    def test_references_direct(self, handlers: ToolHandlers):
        handlers.dispatch("entity_link", self.LINK)
        handlers.dispatch("entity_link", {**self.LINK, "targetId": "t3", "relationship": "mentions"})
        result = handlers.dispatch("entity_references", {
            "entityType": "task", "entityId": "t1", "relationshipTypes": ["blocks"],
        })
        assert result["total"] == 1
        assert result["references"][0]["target_id"] == "t2"
        assert "depth" not in result

    def test_references_deep(self, handlers: ToolHandlers):
        handlers.dispatch("entity_link", self.LINK)
        handlers.dispatch("entity_link", {**self.LINK, "sourceId": "t2", "targetId": "t3"})
        result = handlers.dispatch("entity_references", {
            "entityType": "task", "entityId": "t1", "maxDepth": 2,
        })
        assert result["depth"] == 2
        assert result["total"] == 2

    def test_references_bad_direction(self, handlers: ToolHandlers):
        result = handlers.dispatch("entity_references", {
            "entityType": "task", "entityId": "t1", "direction": "up",
        })
        assert result["success"] is False


class TestTrainingTools:
    def _incident(self, handlers: ToolHandlers, title: str) -> dict:
        return handlers.dispatch("incident_create", {
            "moduleId": "auth", "type": "mistake", "severity": "high", "title": title,
            "context": {"files": ["auth/login.py"], "errorMessage": "KeyError: 'ip'"},
        })

    def test_session_get_is_idempotent(self, handlers: ToolHandlers):
        first = handlers.dispatch("training_session_get", {"moduleId": "auth"})
        second = handlers.dispatch("training_session_get", {"moduleId": "auth"})
        assert first["session"]["id"] == second["session"]["id"]
        assert first["session"]["project_path"] == PROJECT
        assert handlers.dispatch("training_session_list", {})["total"] == 1

    def test_incident_suggestion(self, handlers: ToolHandlers):
        first = self._incident(handlers, "login form crashes on submit")
        assert "suggestion" not in first
        second = self._incident(handlers, "submit button crashes the login form")
        assert second["suggestion"]["action"] == "create_lesson"
        assert second["suggestion"]["similarIncidentIds"] == [first["incident"]["id"]]
        assert second["message"] == f"Incident created: {second['incident']['id']}"
        assert second["incident"]["context"]["error_message"] == "KeyError: 'ip'"

        unrelated = self._incident(handlers, "dashboard chart renders blank")
        assert "suggestion" not in unrelated

    def test_incident_invalid_type(self, handlers: ToolHandlers):
        result = handlers.dispatch("incident_create", {
            "moduleId": "auth", "type": "oops", "severity": "high", "title": "x",
        })
        assert result["success"] is False
        assert result["code"] == "CONSTRAINT_VIOLATION"

    def test_incident_update_and_list(self, handlers: ToolHandlers):
        incident = self._incident(handlers, "Flaky test")["incident"]
        updated = handlers.dispatch("incident_update", {
            "incidentId": incident["id"], "status": "closed", "resolution": "Pinned the clock",
        })
        assert updated["incident"]["status"] == "closed"
        assert handlers.dispatch("incident_list", {"status": "open"})["total"] == 0
        assert handlers.dispatch("incident_list", {"moduleId": "billing"})["total"] == 0

    def test_lesson_approve_suggests_skill(self, handlers: ToolHandlers):
        lesson = handlers.dispatch("lesson_create", {
            "moduleId": "auth",
            "title": "Trust only the edge proxy",
            "problem": "Rate limits applied to the load balancer IP",
            "rootCause": "Used request.remote_addr",
            "solution": "Read the client IP from the trusted proxy header",
        })["lesson"]
        assert lesson["status"] == "draft"
        result = handlers.dispatch("lesson_approve", {"lessonId": lesson["id"], "approver": "maria"})
        assert result["lesson"]["status"] == "approved"
        assert result["message"] == "Lesson approved by maria"
        template = result["suggestion"]["skillTemplate"]
        assert template["name"] == "Skill: Trust only the edge proxy"
        assert template["lessonIds"] == [lesson["id"]]
        assert handlers.dispatch("lesson_list", {"status": "approved"})["total"] == 1

    def test_lesson_update(self, handlers: ToolHandlers):
        lesson = handlers.dispatch("lesson_create", {
            "moduleId": "auth", "title": "T", "problem": "P", "rootCause": "R", "solution": "S",
        })["lesson"]
        result = handlers.dispatch("lesson_update", {"lessonId": lesson["id"], "status": "reviewed"})
        assert result["lesson"]["status"] == "reviewed"

    def test_duplicate_skill(self, handlers: ToolHandlers):
        args = {"name": "Proxy-aware IPs", "type": "procedure", "content": "Use get_client_ip()"}
        created = handlers.dispatch("skill_create", args)
        assert created["message"] == "Skill created: Proxy-aware IPs"
        duplicate = handlers.dispatch("skill_create", args)
        assert duplicate == {
            "success": False,
            "error": 'Skill with name "Proxy-aware IPs" already exists in this project',
            "code": "DUPLICATE_NAME",
        }

    def test_skill_update_and_list(self, handlers: ToolHandlers):
        skill = handlers.dispatch("skill_create", {
            "name": "Checklist", "type": "checklist", "content": "- [ ] tests",
            "trigger": {"when": "before_commit"},
        })["skill"]
        assert skill["trigger"] == {"when": "before_commit", "conditions": []}
        handlers.dispatch("skill_update", {"skillId": skill["id"], "status": "active"})
        assert handlers.dispatch("skill_list", {"status": "active"})["total"] == 1
        assert handlers.dispatch("skill_list", {"type": "procedure"})["total"] == 0

    def test_rules(self, handlers: ToolHandlers):
        assert handlers.dispatch("rule_check", {"moduleId": "auth"})["message"] == "No applicable rules found"
        rule = handlers.dispatch("rule_create", {
            "name": "No plaintext tokens", "level": "must", "enforcement": "gate",
            "content": "Tokens are hashed at rest", "applicability": {"modules": ["auth"]},
        })
        assert rule["message"] == "Rule created: No plaintext tokens"
        check = handlers.dispatch("rule_check", {"moduleId": "auth", "role": "dev"})
        assert check["message"] == "Found 1 applicable rules"
        assert handlers.dispatch("rule_check", {"moduleId": "billing"})["total"] == 0

        handlers.dispatch("rule_update", {"ruleId": rule["rule"]["id"], "status": "deprecated"})
        assert handlers.dispatch("rule_check", {"moduleId": "auth"})["total"] == 0
        assert handlers.dispatch("rule_list", {"status": "deprecated"})["total"] == 1

    def test_training_context(self, handlers: ToolHandlers):
        handlers.dispatch("rule_create", {
            "name": "Log auth failures", "level": "must", "enforcement": "hook",
            "content": "Every rejected login is logged",
        })
        self._incident(handlers, "Missed a log line")
        result = handlers.dispatch("training_context_get", {"moduleId": "auth"})
        assert result["summary"] == {"skills": 0, "rules": 1, "lessons": 0, "incidents": 1}
        assert "- **MUST**: Log auth failures - Every rejected login is logged" in result["contextPrompt"]

    def test_training_context_empty(self, handlers: ToolHandlers):
        result = handlers.dispatch("training_context_get", {"moduleId": "auth"})
        assert result["contextPrompt"] == ""

    def test_feedback(self, handlers: ToolHandlers):
        skill = handlers.dispatch("skill_create", {
            "name": "S", "type": "procedure", "content": "c",
        })["skill"]
        result = handlers.dispatch("training_feedback_submit", {
            "entityType": "skill", "entityId": skill["id"], "outcome": "helped",
        })
        assert result["message"] == f"Feedback recorded: helped for skill {skill['id']}"
        assert handlers.training_repo.get_skill(skill["id"]).usage_count == 1

    def test_feedback_unknown_entity(self, handlers: ToolHandlers):
        result = handlers.dispatch("training_feedback_submit", {
            "entityType": "rule", "entityId": "rule-nope", "outcome": "ignored",
        })
        assert result["success"] is False
        assert result["code"] == "NOT_FOUND"


class TestServerWiring:
    def test_resolve_db_path_from_argv(self):
        assert resolve_db_path(["intelhub", "--db", "/tmp/a.db"]) == Path("/tmp/a.db")

    def test_resolve_db_path_from_config(self):
        config = Config(db_path=Path("/data/hub.db"))
        assert resolve_db_path(["intelhub"], config) == Path("/data/hub.db")

    def test_create_server(self, handlers: ToolHandlers):
        server = create_server(handlers)
        assert server.name == "intelhub"

    def test_results_serialize(self, handlers: ToolHandlers, sample_task):
        result = handlers.dispatch("task_start_with_context", {"taskId": sample_task.id})
        assert json.loads(json.dumps(result, default=str))["success"] is True
