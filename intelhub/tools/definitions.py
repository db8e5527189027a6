"""MCP tool definitions (names, descriptions and JSON input schemas)."""

from __future__ import annotations

import mcp.types as types

from intelhub.graph.references import DIRECTIONS
from intelhub.models import (
    CONTEXT_FORMATS,
    CONTEXT_SECTIONS,
    ENTITY_TYPES,
    FEEDBACK_ENTITY_TYPES,
    FEEDBACK_OUTCOMES,
    INCIDENT_SEVERITIES,
    INCIDENT_STATUSES,
    INCIDENT_TYPES,
    LESSON_STATUSES,
    RELATIONSHIPS,
    RULE_ENFORCEMENTS,
    RULE_LEVELS,
    RULE_STATUSES,
    SKILL_STATUSES,
    SKILL_TYPES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TRAINING_SESSION_STATUSES,
    TRIGGER_WHEN,
)


def _string(description: str, enum: tuple[str, ...] | None = None, default: str | None = None) -> dict:
    schema: dict = {"type": "string", "description": description}
    if enum:
        schema["enum"] = list(enum)
    if default is not None:
        schema["default"] = default
    return schema


def _number(description: str, default: int | None = None) -> dict:
    schema: dict = {"type": "number", "description": description}
    if default is not None:
        schema["default"] = default
    return schema


def _string_array(description: str, enum: tuple[str, ...] | None = None) -> dict:
    items: dict = {"type": "string"}
    if enum:
        items["enum"] = list(enum)
    return {"type": "array", "description": description, "items": items}


APPLICABILITY_SCHEMA = {
    "type": "object",
    "description": (
        "Where this applies. Empty or missing lists match everything; '*' matches any value."
    ),
    "properties": {
        "modules": _string_array("Module IDs"),
        "roles": _string_array("Agent roles (e.g. dev, qa)"),
        "taskTypes": _string_array("Task types (e.g. feature, bugfix)"),
    },
}

TRIGGER_SCHEMA = {
    "type": "object",
    "description": "When the skill should be applied",
    "properties": {
        "when": _string("Trigger point", TRIGGER_WHEN),
        "conditions": _string_array("Free-form conditions"),
    },
}

INCIDENT_CONTEXT_SCHEMA = {
    "type": "object",
    "description": "What the agent was doing when the incident happened",
    "properties": {
        "taskId": _string("Related task ID"),
        "agentRole": _string("Role of the agent"),
        "files": _string_array("Files involved"),
        "commands": _string_array("Commands run"),
        "errorMessage": _string("Error output"),
    },
}

_EDGE_PROPERTIES = {
    "sourceType": _string("Source entity type", ENTITY_TYPES),
    "sourceId": _string("Source entity ID"),
    "targetType": _string("Target entity type", ENTITY_TYPES),
    "targetId": _string("Target entity ID"),
    "relationship": _string("Relationship type between entities", RELATIONSHIPS),
}
_EDGE_REQUIRED = ["sourceType", "sourceId", "targetType", "targetId", "relationship"]


def _tool(name: str, description: str, properties: dict, required: list[str] | None = None) -> types.Tool:
    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return types.Tool(name=name, description=description, inputSchema=schema)


CONTEXT_TOOLS = [
    _tool(
        "entity_context",
        (
            "Build complete context for any entity by traversing the entity reference graph. "
            "Returns the entity with related tasks, sessions, knowledge, impact analyses, "
            "governance and history in one call. Use format 'claude' for markdown, 'json' for "
            "structured data, 'compact' for a one-line summary."
        ),
        {
            "entityType": _string("The type of entity to build context for", ENTITY_TYPES),
            "entityId": _string("The entity ID"),
            "format": _string("Output format", CONTEXT_FORMATS, default="claude"),
            "sections": _string_array("Which related sections to include (default: all)", CONTEXT_SECTIONS),
            "maxTokens": _number(
                "Token budget. Sections are dropped whole, lowest priority first: "
                "references, history, impact, governance, knowledge, capability.",
                default=8000,
            ),
            "depth": _number("Traversal depth for transitive connections", default=1),
        },
        ["entityType", "entityId"],
    ),
    _tool(
        "task_start_with_context",
        (
            "Get complete context for starting work on a task: capability, knowledge, impact "
            "analysis, applicable governance and session history. Call this when you begin a task."
        ),
        {
            "taskId": _string("The task ID to start working on"),
            "format": _string("Output format", CONTEXT_FORMATS, default="claude"),
            "maxTokens": _number("Token budget", default=8000),
        },
        ["taskId"],
    ),
    _tool(
        "task_complete_with_context",
        (
            "Complete a task and record what the work produced. Marks the task completed, links "
            "the implementing session, and links knowledge and lessons created along the way."
        ),
        {
            "taskId": _string("The task ID to complete"),
            "sessionId": _string("The session that implemented this task"),
            "knowledgeCreated": _string_array("Knowledge document IDs created during this task"),
            "lessonsLearned": _string_array("Lesson IDs created during this task"),
            "notes": _string("Completion notes"),
        },
        ["taskId"],
    ),
]

REFERENCE_TOOLS = [
    _tool(
        "entity_link",
        "Create a typed, directed reference between two entities. Linking twice is a no-op.",
        {
            **_EDGE_PROPERTIES,
            "metadata": {"type": "object", "description": "Optional metadata"},
            "createdBy": _string("Who created this reference (user, agent:<session-id>, system)", default="agent"),
        },
        _EDGE_REQUIRED,
    ),
    _tool(
        "entity_unlink",
        "Remove a typed reference between two entities.",
        dict(_EDGE_PROPERTIES),
        _EDGE_REQUIRED,
    ),
    _tool(
        "entity_references",
        (
            "Query references touching an entity: forward (as source), reverse (as target) or "
            "both. maxDepth above 1 follows transitive connections."
        ),
        {
            "entityType": _string("Entity type", ENTITY_TYPES),
            "entityId": _string("Entity ID"),
            "direction": _string("Query direction", DIRECTIONS, default="both"),
            "relationshipTypes": _string_array("Filter by relationship types", RELATIONSHIPS),
            "maxDepth": _number("Max traversal depth (1 = direct connections only)", default=1),
            "limit": _number("Max results to return", default=100),
        },
        ["entityType", "entityId"],
    ),
]

TASK_TOOLS = [
    _tool(
        "task_create",
        "Create a task.",
        {
            "projectId": _string("Project the task belongs to (default: current project)"),
            "title": _string("Task title"),
            "description": _string("Task description"),
            "priority": _string("Priority", TASK_PRIORITIES, default="medium"),
            "taskType": _string("Task type (feature, bugfix, refactor, ...)", default="feature"),
            "moduleId": _string("Module the task touches"),
            "assignedAgent": _string("Agent role assigned to the task"),
            "acceptanceCriteria": {
                "type": "array",
                "description": "Criteria as strings or {description, completed} objects",
                "items": {"type": ["string", "object"]},
            },
        },
        ["title"],
    ),
    _tool("task_get", "Get a task by ID.", {"taskId": _string("Task ID")}, ["taskId"]),
    _tool(
        "task_list",
        "List tasks, newest first.",
        {
            "projectId": _string("Filter by project"),
            "status": _string("Filter by status", TASK_STATUSES),
            "moduleId": _string("Filter by module"),
            "limit": _number("Max results", default=100),
        },
    ),
]

TRAINING_TOOLS = [
    _tool(
        "training_session_get",
        "Get the training session for a module, creating it on first use.",
        {
            "moduleId": _string("Module ID"),
            "projectPath": _string("Project path (default: current project)"),
        },
        ["moduleId"],
    ),
    _tool(
        "training_session_list",
        "List training sessions.",
        {
            "projectPath": _string("Filter by project"),
            "status": _string("Filter by status", TRAINING_SESSION_STATUSES),
        },
    ),
    _tool(
        "incident_create",
        (
            "Report an incident (a mistake, failure, confusion or slowdown) during agent work. "
            "When similar open incidents keep recurring the result suggests creating a lesson."
        ),
        {
            "projectPath": _string("Project path (default: current project)"),
            "moduleId": _string("Module where the incident happened"),
            "type": _string("Incident type", INCIDENT_TYPES),
            "severity": _string("Severity", INCIDENT_SEVERITIES),
            "title": _string("Short title"),
            "description": _string("What happened"),
            "context": INCIDENT_CONTEXT_SCHEMA,
        },
        ["moduleId", "type", "severity", "title"],
    ),
    _tool(
        "incident_update",
        "Update an incident's status, severity or resolution.",
        {
            "incidentId": _string("Incident ID"),
            "status": _string("New status", INCIDENT_STATUSES),
            "severity": _string("New severity", INCIDENT_SEVERITIES),
            "resolution": _string("How it was resolved"),
        },
        ["incidentId"],
    ),
    _tool(
        "incident_list",
        "List incidents, newest first.",
        {
            "projectPath": _string("Project path used to resolve moduleId"),
            "moduleId": _string("Filter by module"),
            "status": _string("Filter by status", INCIDENT_STATUSES),
            "type": _string("Filter by type", INCIDENT_TYPES),
            "severity": _string("Filter by severity", INCIDENT_SEVERITIES),
        },
    ),
    _tool(
        "lesson_create",
        "Distil one or more incidents into a lesson (problem, root cause, solution).",
        {
            "projectPath": _string("Project path (default: current project)"),
            "moduleId": _string("Module the lesson belongs to"),
            "incidentIds": _string_array("Incidents this lesson was learned from"),
            "title": _string("Lesson title"),
            "problem": _string("What went wrong"),
            "rootCause": _string("Why it went wrong"),
            "solution": _string("How to avoid or fix it"),
            "applicability": APPLICABILITY_SCHEMA,
        },
        ["moduleId", "title", "problem", "rootCause", "solution"],
    ),
    _tool(
        "lesson_approve",
        "Approve a lesson. The result suggests a skill template built from it.",
        {
            "lessonId": _string("Lesson ID"),
            "approver": _string("Who approved the lesson"),
        },
        ["lessonId", "approver"],
    ),
    _tool(
        "lesson_update",
        "Edit a lesson or move it to reviewed/archived.",
        {
            "lessonId": _string("Lesson ID"),
            "status": _string("New status", LESSON_STATUSES),
            "title": _string("Lesson title"),
            "problem": _string("What went wrong"),
            "rootCause": _string("Why it went wrong"),
            "solution": _string("How to avoid or fix it"),
            "applicability": APPLICABILITY_SCHEMA,
        },
        ["lessonId"],
    ),
    _tool(
        "lesson_list",
        "List lessons, newest first.",
        {
            "projectPath": _string("Project path used to resolve moduleId"),
            "moduleId": _string("Filter by module"),
            "status": _string("Filter by status", LESSON_STATUSES),
        },
    ),
    _tool(
        "skill_create",
        "Create a reusable skill. Names are unique within a project. New skills start as draft.",
        {
            "projectPath": _string("Project path (default: current project)"),
            "name": _string("Skill name"),
            "description": _string("Short description"),
            "lessonIds": _string_array("Lessons this skill was built from"),
            "type": _string("Skill type", SKILL_TYPES),
            "content": _string("Skill body (markdown)"),
            "trigger": TRIGGER_SCHEMA,
            "applicability": APPLICABILITY_SCHEMA,
        },
        ["name", "type", "content"],
    ),
    _tool(
        "skill_update",
        "Edit a skill or change its status (draft, active, deprecated).",
        {
            "skillId": _string("Skill ID"),
            "name": _string("Skill name"),
            "description": _string("Short description"),
            "content": _string("Skill body"),
            "status": _string("New status", SKILL_STATUSES),
            "trigger": TRIGGER_SCHEMA,
            "applicability": APPLICABILITY_SCHEMA,
        },
        ["skillId"],
    ),
    _tool(
        "skill_list",
        "List skills, most used first.",
        {
            "projectPath": _string("Filter by project"),
            "status": _string("Filter by status", SKILL_STATUSES),
            "type": _string("Filter by type", SKILL_TYPES),
        },
    ),
    _tool(
        "rule_create",
        "Create an enforceable rule. Names are unique within a project.",
        {
            "projectPath": _string("Project path (default: current project)"),
            "name": _string("Rule name"),
            "description": _string("Short description"),
            "skillIds": _string_array("Skills this rule hardens"),
            "level": _string("How binding the rule is", RULE_LEVELS),
            "enforcement": _string("How the rule is enforced", RULE_ENFORCEMENTS),
            "content": _string("Rule text"),
            "applicability": APPLICABILITY_SCHEMA,
        },
        ["name", "level", "enforcement", "content"],
    ),
    _tool(
        "rule_update",
        "Edit a rule or deprecate it.",
        {
            "ruleId": _string("Rule ID"),
            "name": _string("Rule name"),
            "description": _string("Short description"),
            "content": _string("Rule text"),
            "level": _string("How binding the rule is", RULE_LEVELS),
            "enforcement": _string("How the rule is enforced", RULE_ENFORCEMENTS),
            "status": _string("New status", RULE_STATUSES),
            "applicability": APPLICABILITY_SCHEMA,
        },
        ["ruleId"],
    ),
    _tool(
        "rule_list",
        "List rules: must, then should, then may.",
        {
            "projectPath": _string("Filter by project"),
            "status": _string("Filter by status", RULE_STATUSES),
            "level": _string("Filter by level", RULE_LEVELS),
            "enforcement": _string("Filter by enforcement", RULE_ENFORCEMENTS),
        },
    ),
    _tool(
        "rule_check",
        "Find the active rules that apply to a module, role and task type.",
        {
            "projectPath": _string("Project path (default: current project)"),
            "moduleId": _string("Module ID"),
            "role": _string("Agent role"),
            "taskType": _string("Task type"),
        },
    ),
    _tool(
        "training_context_get",
        (
            "Get the skills, rules, approved lessons and open incidents relevant to a module, "
            "plus a ready-to-inject markdown prompt."
        ),
        {
            "projectPath": _string("Project path (default: current project)"),
            "moduleId": _string("Module ID"),
            "role": _string("Agent role"),
            "taskType": _string("Task type"),
        },
        ["moduleId"],
    ),
    _tool(
        "training_feedback_submit",
        "Record whether a skill or rule helped. Skill feedback also counts as a use of the skill.",
        {
            "entityType": _string("What the feedback is about", FEEDBACK_ENTITY_TYPES),
            "entityId": _string("Skill or rule ID"),
            "taskId": _string("Task during which it was used"),
            "outcome": _string("Outcome", FEEDBACK_OUTCOMES),
            "notes": _string("Free-form notes"),
        },
        ["entityType", "entityId", "outcome"],
    ),
]

ALL_TOOLS = CONTEXT_TOOLS + REFERENCE_TOOLS + TASK_TOOLS + TRAINING_TOOLS
