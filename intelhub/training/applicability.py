"""Applicability matching and normalization of loosely-typed input fields.

Tool arguments and stored JSON columns arrive in several shapes (absent, a
JSON string, a dict with camelCase or snake_case keys, a bare string where a
list is expected). Each field type has exactly one normalizer, called once
where data enters the system, so the rest of the code only ever sees the
dataclasses from ``intelhub.models``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from typing import Any

from intelhub.errors import ConstraintViolation, check_choice
from intelhub.models import (
    TRIGGER_WHEN,
    AcceptanceCriterion,
    Applicability,
    IncidentContext,
    TriggerConfig,
)

WILDCARD = "*"


def _decode(field: str, value: Any) -> Any:
    """Decode JSON text into a Python value; pass anything else through."""
    if isinstance(value, (str, bytes)):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ConstraintViolation(field, f"malformed JSON ({e.msg})") from e
    return value


def _string_list(field: str, value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ConstraintViolation(field, "expected a list of strings")
    return list(value)


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def normalize_applicability(value: Any) -> Applicability | None:
    """Normalize an applicability object. ``None``/empty means "applies everywhere"."""
    if isinstance(value, Applicability):
        return value
    data = _decode("applicability", value)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ConstraintViolation("applicability", "expected an object with modules/roles/taskTypes")
    return Applicability(
        modules=_string_list("applicability.modules", data.get("modules")),
        roles=_string_list("applicability.roles", data.get("roles")),
        task_types=_string_list("applicability.taskTypes", _pick(data, "taskTypes", "task_types")),
    )


def normalize_trigger(value: Any) -> TriggerConfig | None:
    if isinstance(value, TriggerConfig):
        return value
    data = _decode("trigger", value)
    if data is None:
        return None
    if isinstance(data, str):
        return TriggerConfig(when=check_choice("trigger.when", data, TRIGGER_WHEN))
    if not isinstance(data, dict):
        raise ConstraintViolation("trigger", "expected an object with when/conditions")
    when = data.get("when") or "always"
    return TriggerConfig(
        when=check_choice("trigger.when", when, TRIGGER_WHEN),
        conditions=_string_list("trigger.conditions", data.get("conditions")),
    )


def normalize_incident_context(value: Any) -> IncidentContext | None:
    if isinstance(value, IncidentContext):
        return value
    data = _decode("context", value)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ConstraintViolation("context", "expected an object")
    return IncidentContext(
        task_id=_pick(data, "taskId", "task_id"),
        agent_role=_pick(data, "agentRole", "agent_role"),
        files=_string_list("context.files", data.get("files")),
        commands=_string_list("context.commands", data.get("commands")),
        error_message=_pick(data, "errorMessage", "error_message"),
    )


def normalize_criterion(value: Any) -> AcceptanceCriterion:
    """Acceptance criteria are either a bare string or ``{description, completed}``."""
    if isinstance(value, AcceptanceCriterion):
        return value
    if isinstance(value, str):
        return AcceptanceCriterion(description=value)
    if isinstance(value, dict) and isinstance(value.get("description"), str):
        return AcceptanceCriterion(
            description=value["description"],
            completed=bool(value.get("completed", False)),
        )
    raise ConstraintViolation("acceptanceCriteria", "expected a string or {description, completed}")


def normalize_criteria(value: Any) -> list[AcceptanceCriterion]:
    data = _decode("acceptanceCriteria", value)
    if data is None:
        return []
    if not isinstance(data, list):
        data = [data]
    return [normalize_criterion(item) for item in data]


def normalize_risk(value: Any) -> dict:
    """A risk is ``{severity, title, ...}``; a bare value becomes its title."""
    if isinstance(value, dict):
        return {**value, "severity": value.get("severity") or "unknown"}
    return {"severity": "unknown", "title": str(value)}


def normalize_risks(value: Any) -> list[dict]:
    """Normalize a risk list from JSON text or Python values. Never raises."""
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value) if value.strip() else []
        except json.JSONDecodeError:
            value = [value]
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [normalize_risk(item) for item in value]


def to_json(value: Any) -> str | None:
    """Serialize a normalized dataclass (or list of them) for a JSON column."""
    if value is None:
        return None
    if isinstance(value, list):
        return json.dumps([asdict(v) if is_dataclass(v) else v for v in value])
    return json.dumps(asdict(value))


def _dimension_matches(values: list[str], query: str | None) -> bool:
    if not values or query is None or query == "":
        return True
    return WILDCARD in values or query in values


def matches_applicability(
    applicability: Applicability | None,
    module_id: str | None = None,
    role: str | None = None,
    task_type: str | None = None,
) -> bool:
    """AND across dimensions, OR within a dimension; empty dimensions are wildcards."""
    if applicability is None:
        return True
    return (
        _dimension_matches(applicability.modules, module_id)
        and _dimension_matches(applicability.roles, role)
        and _dimension_matches(applicability.task_types, task_type)
    )


def is_applicable(
    record: Any,
    module_id: str | None = None,
    role: str | None = None,
    task_type: str | None = None,
) -> bool:
    """True for an active skill or rule whose applicability covers the query."""
    return record.status == "active" and matches_applicability(
        record.applicability, module_id, role, task_type
    )
