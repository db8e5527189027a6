"""Error taxonomy for intelhub.

Handlers turn these into ``{"success": False, "error": ...}`` results; none of
them is retried because there is no network or background work in the core.
"""

from __future__ import annotations


class IntelHubError(Exception):
    """Base class for errors surfaced to tool callers."""

    code = "INTELHUB_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(IntelHubError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind.capitalize()} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class DuplicateName(IntelHubError):
    code = "DUPLICATE_NAME"

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f'{kind.capitalize()} with name "{name}" already exists in this project')
        self.kind = kind
        self.name = name


class ConstraintViolation(IntelHubError):
    code = "CONSTRAINT_VIOLATION"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}")
        self.field = field
        self.reason = reason


def check_choice(field: str, value: str, allowed: tuple[str, ...]) -> str:
    """Raise ConstraintViolation unless ``value`` is one of ``allowed``."""
    if value not in allowed:
        raise ConstraintViolation(field, f"'{value}' is not one of {', '.join(allowed)}")
    return value
