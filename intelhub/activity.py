"""JSONL activity log of MCP tool calls.

One JSON object per line: timestamp, tool name, arguments, a preview of the
result, the error (if any) and the duration. Lets a human see what the agent
linked, learned and was told. Defaults to ``intelhub-activity.jsonl`` next to
the database.
"""

from __future__ import annotations

import json
import logging
import os
from collections import deque
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

RESULT_PREVIEW_LIMIT = 500
LOG_FILENAME = "intelhub-activity.jsonl"


def resolve_log_path() -> Path:
    """INTELHUB_LOG_PATH, else the database's directory."""
    env_path = os.getenv("INTELHUB_LOG_PATH")
    if env_path:
        return Path(env_path)
    return Path(os.getenv("INTELHUB_DB_PATH", "intelhub.db")).parent / LOG_FILENAME


def _make_entry(
    tool_name: str, arguments: dict, result_text: str, error: str | None, duration_ms: int
) -> dict:
    return {
        "timestamp": datetime.now().isoformat(),
        "tool_name": tool_name,
        "arguments": arguments,
        "result_preview": (result_text or "")[:RESULT_PREVIEW_LIMIT],
        "error": error,
        "duration_ms": duration_ms,
    }


def log_tool_call(
    tool_name: str,
    arguments: dict,
    result_text: str,
    error: str | None,
    duration_ms: int,
    log_path: Path | None = None,
) -> None:
    """Append one entry. Write failures are logged, never raised."""
    path = log_path or resolve_log_path()
    line = json.dumps(_make_entry(tool_name, arguments, result_text, error, duration_ms), default=str)
    try:
        with open(path, "a") as f:
            f.write(line + "\n")
    except OSError as e:
        logger.warning(f"Could not write activity log {path}: {e}")


def _matches(entry: dict, tool_name: str | None, errors_only: bool) -> bool:
    if tool_name and entry.get("tool_name") != tool_name:
        return False
    return not errors_only or bool(entry.get("error"))


def read_activity_log(
    limit: int = 20,
    tool_name: str | None = None,
    log_path: Path | None = None,
    errors_only: bool = False,
) -> list[dict]:
    """Return up to ``limit`` matching entries, most recent first.

    Blank and unparseable lines are skipped.
    """
    path = log_path or resolve_log_path()
    if not path.exists():
        return []

    recent: deque[dict] = deque(maxlen=max(limit, 0))
    with open(path) as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if _matches(entry, tool_name, errors_only):
                recent.append(entry)
    return list(reversed(recent))
