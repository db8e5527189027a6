"""Configuration loading for intelhub.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (INTELHUB_DB_PATH, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path("intelhub.db")
DEFAULT_MAX_TOKENS = 8000
# Rough characters-per-token ratio used for context budgeting. Not a tokenizer.
DEFAULT_CHARS_PER_TOKEN = 4.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    db_path: Path = DEFAULT_DB_PATH
    project_path: str = field(default_factory=lambda: str(Path.cwd()))
    max_tokens: int = DEFAULT_MAX_TOKENS
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN
    log_path: Path | None = None

    @classmethod
    def load(cls) -> Config:
        log_path = os.getenv("INTELHUB_LOG_PATH")
        return cls(
            db_path=Path(os.getenv("INTELHUB_DB_PATH", str(DEFAULT_DB_PATH))),
            project_path=os.getenv("INTELHUB_PROJECT_PATH", str(Path.cwd())),
            max_tokens=_env_int("INTELHUB_MAX_TOKENS", DEFAULT_MAX_TOKENS),
            chars_per_token=_env_float("INTELHUB_CHARS_PER_TOKEN", DEFAULT_CHARS_PER_TOKEN),
            log_path=Path(log_path) if log_path else None,
        )

    def validate(self) -> list[str]:
        """Return a list of config issues."""
        issues = []
        if self.chars_per_token <= 0:
            issues.append("Characters per token must be positive (INTELHUB_CHARS_PER_TOKEN)")
        if self.max_tokens <= 0:
            issues.append("Token budget must be positive (INTELHUB_MAX_TOKENS)")
        if not self.db_path.parent.exists():
            issues.append(f"Database directory does not exist: {self.db_path.parent}")
        return issues
