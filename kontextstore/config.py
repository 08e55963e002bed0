"""Configuration loading for kontextstore.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (KONTEXTSTORE_STORAGE, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

STORAGE_TYPES = ("memory", "redis")
DEFAULT_STORAGE_TYPE = "memory"
DEFAULT_REDIS_URL = "redis://localhost:6379"
DEFAULT_MAX_SIZE = 10_000
DEFAULT_LOG_PATH = Path("kontextstore-activity.jsonl")


@dataclass
class Config:
    storage_type: str = DEFAULT_STORAGE_TYPE  # "memory" | "redis"
    redis_url: str = DEFAULT_REDIS_URL
    memory_max_size: int = DEFAULT_MAX_SIZE
    corpus_path: Path | None = None  # JSON corpus ingested at startup
    log_path: Path = DEFAULT_LOG_PATH

    @classmethod
    def load(cls) -> Config:
        corpus = os.getenv("KONTEXTSTORE_CORPUS_PATH", "")
        return cls(
            storage_type=os.getenv("KONTEXTSTORE_STORAGE", DEFAULT_STORAGE_TYPE).strip().lower(),
            redis_url=(
                os.getenv("KONTEXTSTORE_REDIS_URL")
                or os.getenv("REDIS_URL")
                or DEFAULT_REDIS_URL
            ),
            memory_max_size=_int_env("KONTEXTSTORE_MAX_SIZE", DEFAULT_MAX_SIZE),
            corpus_path=Path(corpus) if corpus else None,
            log_path=Path(os.getenv("KONTEXTSTORE_LOG_PATH", str(DEFAULT_LOG_PATH))),
        )

    def validate(self) -> list[str]:
        """Return a list of config issues."""
        issues = []
        if self.storage_type not in STORAGE_TYPES:
            issues.append(
                f"Unknown storage type '{self.storage_type}' (KONTEXTSTORE_STORAGE); "
                f"expected one of: {', '.join(STORAGE_TYPES)}"
            )
        if self.memory_max_size <= 0:
            issues.append("Memory max size must be positive (KONTEXTSTORE_MAX_SIZE)")
        if self.corpus_path is not None and not self.corpus_path.exists():
            issues.append(f"Corpus file not found: {self.corpus_path} (KONTEXTSTORE_CORPUS_PATH)")
        return issues


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        # Surfaces through validate() as a non-positive size.
        return 0
