"""Activity logging for MCP tool calls.

Logs every MCP tool invocation to a JSONL file so humans can see what
context their AI agent received from kontextstore. Each line is a JSON object
with timestamp, tool name, arguments, result preview, and duration.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime
from pathlib import Path

from kontextstore.config import Config

logger = logging.getLogger(__name__)

RESULT_PREVIEW_LIMIT = 500


def _resolve_log_path() -> Path:
    return Config.load().log_path


def log_tool_call(
    tool_name: str,
    arguments: dict,
    result_text: str,
    error: str | None,
    duration_ms: int,
    log_path: Path | None = None,
) -> None:
    """Append a tool call entry to the activity log.

    A failed write is logged as a warning; it never breaks the tool call.
    """
    entry = {
        "timestamp": datetime.now().isoformat(),
        "tool_name": tool_name,
        "arguments": arguments,
        "result_preview": result_text[:RESULT_PREVIEW_LIMIT] if result_text else "",
        "error": error,
        "duration_ms": duration_ms,
    }
    path = log_path or _resolve_log_path()
    try:
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        logger.warning(f"Could not write activity log {path}: {e}")


def read_activity_log(
    limit: int = 20,
    tool_name: str | None = None,
    log_path: Path | None = None,
) -> list[dict]:
    """Most recent tool calls first, optionally only those of ``tool_name``.

    Lines that are not valid JSON are skipped.
    """
    path = log_path or _resolve_log_path()
    if not path.exists():
        return []

    recent: deque[dict] = deque(maxlen=max(limit, 0))
    with open(path) as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping corrupt activity log line {lineno} in {path}")
                continue
            if tool_name is None or entry.get("tool_name") == tool_name:
                recent.append(entry)

    return list(reversed(recent))
