"""Read append-only JSONL session logs into LogEntry models."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from session_monitor.models import LogEntry
from session_monitor.observability import record_skipped_line

logger = logging.getLogger("session_monitor.parsers")


def parse_log_line(line: str) -> LogEntry | None:
    """Parse one JSONL record, returning ``None`` for anything unusable."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        raw = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict):
        return None
    try:
        return LogEntry.model_validate(raw)
    except ValidationError:
        return None


def iter_log_entries(path: Path) -> Iterator[LogEntry]:
    """Yield entries in file order.

    The file may be appended to while we read it, so a torn trailing line is
    skipped like any other malformed line. A missing or unreadable file
    yields nothing.
    """
    skipped = 0
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                if not line.strip():
                    continue
                entry = parse_log_line(line)
                if entry is None:
                    skipped += 1
                    continue
                yield entry
    except (OSError, ValueError) as exc:
        logger.debug("Cannot read session log %s: %s", path, exc)
        return
    finally:
        if skipped:
            logger.debug("Skipped %d unparseable lines in %s", skipped, path)
            record_skipped_line(skipped)


def read_log_entries(path: Path) -> list[LogEntry]:
    return list(iter_log_entries(path))
