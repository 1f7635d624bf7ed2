"""Reduce parsed JSONL log entries into Session and SessionDetail models."""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Sequence

from session_monitor.date_utils import format_timestamp
from session_monitor.models import (
    LogEntry,
    ParsedMessage,
    Session,
    SessionDetail,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolResultBlock,
    ToolUseBlock,
)
from session_monitor.parsers.log_reader import read_log_entries
from session_monitor.parsers.status import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_WORKING_TIMEOUT,
    resolve_status,
)

FIRST_PROMPT_MAX_CHARS = 200
LAST_OUTPUT_MAX_CHARS = 300
LAST_OUTPUT_MIN_CHARS = 10
TOOL_RESULT_MAX_CHARS = 500

_SYSTEM_REMINDER_PREFIX = "<system-"
_MESSAGE_ROLES = ("user", "assistant")


def _display_name(root_path: str) -> str:
    return root_path.rstrip("/").rsplit("/", 1)[-1] or root_path


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except (OSError, ValueError):
        return 0


def _first_prompt(entry: LogEntry | None) -> str | None:
    if entry is None:
        return None
    for block in entry.blocks:
        # Slash commands and hook output arrive wrapped in <tag> markup.
        if isinstance(block, TextBlock) and block.text and not block.text.startswith("<"):
            return block.text[:FIRST_PROMPT_MAX_CHARS]
    return None


def extract_last_output(entries: Sequence[LogEntry]) -> str:
    """Most recent meaningful assistant text, skipping reminders and stubs."""
    for entry in reversed(entries):
        if not entry.is_message("assistant"):
            continue
        for block in entry.blocks:
            if not isinstance(block, TextBlock) or not block.text:
                continue
            text = block.text.strip()
            if not text.startswith(_SYSTEM_REMINDER_PREFIX) and len(text) > LAST_OUTPUT_MIN_CHARS:
                return text[:LAST_OUTPUT_MAX_CHARS]
    return ""


def _count_tool_invocations(entries: Sequence[LogEntry]) -> int:
    return sum(
        1
        for entry in entries
        if entry.is_message("assistant")
        for block in entry.blocks
        if isinstance(block, ToolUseBlock)
    )


def _resolve_root_path(entries: Sequence[LogEntry], first_user: LogEntry | None, fallback: str | None) -> str:
    if first_user is not None and first_user.cwd:
        return first_user.cwd
    for entry in entries:
        if entry.cwd:
            return entry.cwd
    return fallback or ""


def extract_session(
    path: Path,
    entries: Sequence[LogEntry],
    root_path: str | None = None,
    *,
    file_size: int | None = None,
    now: datetime | None = None,
    idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
    working_timeout: timedelta = DEFAULT_WORKING_TIMEOUT,
) -> Session | None:
    """Summarize one log file, or return ``None`` if it holds no messages.

    ``root_path`` is only a fallback for logs that never recorded a working
    directory; the ``cwd`` of the opening prompt takes precedence.
    """
    message_count = sum(1 for entry in entries if entry.is_message(*_MESSAGE_ROLES))
    if message_count == 0:
        return None

    first_user = next((entry for entry in entries if entry.is_message("user")), None)
    opening = first_user or entries[0]
    last_entry = entries[-1]

    resolution = resolve_status(
        entries,
        last_entry.timestamp,
        now,
        idle_timeout=idle_timeout,
        working_timeout=working_timeout,
    )
    resolved_root = _resolve_root_path(entries, first_user, root_path)

    return Session(
        id=path.stem,
        root_path=resolved_root,
        display_name=_display_name(resolved_root),
        started_at=opening.timestamp,
        last_activity_at=last_entry.timestamp,
        branch=opening.git_branch,
        slug=opening.slug,
        message_count=message_count,
        tool_invocation_count=_count_tool_invocations(entries),
        status=resolution.status,
        has_pending_tool_use=resolution.has_pending_tool_use,
        first_prompt=_first_prompt(first_user),
        last_output=extract_last_output(entries),
        log_file_path=str(path),
        log_file_size_bytes=file_size if file_size is not None else _file_size(path),
    )


def _tool_result_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content[:TOOL_RESULT_MAX_CHARS]
    try:
        return json.dumps(content, separators=(",", ":"))[:TOOL_RESULT_MAX_CHARS]
    except (TypeError, ValueError):
        return str(content)[:TOOL_RESULT_MAX_CHARS]


def _parse_message(entry: LogEntry) -> ParsedMessage | None:
    text_parts: list[str] = []
    thinking: str | None = None
    tool_calls: list[ToolCall] = []

    for block in entry.blocks:
        if isinstance(block, TextBlock) and block.text:
            text_parts.append(block.text)
        elif isinstance(block, ThinkingBlock) and block.thinking:
            thinking = block.thinking
        elif isinstance(block, ToolUseBlock) and block.name:
            tool_calls.append(ToolCall(name=block.name, input=dict(block.input)))
        elif isinstance(block, ToolResultBlock) and block.content:
            # Results pair with the latest call recorded in the same message.
            if tool_calls:
                tool_calls[-1].result = _tool_result_to_text(block.content)

    content = "\n".join(text_parts).strip()
    if not content and not tool_calls:
        return None

    return ParsedMessage(
        id=entry.entry_id or f"{format_timestamp(entry.timestamp)}-{entry.entry_type}",
        role=entry.entry_type,
        timestamp=entry.timestamp,
        content=content,
        thinking=thinking,
        tool_calls=tool_calls,
    )


def build_session_detail(session: Session, entries: Sequence[LogEntry]) -> SessionDetail:
    messages = []
    for entry in entries:
        if not entry.is_message(*_MESSAGE_ROLES):
            continue
        message = _parse_message(entry)
        if message is not None:
            messages.append(message)
    return SessionDetail(**session.model_dump(), messages=messages)


def parse_session_file(
    path: Path,
    root_path: str | None = None,
    *,
    now: datetime | None = None,
    idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
    working_timeout: timedelta = DEFAULT_WORKING_TIMEOUT,
) -> Session | None:
    """Read a single JSONL session log into a Session."""
    entries = read_log_entries(path)
    return extract_session(
        path,
        entries,
        root_path,
        now=now,
        idle_timeout=idle_timeout,
        working_timeout=working_timeout,
    )


def parse_session_detail(
    path: Path,
    root_path: str | None = None,
    *,
    now: datetime | None = None,
    idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
    working_timeout: timedelta = DEFAULT_WORKING_TIMEOUT,
) -> SessionDetail | None:
    entries = read_log_entries(path)
    session = extract_session(
        path,
        entries,
        root_path,
        now=now,
        idle_timeout=idle_timeout,
        working_timeout=working_timeout,
    )
    if session is None:
        return None
    return build_session_detail(session, entries)
