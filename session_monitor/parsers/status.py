"""Liveness classification for agent sessions.

Status is never stored. It is derived on every query from two inputs: how long
the log has been quiet, and whether the most recent assistant turn issued a
tool call that has not yet been answered by a ``tool_result``.

Order of evaluation:

1. quiet longer than the idle threshold -> ``idle`` (pending forced false)
2. quiet shorter than the working threshold -> ``working``
3. otherwise ``needs_approval`` when a tool call is pending, else ``waiting``
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import NamedTuple, Sequence

from session_monitor import config
from session_monitor.date_utils import elapsed_since
from session_monitor.models import LogEntry, SessionStatus, ToolResultBlock, ToolUseBlock

DEFAULT_IDLE_TIMEOUT = timedelta(seconds=config.IDLE_TIMEOUT_SECONDS)
DEFAULT_WORKING_TIMEOUT = timedelta(seconds=config.WORKING_TIMEOUT_SECONDS)


class StatusResolution(NamedTuple):
    status: SessionStatus
    has_pending_tool_use: bool


def has_pending_tool_use(entries: Sequence[LogEntry]) -> bool:
    """Whether the last assistant turn has an unanswered tool invocation.

    Only the single most recent assistant entry is inspected; older
    unresolved calls are deliberately ignored.
    """
    answered: set[str] = set()
    for entry in reversed(entries):
        if entry.entry_type == "assistant" and entry.message is not None:
            invoked = {
                block.id
                for block in entry.blocks
                if isinstance(block, ToolUseBlock) and block.id
            }
            return bool(invoked - answered)
        if entry.entry_type == "user" and entry.message is not None:
            answered.update(
                block.tool_use_id
                for block in entry.blocks
                if isinstance(block, ToolResultBlock) and block.tool_use_id
            )
    return False


def resolve_status(
    entries: Sequence[LogEntry],
    last_activity_at: datetime,
    now: datetime | None = None,
    *,
    idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
    working_timeout: timedelta = DEFAULT_WORKING_TIMEOUT,
) -> StatusResolution:
    elapsed = elapsed_since(last_activity_at, now)

    if elapsed > idle_timeout:
        return StatusResolution(SessionStatus.IDLE, False)

    pending = has_pending_tool_use(entries)

    # A tool result may simply not have streamed in yet.
    if elapsed < working_timeout:
        return StatusResolution(SessionStatus.WORKING, pending)

    if pending:
        return StatusResolution(SessionStatus.NEEDS_APPROVAL, True)
    return StatusResolution(SessionStatus.WAITING, False)
