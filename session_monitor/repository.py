"""Filesystem-backed session repository.

Sessions are never cached: every query walks the projects directory and
re-parses the JSONL logs, so results always reflect what is on disk.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from itertools import chain
from pathlib import Path
from typing import Iterable

from session_monitor.date_utils import utc_now
from session_monitor.models import (
    ProjectGroup,
    Session,
    SessionDetail,
    SessionStatus,
    SessionSummaryStats,
)
from session_monitor.observability import record_scan, start_span
from session_monitor.parsers.sessions import parse_session_detail, parse_session_file
from session_monitor.parsers.status import DEFAULT_IDLE_TIMEOUT, DEFAULT_WORKING_TIMEOUT

logger = logging.getLogger("session_monitor.repository")

LOG_SUFFIX = ".jsonl"


def encode_project_folder(project_path: str) -> str:
    """Map an absolute project path to its log directory name."""
    return project_path.replace("/", "-").lstrip("-")


def decode_project_folder(folder: str) -> str:
    """Best-effort inverse of the folder encoding (dashes are ambiguous)."""
    return "/" + folder.lstrip("-").replace("-", "/")


def _is_safe_name(name: str) -> bool:
    return bool(name) and not name.startswith(".") and not any(ch in name for ch in ("/", "\\", "\x00"))


def merge_freshest(sessions: Iterable[Session]) -> dict[str, Session]:
    """Keep one session per id: the one with the latest activity."""
    merged: dict[str, Session] = {}
    for session in sessions:
        existing = merged.get(session.id)
        if existing is None or session.last_activity_at > existing.last_activity_at:
            merged[session.id] = session
    return merged


def _sorted_by_activity(sessions: Iterable[Session]) -> list[Session]:
    return sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)


class SessionRepository:
    """Answers session queries by re-deriving state from the log tree."""

    def __init__(
        self,
        projects_dir: Path,
        *,
        idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
        working_timeout: timedelta = DEFAULT_WORKING_TIMEOUT,
    ):
        self.projects_dir = projects_dir
        self.idle_timeout = idle_timeout
        self.working_timeout = working_timeout

    # ── Enumeration ──────────────────────────────────────────────────

    def _project_folders(self) -> list[str]:
        try:
            children = list(self.projects_dir.iterdir())
        except (OSError, ValueError) as exc:
            logger.debug("Cannot list projects dir %s: %s", self.projects_dir, exc)
            return []

        folders = []
        for child in children:
            if child.name.startswith("."):
                continue
            try:
                if child.is_dir():
                    folders.append(child.name)
            except (OSError, ValueError):
                continue
        return sorted(folders)

    def _group_log_files(self, folder: str) -> list[Path]:
        group_dir = self.projects_dir / folder
        try:
            children = list(group_dir.iterdir())
        except (OSError, ValueError) as exc:
            logger.debug("Cannot list project group %s: %s", group_dir, exc)
            return []
        return [
            child
            for child in children
            if child.suffix == LOG_SUFFIX and not child.name.startswith(".")
        ]

    def _scan_group(self, folder: str, now: datetime) -> list[Session]:
        root_path = decode_project_folder(folder)
        parsed = (
            parse_session_file(
                path,
                root_path,
                now=now,
                idle_timeout=self.idle_timeout,
                working_timeout=self.working_timeout,
            )
            for path in self._group_log_files(folder)
        )
        return list(merge_freshest(s for s in parsed if s is not None).values())

    def list_projects(self) -> list[ProjectGroup]:
        groups = []
        for folder in self._project_folders():
            path = decode_project_folder(folder)
            groups.append(ProjectGroup(folder=folder, path=path, name=path.rsplit("/", 1)[-1]))
        return groups

    # ── Queries ──────────────────────────────────────────────────────

    def list_sessions(self, project_folder: str | None = None, now: datetime | None = None) -> list[Session]:
        """Sessions newest-first, one per id.

        With ``project_folder`` only that group is scanned; otherwise every
        group is aggregated and ids are deduplicated across groups.
        """
        now = now or utc_now()
        scope = "project" if project_folder is not None else "all"
        started = time.perf_counter()

        with start_span("session_monitor.list_sessions", {"scope": scope}):
            if project_folder is not None:
                if not _is_safe_name(project_folder):
                    return []
                sessions = self._scan_group(project_folder, now)
            else:
                sessions = merge_freshest(
                    chain.from_iterable(
                        self._scan_group(folder, now) for folder in self._project_folders()
                    )
                ).values()
            result = _sorted_by_activity(sessions)

        record_scan(scope, len(result), (time.perf_counter() - started) * 1000)
        return result

    def get_session(self, project_folder: str, session_id: str, now: datetime | None = None) -> SessionDetail | None:
        if not _is_safe_name(project_folder) or not _is_safe_name(session_id):
            return None
        path = self.projects_dir / project_folder / f"{session_id}{LOG_SUFFIX}"
        return parse_session_detail(
            path,
            decode_project_folder(project_folder),
            now=now or utc_now(),
            idle_timeout=self.idle_timeout,
            working_timeout=self.working_timeout,
        )

    def find_session(self, session_id: str, now: datetime | None = None) -> SessionDetail | None:
        """Look a session up in every group, preferring the freshest copy."""
        if not _is_safe_name(session_id):
            return None
        now = now or utc_now()
        best: SessionDetail | None = None
        for folder in self._project_folders():
            candidate = self.get_session(folder, session_id, now)
            if candidate is None:
                continue
            if best is None or candidate.last_activity_at > best.last_activity_at:
                best = candidate
        return best

    def summarize(self, now: datetime | None = None) -> SessionSummaryStats:
        return summarize_sessions(self.list_sessions(now=now))

    # ── Async variants ───────────────────────────────────────────────
    # Blocking walks run in worker threads so the event loop (and the file
    # watcher sharing it) stays responsive. Cancelling the awaiting task
    # simply discards the partial results.

    async def alist_sessions(self, project_folder: str | None = None, now: datetime | None = None) -> list[Session]:
        if project_folder is not None:
            return await asyncio.to_thread(self.list_sessions, project_folder, now)

        now = now or utc_now()
        started = time.perf_counter()
        with start_span("session_monitor.list_sessions", {"scope": "all"}):
            folders = await asyncio.to_thread(self._project_folders)
            groups = await asyncio.gather(
                *(asyncio.to_thread(self._scan_group, folder, now) for folder in folders)
            )
            result = _sorted_by_activity(merge_freshest(chain.from_iterable(groups)).values())
        record_scan("all", len(result), (time.perf_counter() - started) * 1000)
        return result

    async def aget_session(self, project_folder: str, session_id: str, now: datetime | None = None) -> SessionDetail | None:
        return await asyncio.to_thread(self.get_session, project_folder, session_id, now)

    async def afind_session(self, session_id: str, now: datetime | None = None) -> SessionDetail | None:
        return await asyncio.to_thread(self.find_session, session_id, now)

    async def alist_projects(self) -> list[ProjectGroup]:
        return await asyncio.to_thread(self.list_projects)

    async def asummarize(self, now: datetime | None = None) -> SessionSummaryStats:
        return summarize_sessions(await self.alist_sessions(now=now))


def summarize_sessions(sessions: list[Session]) -> SessionSummaryStats:
    """Aggregate counters for the dashboard header."""
    by_status = {status: 0 for status in SessionStatus}
    for session in sessions:
        by_status[session.status] += 1

    return SessionSummaryStats(
        total_projects=len({s.root_path for s in sessions}),
        total_sessions=len(sessions),
        working_sessions=by_status[SessionStatus.WORKING],
        waiting_sessions=by_status[SessionStatus.WAITING] + by_status[SessionStatus.NEEDS_APPROVAL],
        idle_sessions=by_status[SessionStatus.IDLE],
        total_messages=sum(s.message_count for s in sessions),
        total_tool_invocations=sum(s.tool_invocation_count for s in sessions),
    )
