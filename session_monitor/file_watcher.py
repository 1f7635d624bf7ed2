"""File watcher service using watchfiles.

Monitors the projects directory for session logs being created or appended
to, and publishes a lightweight ChangeEvent for each one. Subscribers are
expected to re-query the repository rather than trust the event payload.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from session_monitor import config
from session_monitor.broadcaster import EventBroadcaster
from session_monitor.models import ChangeEvent, ChangeKind
from session_monitor.observability import record_change_event
from session_monitor.repository import LOG_SUFFIX

logger = logging.getLogger("session_monitor.watcher")


def is_session_log(path: Path, root: Path, depth: int) -> bool:
    """True for non-hidden ``.jsonl`` files at most ``depth`` levels below ``root``."""
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        return False
    if not parts or len(parts) > depth:
        return False
    if any(part.startswith(".") for part in parts):
        return False
    return path.suffix == LOG_SUFFIX


class SessionWatcher:
    """Background watcher that turns log file changes into broadcasts.

    Uses `watchfiles` (Rust-accelerated) for efficient watching.
    """

    def __init__(
        self,
        projects_dir: Path,
        broadcaster: EventBroadcaster,
        *,
        depth: int = config.WATCH_DEPTH,
        debounce_ms: int = config.WATCH_DEBOUNCE_MS,
        retry_seconds: float = config.WATCH_RETRY_SECONDS,
        max_retry_seconds: float = config.WATCH_MAX_RETRY_SECONDS,
    ):
        self.projects_dir = projects_dir.absolute()
        self.broadcaster = broadcaster
        self.depth = depth
        self.debounce_ms = debounce_ms
        self.retry_seconds = max(retry_seconds, 0.01)
        self.max_retry_seconds = max(self.retry_seconds, max_retry_seconds)
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self) -> None:
        """Start watching in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        if not self.projects_dir.is_dir():
            logger.warning("Projects dir %s does not exist yet, waiting for it to appear", self.projects_dir)

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info("File watcher started for %s", self.projects_dir)

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def watch_filter(self, change: Change, path: str) -> bool:
        return is_session_log(Path(path), self.projects_dir, self.depth)

    async def _watch_loop(self) -> None:
        """Watch until stopped, re-entering ``awatch`` with backoff after failures."""
        delay = self.retry_seconds
        try:
            while self._running:
                if self.projects_dir.is_dir():
                    try:
                        async for changes in awatch(
                            self.projects_dir,
                            watch_filter=self.watch_filter,
                            debounce=self.debounce_ms,
                            stop_event=self._stop_event,
                        ):
                            if not self._running:
                                break
                            delay = self.retry_seconds
                            self._handle_batch(changes)
                    except Exception as e:
                        logger.error(f"File watcher error: {e}")
                    if not self._running:
                        break
                    logger.info("Restarting file watch on %s in %ss", self.projects_dir, delay)
                await self._pause(delay)
                delay = min(delay * 2, self.max_retry_seconds)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        finally:
            self._running = False

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _handle_batch(self, changes: Iterable[tuple[Change, str]]) -> None:
        try:
            for event in self.classify_changes(changes):
                self._publish(event)
        except Exception as e:
            logger.error(f"Error publishing file changes: {e}")

    def classify_changes(self, changes: Iterable[tuple[Change, str]]) -> list[ChangeEvent]:
        """Map raw watchfiles changes to ChangeEvents.

        A path both added and modified within one batch is reported once as a
        new session. Deletions are ignored, as are files that vanished before
        we got to them.
        """
        kinds: dict[str, ChangeKind] = {}
        for change_type, path_str in changes:
            if not is_session_log(Path(path_str), self.projects_dir, self.depth):
                continue
            if change_type == Change.added:
                kinds[path_str] = ChangeKind.NEW_SESSION
            elif change_type == Change.modified:
                kinds.setdefault(path_str, ChangeKind.UPDATE)

        events = []
        for path_str in sorted(kinds):
            if not Path(path_str).is_file():
                logger.debug("Skipping change for vanished file %s", path_str)
                continue
            events.append(ChangeEvent(kind=kinds[path_str], affected_path=path_str))
        return events

    def _publish(self, event: ChangeEvent) -> None:
        delivered = self.broadcaster.publish(event)
        record_change_event(event.kind.value)
        logger.debug("Published %s for %s to %d subscribers", event.kind.value, event.affected_path, delivered)
