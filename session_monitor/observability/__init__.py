"""Observability helpers."""

from session_monitor.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_scan,
    record_skipped_line,
    record_change_event,
    record_subscriber_drop,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_scan",
    "record_skipped_line",
    "record_change_event",
    "record_subscriber_drop",
]
