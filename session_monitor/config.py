"""Session Monitor configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Root holding one subdirectory per monitored project (encoded root path)
PROJECTS_DIR = Path(
    os.getenv("SESSION_MONITOR_PROJECTS_DIR", str(Path.home() / ".claude" / "projects"))
).expanduser()

# Status thresholds
IDLE_TIMEOUT_SECONDS = _env_int("SESSION_MONITOR_IDLE_TIMEOUT_SECONDS", 60 * 60)
WORKING_TIMEOUT_SECONDS = _env_int("SESSION_MONITOR_WORKING_TIMEOUT_SECONDS", 5 * 60)

# File watching
WATCH_ENABLED = _env_bool("SESSION_MONITOR_WATCH_ENABLED", True)
WATCH_DEPTH = _env_int("SESSION_MONITOR_WATCH_DEPTH", 2)
WATCH_DEBOUNCE_MS = _env_int("SESSION_MONITOR_WATCH_DEBOUNCE_MS", 500)
# Backoff before re-entering the watch after an error or while the root is missing
WATCH_RETRY_SECONDS = _env_int("SESSION_MONITOR_WATCH_RETRY_SECONDS", 2)
WATCH_MAX_RETRY_SECONDS = _env_int("SESSION_MONITOR_WATCH_MAX_RETRY_SECONDS", 60)

# Live updates
SUBSCRIBER_QUEUE_SIZE = _env_int("SESSION_MONITOR_SUBSCRIBER_QUEUE_SIZE", 100)
STREAM_KEEPALIVE_SECONDS = _env_int("SESSION_MONITOR_STREAM_KEEPALIVE_SECONDS", 15)

# Observability
OTEL_ENABLED = _env_bool("SESSION_MONITOR_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSION_MONITOR_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSION_MONITOR_OTEL_SERVICE_NAME", "session-monitor")
PROM_PORT = _env_int("SESSION_MONITOR_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("SESSION_MONITOR_HOST", "0.0.0.0")
PORT = _env_int("SESSION_MONITOR_PORT", 3100)

# CORS
FRONTEND_ORIGIN = os.getenv("SESSION_MONITOR_FRONTEND_ORIGIN", "http://localhost:5173")
