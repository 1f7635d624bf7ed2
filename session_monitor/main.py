"""Session Monitor FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from session_monitor import config
from session_monitor.broadcaster import EventBroadcaster
from session_monitor.file_watcher import SessionWatcher
from session_monitor.observability import initialize as initialize_observability, shutdown as shutdown_observability
from session_monitor.repository import SessionRepository
from session_monitor.routers.projects import projects_router
from session_monitor.routers.sessions import sessions_router, summary_router
from session_monitor.routers.stream import stream_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("session_monitor")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Session monitor starting up (projects dir: %s)", config.PROJECTS_DIR)
    initialize_observability(app)

    app.state.repository = SessionRepository(
        config.PROJECTS_DIR,
        idle_timeout=timedelta(seconds=config.IDLE_TIMEOUT_SECONDS),
        working_timeout=timedelta(seconds=config.WORKING_TIMEOUT_SECONDS),
    )
    broadcaster = EventBroadcaster(queue_size=config.SUBSCRIBER_QUEUE_SIZE)
    app.state.broadcaster = broadcaster

    watcher = SessionWatcher(
        config.PROJECTS_DIR,
        broadcaster,
        depth=config.WATCH_DEPTH,
        debounce_ms=config.WATCH_DEBOUNCE_MS,
    )
    app.state.watcher = watcher
    if config.WATCH_ENABLED:
        await watcher.start()

    yield

    logger.info("Session monitor shutting down")
    await watcher.stop()
    broadcaster.close()
    shutdown_observability(app)


app = FastAPI(
    title="Session Monitor API",
    description="Live status of coding-agent sessions derived from their JSONL logs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(projects_router)
app.include_router(sessions_router)
app.include_router(summary_router)
app.include_router(stream_router)


@app.get("/api/health")
def health(request: Request):
    """Health check endpoint."""
    watcher = getattr(request.app.state, "watcher", None)
    broadcaster = getattr(request.app.state, "broadcaster", None)
    return {
        "status": "ok",
        "watcher": "running" if watcher and watcher.is_running else "stopped",
        "subscribers": broadcaster.subscriber_count if broadcaster else 0,
    }


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run("session_monitor.main:app", host=config.HOST, port=config.PORT)
