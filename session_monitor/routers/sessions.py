"""API routers for the aggregate session listing and summary counters."""
from fastapi import APIRouter, HTTPException, Request

from session_monitor.models import DataResponse, Session, SessionDetail, SessionSummaryStats

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
summary_router = APIRouter(prefix="/api/summary", tags=["sessions"])


@sessions_router.get("", response_model=DataResponse[list[Session]])
async def list_sessions(request: Request):
    """Return every session across projects, newest activity first."""
    repo = request.app.state.repository
    return {"data": await repo.alist_sessions()}


@sessions_router.get("/{session_id}", response_model=DataResponse[SessionDetail])
async def get_session(session_id: str, request: Request):
    """Return a single session with its parsed messages."""
    repo = request.app.state.repository
    session = await repo.afind_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"data": session}


@summary_router.get("", response_model=DataResponse[SessionSummaryStats])
async def get_summary(request: Request):
    repo = request.app.state.repository
    return {"data": await repo.asummarize()}
