"""API router for project groups and their sessions."""
from fastapi import APIRouter, HTTPException, Request

from session_monitor.models import DataResponse, ProjectGroup, Session, SessionDetail

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])


@projects_router.get("", response_model=DataResponse[list[ProjectGroup]])
async def list_projects(request: Request):
    """List every project folder under the projects directory."""
    repo = request.app.state.repository
    return {"data": await repo.alist_projects()}


@projects_router.get("/{folder}/sessions", response_model=DataResponse[list[Session]])
async def list_project_sessions(folder: str, request: Request):
    repo = request.app.state.repository
    return {"data": await repo.alist_sessions(folder)}


@projects_router.get("/{folder}/sessions/{session_id}", response_model=DataResponse[SessionDetail])
async def get_project_session(folder: str, session_id: str, request: Request):
    repo = request.app.state.repository
    session = await repo.aget_session(folder, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"data": session}
