from __future__ import annotations

from fastapi import APIRouter, Depends

from researcher.api.deps import get_research_service
from researcher.models.schemas import ProgressResponse
from researcher.models.session import Session, SessionSummary
from researcher.services.research_service import ResearchService

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionSummary])
async def list_sessions(service: ResearchService = Depends(get_research_service)):
    """List all research sessions, most recent first."""
    return await service.list_sessions()


@router.get("/{session_id}", response_model=Session)
async def get_session(session_id: str, service: ResearchService = Depends(get_research_service)):
    """Get a session with its query, final response and current run progress."""
    return await service.get_session(session_id)


@router.get("/{session_id}/progress", response_model=ProgressResponse)
async def get_progress(session_id: str, service: ResearchService = Depends(get_research_service)):
    """Polling alternative to the SSE stream; same step order as the stream."""
    session = await service.get_session(session_id)
    return ProgressResponse(
        session_id=session.id,
        phase=session.progress.phase,
        progress=session.progress.percent,
        steps=session.progress.steps,
        final_output=session.response.final_output,
        error=session.progress.error,
    )
