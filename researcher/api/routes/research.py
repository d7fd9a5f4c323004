from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

from researcher.api.deps import get_research_service
from researcher.errors import ResearchError
from researcher.models.schemas import ResearchRequest, ResearchResultResponse, ResearchStartResponse
from researcher.models.trace import ResearchPhase
from researcher.services import logger as log_service
from researcher.services import streaming
from researcher.services.research_service import ResearchService

router = APIRouter(prefix="/api/research", tags=["research"])


def _validated_query(request: ResearchRequest) -> str:
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Valid query parameter is required")
    return query


@router.post("", response_model=ResearchResultResponse)
async def submit_research(
    request: ResearchRequest,
    service: ResearchService = Depends(get_research_service),
):
    """Run a research session to completion and return the answer with its trace."""
    session_id, response = await service.submit_query(
        _validated_query(request), request.session_id
    )
    return ResearchResultResponse(session_id=session_id, response=response)


@router.post("/start", response_model=ResearchStartResponse)
async def start_research(
    request: ResearchRequest,
    service: ResearchService = Depends(get_research_service),
):
    """Start a research session in the background. Returns session_id to use for streaming."""
    session_id = await service.start_query(_validated_query(request), request.session_id)
    return ResearchStartResponse(session_id=session_id)


@router.get("/{session_id}/stream")
async def stream_research(
    session_id: str,
    replay: bool = Query(True),
    service: ResearchService = Depends(get_research_service),
):
    """SSE endpoint that streams trace steps until the session's run ends."""
    await service.get_session(session_id)

    async def event_generator():
        try:
            async for step in service.stream_trace(session_id, replay=replay):
                yield streaming.trace_step(step).to_message()

            session = await service.get_session(session_id)
            if session.progress.phase == ResearchPhase.FAILED:
                yield streaming.error(session.progress.error or "Research failed.", session_id).to_message()
            elif session.response.final_output:
                yield streaming.research_complete(session_id, session.response).to_message()
        except ResearchError as e:
            yield streaming.error(e.message, session_id).to_message()
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in research stream",
                error=str(e),
                session_id=session_id,
            )
            yield streaming.error("Research stream failed unexpectedly.", session_id).to_message()

    return EventSourceResponse(event_generator())
