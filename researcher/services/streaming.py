from __future__ import annotations

from researcher.models.events import EventType, SSEEvent
from researcher.models.trace import AgentResponse, TraceStep


def trace_step(step: TraceStep) -> SSEEvent:
    return SSEEvent(event=EventType.TRACE_STEP, data=step.model_dump(mode="json"))


def research_complete(session_id: str, response: AgentResponse) -> SSEEvent:
    return SSEEvent(
        event=EventType.RESEARCH_COMPLETE,
        data={
            "session_id": session_id,
            "final_output": response.final_output,
            "sources": [source.model_dump() for source in response.sources],
            "steps": len(response.trace_steps),
        },
    )


def error(message: str, session_id: str | None = None) -> SSEEvent:
    data: dict[str, str] = {"message": message}
    if session_id:
        data["session_id"] = session_id
    return SSEEvent(event=EventType.ERROR, data=data)
