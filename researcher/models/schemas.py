from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from researcher.models.trace import AgentResponse, ResearchPhase, TraceStep


# --- Requests ---


class ResearchRequest(BaseModel):
    query: str = Field(min_length=1)
    session_id: Optional[str] = None


# --- Responses ---


class ResearchResultResponse(BaseModel):
    session_id: str
    response: AgentResponse


class ResearchStartResponse(BaseModel):
    session_id: str


class ProgressResponse(BaseModel):
    session_id: str
    phase: Optional[ResearchPhase]
    progress: int
    steps: list[TraceStep]
    final_output: str
    error: Optional[str] = None
