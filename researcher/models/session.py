from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from researcher.models.trace import AgentResponse, ResearchPhase, TraceStep, progress_for_phase


class RunProgress(BaseModel):
    """In-flight view of the current run, read by the polling path."""

    phase: Optional[ResearchPhase] = None
    steps: list[TraceStep] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def percent(self) -> int:
        return progress_for_phase(self.phase)

    def upsert(self, step: TraceStep) -> None:
        for position, existing in enumerate(self.steps):
            if existing.index == step.index:
                self.steps[position] = step
                return
        self.steps.append(step)


class Session(BaseModel):
    id: str
    created_at: datetime
    query: str
    response: AgentResponse = Field(default_factory=AgentResponse)
    progress: RunProgress = Field(default_factory=RunProgress)


class SessionSummary(BaseModel):
    id: str
    created_at: datetime
    query: str
    phase: Optional[ResearchPhase] = None
    progress: int = 0
    has_answer: bool = False

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls(
            id=session.id,
            created_at=session.created_at,
            query=session.query,
            phase=session.progress.phase,
            progress=session.progress.percent,
            has_answer=bool(session.response.final_output),
        )
