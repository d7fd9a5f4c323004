from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolKind(str, Enum):
    PLANNING = "Planning"
    WEB_SEARCH = "Web Search"
    ANALYSIS = "Analysis"


class ResearchPhase(str, Enum):
    PLANNING = "planning"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"


PHASE_PROGRESS: dict[ResearchPhase, int] = {
    ResearchPhase.PLANNING: 10,
    ResearchPhase.SEARCHING: 40,
    ResearchPhase.ANALYZING: 70,
    ResearchPhase.SYNTHESIZING: 90,
    ResearchPhase.DONE: 100,
    ResearchPhase.FAILED: 100,
}


def progress_for_phase(phase: ResearchPhase | None) -> int:
    """Percent-complete for a run currently in `phase` (0 before the first step)."""
    if phase is None:
        return 0
    return PHASE_PROGRESS[phase]


class TraceStep(BaseModel):
    """One recorded unit of the agent's reasoning-action-observation cycle.

    `index` is assigned at emission and is the step's identity within a run:
    a revised step (e.g. a search whose observation moved from the placeholder
    to a result count) keeps its index and replaces the earlier record.
    `revision` counts those replacements, so a consumer can tell the newer of
    two records with the same index.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    revision: int = Field(default=0, ge=0)
    thought: str
    action: str
    observation: str
    reflection: Optional[str] = None
    tool: Optional[ToolKind] = None
    phase: ResearchPhase
    query: Optional[str] = None
    results: list[dict[str, Any]] = Field(default_factory=list)
    timestamp: Optional[datetime] = None

    @field_validator("thought", "action")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    def revise(self, **changes: Any) -> "TraceStep":
        """Return the next revision with `changes` applied; index and tool are preserved."""
        changes.pop("index", None)
        changes.pop("tool", None)
        changes["revision"] = self.revision + 1
        changes.setdefault("timestamp", datetime.now(timezone.utc))
        return self.model_copy(update=changes)


class SourceLink(BaseModel):
    title: str
    url: str


class AgentResponse(BaseModel):
    trace_steps: list[TraceStep] = Field(default_factory=list)
    final_output: str = ""
    sources: list[SourceLink] = Field(default_factory=list)

    def has_tool(self, tool: ToolKind) -> bool:
        return any(step.tool == tool for step in self.trace_steps)
