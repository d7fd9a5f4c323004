"""Logging for research runs.

Every helper writes one line of the form `KIND: {json}` to the `researcher`
logger, so a run can be followed in `logs/researcher.log` by session id and
step index.
"""
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from researcher.config import settings
from researcher.models.trace import TraceStep

LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

APP_LOG_LEVEL = getattr(logging, settings.app_log_level.upper(), logging.INFO)
NOISY_LOG_LEVEL = getattr(logging, settings.noisy_log_level.upper(), logging.WARNING)

OBSERVATION_PREVIEW_CHARS = 120

logging.basicConfig(
    level=APP_LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "researcher.log"),
        logging.StreamHandler(),
    ],
)

# Transport and framework chatter stays at NOISY_LOG_LEVEL.
for logger_name in (
    "uvicorn",
    "uvicorn.access",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "supabase",
    "postgrest",
):
    logging.getLogger(logger_name).setLevel(NOISY_LOG_LEVEL)

logger = logging.getLogger("researcher")


def _emit(kind: str, payload: dict[str, Any], level: int = logging.INFO) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    logger.log(level, f"{kind}: {json.dumps(record, default=str)}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    max_output_tokens: Optional[int] = None,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one completion request with its token usage."""
    _emit(
        "LLM_CALL",
        {
            "model": model,
            "caller": caller,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "max_output_tokens": max_output_tokens,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        logging.INFO if status == "success" else logging.WARNING,
    )


def log_research_step(session_id: Optional[str], step: TraceStep) -> None:
    """Log a trace step as it is emitted or revised."""
    observation = step.observation
    if len(observation) > OBSERVATION_PREVIEW_CHARS:
        observation = observation[:OBSERVATION_PREVIEW_CHARS] + "..."
    _emit(
        "TRACE_STEP",
        {
            "session_id": session_id,
            "index": step.index,
            "revision": step.revision,
            "phase": step.phase.value,
            "tool": step.tool.value if step.tool else None,
            "action": step.action,
            "observation": observation,
            "query": step.query,
            "result_count": len(step.results),
        },
    )


def log_store_operation(
    operation: str,
    backend: str,
    session_id: Optional[str] = None,
    status: str = "success",
    error: Optional[str] = None,
    **details: Any,
) -> None:
    """Log a session store read or write."""
    _emit(
        "STORE_OPERATION",
        {
            "operation": operation,
            "backend": backend,
            "session_id": session_id,
            "status": status,
            "error": error,
            **details,
        },
        logging.INFO if status == "success" else logging.ERROR,
    )


def log_quota_exhausted(limit: int, count: int, resets_at: date) -> None:
    _emit(
        "QUOTA_EXHAUSTED",
        {"limit": limit, "count": count, "resets_at": resets_at.isoformat()},
        logging.WARNING,
    )


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    """Log a run-level event (start, completion, fallback, failure)."""
    _emit("EVENT", {"event_type": event_type, "message": message, **kwargs})
