"""
Session store: id -> Session (query, terminal response, in-flight progress).

The orchestrator never sees this module; the research service resolves
sessions, records in-flight steps for polling clients, and writes the final
response once per run.
"""
from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

from researcher.config import Settings, settings
from researcher.errors import ConfigurationError, SessionNotFound
from researcher.models.session import RunProgress, Session
from researcher.models.trace import AgentResponse, ResearchPhase, TraceStep
from researcher.services import logger as log_service


def new_session_id() -> str:
    return str(uuid.uuid4())


class SessionStore(Protocol):
    async def create(self, query: str) -> str: ...

    async def get(self, session_id: str) -> Session:
        """Return the session or raise SessionNotFound."""
        ...

    async def replace_response(self, session_id: str, response: AgentResponse) -> None:
        """Overwrite the stored response; no-op for unknown ids."""
        ...

    async def list(self) -> list[Session]:
        """All sessions, newest first."""
        ...

    async def start_run(self, session_id: str) -> None:
        """Reset in-flight progress at the start of a run."""
        ...

    async def record_step(self, session_id: str, step: TraceStep) -> None: ...

    async def set_phase(
        self, session_id: str, phase: ResearchPhase, error: Optional[str] = None
    ) -> None: ...


class InMemorySessionStore:
    """Process-local store. Never evicts; retention is left to the deployment.

    Every read returns a deep copy taken under the lock, so a reader sees
    either the old response or the fully replaced one.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    async def create(self, query: str) -> str:
        session_id = new_session_id()
        session = Session(id=session_id, created_at=datetime.now(timezone.utc), query=query)
        with self._lock:
            self._sessions[session_id] = session
        log_service.log_store_operation("create", "memory", session_id)
        return session_id

    async def get(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            return session.model_copy(deep=True)

    async def replace_response(self, session_id: str, response: AgentResponse) -> None:
        replacement = response.model_copy(deep=True)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.response = replacement
        log_service.log_store_operation(
            "replace_response", "memory", session_id, steps=len(replacement.trace_steps)
        )

    async def list(self) -> list[Session]:
        with self._lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def start_run(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.progress = RunProgress(phase=ResearchPhase.PLANNING)

    async def record_step(self, session_id: str, step: TraceStep) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.progress.upsert(step)
            session.progress.phase = step.phase

    async def set_phase(
        self, session_id: str, phase: ResearchPhase, error: Optional[str] = None
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.progress.phase = phase
            session.progress.error = error

    def clear(self) -> None:
        """Drop all sessions (tests and local development)."""
        with self._lock:
            self._sessions.clear()


def get_session_store(config: Settings | None = None) -> SessionStore:
    config = config or settings
    backend = config.session_backend.lower().strip()
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "supabase":
        from researcher.services.supabase_store import SupabaseSessionStore

        return SupabaseSessionStore.from_settings(config)
    raise ConfigurationError(f"Unsupported SESSION_BACKEND: {config.session_backend}")
