from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client, create_client

from researcher.config import Settings
from researcher.errors import ConfigurationError, SessionNotFound
from researcher.models.session import RunProgress, Session
from researcher.models.trace import AgentResponse, ResearchPhase, TraceStep
from researcher.services import logger as log_service
from researcher.services.session_store import new_session_id

BACKEND = "supabase"
TABLE = "sessions"


def _json_column(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _row_to_session(row: dict[str, Any]) -> Session:
    return Session(
        id=str(row["id"]),
        created_at=row["created_at"],
        query=row.get("query", ""),
        response=AgentResponse.model_validate(_json_column(row.get("response"))),
        progress=RunProgress.model_validate(_json_column(row.get("progress"))),
    )


class SupabaseSessionStore:
    """Session store on a Supabase `sessions` table.

    Columns: id text primary key, created_at timestamptz, query text,
    response jsonb, progress jsonb. The supabase client is blocking, so each
    query runs in a worker thread. Writes to one session are serialized by an
    in-process lock; the row update itself replaces the JSON column whole.
    """

    def __init__(self, client: Client):
        self._client = client
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings) -> "SupabaseSessionStore":
        if not config.supabase_url or not config.supabase_anon_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY are required for the supabase session backend")
        return cls(create_client(config.supabase_url, config.supabase_anon_key))

    async def _execute(self, operation: str, query: Any, session_id: Optional[str] = None) -> Any:
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            log_service.log_store_operation(
                operation, BACKEND, session_id, status="error", error=str(e), table=TABLE
            )
            raise
        return result

    async def _fetch_row(self, session_id: str) -> Optional[dict[str, Any]]:
        query = self._client.table(TABLE).select("*").eq("id", session_id)
        result = await self._execute("get", query, session_id)
        return result.data[0] if result.data else None

    async def _update(self, operation: str, session_id: str, values: dict[str, Any]) -> None:
        query = self._client.table(TABLE).update(values).eq("id", session_id)
        await self._execute(operation, query, session_id)
        log_service.log_store_operation(operation, BACKEND, session_id, table=TABLE)

    async def create(self, query: str) -> str:
        session_id = new_session_id()
        row = {
            "id": session_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "query": query,
            "response": AgentResponse().model_dump(mode="json"),
            "progress": RunProgress().model_dump(mode="json"),
        }
        await self._execute("create", self._client.table(TABLE).insert(row), session_id)
        log_service.log_store_operation("create", BACKEND, session_id, table=TABLE)
        return session_id

    async def get(self, session_id: str) -> Session:
        row = await self._fetch_row(session_id)
        if row is None:
            raise SessionNotFound(session_id)
        return _row_to_session(row)

    async def replace_response(self, session_id: str, response: AgentResponse) -> None:
        async with self._write_lock:
            if await self._fetch_row(session_id) is None:
                return
            await self._update(
                "replace_response", session_id, {"response": response.model_dump(mode="json")}
            )

    async def list(self) -> list[Session]:
        query = self._client.table(TABLE).select("*").order("created_at", desc=True)
        result = await self._execute("list", query)
        return [_row_to_session(row) for row in result.data or []]

    async def start_run(self, session_id: str) -> None:
        async with self._write_lock:
            progress = RunProgress(phase=ResearchPhase.PLANNING)
            await self._update("start_run", session_id, {"progress": progress.model_dump(mode="json")})

    async def record_step(self, session_id: str, step: TraceStep) -> None:
        async with self._write_lock:
            row = await self._fetch_row(session_id)
            if row is None:
                return
            progress = RunProgress.model_validate(_json_column(row.get("progress")))
            progress.upsert(step)
            progress.phase = step.phase
            await self._update("record_step", session_id, {"progress": progress.model_dump(mode="json")})

    async def set_phase(
        self, session_id: str, phase: ResearchPhase, error: Optional[str] = None
    ) -> None:
        async with self._write_lock:
            row = await self._fetch_row(session_id)
            if row is None:
                return
            progress = RunProgress.model_validate(_json_column(row.get("progress")))
            progress.phase = phase
            progress.error = error
            await self._update("set_phase", session_id, {"progress": progress.model_dump(mode="json")})
