from __future__ import annotations

import asyncio
import functools
import threading
from typing import AsyncIterator

from researcher.agents.orchestrator import ResearchOrchestrator
from researcher.config import Settings, settings
from researcher.errors import ResearchError, SearchUnavailable, SessionBusy
from researcher.models.session import Session, SessionSummary
from researcher.models.trace import AgentResponse, ResearchPhase, TraceStep
from researcher.services import logger as log_service
from researcher.services.broadcaster import TraceBroadcaster
from researcher.services.quota import QuotaTracker
from researcher.services.session_store import SessionStore
from researcher.tools.gateways import CompletionGateway, SearchGateway
from researcher.tools.serper_search import SearchResult

PRIOR_ANSWER_CHARS = 4000


class ResearchService:
    """Inbound surface over the research core.

    Gateways may be injected; when they are not, the default providers are
    built at the start of each run, which is where missing credentials fail.
    One run per session id may be in flight; a second is rejected.
    """

    def __init__(
        self,
        store: SessionStore,
        broadcaster: TraceBroadcaster,
        *,
        quota: QuotaTracker | None = None,
        search_gateway: SearchGateway | None = None,
        completion_gateway: CompletionGateway | None = None,
        config: Settings | None = None,
    ):
        self.config = config or settings
        self.store = store
        self.broadcaster = broadcaster
        self.quota = quota if quota is not None else QuotaTracker(self.config.daily_completion_limit)
        self.search_gateway = search_gateway
        self.completion_gateway = completion_gateway
        self._active: set[str] = set()
        self._active_lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()

    # --- wiring ---

    def _gateways(self, model: str | None = None) -> tuple[SearchGateway, CompletionGateway]:
        search_gateway = self.search_gateway
        completion_gateway = self.completion_gateway
        if search_gateway is None:
            from researcher.tools.gateways import ProviderSearchGateway

            search_gateway = ProviderSearchGateway(self.config)
        if completion_gateway is None:
            from researcher.llm_client import OpenRouterCompletionGateway

            completion_gateway = OpenRouterCompletionGateway(model=model, config=self.config)
        return search_gateway, completion_gateway

    def _claim(self, session_id: str) -> None:
        with self._active_lock:
            if session_id in self._active:
                raise SessionBusy(session_id)
            self._active.add(session_id)

    def _release(self, session_id: str) -> None:
        with self._active_lock:
            self._active.discard(session_id)

    def is_running(self, session_id: str) -> bool:
        with self._active_lock:
            return session_id in self._active

    @staticmethod
    def _prior_context(session: Session) -> str | None:
        answer = session.response.final_output.strip()
        if not answer:
            return None
        if len(answer) > PRIOR_ANSWER_CHARS:
            answer = answer[:PRIOR_ANSWER_CHARS] + "..."
        return f"Previous question: {session.query}\nPrevious answer:\n{answer}"

    async def _prepare(
        self, query: str, session_id: str | None, model: str | None
    ) -> tuple[str, str, str | None, SearchGateway, CompletionGateway]:
        query = (query or "").strip()
        if not query:
            raise ValueError("Valid query parameter is required")

        search_gateway, completion_gateway = self._gateways(model)

        prior_context = None
        if session_id:
            session = await self.store.get(session_id)
            prior_context = self._prior_context(session)
        else:
            session_id = await self.store.create(query)

        self._claim(session_id)
        try:
            # reset progress before any stream can replay the previous run
            await self.store.start_run(session_id)
        except BaseException:
            self._release(session_id)
            raise
        return query, session_id, prior_context, search_gateway, completion_gateway

    # --- runs ---

    async def _initial_search(self, search_gateway: SearchGateway, query: str) -> list[SearchResult]:
        try:
            return await asyncio.wait_for(
                search_gateway.search(query),
                timeout=float(self.config.gateway_timeout_seconds) or None,
            )
        except asyncio.TimeoutError as e:
            raise SearchUnavailable(f"Search timed out for '{query}'") from e

    async def _run(
        self,
        session_id: str,
        query: str,
        prior_context: str | None,
        search_gateway: SearchGateway,
        completion_gateway: CompletionGateway,
    ) -> AgentResponse:
        log_service.log_event(
            event_type="research_started",
            message="Research started",
            session_id=session_id,
            query=query[:100],
            continued=prior_context is not None,
        )

        async def on_step(step: TraceStep) -> None:
            self.broadcaster.publish(session_id, step)
            await self.store.record_step(session_id, step)

        try:
            initial_results = await self._initial_search(search_gateway, query)

            orchestrator = ResearchOrchestrator(
                search_gateway,
                completion_gateway,
                quota=self.quota,
                config=self.config,
                session_id=session_id,
            )
            response = await orchestrator.run(
                query,
                initial_results,
                session_id=session_id,
                prior_context=prior_context,
                on_step=on_step,
            )
            await self.store.replace_response(session_id, response)
            await self.store.set_phase(session_id, ResearchPhase.DONE)
            log_service.log_event(
                event_type="research_completed",
                message="Research completed",
                session_id=session_id,
                steps=len(response.trace_steps),
                sources=len(response.sources),
            )
            return response
        except ResearchError as e:
            log_service.log_event(
                event_type="research_failed",
                message="Research run failed",
                session_id=session_id,
                error_type=type(e).__name__,
                error=e.message,
            )
            await self.store.set_phase(session_id, ResearchPhase.FAILED, e.message)
            raise
        except asyncio.CancelledError:
            await self.store.set_phase(session_id, ResearchPhase.FAILED, "Research was cancelled")
            raise
        finally:
            self.broadcaster.close(session_id)
            self._release(session_id)

    async def submit_query(
        self, query: str, session_id: str | None = None, *, model: str | None = None
    ) -> tuple[str, AgentResponse]:
        """Run a full research session and return (session_id, response)."""
        query, session_id, prior_context, search_gateway, completion_gateway = await self._prepare(
            query, session_id, model
        )
        response = await self._run(session_id, query, prior_context, search_gateway, completion_gateway)
        return session_id, response

    async def start_query(
        self, query: str, session_id: str | None = None, *, model: str | None = None
    ) -> str:
        """Launch a run in the background and return its session id immediately."""
        query, session_id, prior_context, search_gateway, completion_gateway = await self._prepare(
            query, session_id, model
        )
        task = asyncio.create_task(
            self._run(session_id, query, prior_context, search_gateway, completion_gateway),
            name=f"research-{session_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_task_done, session_id))
        return session_id

    def _on_task_done(self, session_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            # cancelled before its first step, _run's finally never ran
            self._release(session_id)
            return
        error = task.exception()
        if error is not None and not isinstance(error, ResearchError):
            log_service.logger.error("Background research task crashed", exc_info=error)

    async def wait_for_background_runs(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_background_runs(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_for_background_runs()

    # --- reads ---

    async def get_session(self, session_id: str) -> Session:
        return await self.store.get(session_id)

    async def list_sessions(self) -> list[SessionSummary]:
        return [SessionSummary.from_session(s) for s in await self.store.list()]

    async def stream_trace(
        self, session_id: str, *, replay: bool = True
    ) -> AsyncIterator[TraceStep]:
        """Yield the session's trace steps live until its run ends.

        With `replay`, steps already recorded for the current run are yielded
        first. The subscription opens before that read, so its queue may hold
        records the replay already covered; a live step only comes through
        when its revision is newer than the last one yielded for its index.
        """
        subscription = self.broadcaster.subscribe(session_id)
        try:
            session = await self.store.get(session_id)
            seen: dict[int, TraceStep] = {}
            if replay:
                for step in session.progress.steps:
                    seen[step.index] = step
                    yield step
            if not self.is_running(session_id):
                return
            async for step in subscription:
                previous = seen.get(step.index)
                if previous is not None and step.revision <= previous.revision:
                    continue
                seen[step.index] = step
                yield step
        finally:
            subscription.cancel()

