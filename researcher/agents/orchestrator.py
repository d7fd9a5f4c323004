from __future__ import annotations

import asyncio
import inspect
import re
from datetime import date, datetime, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, Sequence

from researcher.config import Settings, settings
from researcher.errors import CompletionUnavailable, SearchUnavailable, UpstreamFailure
from researcher.models.trace import AgentResponse, ResearchPhase, SourceLink, ToolKind, TraceStep
from researcher.services import logger as log_service
from researcher.services.prompt_store import render_prompt
from researcher.services.quota import QuotaTracker
from researcher.tools.gateways import CompletionGateway, SearchGateway
from researcher.tools.serper_search import SearchResult, results_to_dicts

# Analysis reflections containing either marker end the search loop early.
STOP_MARKERS = ("sufficient information", "enough information")

AWAITING_RESULTS = "awaiting results"
SEARCH_ERROR = "error occurred during search"
NO_RESPONSE = "No response generated."

CITATION_PATTERN = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")

StepSink = Callable[[TraceStep], Optional[Awaitable[None]]]


class ResearchOrchestrator:
    """ReAct-style research loop: Plan -> {Search -> Analyze}* -> Synthesize.

    Flow:
      1. Plan from the query and the initial search results
      2. Up to `max_iterations` times: refine a query from the most recent
         steps, search it, analyze a capped prefix of the results, and stop
         early once an analysis reports it has enough information
      3. Synthesize the final answer from the plan and the latest analyses

    Every step is yielded as it is produced. Prompt context is bounded at each
    stage (recent-steps window, capped results, capped synthesis history) so
    prompt size does not grow with the number of iterations.

    Search or completion failures inside the loop end the loop and fall
    through to synthesis; failures while planning or synthesizing propagate.
    """

    def __init__(
        self,
        search_gateway: SearchGateway,
        completion_gateway: CompletionGateway,
        *,
        quota: QuotaTracker | None = None,
        config: Settings | None = None,
        session_id: str | None = None,
    ):
        config = config or settings
        self.search_gateway = search_gateway
        self.completion_gateway = completion_gateway
        self.quota = quota
        self.session_id = session_id
        self.max_iterations = max(int(config.max_research_iterations), 1)
        self.refine_window_steps = max(int(config.refine_window_steps), 1)
        self.analysis_max_results = max(int(config.analysis_max_results), 1)
        self.synthesis_analysis_steps = max(int(config.synthesis_analysis_steps), 1)
        self.step_max_tokens = max(int(config.step_max_tokens), 1)
        self.synthesis_max_tokens = max(int(config.synthesis_max_tokens), self.step_max_tokens)
        self.temperature = float(config.completion_temperature)
        self.timeout = float(config.gateway_timeout_seconds) or None
        self._reset()

    def _reset(self) -> None:
        self._steps: list[TraceStep] = []
        self._consumed: dict[str, SearchResult] = {}
        self._final_output = ""
        self._sources: list[SourceLink] = []

    # --- gateway calls ---

    async def _complete(self, stage: str, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        if self.quota is not None:
            self.quota.acquire()
        try:
            return await asyncio.wait_for(
                self.completion_gateway.complete(
                    system_prompt, user_prompt, max_tokens, self.temperature
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            if self.quota is not None:
                self.quota.release()
            raise CompletionUnavailable(f"Completion timed out during {stage}") from e
        except (UpstreamFailure, asyncio.CancelledError):
            if self.quota is not None:
                self.quota.release()
            raise

    async def _search(self, query: str) -> list[SearchResult]:
        try:
            return await asyncio.wait_for(self.search_gateway.search(query), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SearchUnavailable(f"Search timed out for '{query}'") from e

    # --- step bookkeeping ---

    def _record(self, step: TraceStep) -> TraceStep:
        if step.index < len(self._steps):
            self._steps[step.index] = step
        else:
            self._steps.append(step)
        log_service.log_research_step(self.session_id, step)
        return step

    def _new_step(self, **fields: Any) -> TraceStep:
        return TraceStep(
            index=len(self._steps),
            timestamp=datetime.now(timezone.utc),
            **fields,
        )

    def _consume(self, results: Sequence[SearchResult]) -> None:
        for result in results:
            if result.link:
                self._consumed.setdefault(result.link, result)

    # --- prompt rendering ---

    @staticmethod
    def _format_result_links(results: Sequence[SearchResult]) -> str:
        if not results:
            return "(no results)"
        return "\n".join(
            f"{idx}. {r.title} - {r.link}" for idx, r in enumerate(results, start=1)
        )

    @staticmethod
    def _format_results(results: Sequence[SearchResult]) -> str:
        return "\n".join(
            f"RESULT {idx}:\nTitle: {r.title}\nURL: {r.link}\nSnippet: {r.snippet}\n"
            for idx, r in enumerate(results, start=1)
        )

    @staticmethod
    def _format_prior_context(prior_context: str | None) -> str:
        if not prior_context or not prior_context.strip():
            return ""
        return f"Context from the earlier conversation:\n{prior_context.strip()}\n\n"

    @staticmethod
    def _describe_step(step: TraceStep) -> str:
        line = f"- [{step.tool.value if step.tool else step.phase.value}] {step.action}: {step.observation}"
        if step.reflection:
            line += f"\n  {' '.join(step.reflection.split())[:600]}"
        return line

    # --- stages ---

    async def _plan(
        self,
        query: str,
        initial_results: Sequence[SearchResult],
        prior_context: str | None,
    ) -> TraceStep:
        plan = await self._complete(
            "planning",
            render_prompt("orchestrator.plan_system", today_iso=date.today().isoformat()),
            render_prompt(
                "orchestrator.plan_user",
                query=query,
                prior_context=self._format_prior_context(prior_context),
                formatted_results=self._format_result_links(initial_results),
            ),
            self.step_max_tokens,
        )
        return self._new_step(
            thought="I need to plan my research approach before digging into sources.",
            action="Create research plan",
            observation=f"Reviewed {len(initial_results)} initial search results",
            reflection=plan.strip() or NO_RESPONSE,
            tool=ToolKind.PLANNING,
            phase=ResearchPhase.PLANNING,
            results=results_to_dicts(list(initial_results)),
        )

    async def _refine_query(self, query: str) -> str:
        recent = self._steps[-self.refine_window_steps:]
        refined = await self._complete(
            "query refinement",
            render_prompt("orchestrator.refine_system"),
            render_prompt(
                "orchestrator.refine_user",
                query=query,
                recent_steps="\n".join(self._describe_step(s) for s in recent),
            ),
            self.step_max_tokens,
        )
        return refined.strip() or query

    async def _analyze(self, query: str, refined_query: str, results: list[SearchResult]) -> TraceStep:
        analyzed = results[: self.analysis_max_results]
        analysis = await self._complete(
            "analysis",
            render_prompt("orchestrator.analyze_system"),
            render_prompt(
                "orchestrator.analyze_user",
                query=query,
                refined_query=refined_query,
                formatted_results=self._format_results(analyzed),
            ),
            self.step_max_tokens,
        )
        return self._new_step(
            thought="I need to analyze these results and decide whether more research is needed.",
            action=f'Analyze results for "{refined_query}"',
            observation=f"Analyzed top {len(analyzed)} of {len(results)} results",
            reflection=analysis.strip() or NO_RESPONSE,
            tool=ToolKind.ANALYSIS,
            phase=ResearchPhase.ANALYZING,
            query=refined_query,
            results=results_to_dicts(analyzed),
        )

    def _synthesis_findings(self) -> str:
        analyses = [s for s in self._steps if s.tool == ToolKind.ANALYSIS]
        blocks: list[str] = []
        for step in analyses[-self.synthesis_analysis_steps:]:
            sources = "\n".join(
                f"  - [{r.get('title', '')}]({r.get('link', '')})" for r in step.results
            )
            blocks.append(
                f"Query: {step.query}\nAnalysis:\n{step.reflection}\nSources:\n{sources or '  (none)'}"
            )
        return "\n\n".join(blocks) or "(no analyses were completed)"

    async def _synthesize(self, query: str, prior_context: str | None) -> str:
        plan_step = next(s for s in self._steps if s.tool == ToolKind.PLANNING)
        report = await self._complete(
            "synthesis",
            render_prompt("orchestrator.synthesize_system"),
            render_prompt(
                "orchestrator.synthesize_user",
                query=query,
                prior_context=self._format_prior_context(prior_context),
                plan=plan_step.reflection or "",
                findings=self._synthesis_findings(),
            ),
            self.synthesis_max_tokens,
        )
        return report.strip() or NO_RESPONSE

    def _cited_sources(self, report: str) -> list[SourceLink]:
        sources: list[SourceLink] = []
        seen: set[str] = set()
        for title, url in CITATION_PATTERN.findall(report):
            url = url.strip()
            if url in seen:
                continue
            seen.add(url)
            if url not in self._consumed:
                log_service.log_event(
                    event_type="unverified_citation",
                    message="Final output cites a URL no search returned",
                    session_id=self.session_id,
                    url=url,
                )
                continue
            sources.append(SourceLink(title=title.strip(), url=url))
        return sources

    # --- public ---

    async def research(
        self,
        query: str,
        initial_search_results: Sequence[SearchResult],
        *,
        prior_context: str | None = None,
    ) -> AsyncGenerator[TraceStep, None]:
        """Execute the research loop, yielding each trace step as it is emitted.

        A step that is revised after emission (the search placeholder) is
        yielded again with the same index.
        """
        self._reset()
        if self.quota is not None:
            self.quota.reset_if_new_period()

        initial_results = list(initial_search_results)
        self._consume(initial_results)

        yield self._record(await self._plan(query, initial_results, prior_context))

        for iteration in range(self.max_iterations):
            try:
                refined_query = await self._refine_query(query)
            except UpstreamFailure as e:
                log_service.log_event(
                    event_type="loop_aborted",
                    message="Query refinement failed, moving to synthesis",
                    session_id=self.session_id,
                    error=e.message,
                )
                break

            search_step = self._new_step(
                thought=f"I should search for more specific information (iteration {iteration + 1}).",
                action=f'Search the web for "{refined_query}"',
                observation=AWAITING_RESULTS,
                tool=ToolKind.WEB_SEARCH,
                phase=ResearchPhase.SEARCHING,
                query=refined_query,
            )
            yield self._record(search_step)

            try:
                results = list(await self._search(refined_query))
            except UpstreamFailure as e:
                log_service.log_event(
                    event_type="loop_aborted",
                    message="Search failed, moving to synthesis",
                    session_id=self.session_id,
                    error=e.message,
                )
                yield self._record(search_step.revise(observation=SEARCH_ERROR))
                break

            self._consume(results)
            yield self._record(
                search_step.revise(
                    observation=f"Found {len(results)} results",
                    results=results_to_dicts(results),
                )
            )
            if not results:
                continue

            try:
                analysis_step = await self._analyze(query, refined_query, results)
            except UpstreamFailure as e:
                log_service.log_event(
                    event_type="loop_aborted",
                    message="Analysis failed, moving to synthesis",
                    session_id=self.session_id,
                    error=e.message,
                )
                break
            yield self._record(analysis_step)

            reflection = analysis_step.reflection or ""
            if any(marker in reflection for marker in STOP_MARKERS):
                break

        synthesis_step = self._new_step(
            thought="I have gathered enough material to write the final answer.",
            action="Synthesize final answer",
            observation="Writing the final answer",
            phase=ResearchPhase.SYNTHESIZING,
        )
        yield self._record(synthesis_step)

        self._final_output = await self._synthesize(query, prior_context)
        self._sources = self._cited_sources(self._final_output)

        yield self._record(
            synthesis_step.revise(
                observation=f"Final answer ready ({len(self._sources)} cited sources)",
                phase=ResearchPhase.DONE,
            )
        )

    @property
    def final_output(self) -> str:
        return self._final_output

    def response(self) -> AgentResponse:
        return AgentResponse(
            trace_steps=list(self._steps),
            final_output=self._final_output,
            sources=list(self._sources),
        )

    async def run(
        self,
        query: str,
        initial_search_results: Sequence[SearchResult],
        session_id: str | None = None,
        prior_context: str | None = None,
        *,
        on_step: StepSink | None = None,
    ) -> AgentResponse:
        """Run the loop to completion, handing every emitted step to `on_step`."""
        if session_id:
            self.session_id = session_id
        async for step in self.research(
            query, initial_search_results, prior_context=prior_context
        ):
            if on_step is not None:
                outcome = on_step(step)
                if inspect.isawaitable(outcome):
                    await outcome
        return self.response()
