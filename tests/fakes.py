"""Fixed fixtures and fake gateways shared by the test suite."""
from __future__ import annotations

from researcher.errors import CompletionUnavailable, SearchUnavailable
from researcher.tools.serper_search import SearchResult

QUERY = "Compare the best productivity tools for students"
REFINED_QUERY = "best note-taking and task apps for students 2026"

INITIAL_RESULTS = [
    SearchResult(title="Top 10 Study Apps", link="https://example.com/study-apps", snippet="A roundup.", position=1),
    SearchResult(title="Student Productivity Guide", link="https://example.com/guide", snippet="How to plan.", position=2),
    SearchResult(title="Pomodoro Timers Compared", link="https://example.com/pomodoro", snippet="Timers.", position=3),
]

REFINED_RESULTS = [
    SearchResult(title="Notion for Students", link="https://example.com/notion", snippet="Free plan.", position=1),
    SearchResult(title="Todoist Review", link="https://example.com/todoist", snippet="Task manager.", position=2),
    SearchResult(title="Obsidian vs OneNote", link="https://example.com/obsidian", snippet="Notes.", position=3),
]

PLAN_TEXT = "1. Identify popular tools\n2. Compare pricing\n3. Compare features"
ANALYSIS_TEXT = (
    "Notion and Todoist dominate ([Notion for Students](https://example.com/notion)). "
    "I have sufficient information to answer."
)
ANALYSIS_INCOMPLETE = "Notion looks strong, but pricing data is still missing."
SYNTHESIS_TEXT = (
    "## Productivity tools for students\n"
    "- [Notion for Students](https://example.com/notion) offers a free plan.\n"
    "- [Todoist Review](https://example.com/todoist) covers task management."
)


def stage_of(system_prompt: str) -> str:
    if "plan your approach" in system_prompt:
        return "plan"
    if "search query specialist" in system_prompt:
        return "refine"
    if "research analyst" in system_prompt:
        return "analyze"
    if "reflection on the information" in system_prompt:
        return "synthesize"
    raise AssertionError(f"unexpected system prompt: {system_prompt[:80]}")


class FakeSearchGateway:
    """Returns INITIAL_RESULTS for the first call and REFINED_RESULTS after, unless overridden."""

    def __init__(self, responses: list[list[SearchResult]] | None = None, fail_after: int | None = None):
        self.responses = responses if responses is not None else [INITIAL_RESULTS, REFINED_RESULTS]
        self.fail_after = fail_after
        self.queries: list[str] = []

    async def search(self, query: str) -> list[SearchResult]:
        self.queries.append(query)
        if self.fail_after is not None and len(self.queries) > self.fail_after:
            raise SearchUnavailable("Search API error: 503")
        idx = min(len(self.queries) - 1, len(self.responses) - 1)
        return list(self.responses[idx])


class FakeCompletionGateway:
    """Deterministic text per prompt type; records every call."""

    def __init__(
        self,
        analysis: str | list[str] = ANALYSIS_TEXT,
        refined: str = REFINED_QUERY,
        synthesis: str = SYNTHESIS_TEXT,
        fail_on: set[str] | None = None,
    ):
        self.analyses = [analysis] if isinstance(analysis, str) else list(analysis)
        self.refined = refined
        self.synthesis = synthesis
        self.fail_on = fail_on or set()
        self.calls: list[dict] = []

    def stages(self) -> list[str]:
        return [call["stage"] for call in self.calls]

    async def complete(self, system_prompt: str, user_prompt: str, max_output_tokens: int, temperature: float) -> str:
        stage = stage_of(system_prompt)
        self.calls.append(
            {"stage": stage, "system": system_prompt, "user": user_prompt, "max_tokens": max_output_tokens}
        )
        if stage in self.fail_on:
            raise CompletionUnavailable(f"provider rejected {stage}")
        if stage == "plan":
            return PLAN_TEXT
        if stage == "refine":
            return self.refined
        if stage == "analyze":
            analyzed = sum(1 for c in self.calls if c["stage"] == "analyze")
            return self.analyses[min(analyzed - 1, len(self.analyses) - 1)]
        return self.synthesis


