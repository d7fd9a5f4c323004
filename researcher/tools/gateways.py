"""Interfaces for the two external services the orchestrator consumes."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from researcher.config import Settings, require_credentials, settings
from researcher.services import logger as log_service
from researcher.tools import search_provider
from researcher.tools.serper_search import SearchResult


@runtime_checkable
class SearchGateway(Protocol):
    """Issues a single query and returns ranked results.

    Raises SearchUnavailable on transport or non-success responses.
    """

    async def search(self, query: str) -> list[SearchResult]: ...


@runtime_checkable
class CompletionGateway(Protocol):
    """Issues a single prompt and returns the generated text.

    Raises CompletionUnavailable on transport, auth or provider quota errors.
    """

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_output_tokens: int,
        temperature: float,
    ) -> str: ...


class ProviderSearchGateway:
    """SearchGateway backed by the configured web search provider."""

    def __init__(self, config: Settings | None = None, max_results: int | None = None):
        self.config = config or settings
        require_credentials(self.config)
        self.max_results = max_results or self.config.search_max_results

    async def search(self, query: str) -> list[SearchResult]:
        response = await search_provider.search(query, max_results=self.max_results)
        log_service.log_event(
            event_type="search_completed",
            message=f"Found {len(response.results)} results via {response.provider}",
            query=query[:100],
            provider=response.provider,
            fallback_from=response.fallback_from,
        )
        return response.results
