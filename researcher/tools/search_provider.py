from __future__ import annotations

from dataclasses import dataclass

import httpx

from researcher.config import settings
from researcher.errors import ConfigurationError, SearchUnavailable
from researcher.services import logger as log_service
from researcher.tools import serper_search, tavily_search
from researcher.tools.serper_search import SearchResult


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


def _can_fall_back() -> bool:
    return bool(settings.search_fallback_to_tavily and settings.tavily_api_key)


async def _tavily(query: str, max_results: int) -> list[SearchResult]:
    try:
        return await tavily_search.search(query=query, max_results=max_results)
    except Exception as e:
        raise SearchUnavailable(f"Search API error (tavily): {e}") from e


async def search(query: str, *, max_results: int | None = None) -> SearchResponse:
    """Run one query against the configured provider, falling back to Tavily if allowed."""
    provider = settings.search_provider.lower().strip()
    limit = max_results or settings.search_max_results

    if provider == "tavily":
        results = await _tavily(query, limit)
        return SearchResponse(results=results, provider="tavily")

    if provider == "serper":
        try:
            results = await serper_search.search(query=query, max_results=limit)
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            if not _can_fall_back():
                raise SearchUnavailable(f"Search API error (serper): {e}") from e
            log_service.log_event(
                event_type="search_fallback",
                message="Serper failed, falling back to Tavily",
                error=str(e),
            )
            return SearchResponse(
                results=await _tavily(query, limit),
                provider="tavily",
                fallback_from="serper",
                fallback_reason=str(e),
            )

        if results or not _can_fall_back():
            return SearchResponse(results=results, provider="serper")

        return SearchResponse(
            results=await _tavily(query, limit),
            provider="tavily",
            fallback_from="serper",
            fallback_reason="serper returned zero results",
        )

    raise ConfigurationError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")

