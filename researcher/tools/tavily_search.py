from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from researcher.config import settings
from researcher.tools.serper_search import SearchResult


async def search(
    query: str,
    *,
    max_results: int = 10,
    search_depth: str = "advanced",
    topic: str = "general",
) -> list[SearchResult]:
    """Execute a Tavily web search and return structured results."""
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": topic,
    }
    response = await client.search(**kwargs)

    return [
        SearchResult(
            title=r.get("title", ""),
            link=r.get("url", ""),
            snippet=r.get("content", ""),
            position=idx,
        )
        for idx, r in enumerate(response.get("results", []), start=1)
    ]
