from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import httpx

from researcher.config import settings

SERPER_SEARCH_URL = "https://google.serper.dev/search"


@dataclass
class SearchResult:
    title: str
    link: str
    snippet: str
    position: int


async def search(
    query: str,
    *,
    max_results: int = 10,
    timeout: float | None = None,
) -> list[SearchResult]:
    """Execute a Serper.dev Google search and normalize the organic results."""
    if not settings.serper_api_key:
        raise RuntimeError("SERPER_API_KEY is not configured")

    payload: dict[str, Any] = {
        "q": query,
        "gl": settings.search_country,
        "hl": settings.search_language,
        "num": max_results,
    }

    async with httpx.AsyncClient(timeout=timeout or settings.gateway_timeout_seconds) as client:
        response = await client.post(
            SERPER_SEARCH_URL,
            json=payload,
            headers={
                "X-API-KEY": settings.serper_api_key,
                "Content-Type": "application/json",
            },
        )
        response.raise_for_status()
        data = response.json()

    mapped: list[SearchResult] = []
    for idx, item in enumerate(data.get("organic", []) or [], start=1):
        mapped.append(
            SearchResult(
                title=item.get("title", "") or "",
                link=item.get("link", "") or "",
                snippet=item.get("snippet", "") or "",
                position=int(item.get("position") or idx),
            )
        )
    return mapped[:max_results]


def results_to_dicts(results: list[SearchResult]) -> list[dict[str, Any]]:
    """Convert SearchResult list to JSON-serializable dicts."""
    return [asdict(r) for r in results]
