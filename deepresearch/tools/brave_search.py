from __future__ import annotations

from typing import Any

import httpx

from deepresearch.config import settings
from deepresearch.tools.tavily_search import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


async def search(
    query: str,
    *,
    max_results: int = 2,
) -> list[SearchResult]:
    """Execute a Brave web search and normalize results.

    Brave returns snippets rather than page text, so the description and the
    extra snippets together stand in for raw content.
    """
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {
        "q": query,
        "count": max_results,
        "extra_snippets": "true",
    }

    async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
        response = await client.get(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": settings.brave_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    raw_results = payload.get("web", {}).get("results", [])[:max_results]
    total = max(len(raw_results), 1)
    mapped: list[SearchResult] = []
    for idx, item in enumerate(raw_results):
        snippets = item.get("extra_snippets", []) or []
        description = (item.get("description", "") or "").strip()
        mapped.append(
            SearchResult(
                title=item.get("title", "") or "",
                url=item.get("url", "") or "",
                content=description,
                # Brave does not expose a relevance score in this response shape.
                score=max(0.0, 1.0 - (idx / total)),
                raw_content="\n".join([description, *snippets]).strip(),
            )
        )
    return mapped
