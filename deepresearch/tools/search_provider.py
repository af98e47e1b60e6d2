from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from deepresearch.config import settings
from deepresearch.errors import ProviderError
from deepresearch.models.research import RawSearchResult
from deepresearch.tools import brave_search, tavily_search
from deepresearch.tools.tavily_search import SearchResult


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def _tavily(query: str, max_results: int) -> list[SearchResult]:
    try:
        return await tavily_search.search(query=query, max_results=max_results)
    except Exception as e:
        raise ProviderError("tavily", str(e)) from e


async def search(query: str, *, max_results: int = 2) -> SearchResponse:
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily

    if provider == "tavily":
        results = await _tavily(query, max_results)
        return SearchResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(query=query, max_results=max_results)
        except Exception as e:
            if not use_fallback:
                raise ProviderError("brave", str(e)) from e
            fallback_results = await _tavily(query, max_results)
            return SearchResponse(
                results=fallback_results,
                provider="tavily",
                fallback_from="brave",
                fallback_reason=str(e),
            )
        if results or not use_fallback:
            return SearchResponse(results=results, provider="brave")

        fallback_results = await _tavily(query, max_results)
        return SearchResponse(
            results=fallback_results,
            provider="tavily",
            fallback_from="brave",
            fallback_reason="brave returned zero results",
        )

    raise ProviderError("search", f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


class WebSearchProvider:
    """search(query) -> raw results, failing only with ProviderError."""

    def __init__(self, max_results: int | None = None, timeout: float | None = None):
        self.max_results = max(int(max_results or settings.search_max_results_per_query), 1)
        self.timeout = timeout if timeout is not None else settings.search_timeout_seconds

    async def search(self, query: str) -> list[RawSearchResult]:
        try:
            response = await asyncio.wait_for(
                search(query, max_results=self.max_results),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError("search", f"timed out after {self.timeout}s") from e

        if response.fallback_from:
            logger.warning(
                f"Search for '{query[:80]}' fell back from {response.fallback_from} "
                f"to {response.provider}: {response.fallback_reason}"
            )
        return [
            RawSearchResult(
                title=r.title,
                url=r.url,
                raw_content=r.raw_content or r.content,
            )
            for r in response.results
        ]
