"""Search one query and turn its hits into bounded, summarized results."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from deepresearch.config import settings
from deepresearch.errors import ProviderError
from deepresearch.models.research import DedupLedger, Query, RawSearchResult, SearchResult
from deepresearch.tools import web_utils

DUPLICATE_QUERY_NOTE = "duplicate query"
NO_RESULTS_NOTE = "no results"
NO_CONTENT = "No content available"


class SearchProvider(Protocol):
    async def search(self, query: str) -> list[RawSearchResult]:
        ...


class Summarizer(Protocol):
    async def summarize(
        self, raw_content: str, context_query: str, *, title: str = "", url: str = ""
    ) -> str:
        ...


@dataclass(slots=True)
class DispatchOutcome:
    query: Query
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None
    duplicate: bool = False


class SearchDispatcher:
    def __init__(
        self,
        provider: SearchProvider,
        summarizer: Summarizer,
        *,
        max_parallel_summarize: int | None = None,
        min_content_chars: int | None = None,
        fallback_chars: int | None = None,
    ):
        self.provider = provider
        self.summarizer = summarizer
        self.min_content_chars = (
            settings.summary_min_content_chars if min_content_chars is None else min_content_chars
        )
        self.fallback_chars = settings.summary_fallback_chars if fallback_chars is None else fallback_chars
        self._semaphore = asyncio.Semaphore(
            max(max_parallel_summarize or settings.max_parallel_summarize, 1)
        )

    async def dispatch(self, query: Query, ledger: DedupLedger) -> DispatchOutcome:
        """Run one query against the provider.

        Never raises for provider trouble: a failed or empty search comes back
        as an outcome with no results and an error reason. Urls already in the
        ledger are dropped before summarization; new ones are claimed here.
        """
        if not ledger.claim_query(query.text):
            logger.info(f"Skipping duplicate query: {query.text}")
            return DispatchOutcome(query=query, error=DUPLICATE_QUERY_NOTE, duplicate=True)

        try:
            raw_results = await self.provider.search(query.text)
        except ProviderError as exc:
            logger.warning(f"Search failed for '{query.text}': {exc}")
            return DispatchOutcome(query=query, error=str(exc))

        if not raw_results:
            logger.warning(f"Search returned no results for '{query.text}'")
            return DispatchOutcome(query=query, error=NO_RESULTS_NOTE)

        fresh: list[RawSearchResult] = []
        for item in raw_results:
            if not web_utils.is_valid_url(item.url):
                logger.debug(f"Dropping result with invalid url: {item.url!r}")
                continue
            if not ledger.claim_url(item.url):
                logger.debug(f"Dropping already seen url: {item.url}")
                continue
            fresh.append(item)

        results = await asyncio.gather(*(self._summarize(item, query.text) for item in fresh))
        return DispatchOutcome(query=query, results=list(results))

    async def _summarize(self, item: RawSearchResult, context_query: str) -> SearchResult:
        content = item.raw_content or ""
        if not content.strip():
            return SearchResult(title=item.title, url=item.url, content=NO_CONTENT)
        if len(content) < self.min_content_chars:
            return SearchResult(title=item.title, url=item.url, content=content)

        async with self._semaphore:
            try:
                summary = await self.summarizer.summarize(
                    content, context_query, title=item.title, url=item.url
                )
            except ProviderError as exc:
                logger.warning(f"Summarization failed for {item.url}, truncating: {exc}")
                summary = content[: self.fallback_chars] + "..."
        return SearchResult(title=item.title, url=item.url, content=summary)
