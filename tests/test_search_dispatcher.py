from __future__ import annotations

import asyncio

import pytest

from conftest import FakeSearchProvider, FakeSummarizer, raw
from deepresearch.errors import ProviderError
from deepresearch.models.research import DedupLedger, Query
from deepresearch.services.search_dispatcher import (
    DUPLICATE_QUERY_NOTE,
    NO_CONTENT,
    NO_RESULTS_NOTE,
    SearchDispatcher,
)


def make_dispatcher(provider, summarizer=None) -> SearchDispatcher:
    return SearchDispatcher(
        provider,
        summarizer or FakeSummarizer(),
        max_parallel_summarize=2,
        min_content_chars=100,
        fallback_chars=500,
    )


@pytest.mark.asyncio
async def test_dispatch_summarizes_and_records_urls():
    provider = FakeSearchProvider({"solar": [raw("https://a.com"), raw("https://b.com")]})
    ledger = DedupLedger()

    outcome = await make_dispatcher(provider).dispatch(Query(text="solar"), ledger)

    assert outcome.error is None
    assert [r.content for r in outcome.results] == [
        "summary of https://a.com",
        "summary of https://b.com",
    ]
    assert ledger.has_query("solar")
    assert ledger.seen_urls == {"https://a.com", "https://b.com"}


@pytest.mark.asyncio
async def test_duplicate_query_short_circuits():
    provider = FakeSearchProvider({"solar": [raw("https://a.com")]})
    ledger = DedupLedger()
    ledger.record_query("solar")

    outcome = await make_dispatcher(provider).dispatch(Query(text="solar"), ledger)

    assert outcome.duplicate is True
    assert outcome.error == DUPLICATE_QUERY_NOTE
    assert outcome.results == []
    assert provider.calls == []


@pytest.mark.asyncio
async def test_seen_urls_are_dropped_before_summarization():
    provider = FakeSearchProvider({"solar": [raw("https://a.com"), raw("https://b.com")]})
    summarizer = FakeSummarizer()
    ledger = DedupLedger()
    ledger.record_url("https://a.com")

    outcome = await make_dispatcher(provider, summarizer).dispatch(Query(text="solar"), ledger)

    assert [r.url for r in outcome.results] == ["https://b.com"]
    assert summarizer.calls == ["https://b.com"]


@pytest.mark.asyncio
async def test_invalid_urls_are_dropped():
    provider = FakeSearchProvider({"solar": [raw("ftp://files.example.com"), raw("https://ok.com")]})
    ledger = DedupLedger()

    outcome = await make_dispatcher(provider).dispatch(Query(text="solar"), ledger)

    assert [r.url for r in outcome.results] == ["https://ok.com"]
    assert not ledger.has_url("ftp://files.example.com")


@pytest.mark.asyncio
async def test_short_and_empty_content_skip_summarization():
    provider = FakeSearchProvider(
        {"solar": [raw("https://short.com", content="tiny note"), raw("https://empty.com", content="")]}
    )
    summarizer = FakeSummarizer()

    outcome = await make_dispatcher(provider, summarizer).dispatch(Query(text="solar"), DedupLedger())

    assert [r.content for r in outcome.results] == ["tiny note", NO_CONTENT]
    assert summarizer.calls == []


@pytest.mark.asyncio
async def test_summarizer_failure_falls_back_to_truncation():
    content = "x" * 2000
    provider = FakeSearchProvider({"solar": [raw("https://a.com", content=content)]})

    outcome = await make_dispatcher(provider, FakeSummarizer(fail=True)).dispatch(
        Query(text="solar"), DedupLedger()
    )

    assert len(outcome.results) == 1
    assert outcome.results[0].content == "x" * 500 + "..."


@pytest.mark.asyncio
async def test_provider_failure_returns_empty_with_reason():
    provider = FakeSearchProvider(errors={"solar": ProviderError("tavily", "rate limited")})
    ledger = DedupLedger()

    outcome = await make_dispatcher(provider).dispatch(Query(text="solar"), ledger)

    assert outcome.results == []
    assert "rate limited" in outcome.error
    assert outcome.duplicate is False
    assert ledger.has_query("solar")


@pytest.mark.asyncio
async def test_zero_results_are_not_an_error():
    outcome = await make_dispatcher(FakeSearchProvider()).dispatch(Query(text="solar"), DedupLedger())

    assert outcome.results == []
    assert outcome.error == NO_RESULTS_NOTE


@pytest.mark.asyncio
async def test_concurrent_dispatches_process_a_shared_url_once():
    provider = FakeSearchProvider(
        {
            "solar": [raw("https://shared.com"), raw("https://a.com")],
            "batteries": [raw("https://shared.com"), raw("https://b.com")],
        }
    )
    summarizer = FakeSummarizer()
    dispatcher = make_dispatcher(provider, summarizer)
    ledger = DedupLedger()

    first, second = await asyncio.gather(
        dispatcher.dispatch(Query(text="solar"), ledger),
        dispatcher.dispatch(Query(text="batteries"), ledger),
    )

    urls = [r.url for r in first.results + second.results]
    assert urls.count("https://shared.com") == 1
    assert summarizer.calls.count("https://shared.com") == 1
