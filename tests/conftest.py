"""Collaborator doubles shared by the engine, runner and dispatcher tests."""
from __future__ import annotations

import asyncio

import pytest

from deepresearch.config import Settings
from deepresearch.errors import ProviderError
from deepresearch.models.research import (
    EvaluationVerdict,
    Learning,
    Query,
    RawSearchResult,
    SearchResult,
)
from deepresearch.services.engine import ResearchEngine
from deepresearch.services.session_store import InMemorySessionStore

LONG_TEXT = "Solar capacity grew sharply while battery prices kept falling. " * 5


def raw(url: str, content: str = LONG_TEXT, title: str | None = None) -> RawSearchResult:
    return RawSearchResult(title=title or f"Title for {url}", url=url, raw_content=content)


class FakeSearchProvider:
    def __init__(
        self,
        results: dict[str, list[RawSearchResult]] | None = None,
        errors: dict[str, Exception] | None = None,
    ):
        self.results = results or {}
        self.errors = errors or {}
        self.calls: list[str] = []

    async def search(self, query: str) -> list[RawSearchResult]:
        self.calls.append(query)
        await asyncio.sleep(0)
        if query in self.errors:
            raise self.errors[query]
        return list(self.results.get(query, []))


class FakeSummarizer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    async def summarize(self, raw_content, context_query, *, title="", url=""):
        self.calls.append(url)
        await asyncio.sleep(0)
        if self.fail:
            raise ProviderError("summarizer", "quota exceeded")
        return f"summary of {url}"


class FakePlanner:
    """Returns the scripted plans in order, repeating the last one."""

    def __init__(self, *plans: list[str], error: Exception | None = None):
        self.plans = list(plans) or [["default query"]]
        self.error = error
        self.calls: list[tuple[str, list[str]]] = []

    async def plan_initial(self, topic: str, completed: list[str] | None = None) -> list[Query]:
        self.calls.append((topic, list(completed or [])))
        if self.error is not None:
            raise self.error
        texts = self.plans[min(len(self.calls), len(self.plans)) - 1]
        return [Query(text=t) for t in texts]


class FakeEvaluator:
    def __init__(self, irrelevant: set[str] | None = None, log: list[str] | None = None):
        self.irrelevant = irrelevant or set()
        self.calls: list[str] = []
        self.log = log if log is not None else []

    async def evaluate(self, query: str, result: SearchResult) -> EvaluationVerdict:
        self.calls.append(result.url)
        await asyncio.sleep(0)
        self.log.append(f"evaluate {result.url}")
        if result.url in self.irrelevant:
            return EvaluationVerdict(is_relevant=False, reason="off topic")
        return EvaluationVerdict(is_relevant=True, reason="on topic")


class FakeExtractor:
    """Maps source url to the follow-up question its learning carries."""

    def __init__(self, follow_ups: dict[str, str] | None = None, log: list[str] | None = None):
        self.follow_ups = follow_ups or {}
        self.calls: list[str] = []
        self.log = log if log is not None else []

    async def extract(self, query: str, result: SearchResult) -> Learning:
        self.calls.append(result.url)
        await asyncio.sleep(0)
        self.log.append(f"extract {result.url}")
        question = self.follow_ups.get(result.url)
        return Learning(
            text=f"learning from {result.url}",
            follow_up_questions=[question] if question else [],
            source_url=result.url,
            query=query,
        )


class FakeReporter:
    def __init__(self):
        self.outputs = []

    async def generate(self, output) -> str:
        self.outputs.append(output)
        return f"# Report on {output.topic}"


def make_settings(**overrides) -> Settings:
    values = {
        "session_store": "memory",
        "progress_heartbeat_seconds": 0,
        "log_to_file": False,
        "max_rejections": 3,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def make_engine():
    def _make(
        *,
        store=None,
        planner=None,
        search_provider=None,
        summarizer=None,
        evaluator=None,
        extractor=None,
        reporter=None,
        **overrides,
    ) -> ResearchEngine:
        return ResearchEngine(
            store or InMemorySessionStore(),
            search_provider=search_provider or FakeSearchProvider(),
            summarizer=summarizer or FakeSummarizer(),
            planner=planner or FakePlanner(),
            evaluator=evaluator or FakeEvaluator(),
            extractor=extractor or FakeExtractor(),
            reporter=reporter or FakeReporter(),
            config=make_settings(**overrides),
        )

    return _make
