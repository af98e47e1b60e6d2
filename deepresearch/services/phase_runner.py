from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from deepresearch.agents.evaluator import ResultEvaluator
from deepresearch.agents.extractor import InsightExtractor
from deepresearch.config import settings
from deepresearch.models.research import (
    DedupLedger,
    EvaluatedSource,
    EvaluationVerdict,
    Learning,
    Query,
    QueryOrigin,
    ResearchPhase,
    SearchResult,
)
from deepresearch.services import streaming
from deepresearch.services.progress import (
    STEP_EVALUATING,
    STEP_EXTRACTING,
    STEP_SEARCHING,
    ProgressEmitter,
)
from deepresearch.services.search_dispatcher import SearchDispatcher
from deepresearch.tools import web_utils


@dataclass(slots=True)
class QueryOutcome:
    query: Query
    sources: list[EvaluatedSource] = field(default_factory=list)
    learnings: list[Learning] = field(default_factory=list)
    note: str | None = None
    duplicate: bool = False


@dataclass(slots=True)
class PhaseOutcome:
    phase: ResearchPhase
    queries: list[Query] = field(default_factory=list)
    learnings: list[Learning] = field(default_factory=list)
    completed_queries: list[Query] = field(default_factory=list)
    search_results: list[EvaluatedSource] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def follow_up_questions(self) -> list[str]:
        return [q for learning in self.learnings for q in learning.follow_up_questions]


def collect_follow_ups(
    learnings: Iterable[Learning],
    completed: Iterable[str],
    *,
    max_queries: int = 0,
) -> list[Query]:
    """Distinct follow-up questions, in learning order, not yet searched."""
    done = set(completed)
    seen: set[str] = set()
    queries: list[Query] = []
    for learning in learnings:
        for question in learning.follow_up_questions:
            text = " ".join(question.split())
            if not text or text in done or text in seen:
                continue
            seen.add(text)
            queries.append(Query(text=text, origin=QueryOrigin.FOLLOW_UP))
            if max_queries > 0 and len(queries) >= max_queries:
                return queries
    return queries


class PhaseRunner:
    """Drives one research phase: search, evaluate, extract, aggregate.

    Queries fan out concurrently. For each query, all of its results are
    evaluated before any of them is extracted. Follow-up mode strips the
    follow-up questions from the learnings it produces so a second phase can
    never seed a third.
    """

    def __init__(
        self,
        dispatcher: SearchDispatcher,
        evaluator: ResultEvaluator,
        extractor: InsightExtractor,
        *,
        emitter: ProgressEmitter | None = None,
        max_parallel_search: int | None = None,
        max_parallel_evaluate: int | None = None,
        max_parallel_extract: int | None = None,
    ):
        self.dispatcher = dispatcher
        self.evaluator = evaluator
        self.extractor = extractor
        self.emitter = emitter
        self._search_limit = max(max_parallel_search or settings.max_parallel_search, 1)
        self._evaluate_limit = max(max_parallel_evaluate or settings.max_parallel_evaluate, 1)
        self._extract_limit = max(max_parallel_extract or settings.max_parallel_extract, 1)

    async def run(
        self,
        phase: ResearchPhase,
        queries: list[Query],
        ledger: DedupLedger,
    ) -> PhaseOutcome:
        search_sem = asyncio.Semaphore(self._search_limit)
        evaluate_sem = asyncio.Semaphore(self._evaluate_limit)
        extract_sem = asyncio.Semaphore(self._extract_limit)

        self._emit(streaming.phase_started(phase.value, [q.text for q in queries]))
        self._advance(phase, STEP_SEARCHING)

        per_query = await asyncio.gather(
            *(
                self._run_query(q, phase, ledger, search_sem, evaluate_sem, extract_sem)
                for q in queries
            )
        )

        outcome = PhaseOutcome(phase=phase, queries=list(queries))
        for item in per_query:
            if item.note:
                outcome.notes.append(f"{item.query.text}: {item.note}")
            if item.duplicate:
                continue
            outcome.completed_queries.append(item.query)
            outcome.search_results.extend(item.sources)
            outcome.learnings.extend(item.learnings)

        self._emit(
            streaming.phase_completed(
                phase.value,
                completed_queries=[q.text for q in outcome.completed_queries],
                learnings_count=len(outcome.learnings),
                follow_up_questions=outcome.follow_up_questions(),
                notes=outcome.notes,
            )
        )
        logger.info(
            f"Phase '{phase.value}' done: {len(outcome.completed_queries)} queries, "
            f"{len(outcome.learnings)} learnings"
        )
        return outcome

    async def _run_query(
        self,
        query: Query,
        phase: ResearchPhase,
        ledger: DedupLedger,
        search_sem: asyncio.Semaphore,
        evaluate_sem: asyncio.Semaphore,
        extract_sem: asyncio.Semaphore,
    ) -> QueryOutcome:
        async with search_sem:
            dispatch = await self.dispatcher.dispatch(query, ledger)

        self._emit(
            streaming.search_result(
                query.text,
                [
                    {"title": r.title, "url": r.url, "domain": web_utils.extract_domain(r.url)}
                    for r in dispatch.results
                ],
                error=dispatch.error,
                duplicate=dispatch.duplicate,
            )
        )
        result = QueryOutcome(query=query, note=dispatch.error, duplicate=dispatch.duplicate)
        if not dispatch.results:
            return result

        self._advance(phase, STEP_EVALUATING)

        async def evaluate(item: SearchResult) -> EvaluationVerdict:
            async with evaluate_sem:
                return await self.evaluator.evaluate(query.text, item)

        verdicts = await asyncio.gather(*(evaluate(item) for item in dispatch.results))

        relevant: list[SearchResult] = []
        for item, verdict in zip(dispatch.results, verdicts):
            result.sources.append(
                EvaluatedSource(
                    title=item.title,
                    url=item.url,
                    query=query.text,
                    is_relevant=verdict.is_relevant,
                    relevance=verdict.reason,
                )
            )
            self._emit(
                streaming.result_evaluated(query.text, item.url, verdict.is_relevant, verdict.reason)
            )
            if verdict.is_relevant:
                relevant.append(item)

        if not relevant:
            return result

        self._advance(phase, STEP_EXTRACTING)

        async def extract(item: SearchResult) -> Learning:
            async with extract_sem:
                learning = await self.extractor.extract(query.text, item)
            if phase == ResearchPhase.FOLLOW_UP and learning.follow_up_questions:
                learning = learning.model_copy(update={"follow_up_questions": []})
            self._emit(
                streaming.learning_extracted(
                    learning.text, learning.source_url, learning.follow_up_questions
                )
            )
            return learning

        result.learnings = list(await asyncio.gather(*(extract(item) for item in relevant)))
        return result

    def _emit(self, event) -> None:
        if self.emitter is not None:
            self.emitter.emit(event)

    def _advance(self, phase: ResearchPhase, step: int) -> None:
        # Follow-up phase reports a single step of its own.
        if self.emitter is not None and phase == ResearchPhase.INITIAL:
            self.emitter.advance(step)
