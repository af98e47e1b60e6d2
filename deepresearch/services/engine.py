"""Research session registry and the two-phase state machine.

A session suspends twice: once for its topic and once for human approval.
Everything that has to survive a suspend point lives on ResearchSession and
is written to the session store whenever the state changes, so a process can
pick a session up again after an arbitrary delay.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator
from uuid import uuid4

from loguru import logger

from deepresearch.agents.evaluator import ResultEvaluator
from deepresearch.agents.extractor import InsightExtractor
from deepresearch.agents.planner import QueryPlanner
from deepresearch.agents.reporter import ReportSynthesizer
from deepresearch.agents.summarizer import WebSummarizer
from deepresearch.config import Settings, settings
from deepresearch.errors import InvalidResumeState, SessionNotCompleted, SessionNotFound
from deepresearch.llm_client import CompletionService
from deepresearch.models.events import SSEEvent
from deepresearch.models.research import (
    ResearchOutput,
    ResearchPhase,
    ResearchSession,
    SessionState,
)
from deepresearch.services import logger as log_service
from deepresearch.services import streaming
from deepresearch.services.phase_runner import PhaseOutcome, PhaseRunner, collect_follow_ups
from deepresearch.services.progress import (
    STEP_FINALIZING,
    STEP_FOLLOW_UP,
    STEP_INITIALIZING,
    STEP_PLANNING,
    ProgressEmitter,
)
from deepresearch.services.search_dispatcher import SearchDispatcher
from deepresearch.services.session_store import SessionStore
from deepresearch.tools import web_utils
from deepresearch.tools.search_provider import WebSearchProvider

TOPIC_PROMPT = "What would you like to research?"
APPROVAL_PROMPT = "Is this research sufficient? [y/n]"
INTERRUPTED_ERROR = "research interrupted"


def build_summary(session: ResearchSession) -> str:
    lines = [f'Research completed on "{session.topic}":', ""]
    lines.append(
        f"{len(session.completed_queries)} queries searched, "
        f"{sum(1 for r in session.search_results if r.is_relevant)} relevant sources, "
        f"{len(session.learnings)} learnings."
    )
    if session.learnings:
        lines.append("")
        for learning in session.learnings:
            lines.append(
                f"- {web_utils.truncate_content(learning.text, 300)} "
                f"({web_utils.extract_domain(learning.source_url)})"
            )
    if session.error:
        lines.extend(["", f"Research ended early: {session.error}"])
    return "\n".join(lines)


class ResearchEngine:
    def __init__(
        self,
        store: SessionStore,
        *,
        completion: CompletionService | None = None,
        search_provider: Any | None = None,
        summarizer: Any | None = None,
        planner: QueryPlanner | None = None,
        evaluator: ResultEvaluator | None = None,
        extractor: InsightExtractor | None = None,
        reporter: ReportSynthesizer | None = None,
        config: Settings = settings,
    ):
        self.store = store
        self.config = config
        completion = completion or CompletionService()
        self.planner = planner or QueryPlanner(
            completion,
            min_queries=config.initial_min_queries,
            max_queries=config.initial_max_queries,
        )
        self.evaluator = evaluator or ResultEvaluator(completion)
        self.extractor = extractor or InsightExtractor(completion)
        self.reporter = reporter or ReportSynthesizer(completion)
        self.dispatcher = SearchDispatcher(
            search_provider
            or WebSearchProvider(config.search_max_results_per_query, config.search_timeout_seconds),
            summarizer or WebSummarizer(completion),
            max_parallel_summarize=config.max_parallel_summarize,
            min_content_chars=config.summary_min_content_chars,
            fallback_chars=config.summary_fallback_chars,
        )
        self._sessions: dict[str, ResearchSession] = {}
        self._emitters: dict[str, ProgressEmitter] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # --- Public API ---

    async def start_session(self, topic: str | None = None) -> str:
        """Create a session; with a topic its first run starts straight away."""
        session = ResearchSession(id=uuid4().hex, prompt=TOPIC_PROMPT)
        if topic is not None:
            self._clean_topic(session.id, topic)
        self._sessions[session.id] = session
        await self._save(session)
        log_service.log_research_step(session.id, "session", "created")
        if topic is not None:
            await self.resume(session.id, {"query": topic})
        return session.id

    async def resume(self, session_id: str, payload: dict[str, Any]) -> ResearchSession:
        """Answer the pending suspend point.

        `{"query": str}` answers the topic prompt and schedules the research
        run in the background; `{"approved": bool}` answers the approval
        prompt. Anything else raises InvalidResumeState before the session is
        touched.
        """
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            expected = session.pending_input
            received = ",".join(sorted(payload)) or "(empty)"
            if expected is None or set(payload) != {expected}:
                if session.is_terminal:
                    self._forget(session_id)
                raise InvalidResumeState(session_id, expected, received)

            value = payload[expected]
            if session.state == SessionState.AWAITING_TOPIC:
                self._begin_run(session, self._clean_topic(session_id, value))
            else:
                if not isinstance(value, bool):
                    raise InvalidResumeState(session_id, "approved (true/false)", repr(value))
                await self._decide(session, value)
            return session

    async def wait(self, session_id: str) -> ResearchSession:
        """Wait for the active research run, if any, then return the session."""
        task = self._tasks.get(session_id)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return await self._load(session_id)

    async def get_session(self, session_id: str) -> ResearchSession:
        return await self._load(session_id)

    async def subscribe(self, session_id: str, *, replay: bool = False) -> AsyncIterator[SSEEvent]:
        session = await self._load(session_id)
        if session.is_terminal and session_id not in self._emitters:
            return
        async for event in self._emitter_for(session_id).subscribe(replay=replay):
            yield event

    async def get_output(self, session_id: str) -> ResearchOutput:
        session = await self._load(session_id)
        if session.state != SessionState.COMPLETED:
            raise SessionNotCompleted(session_id, session.state.value)
        return session.output()

    async def generate_report(self, session_id: str) -> str:
        output = await self.get_output(session_id)
        log_service.log_research_step(session_id, "report", "started")
        report = await self.reporter.generate(output)
        log_service.log_research_step(session_id, "report", "completed", {"chars": len(report)})
        return report

    async def abandon(self, session_id: str) -> None:
        await self._load(session_id)
        task = self._tasks.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        emitter = self._emitters.get(session_id)
        if emitter is not None:
            emitter.close()
        self._forget(session_id)
        await self.store.delete_session_state(session_id)
        log_service.log_research_step(session_id, "session", "abandoned")

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for emitter in self._emitters.values():
            emitter.close()
        self._tasks.clear()
        self._emitters.clear()
        await self.store.close()

    # --- Suspend points ---

    @staticmethod
    def _clean_topic(session_id: str, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise InvalidResumeState(session_id, "query (non-empty text)", repr(value))
        return " ".join(value.split())

    def _begin_run(self, session: ResearchSession, topic: str) -> None:
        session.topic = topic
        session.phase = None
        session.attempts += 1
        session.approved = None
        session.prompt = None
        session.summary = None
        session.error = None
        session.transition(SessionState.PHASE1)

        emitter = self._emitter_for(session.id)
        run_id = emitter.start_run()
        self._tasks[session.id] = asyncio.create_task(
            self._run(session, emitter, run_id), name=f"research-{session.id}"
        )
        log_service.log_research_step(
            session.id, "session", "topic_received", {"topic": topic, "attempt": session.attempts}
        )

    async def _decide(self, session: ResearchSession, approved: bool) -> None:
        if approved:
            session.approved = True
            session.prompt = None
            session.transition(SessionState.COMPLETED)
        else:
            session.rejections += 1
            if session.rejections > self.config.max_rejections:
                session.approved = False
                session.prompt = None
                session.transition(SessionState.REJECTED)
            else:
                # Ledger, learnings and completed queries carry over to the retry.
                session.approved = None
                session.prompt = TOPIC_PROMPT
                session.transition(SessionState.AWAITING_TOPIC)

        await self._save(session)
        log_service.log_research_step(
            session.id,
            "approval",
            session.state.value,
            {"approved": approved, "rejections": session.rejections},
        )
        if session.is_terminal:
            emitter = self._emitter_for(session.id)
            run_id = emitter.start_run()
            emitter.emit(
                streaming.session_closed(session.id, session.state.value, session.approved),
                run_id=run_id,
            )
            emitter.close()
            self._forget(session.id)

    # --- Research run ---

    async def _run(self, session: ResearchSession, emitter: ProgressEmitter, run_id: int) -> None:
        try:
            emitter.emit(
                streaming.environment(
                    completion_configured=bool(self.config.openrouter_api_key),
                    search_provider=self.config.search_provider,
                    search_configured=bool(
                        self.config.tavily_api_key or self.config.brave_api_key
                    ),
                    session_store=self.config.session_store,
                ),
                run_id=run_id,
            )
            emitter.advance(STEP_INITIALIZING, run_id=run_id)
            try:
                await self._save(session)
                await self._research(session, emitter, run_id)
            except Exception as exc:
                logger.exception(f"Research run failed for session {session.id}")
                session.error = str(exc) or type(exc).__name__

            # Held through the terminal event; resumes queue behind it.
            async with self._lock_for(session.id):
                emitter.advance(STEP_FINALIZING, run_id=run_id)
                self._suspend_for_approval(session)
                try:
                    await self._save(session)
                except Exception as exc:
                    logger.exception(f"Could not persist session {session.id}")
                    session.error = session.error or f"could not persist session: {exc}"

                log_service.log_research_step(
                    session.id,
                    "session",
                    session.state.value,
                    {"learnings": len(session.learnings), "error": session.error},
                )
                emitter.emit(self._terminal_event(session), run_id=run_id)
        finally:
            if self._tasks.get(session.id) is asyncio.current_task():
                self._tasks.pop(session.id, None)

    @staticmethod
    def _terminal_event(session: ResearchSession) -> SSEEvent:
        if session.error:
            return streaming.error(
                session.error,
                session_id=session.id,
                state=session.state.value,
                summary=session.summary,
                prompt=session.prompt,
            )
        return streaming.research_complete(
            session.id,
            session.summary or "",
            prompt=session.prompt or APPROVAL_PROMPT,
            phase=session.phase.value if session.phase else None,
            learnings_count=len(session.learnings),
            completed_queries=[q.text for q in session.completed_queries],
        )

    async def _research(self, session: ResearchSession, emitter: ProgressEmitter, run_id: int) -> None:
        runner = PhaseRunner(
            self.dispatcher,
            self.evaluator,
            self.extractor,
            emitter=emitter,
            max_parallel_search=self.config.max_parallel_search,
            max_parallel_evaluate=self.config.max_parallel_evaluate,
            max_parallel_extract=self.config.max_parallel_extract,
        )

        emitter.advance(STEP_PLANNING, run_id=run_id)
        queries = await self.planner.plan_initial(
            session.topic or "", [q.text for q in session.completed_queries]
        )
        session.queries.extend(queries)
        emitter.emit(
            streaming.queries_planned(ResearchPhase.INITIAL.value, [q.text for q in queries]),
            run_id=run_id,
        )
        log_service.log_research_step(
            session.id, "phase1", "started", {"queries": [q.text for q in queries]}
        )

        phase1 = await runner.run(ResearchPhase.INITIAL, queries, session.ledger)
        self._absorb(session, phase1)
        session.phase = ResearchPhase.INITIAL
        await self._save(session)

        if not phase1.follow_up_questions():
            log_service.log_research_step(session.id, "phase2", "skipped", {"reason": "no follow-ups"})
            return

        session.transition(SessionState.COLLECT_FOLLOW_UPS)
        follow_ups = collect_follow_ups(
            phase1.learnings,
            session.completed_query_texts(),
            max_queries=self.config.max_follow_up_queries,
        )
        if not follow_ups:
            log_service.log_research_step(
                session.id, "phase2", "skipped", {"reason": "follow-ups already searched"}
            )
            return

        session.transition(SessionState.PHASE2)
        session.queries.extend(follow_ups)
        await self._save(session)
        emitter.advance(STEP_FOLLOW_UP, run_id=run_id)
        emitter.emit(
            streaming.queries_planned(ResearchPhase.FOLLOW_UP.value, [q.text for q in follow_ups]),
            run_id=run_id,
        )
        log_service.log_research_step(
            session.id, "phase2", "started", {"queries": [q.text for q in follow_ups]}
        )

        phase2 = await runner.run(ResearchPhase.FOLLOW_UP, follow_ups, session.ledger)
        self._absorb(session, phase2)
        session.phase = ResearchPhase.FOLLOW_UP

    @staticmethod
    def _absorb(session: ResearchSession, outcome: PhaseOutcome) -> None:
        session.completed_queries.extend(outcome.completed_queries)
        session.search_results.extend(outcome.search_results)
        session.learnings.extend(outcome.learnings)
        session.notes.extend(outcome.notes)
        session.touch()

    def _suspend_for_approval(self, session: ResearchSession) -> None:
        session.summary = build_summary(session)
        session.prompt = APPROVAL_PROMPT
        session.transition(SessionState.AWAITING_APPROVAL)

    # --- Registry and persistence ---

    def _forget(self, session_id: str) -> None:
        """Drop a session from the registry; the store keeps its final state."""
        self._sessions.pop(session_id, None)
        self._emitters.pop(session_id, None)
        self._locks.pop(session_id, None)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    def _emitter_for(self, session_id: str) -> ProgressEmitter:
        emitter = self._emitters.get(session_id)
        if emitter is None:
            emitter = ProgressEmitter(
                session_id,
                total_steps=self.config.progress_total_steps,
                heartbeat_seconds=self.config.progress_heartbeat_seconds,
            )
            self._emitters[session_id] = emitter
        return emitter

    async def _save(self, session: ResearchSession) -> None:
        await self.store.save_session_state(session.id, session.model_dump(mode="json"))

    async def _load(self, session_id: str) -> ResearchSession:
        session = self._sessions.get(session_id)
        if session is None:
            data = await self.store.load_session_state(session_id)
            if data is None:
                raise SessionNotFound(session_id)
            session = ResearchSession.model_validate(data)
            if session.is_terminal:
                return session
            self._sessions[session_id] = session

        if session.is_running and session_id not in self._tasks:
            logger.warning(f"Session {session_id} was interrupted mid-run, recovering")
            session.error = INTERRUPTED_ERROR
            self._suspend_for_approval(session)
            await self._save(session)
        return session
