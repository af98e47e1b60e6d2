"""Ordered progress notifications for one research session.

Each research run produces an append-only sequence of events that ends with
exactly one terminal event. Heartbeat ticks are advisory: a slow subscriber
may miss some of them, every other event is delivered to every subscriber in
emission order.
"""
from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator

from loguru import logger

from deepresearch.models.events import SSEEvent
from deepresearch.services import streaming

STEP_LABELS = (
    "Initializing research...",
    "Planning search queries...",
    "Performing web search...",
    "Analyzing search results...",
    "Extracting key insights...",
    "Researching follow-up questions...",
    "Finalizing research report...",
)

STEP_INITIALIZING = 1
STEP_PLANNING = 2
STEP_SEARCHING = 3
STEP_EVALUATING = 4
STEP_EXTRACTING = 5
STEP_FOLLOW_UP = 6
STEP_FINALIZING = 7

# Heartbeats are dropped for subscribers with this many undelivered events.
HEARTBEAT_BACKLOG = 8

_CLOSED = object()


class ProgressEmitter:
    def __init__(
        self,
        session_id: str,
        *,
        total_steps: int = len(STEP_LABELS),
        heartbeat_seconds: float = 2.0,
    ):
        self.session_id = session_id
        self.total_steps = max(total_steps, 1)
        self.heartbeat_seconds = heartbeat_seconds
        self._seq = 0
        self._run_id = 0
        self._history: list[SSEEvent] = []
        self._subscribers: set[asyncio.Queue] = set()
        self._run_active = False
        self._closed = False
        self._step = 0
        self._started_at = time.monotonic()
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def run_active(self) -> bool:
        return self._run_active

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def step(self) -> int:
        return self._step

    @property
    def history(self) -> list[SSEEvent]:
        return list(self._history)

    def start_run(self) -> int:
        """Begin a new run and return its id; emits tagged with an older id are dropped."""
        if self._closed:
            raise RuntimeError(f"Progress stream for {self.session_id} is closed")
        self._stop_heartbeat()
        self._history = []
        self._step = 0
        self._started_at = time.monotonic()
        self._run_active = True
        self._run_id += 1
        if self.heartbeat_seconds > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat(self._run_id))
        return self._run_id

    def emit(self, event: SSEEvent, *, run_id: int | None = None) -> SSEEvent | None:
        """Append an event to the current run; ignored once the run has ended."""
        if run_id is not None and run_id != self._run_id:
            logger.debug(
                f"Dropping {event.event.value} for {self.session_id}: run {run_id} is stale"
            )
            return None
        if not self._run_active:
            logger.debug(
                f"Dropping {event.event.value} for {self.session_id}: no active run"
            )
            return None
        self._seq += 1
        event.seq = self._seq
        self._history.append(event)
        for queue in self._subscribers:
            self._deliver(queue, event)
        if event.is_terminal:
            self._run_active = False
            self._stop_heartbeat()
        return event

    def advance(self, step: int, message: str | None = None, *, run_id: int | None = None) -> None:
        """Move the step counter forward and announce it; it never moves back.

        Without a message, re-entering a step that was already reached is silent.
        """
        if run_id is not None and run_id != self._run_id:
            return
        if step <= self._step and message is None:
            return
        self._step = min(max(self._step, step), self.total_steps)
        self.emit(
            streaming.status(
                message or self.label(self._step),
                step=self._step,
                total_steps=self.total_steps,
            ),
            run_id=run_id,
        )

    def label(self, step: int) -> str:
        if 1 <= step <= len(STEP_LABELS):
            return STEP_LABELS[step - 1]
        return STEP_LABELS[-1]

    async def subscribe(self, *, replay: bool = False) -> AsyncIterator[SSEEvent]:
        """Yield events until the current (or next) run's terminal event."""
        if self._closed:
            if replay:
                for event in self._history:
                    yield event
            return
        queue: asyncio.Queue = asyncio.Queue()
        if replay:
            for event in self._history:
                queue.put_nowait(event)
        self._subscribers.add(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
                if item.is_terminal:
                    return
        finally:
            self._subscribers.discard(queue)

    def close(self) -> None:
        """End the stream for good; current and future subscribers finish."""
        self._closed = True
        self._run_active = False
        self._stop_heartbeat()
        for queue in self._subscribers:
            queue.put_nowait(_CLOSED)

    def _deliver(self, queue: asyncio.Queue, event: SSEEvent) -> None:
        if event.is_heartbeat and queue.qsize() >= HEARTBEAT_BACKLOG:
            return
        queue.put_nowait(event)

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat(self, run_id: int) -> None:
        while self._run_active:
            await asyncio.sleep(self.heartbeat_seconds)
            if not self._run_active:
                return
            step = max(self._step, 1)
            self.emit(
                streaming.progress(
                    self.label(step),
                    step,
                    self.total_steps,
                    time.monotonic() - self._started_at,
                ),
                run_id=run_id,
            )
