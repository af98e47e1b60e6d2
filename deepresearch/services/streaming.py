from __future__ import annotations

from typing import Any

from deepresearch.models.events import EventType, SSEEvent


def environment(**checks: Any) -> SSEEvent:
    return SSEEvent(event=EventType.ENVIRONMENT, data=checks)


def status(message: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.STATUS, data={"message": message, **kwargs})


def progress(message: str, step: int, total_steps: int, elapsed: float) -> SSEEvent:
    return SSEEvent(
        event=EventType.PROGRESS,
        data={
            "message": message,
            "step": step,
            "total_steps": total_steps,
            "elapsed": round(elapsed, 1),
        },
    )


def phase_started(phase: str, queries: list[str]) -> SSEEvent:
    return SSEEvent(event=EventType.PHASE_STARTED, data={"phase": phase, "queries": queries})


def queries_planned(phase: str, queries: list[str]) -> SSEEvent:
    return SSEEvent(event=EventType.QUERIES_PLANNED, data={"phase": phase, "queries": queries})


def search_result(
    query: str,
    results: list[dict],
    *,
    error: str | None = None,
    duplicate: bool = False,
) -> SSEEvent:
    data: dict[str, Any] = {"query": query, "results": results}
    if error:
        data["error"] = error
    if duplicate:
        data["duplicate"] = True
    return SSEEvent(event=EventType.SEARCH_RESULT, data=data)


def result_evaluated(query: str, url: str, is_relevant: bool, reason: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.RESULT_EVALUATED,
        data={"query": query, "url": url, "is_relevant": is_relevant, "reason": reason},
    )


def learning_extracted(learning: str, source: str, follow_up_questions: list[str]) -> SSEEvent:
    return SSEEvent(
        event=EventType.LEARNING_EXTRACTED,
        data={
            "learning": learning,
            "source": source,
            "follow_up_questions": follow_up_questions,
        },
    )


def phase_completed(phase: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.PHASE_COMPLETED, data={"phase": phase, **kwargs})


def research_complete(
    session_id: str,
    summary: str,
    *,
    prompt: str,
    phase: str | None,
    learnings_count: int,
    completed_queries: list[str],
) -> SSEEvent:
    return SSEEvent(
        event=EventType.RESEARCH_COMPLETE,
        data={
            "session_id": session_id,
            "summary": summary,
            "prompt": prompt,
            "phase": phase,
            "learnings_count": learnings_count,
            "completed_queries": completed_queries,
        },
    )


def session_closed(session_id: str, state: str, approved: bool | None) -> SSEEvent:
    return SSEEvent(
        event=EventType.SESSION_CLOSED,
        data={"session_id": session_id, "state": state, "approved": approved},
    )


def error(message: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"message": message, **kwargs})
