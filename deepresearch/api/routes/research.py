from __future__ import annotations

import json as _json

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from deepresearch.api.deps import get_engine
from deepresearch.errors import (
    InvalidResumeState,
    ProviderError,
    ResearchError,
    SessionNotCompleted,
    SessionNotFound,
)
from deepresearch.models.research import ResearchOutput
from deepresearch.models.schemas import (
    ReportResponse,
    ResearchStartResponse,
    ResumeRequest,
    SessionView,
    StartResearchRequest,
)
from deepresearch.services import logger as log_service
from deepresearch.services import streaming
from deepresearch.services.engine import ResearchEngine

router = APIRouter(prefix="/api/research", tags=["research"])


def _http_error(exc: ResearchError) -> HTTPException:
    if isinstance(exc, SessionNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidResumeState, SessionNotCompleted)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ProviderError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@router.post("", response_model=ResearchStartResponse)
async def start_research(
    request: StartResearchRequest,
    engine: ResearchEngine = Depends(get_engine),
):
    """Open a session; with a topic, research starts right away."""
    try:
        session_id = await engine.start_session(request.topic)
        session = await engine.get_session(session_id)
    except ResearchError as exc:
        raise _http_error(exc) from exc
    log_service.log_event(
        event_type="session_started",
        message="Research session created",
        session_id=session_id,
        topic=(request.topic or "")[:100],
    )
    return ResearchStartResponse(session_id=session.id, state=session.state, prompt=session.prompt)


@router.post("/{session_id}/resume", response_model=SessionView)
async def resume_research(
    session_id: str,
    request: ResumeRequest,
    engine: ResearchEngine = Depends(get_engine),
):
    """Answer the pending prompt with either {"query": ...} or {"approved": ...}."""
    try:
        session = await engine.resume(session_id, request.model_dump(exclude_none=True))
    except ResearchError as exc:
        raise _http_error(exc) from exc
    return SessionView.from_session(session)


@router.get("/{session_id}", response_model=SessionView)
async def get_research(session_id: str, engine: ResearchEngine = Depends(get_engine)):
    try:
        session = await engine.get_session(session_id)
    except ResearchError as exc:
        raise _http_error(exc) from exc
    return SessionView.from_session(session)


@router.get("/{session_id}/stream")
async def stream_research(
    session_id: str,
    replay: bool = False,
    engine: ResearchEngine = Depends(get_engine),
):
    """SSE endpoint that streams research progress events."""
    try:
        await engine.get_session(session_id)
    except ResearchError as exc:
        raise _http_error(exc) from exc

    async def event_generator():
        try:
            async for event in engine.subscribe(session_id, replay=replay):
                yield {
                    "id": str(event.seq),
                    "event": event.event.value,
                    "data": _json.dumps(event.payload()),
                }
        except ResearchError as e:
            log_service.log_event(
                event_type="stream_error",
                message="Research stream failed",
                error=str(e),
                session_id=session_id,
            )
            error_event = streaming.error(str(e), session_id=session_id)
            yield {
                "event": error_event.event.value,
                "data": _json.dumps(error_event.payload()),
            }

    return EventSourceResponse(event_generator())


@router.get("/{session_id}/result", response_model=ResearchOutput)
async def get_result(session_id: str, engine: ResearchEngine = Depends(get_engine)):
    try:
        return await engine.get_output(session_id)
    except ResearchError as exc:
        raise _http_error(exc) from exc


@router.post("/{session_id}/report", response_model=ReportResponse)
async def create_report(session_id: str, engine: ResearchEngine = Depends(get_engine)):
    """Synthesize the markdown report for an approved session."""
    try:
        report = await engine.generate_report(session_id)
    except ResearchError as exc:
        raise _http_error(exc) from exc
    return ReportResponse(session_id=session_id, report=report)


@router.delete("/{session_id}")
async def abandon_research(session_id: str, engine: ResearchEngine = Depends(get_engine)):
    try:
        await engine.abandon(session_id)
    except ResearchError as exc:
        raise _http_error(exc) from exc
    return {"status": "deleted", "session_id": session_id}
