from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from deepresearch.models.research import ResearchPhase, ResearchSession, SessionState


# --- Requests ---


class StartResearchRequest(BaseModel):
    topic: str | None = None


class ResumeRequest(BaseModel):
    query: str | None = None
    approved: bool | None = None


# --- Responses ---


class ResearchStartResponse(BaseModel):
    session_id: str
    state: SessionState
    prompt: str | None


class SessionView(BaseModel):
    id: str
    state: SessionState
    topic: str | None
    phase: ResearchPhase | None
    pending_input: str | None
    prompt: str | None
    summary: str | None
    error: str | None
    approved: bool | None
    attempts: int
    rejections: int
    learnings_count: int
    completed_queries_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, session: ResearchSession) -> "SessionView":
        return cls(
            id=session.id,
            state=session.state,
            topic=session.topic,
            phase=session.phase,
            pending_input=session.pending_input,
            prompt=session.prompt,
            summary=session.summary,
            error=session.error,
            approved=session.approved,
            attempts=session.attempts,
            rejections=session.rejections,
            learnings_count=len(session.learnings),
            completed_queries_count=len(session.completed_queries),
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class ReportResponse(BaseModel):
    session_id: str
    report: str
