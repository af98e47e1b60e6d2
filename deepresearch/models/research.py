from __future__ import annotations

import threading
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_serializer, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueryOrigin(str, Enum):
    INITIAL = "initial"
    FOLLOW_UP = "follow-up"


class ResearchPhase(str, Enum):
    """Phase marker reported in the final output."""

    INITIAL = "initial"
    FOLLOW_UP = "follow-up"


class SessionState(str, Enum):
    AWAITING_TOPIC = "awaiting_topic"
    PHASE1 = "phase1"
    COLLECT_FOLLOW_UPS = "collect_follow_ups"
    PHASE2 = "phase2"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    REJECTED = "rejected"


RUNNING_STATES = frozenset(
    {SessionState.PHASE1, SessionState.COLLECT_FOLLOW_UPS, SessionState.PHASE2}
)
TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.REJECTED})

# Payload key each suspend point accepts on resume.
SUSPEND_PAYLOAD_KEYS = {
    SessionState.AWAITING_TOPIC: "query",
    SessionState.AWAITING_APPROVAL: "approved",
}


class Query(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    origin: QueryOrigin = QueryOrigin.INITIAL


class RawSearchResult(BaseModel):
    """Search provider hit before summarization."""

    title: str = ""
    url: str
    raw_content: str = ""


class SearchResult(BaseModel):
    """Search hit whose content has already been summarized or truncated."""

    title: str = ""
    url: str
    content: str = ""


class EvaluationVerdict(BaseModel):
    is_relevant: bool
    reason: str = ""


class Learning(BaseModel):
    text: str
    follow_up_questions: list[str] = Field(default_factory=list)
    source_url: str
    query: str = ""

    @field_validator("follow_up_questions")
    @classmethod
    def _at_most_one(cls, value: list[str]) -> list[str]:
        cleaned = [" ".join(q.split()) for q in value if isinstance(q, str) and q.strip()]
        return cleaned[:1]


class EvaluatedSource(BaseModel):
    """What survives of a search result after evaluation (content is dropped)."""

    title: str = ""
    url: str
    query: str
    is_relevant: bool
    relevance: str = ""


class DedupLedger(BaseModel):
    """Session-wide record of issued queries and processed urls.

    Entries are never removed. The claim_* methods pair the membership check
    with the insert under one lock so concurrent dispatches cannot both
    process the same url.
    """

    seen_queries: set[str] = Field(default_factory=set)
    seen_urls: set[str] = Field(default_factory=set)

    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    def has_query(self, query: str) -> bool:
        return query in self.seen_queries

    def record_query(self, query: str) -> None:
        self.seen_queries.add(query)

    def has_url(self, url: str) -> bool:
        return url in self.seen_urls

    def record_url(self, url: str) -> None:
        self.seen_urls.add(url)

    def claim_query(self, query: str) -> bool:
        with self._lock:
            if query in self.seen_queries:
                return False
            self.seen_queries.add(query)
            return True

    def claim_url(self, url: str) -> bool:
        with self._lock:
            if url in self.seen_urls:
                return False
            self.seen_urls.add(url)
            return True

    @field_serializer("seen_queries", "seen_urls")
    def _sorted(self, value: set[str]) -> list[str]:
        return sorted(value)


class ResearchOutput(BaseModel):
    topic: str | None
    approved: bool
    queries: list[str]
    search_results: list[EvaluatedSource]
    learnings: list[Learning]
    completed_queries: list[str]
    phase: ResearchPhase | None


class ResearchSession(BaseModel):
    """Aggregate root persisted at every suspend/resume boundary."""

    id: str
    state: SessionState = SessionState.AWAITING_TOPIC
    topic: str | None = None
    phase: ResearchPhase | None = None
    queries: list[Query] = Field(default_factory=list)
    completed_queries: list[Query] = Field(default_factory=list)
    search_results: list[EvaluatedSource] = Field(default_factory=list)
    learnings: list[Learning] = Field(default_factory=list)
    ledger: DedupLedger = Field(default_factory=DedupLedger)
    approved: bool | None = None
    attempts: int = 0
    rejections: int = 0
    prompt: str | None = None
    summary: str | None = None
    notes: list[str] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def pending_input(self) -> str | None:
        return SUSPEND_PAYLOAD_KEYS.get(self.state)

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def transition(self, state: SessionState) -> None:
        self.state = state
        self.touch()

    def completed_query_texts(self) -> set[str]:
        return {q.text for q in self.completed_queries}

    def output(self) -> ResearchOutput:
        return ResearchOutput(
            topic=self.topic,
            approved=bool(self.approved),
            queries=[q.text for q in self.queries],
            search_results=list(self.search_results),
            learnings=list(self.learnings),
            completed_queries=[q.text for q in self.completed_queries],
            phase=self.phase,
        )
