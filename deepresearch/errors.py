"""Error taxonomy for the research engine.

Provider errors are absorbed inside the engine and turned into placeholder
data. Session errors are the only failures surfaced to callers.
"""
from __future__ import annotations


class ResearchError(Exception):
    """Base class for research engine errors."""


class ProviderError(ResearchError):
    """A search, completion or summarization call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class InvalidResumeState(ResearchError):
    """Resume payload does not match the pending suspend point."""

    def __init__(self, session_id: str, expected: str | None, received: str):
        if expected is None:
            detail = f"session {session_id} is not waiting for input (got '{received}')"
        else:
            detail = f"session {session_id} expects '{expected}', got '{received}'"
        super().__init__(detail)
        self.session_id = session_id
        self.expected = expected
        self.received = received


class SessionNotFound(ResearchError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionNotCompleted(ResearchError):
    def __init__(self, session_id: str, state: str):
        super().__init__(f"Session {session_id} is '{state}', not completed")
        self.session_id = session_id
        self.state = state
