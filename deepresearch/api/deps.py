from __future__ import annotations

from fastapi import HTTPException, Request

from deepresearch.services.engine import ResearchEngine


def get_engine(request: Request) -> ResearchEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Research engine is not running")
    return engine
