from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deepresearch.api.routes import research
from deepresearch.config import settings
from deepresearch.services import logger  # noqa: F401  (configures loguru sinks)
from deepresearch.services.engine import ResearchEngine
from deepresearch.services.session_store import get_session_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.engine = ResearchEngine(get_session_store(settings))
    yield
    # Shutdown
    await app.state.engine.aclose()


app = FastAPI(
    title="deepresearch",
    description="Two-phase web research with human approval",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deepresearch"}
