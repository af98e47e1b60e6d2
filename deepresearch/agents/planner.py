from __future__ import annotations

from datetime import date

from loguru import logger
from pydantic import BaseModel, Field

from deepresearch.agents.base import BaseAgent, normalize_text_list
from deepresearch.config import settings
from deepresearch.errors import ProviderError
from deepresearch.models.research import Query, QueryOrigin


class PlannerOutput(BaseModel):
    queries: list[str] = Field(default_factory=list)


class QueryPlanner(BaseAgent):
    """Breaks a topic into the initial batch of search queries."""

    name = "planner"

    def __init__(self, *args, min_queries: int | None = None, max_queries: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.model = self.model or settings.planner_model or None
        self.min_queries = max(1, min_queries or settings.initial_min_queries)
        self.max_queries = max(self.min_queries, max_queries or settings.initial_max_queries)

    async def plan_initial(self, topic: str, completed: list[str] | None = None) -> list[Query]:
        completed = list(completed or [])
        done = {" ".join(q.split()).lower() for q in completed}
        today = date.today()

        try:
            output = await self.completion.complete(
                self.user_prompt(
                    topic=topic,
                    completed="\n".join(f"- {q}" for q in completed) or "(none)",
                    min_queries=self.min_queries,
                    max_queries=self.max_queries,
                ),
                PlannerOutput,
                system=self.system_prompt(today_iso=today.isoformat(), today_year=today.year),
                caller="planner",
                model=self.model,
            )
            planned = output.queries
        except ProviderError as exc:
            logger.warning(f"Query planning failed, using fallback plan: {exc}")
            planned = []

        texts = [
            q for q in normalize_text_list(planned, max_items=self.max_queries * 2, min_len=3)
            if q.lower() not in done
        ][: self.max_queries]

        if len(texts) < self.min_queries:
            taken = done | {q.lower() for q in texts}
            for candidate in self.fallback_plan(topic):
                if len(texts) >= self.min_queries:
                    break
                if candidate.lower() in taken:
                    continue
                taken.add(candidate.lower())
                texts.append(candidate)

        return [Query(text=t, origin=QueryOrigin.INITIAL) for t in texts]

    @staticmethod
    def fallback_plan(topic: str) -> list[str]:
        topic = " ".join(topic.split())
        year = date.today().year
        return normalize_text_list(
            [
                topic,
                f"{topic} latest developments {year}",
                f"{topic} key facts and statistics",
                f"{topic} expert analysis",
            ],
            max_items=4,
        )
