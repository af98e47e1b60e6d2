from __future__ import annotations

from loguru import logger

from deepresearch.agents.base import BaseAgent
from deepresearch.config import settings
from deepresearch.errors import ProviderError
from deepresearch.models.research import EvaluationVerdict, SearchResult

EVALUATION_ERROR_REASON = "Error in evaluation"


class ResultEvaluator(BaseAgent):
    """Judges one search result against the query that found it."""

    name = "evaluator"

    async def evaluate(self, query: str, result: SearchResult) -> EvaluationVerdict:
        try:
            return await self.completion.complete(
                self.user_prompt(
                    query=query,
                    title=result.title,
                    url=result.url,
                    content=result.content[: settings.evaluation_snippet_chars],
                ),
                EvaluationVerdict,
                system=self.system_prompt(),
                caller="evaluator",
                model=self.model,
            )
        except ProviderError as exc:
            logger.warning(f"Evaluation failed for {result.url}: {exc}")
            return EvaluationVerdict(is_relevant=False, reason=EVALUATION_ERROR_REASON)
