from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field

from deepresearch.agents.base import BaseAgent
from deepresearch.config import settings
from deepresearch.errors import ProviderError
from deepresearch.models.research import Learning, SearchResult

EXTRACTION_ERROR_TEXT = "Error extracting information"


class ExtractionOutput(BaseModel):
    learning: str
    follow_up_questions: list[str] = Field(default_factory=list)


class InsightExtractor(BaseAgent):
    """Turns a relevant result into one learning and at most one follow-up question."""

    name = "extractor"

    async def extract(self, query: str, result: SearchResult) -> Learning:
        try:
            output = await self.completion.complete(
                self.user_prompt(
                    query=query,
                    title=result.title,
                    url=result.url,
                    content=result.content[: settings.extraction_snippet_chars],
                ),
                ExtractionOutput,
                system=self.system_prompt(),
                caller="extractor",
                model=self.model,
            )
        except ProviderError as exc:
            logger.warning(f"Extraction failed for {result.url}: {exc}")
            return Learning(text=EXTRACTION_ERROR_TEXT, source_url=result.url, query=query)

        return Learning(
            text=" ".join(output.learning.split()) or EXTRACTION_ERROR_TEXT,
            follow_up_questions=output.follow_up_questions,
            source_url=result.url,
            query=query,
        )
