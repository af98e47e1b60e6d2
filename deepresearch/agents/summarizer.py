from __future__ import annotations

from deepresearch.agents.base import BaseAgent
from deepresearch.config import settings


class WebSummarizer(BaseAgent):
    """summarize(raw_content, context_query) -> short text; raises ProviderError."""

    name = "summarizer"

    async def summarize(
        self,
        raw_content: str,
        context_query: str,
        *,
        title: str = "",
        url: str = "",
    ) -> str:
        return await self.completion.generate(
            self.user_prompt(
                query=context_query,
                title=title,
                url=url,
                content=raw_content[: settings.summary_max_input_chars],
            ),
            system=self.system_prompt(),
            caller="summarizer",
            model=self.model,
        )
