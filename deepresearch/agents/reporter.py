from __future__ import annotations

import json
from datetime import date

from deepresearch.agents.base import BaseAgent
from deepresearch.config import settings
from deepresearch.models.research import ResearchOutput


class ReportSynthesizer(BaseAgent):
    """Writes the markdown report for an approved session.

    The whole research output (queries, evaluated sources, learnings with
    their follow-up questions) is handed to the model as JSON. Failures are
    raised as ProviderError; callers decide how to surface them.
    """

    name = "report"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.model = self.model or settings.report_model or None

    async def generate(self, output: ResearchOutput) -> str:
        research_data = json.dumps(output.model_dump(mode="json"), indent=2, ensure_ascii=False)
        return await self.completion.generate(
            self.user_prompt(topic=output.topic or "", research_data=research_data),
            system=self.system_prompt(today_iso=date.today().isoformat()),
            caller="reporter",
            model=self.model,
        )
