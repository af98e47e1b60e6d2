from __future__ import annotations

from typing import Any

from deepresearch.llm_client import CompletionService
from deepresearch.services.prompt_store import render_prompt


def normalize_text_list(raw_values: Any, *, max_items: int, min_len: int = 1) -> list[str]:
    """Collapse whitespace, drop blanks and case-insensitive repeats, cap length."""
    if not isinstance(raw_values, list):
        return []
    cleaned: list[str] = []
    seen: set[str] = set()
    for item in raw_values:
        if not isinstance(item, str):
            continue
        value = " ".join(item.split()).strip()
        if len(value) < min_len:
            continue
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(value)
        if len(cleaned) >= max_items:
            break
    return cleaned


class BaseAgent:
    """Completion-backed collaborator.

    Subclasses set `name` (also the prompt catalog key) and call
    `self.completion` with prompts rendered from the catalog.
    """

    name: str = "base"

    def __init__(self, completion: CompletionService | None = None, model: str | None = None):
        self.completion = completion or CompletionService()
        self.model = model

    def system_prompt(self, **values: Any) -> str:
        return render_prompt(f"{self.name}.system_prompt", **values)

    def user_prompt(self, **values: Any) -> str:
        return render_prompt(f"{self.name}.user_prompt", **values)
