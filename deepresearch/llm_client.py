"""OpenRouter completion client and the structured-output completion service."""
from __future__ import annotations

import json
import time
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from deepresearch.config import settings
from deepresearch.errors import ProviderError
from deepresearch.services import logger as log_service

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_client() -> Any:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.search_timeout_seconds * 4,
    )


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: Any | None = None


def client() -> Any:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def temperature_for_model(model: str) -> int:
    # Some OpenAI GPT-5-compatible gateways reject temperature=0.
    lowered = (model or "").lower()
    if "gpt-5" in lowered:
        return 1
    return 0


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model reply, fenced or not."""
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


class CompletionService:
    """complete(prompt, schema) -> validated model, failing only with ProviderError."""

    def __init__(self, llm: Any | None = None, model: str | None = None):
        self.client = llm
        self.model = model or get_model()

    async def _create(self, *, caller: str, model: str, system: str, prompt: str) -> str:
        t0 = time.monotonic()
        try:
            active_client = self.client or client()
            response = await active_client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=settings.llm_max_tokens,
                temperature=temperature_for_model(model),
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise ProviderError("completion", str(exc)) from exc

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise ProviderError("completion", f"no choices returned to {caller}")
        return getattr(choices[0].message, "content", None) or ""

    async def complete(
        self,
        prompt: str,
        output_model: type[ModelT],
        *,
        system: str,
        caller: str,
        model: str | None = None,
    ) -> ModelT:
        text = await self._create(
            caller=caller, model=model or self.model, system=system, prompt=prompt
        )
        try:
            return output_model.model_validate(extract_json_object(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ProviderError(
                "completion", f"invalid structured output for {caller}: {exc}"
            ) from exc

    async def generate(
        self,
        prompt: str,
        *,
        system: str,
        caller: str,
        model: str | None = None,
    ) -> str:
        text = await self._create(
            caller=caller, model=model or self.model, system=system, prompt=prompt
        )
        if not text.strip():
            raise ProviderError("completion", f"empty response for {caller}")
        return text.strip()
