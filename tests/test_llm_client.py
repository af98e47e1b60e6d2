"""Tests for the OpenRouter client factory and the completion service."""
import sys
import types
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from deepresearch.errors import ProviderError
from deepresearch.llm_client import CompletionService, extract_json_object, get_client, get_model
from deepresearch.models.research import EvaluationVerdict


def fake_llm(content=None, *, error=None):
    llm = MagicMock()
    if error is not None:
        llm.chat.completions.create = AsyncMock(side_effect=error)
    else:
        llm.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
                usage=SimpleNamespace(prompt_tokens=12, completion_tokens=5),
            )
        )
    return llm


class TestGetModel:
    def test_get_model_returns_default_when_no_override(self):
        with patch("deepresearch.llm_client.settings") as mock_settings:
            mock_settings.openrouter_model = ""
            mock_settings.default_model = "openai/gpt-4o-mini"

            assert get_model() == "openai/gpt-4o-mini"

    def test_get_model_returns_openrouter_override(self):
        with patch("deepresearch.llm_client.settings") as mock_settings:
            mock_settings.openrouter_model = "openai/gpt-4.1"
            mock_settings.default_model = "openai/gpt-4o-mini"

            assert get_model() == "openai/gpt-4.1"


class TestGetClient:
    def test_get_client_uses_openrouter(self):
        with patch("deepresearch.llm_client.settings") as mock_settings:
            mock_settings.openrouter_api_key = "sk-or-valid-key"
            mock_settings.openrouter_base_url = "https://openrouter.ai/api/v1"
            mock_settings.search_timeout_seconds = 30.0

            openai_module = types.ModuleType("openai")
            mock_openai = MagicMock()
            openai_module.AsyncOpenAI = mock_openai

            with patch.dict(sys.modules, {"openai": openai_module}):
                get_client()

            mock_openai.assert_called_once_with(
                api_key="sk-or-valid-key",
                base_url="https://openrouter.ai/api/v1",
                timeout=120.0,
            )


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_object_with_chatter(self):
        raw = '```json\n{"is_relevant": true, "reason": "ok"}\n```'
        assert extract_json_object(raw) == {"is_relevant": True, "reason": "ok"}

    def test_object_inside_prose(self):
        assert extract_json_object('Sure! {"queries": ["a"]} Hope it helps.') == {"queries": ["a"]}

    def test_missing_object_raises(self):
        import json

        with pytest.raises(json.JSONDecodeError):
            extract_json_object("no json here")


class TestCompletionService:
    @pytest.mark.asyncio
    async def test_complete_validates_structured_output(self):
        llm = fake_llm('{"is_relevant": true, "reason": "on topic"}')
        service = CompletionService(llm=llm, model="openai/gpt-4.1")

        verdict = await service.complete("prompt", EvaluationVerdict, system="sys", caller="evaluator")

        assert verdict == EvaluationVerdict(is_relevant=True, reason="on topic")
        kwargs = llm.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "openai/gpt-4.1"
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["temperature"] == 0

    @pytest.mark.asyncio
    async def test_complete_rejects_schema_mismatch(self):
        service = CompletionService(llm=fake_llm('{"reason": "missing verdict"}'), model="m")

        with pytest.raises(ProviderError, match="invalid structured output"):
            await service.complete("prompt", EvaluationVerdict, system="sys", caller="evaluator")

    @pytest.mark.asyncio
    async def test_complete_rejects_non_json(self):
        service = CompletionService(llm=fake_llm("I think it is relevant."), model="m")

        with pytest.raises(ProviderError):
            await service.complete("prompt", EvaluationVerdict, system="sys", caller="evaluator")

    @pytest.mark.asyncio
    async def test_transport_errors_become_provider_errors(self):
        service = CompletionService(llm=fake_llm(error=RuntimeError("429 Too Many Requests")), model="m")

        with pytest.raises(ProviderError, match="429"):
            await service.generate("prompt", system="sys", caller="summarizer")

    @pytest.mark.asyncio
    async def test_generate_rejects_empty_reply(self):
        service = CompletionService(llm=fake_llm("   "), model="m")

        with pytest.raises(ProviderError, match="empty response"):
            await service.generate("prompt", system="sys", caller="summarizer")

    @pytest.mark.asyncio
    async def test_gpt5_models_use_temperature_one(self):
        llm = fake_llm("text")
        service = CompletionService(llm=llm, model="openai/gpt-5-mini")

        assert await service.generate("prompt", system="sys", caller="reporter") == "text"
        assert llm.chat.completions.create.await_args.kwargs["temperature"] == 1
