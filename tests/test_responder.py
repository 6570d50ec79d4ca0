"""
Tests para rag/query/responder.py — Providers LLM y registry.

El cliente del SDK se reemplaza por un mock: no se llama a ninguna API.
"""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.errors import GenerationFailed
from rag.query.responder import (
    GroqProvider,
    LLMProvider,
    OpenAIProvider,
    ProviderRegistry,
    build_registry,
)


def _completion(text, usage=True):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15)
        if usage
        else None,
    )


def _provider_with(create, cls=GroqProvider, **kwargs):
    provider = cls(api_key="fake-key", **kwargs)
    provider._client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create))
    )
    return provider


class TestChatCompletionsProvider:
    @pytest.mark.asyncio
    async def test_complete_returns_text_and_usage(self):
        create = AsyncMock(return_value=_completion("We ship worldwide."))
        provider = _provider_with(create)

        result = await provider.complete("system", "Do you ship?")

        assert result["text"] == "We ship worldwide."
        assert result["token_usage"] == {
            "prompt_tokens": 12,
            "completion_tokens": 3,
            "total_tokens": 15,
        }
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "llama-3.3-70b-versatile"
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "Do you ship?"},
        ]

    @pytest.mark.asyncio
    async def test_model_override(self):
        create = AsyncMock(return_value=_completion("ok"))
        provider = _provider_with(create)
        await provider.complete("s", "u", model="llama-3.1-8b-instant")
        assert create.await_args.kwargs["model"] == "llama-3.1-8b-instant"

    @pytest.mark.asyncio
    async def test_wrapping_quotes_stripped(self):
        provider = _provider_with(AsyncMock(return_value=_completion('  "Hello there!"  ')))
        result = await provider.complete("s", "u")
        assert result["text"] == "Hello there!"

    @pytest.mark.asyncio
    async def test_inner_quotes_preserved(self):
        text = 'Our motto is "Gear for life"'
        provider = _provider_with(AsyncMock(return_value=_completion(text)))
        result = await provider.complete("s", "u")
        assert result["text"] == text

    @pytest.mark.asyncio
    async def test_leading_quote_only_preserved(self):
        text = '"Gear for life" is our motto'
        provider = _provider_with(AsyncMock(return_value=_completion(text)))
        result = await provider.complete("s", "u")
        assert result["text"] == text

    @pytest.mark.asyncio
    async def test_two_quoted_phrases_preserved(self):
        text = '"Tents" and "stoves"'
        provider = _provider_with(AsyncMock(return_value=_completion(text)))
        result = await provider.complete("s", "u")
        assert result["text"] == text

    @pytest.mark.asyncio
    async def test_empty_choices_becomes_generation_failed(self):
        empty = SimpleNamespace(choices=[], usage=None)
        provider = _provider_with(AsyncMock(return_value=empty))
        with pytest.raises(GenerationFailed) as exc_info:
            await provider.complete("s", "u")
        assert exc_info.value.provider == "groq"
        assert isinstance(exc_info.value.original_error, IndexError)

    @pytest.mark.asyncio
    async def test_missing_usage(self):
        provider = _provider_with(AsyncMock(return_value=_completion("ok", usage=False)))
        result = await provider.complete("s", "u")
        assert result["token_usage"] == {}

    @pytest.mark.asyncio
    async def test_sdk_error_becomes_generation_failed(self):
        provider = _provider_with(AsyncMock(side_effect=RuntimeError("rate limited")))
        with pytest.raises(GenerationFailed) as exc_info:
            await provider.complete("s", "u")
        assert exc_info.value.provider == "groq"
        assert isinstance(exc_info.value.original_error, RuntimeError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_generation_failed(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        provider = _provider_with(slow, timeout_seconds=0.01)
        with pytest.raises(GenerationFailed, match="timeout"):
            await provider.complete("s", "u")

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        provider = OpenAIProvider(api_key=None)
        with pytest.raises(GenerationFailed) as exc_info:
            await provider.complete("s", "u")
        assert exc_info.value.provider == "openai"

    def test_providers_satisfy_protocol(self):
        assert isinstance(GroqProvider(api_key="k"), LLMProvider)
        assert isinstance(OpenAIProvider(api_key="k"), LLMProvider)


class FakeProvider:
    def __init__(self, name):
        self.name = name

    async def complete(self, system_prompt, user_message, model=None):
        return {"text": self.name, "token_usage": {}}


class TestProviderRegistry:
    def test_get_by_name(self):
        registry = ProviderRegistry(default="groq")
        registry.register(FakeProvider("groq"))
        registry.register(FakeProvider("openai"))
        assert registry.get("openai").name == "openai"
        assert registry.names == ["groq", "openai"]

    def test_unknown_falls_back_to_default(self):
        registry = ProviderRegistry(default="groq")
        registry.register(FakeProvider("groq"))
        assert registry.get("anthropic").name == "groq"
        assert registry.get(None).name == "groq"

    def test_missing_default_raises(self):
        registry = ProviderRegistry(default="groq")
        with pytest.raises(GenerationFailed):
            registry.get("groq")


class TestBuildRegistry:
    def test_both_providers_registered(self, test_settings):
        registry = build_registry(test_settings)
        assert registry.names == ["groq", "openai"]
        assert registry.default == "groq"
        assert registry.get("openai").model == "gpt-4o-mini"
