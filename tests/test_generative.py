"""Tests for the generative backend adapters (Ollama over a mock transport)."""

from __future__ import annotations

import asyncio

import httpx
import orjson
import pytest

from config.settings import Settings
from src.models.enums import Category, EntityType, UrgencyTier
from src.models.response import ExtractedEntity
from src.services.generative import (
    DisabledAdapter,
    GeminiAdapter,
    GenerationContext,
    OllamaAdapter,
    Unavailable,
    build_generative_backend,
    build_prompt,
)


def _adapter(handler, **kwargs) -> OllamaAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaAdapter(base_url="http://ollama.test", model="llama3.1:8b", client=client, **kwargs)


# -----------------------------------------------------------------------
# Prompt
# -----------------------------------------------------------------------


class TestBuildPrompt:
    def test_includes_message_and_rules(self) -> None:
        prompt = build_prompt("¿Qué hago si pierdo mi celular?")
        assert "Usuario: ¿Qué hago si pierdo mi celular?" in prompt
        assert "911" in prompt, "the security prompt must recommend 911 for emergencies"
        assert prompt.rstrip().endswith("Respuesta:")

    def test_includes_context_hints(self) -> None:
        context = GenerationContext(
            category=Category.ROBBERY,
            urgency=UrgencyTier.HIGH,
            entities=(ExtractedEntity(type=EntityType.LOCATION, value="calle 5 de mayo", confidence=0.8),),
        )
        prompt = build_prompt("me robaron", context)
        assert "robbery" in prompt
        assert "location: calle 5 de mayo" in prompt

    def test_context_as_hints(self) -> None:
        hints = GenerationContext(kb_hint="¿Cómo reportar un robo?").as_hints()
        assert hints == {"category": "unknown", "urgency": "low", "kb_hint": "¿Cómo reportar un robo?"}


# -----------------------------------------------------------------------
# OllamaAdapter
# -----------------------------------------------------------------------


class TestOllamaAdapter:
    async def test_success_returns_stripped_text(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(orjson.loads(request.content))
            return httpx.Response(200, json={"response": "  Llama al 911.  "})

        adapter = _adapter(handler, max_tokens=99, temperature=0.2)
        result = await adapter.generate("hola")
        assert result == "Llama al 911."
        payload = seen[0]
        assert payload["stream"] is False
        assert payload["model"] == "llama3.1:8b"
        assert payload["options"]["num_predict"] == 99
        assert payload["options"]["stop"] == ["Usuario:", "Respuesta:"]

    async def test_http_error_is_unavailable(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(503, text="busy"))
        result = await adapter.generate("hola")
        assert result == Unavailable("http_status_503", "ollama")

    async def test_malformed_json_is_unavailable(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, content=b"<html>"))
        result = await adapter.generate("hola")
        assert isinstance(result, Unavailable) and result.reason == "malformed_output"

    async def test_missing_response_field_is_unavailable(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, json={"done": True}))
        result = await adapter.generate("hola")
        assert isinstance(result, Unavailable) and result.reason == "malformed_output"

    async def test_empty_output_is_unavailable(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, json={"response": "   "}))
        result = await adapter.generate("hola")
        assert isinstance(result, Unavailable) and result.reason == "empty_output"

    async def test_connection_failure_retried_then_unavailable(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        adapter = _adapter(handler, retry_attempts=2)
        result = await adapter.generate("hola")
        assert isinstance(result, Unavailable) and result.reason == "connection_failed"
        assert calls == 2, "transport errors should be retried once"

    async def test_transient_failure_recovers(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, json={"response": "ok"})

        adapter = _adapter(handler, retry_attempts=2)
        assert await adapter.generate("hola") == "ok"

    async def test_timeout_is_unavailable(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json={"response": "tarde"})

        adapter = _adapter(handler, timeout_seconds=0.05)
        result = await adapter.generate("hola")
        assert isinstance(result, Unavailable) and result.reason == "timeout"

    async def test_caller_cancellation_propagates(self) -> None:
        started = asyncio.Event()
        cancelled = False

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal cancelled
            started.set()
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled = True
                raise
            return httpx.Response(200, json={"response": "tarde"})

        adapter = _adapter(handler, timeout_seconds=10)
        task = asyncio.create_task(adapter.generate("hola"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert cancelled, "cancellation should reach the outbound request"

    async def test_status_available(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}]})

        status = await _adapter(handler).status()
        assert status.available is True
        assert status.details["model_installed"] is True

    async def test_status_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        status = await _adapter(handler).status()
        assert status.available is False
        assert status.error

    async def test_status_http_error(self) -> None:
        status = await _adapter(lambda request: httpx.Response(500)).status()
        assert status.available is False
        assert status.error is not None and status.error.startswith("HTTP 500")

    async def test_injected_client_not_closed(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        adapter = OllamaAdapter(client=client)
        await adapter.close()
        assert client.is_closed is False, "the adapter only closes clients it created"
        await client.aclose()


# -----------------------------------------------------------------------
# Other variants
# -----------------------------------------------------------------------


class TestOtherAdapters:
    async def test_disabled_is_always_unavailable(self) -> None:
        adapter = DisabledAdapter()
        assert await adapter.generate("hola") == Unavailable("disabled", "disabled")
        assert (await adapter.status()).available is False

    async def test_gemini_without_project_is_unavailable(self) -> None:
        adapter = GeminiAdapter(project_id="")
        result = await adapter.generate("hola")
        assert isinstance(result, Unavailable) and result.reason == "not_configured"
        assert (await adapter.status()).available is False

    async def test_factory_selects_variant(self) -> None:
        assert isinstance(build_generative_backend(Settings(generative_backend="disabled")), DisabledAdapter)
        assert isinstance(build_generative_backend(Settings(generative_backend="gemini")), GeminiAdapter)
        ollama = build_generative_backend(Settings(generative_backend="ollama", ollama_url="http://x:1"))
        assert isinstance(ollama, OllamaAdapter)
        await ollama.close()
