"""Generative backend adapters.

The orchestrator only sees the :class:`GenerativeBackend` capability:
``generate(text, context)`` returns either the answer text or an
:class:`Unavailable` value.  Timeouts, connection failures, HTTP errors
and malformed or empty output all become ``Unavailable``; the only
thing that propagates is the caller's own cancellation, which also
aborts the outbound request.

Variants
--------
* :class:`OllamaAdapter` -- local model served by Ollama over HTTP.
* :class:`GeminiAdapter` -- Vertex AI Gemini (remote API).
* :class:`DisabledAdapter` -- offline mode; always unavailable.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import httpx
import orjson
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import Category, UrgencyTier
from src.models.response import ExtractedEntity
from src.services.errors import BackendUnavailableError

if TYPE_CHECKING:
    from config.settings import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

SECURITY_PROMPT: Final[str] = """\
Eres un asistente virtual especializado en seguridad ciudadana en español.

Instrucciones:
- Responde SIEMPRE en español
- Máximo 100 palabras por respuesta
- Sé empático y profesional
- Si detectas emergencia, recomienda llamar al 911 INMEDIATAMENTE
- Para reportes, guía al usuario a usar la aplicación
- Proporciona consejos de seguridad cuando sea apropiado
- Si no sabes algo específico, deriva a las autoridades
{context}
Usuario: {message}

Respuesta:"""

_STOP_SEQUENCES: Final[list[str]] = ["Usuario:", "Respuesta:"]
_STATUS_TIMEOUT_SECONDS: Final[float] = 5.0


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Unavailable:
    """The backend could not answer.  ``reason`` is a short token."""

    reason: str
    backend: str = ""


@dataclass(frozen=True, slots=True)
class GenerationContext:
    """Hints passed along with the user text."""

    category: Category = Category.UNKNOWN
    urgency: UrgencyTier = UrgencyTier.LOW
    entities: tuple[ExtractedEntity, ...] = ()
    kb_hint: str | None = None

    def as_hints(self) -> dict[str, Any]:
        hints: dict[str, Any] = {"category": self.category.value, "urgency": self.urgency.value}
        if self.entities:
            hints["entities"] = [f"{e.type.value}: {e.value}" for e in self.entities]
        if self.kb_hint:
            hints["kb_hint"] = self.kb_hint
        return hints


@dataclass(slots=True)
class BackendStatus:
    name: str
    available: bool
    model: str | None = None
    url: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def build_prompt(text: str, context: GenerationContext | None = None) -> str:
    """Fill the security prompt with *text* and the context hints."""
    context_block = ""
    if context is not None:
        lines = []
        if context.category is not Category.UNKNOWN:
            lines.append(f"- Tema detectado: {context.category.value} (urgencia {context.urgency.value})")
        for entity in context.entities:
            lines.append(f"- {entity.type.value}: {entity.value}")
        if context.kb_hint:
            lines.append(f"- Referencia: {context.kb_hint}")
        if lines:
            context_block = "\nContexto:\n" + "\n".join(lines) + "\n"
    return SECURITY_PROMPT.replace("{context}", context_block).replace("{message}", text)


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------


@runtime_checkable
class GenerativeBackend(Protocol):
    """What the orchestrator needs from a generative model."""

    name: str

    async def generate(self, text: str, context: GenerationContext | None = None) -> str | Unavailable: ...

    async def status(self) -> BackendStatus: ...

    async def close(self) -> None: ...


class BaseGenerativeAdapter:
    """Timeout and error mapping shared by every adapter.

    Subclasses implement :meth:`_generate`, which may raise anything;
    :meth:`generate` turns every failure into :class:`Unavailable`
    except :class:`asyncio.CancelledError`.
    """

    name: str = "base"

    def __init__(self, *, timeout_seconds: float = 8.0) -> None:
        self._timeout = timeout_seconds

    async def _generate(self, prompt: str) -> str:
        raise NotImplementedError

    async def generate(self, text: str, context: GenerationContext | None = None) -> str | Unavailable:
        prompt = build_prompt(text, context)
        start = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout):
                output = await self._generate(prompt)
        except TimeoutError:
            logger.warning("generative.timeout", backend=self.name, timeout_s=self._timeout)
            return Unavailable("timeout", self.name)
        except BackendUnavailableError as exc:
            logger.warning("generative.unavailable", backend=self.name, reason=exc.reason)
            return Unavailable(exc.reason, self.name)
        except Exception:
            logger.warning("generative.failed", backend=self.name, exc_info=True)
            return Unavailable("error", self.name)

        answer = output.strip() if isinstance(output, str) else ""
        if not answer:
            logger.warning("generative.empty_output", backend=self.name)
            return Unavailable("empty_output", self.name)

        logger.info(
            "generative.completed",
            backend=self.name,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            answer_length=len(answer),
        )
        return answer

    async def status(self) -> BackendStatus:
        return BackendStatus(name=self.name, available=True)

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


class OllamaAdapter(BaseGenerativeAdapter):
    """Local model served by Ollama (``POST /api/generate``, non-streaming).

    Parameters
    ----------
    base_url:
        Ollama server, e.g. ``http://localhost:11434``.
    model:
        Model tag to run.
    client:
        Optional pre-built :class:`httpx.AsyncClient` (tests inject one
        with a mock transport).  An injected client is not closed by
        :meth:`close`.
    """

    name = "ollama"

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        max_tokens: int = 150,
        temperature: float = 0.7,
        timeout_seconds: float = 8.0,
        retry_attempts: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._retry_attempts = max(1, retry_attempts)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout_seconds)

    async def _post_generate(self, prompt: str) -> httpx.Response:
        payload = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "num_predict": self._max_tokens,
                "temperature": self._temperature,
                "stop": _STOP_SEQUENCES,
            },
        }
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.1, max=0.5),
            reraise=True,
        ):
            with attempt:
                return await self._client.post(
                    f"{self._base_url}/api/generate",
                    content=orjson.dumps(payload),
                    headers={"Content-Type": "application/json"},
                )
        raise BackendUnavailableError("connection_failed")  # pragma: no cover

    async def _generate(self, prompt: str) -> str:
        try:
            response = await self._post_generate(prompt)
        except httpx.TimeoutException as exc:
            raise BackendUnavailableError("timeout") from exc
        except httpx.TransportError as exc:
            raise BackendUnavailableError("connection_failed") from exc

        if response.status_code != 200:
            raise BackendUnavailableError(f"http_status_{response.status_code}")
        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as exc:
            raise BackendUnavailableError("malformed_output") from exc
        answer = data.get("response") if isinstance(data, dict) else None
        if not isinstance(answer, str):
            raise BackendUnavailableError("malformed_output")
        return answer

    async def status(self) -> BackendStatus:
        try:
            response = await self._client.get(
                f"{self._base_url}/api/tags", timeout=_STATUS_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as exc:
            logger.info("generative.status_unreachable", backend=self.name, error=type(exc).__name__)
            return BackendStatus(name=self.name, available=False, url=self._base_url, error=str(exc) or type(exc).__name__)

        if response.status_code != 200:
            return BackendStatus(
                name=self.name,
                available=False,
                url=self._base_url,
                error=f"HTTP {response.status_code}: {response.reason_phrase}",
            )
        models: list[str] = []
        try:
            data = orjson.loads(response.content)
            models = [m.get("name", "") for m in data.get("models", []) if isinstance(m, dict)]
        except (orjson.JSONDecodeError, AttributeError):
            logger.debug("generative.status_unparsed", backend=self.name)
        return BackendStatus(
            name=self.name,
            available=True,
            model=self._model,
            url=self._base_url,
            details={"models": models, "model_installed": self._model in models},
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ---------------------------------------------------------------------------
# Vertex AI Gemini
# ---------------------------------------------------------------------------


class GeminiAdapter(BaseGenerativeAdapter):
    """Vertex AI Gemini.  The SDK is initialised lazily on first use."""

    name = "gemini"

    def __init__(
        self,
        *,
        project_id: str,
        region: str = "us-central1",
        model_name: str = "gemini-2.0-flash",
        max_tokens: int = 150,
        temperature: float = 0.7,
        timeout_seconds: float = 8.0,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._model: Any = None

    def _get_model(self) -> Any:
        if self._model is None:
            if not self._project_id:
                raise BackendUnavailableError("not_configured")
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(project=self._project_id, location=self._region)
            self._model = GenerativeModel(model_name=self._model_name)
            logger.info(
                "generative.gemini_initialized",
                project=self._project_id,
                region=self._region,
                model=self._model_name,
            )
        return self._model

    async def _generate(self, prompt: str) -> str:
        model = self._get_model()
        from vertexai.generative_models import GenerationConfig

        response = await model.generate_content_async(
            prompt,
            generation_config=GenerationConfig(
                temperature=self._temperature,
                max_output_tokens=self._max_tokens,
                stop_sequences=_STOP_SEQUENCES,
            ),
        )
        try:
            return response.text
        except ValueError as exc:
            # Raised by the SDK when the candidate was blocked or is empty.
            raise BackendUnavailableError("malformed_output") from exc

    async def status(self) -> BackendStatus:
        return BackendStatus(
            name=self.name,
            available=bool(self._project_id),
            model=self._model_name,
            error=None if self._project_id else "GCP_PROJECT_ID not set",
            details={"region": self._region, "initialized": self._model is not None},
        )


# ---------------------------------------------------------------------------
# Disabled
# ---------------------------------------------------------------------------


class DisabledAdapter(BaseGenerativeAdapter):
    """Offline mode: every call is unavailable, answers come from the KB."""

    name = "disabled"

    async def generate(self, text: str, context: GenerationContext | None = None) -> str | Unavailable:
        return Unavailable("disabled", self.name)

    async def status(self) -> BackendStatus:
        return BackendStatus(name=self.name, available=False, error="generative backend disabled")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_generative_backend(config: Settings) -> BaseGenerativeAdapter:
    """Instantiate the adapter selected by ``generative_backend``."""
    if config.generative_backend == "ollama":
        return OllamaAdapter(
            base_url=config.ollama_url,
            model=config.ollama_model,
            max_tokens=config.generation_max_tokens,
            temperature=config.generation_temperature,
            timeout_seconds=config.generation_timeout_seconds,
        )
    if config.generative_backend == "gemini":
        return GeminiAdapter(
            project_id=config.gcp_project_id,
            region=config.vertex_ai_location,
            model_name=config.vertex_ai_model,
            max_tokens=config.generation_max_tokens,
            temperature=config.generation_temperature,
            timeout_seconds=config.generation_timeout_seconds,
        )
    return DisabledAdapter(timeout_seconds=config.generation_timeout_seconds)
