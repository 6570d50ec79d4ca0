"""
Responder - Providers de LLM (Groq / OpenAI) detrás de una interfaz común.

Este módulo:
1. Define la interfaz LLMProvider: complete(system_prompt, user_message, model)
2. Implementa GroqProvider (groq.AsyncGroq) y OpenAIProvider (openai.AsyncOpenAI)
3. Aplica timeout a cada llamada y limpia comillas envolventes
4. Traduce cualquier error del SDK a GenerationFailed
5. Registry para elegir provider según el agente
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol, runtime_checkable

from agent.errors import GenerationFailed

logger = logging.getLogger(__name__)

DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

# Comillas que el LLM a veces agrega alrededor de la respuesta
_WRAPPING_QUOTES = '"“”«»'


def strip_wrapping_quotes(text: str) -> str:
    """Quita un par de comillas solo si envuelven el texto completo."""
    text = text.strip()
    if len(text) < 2 or text[0] not in _WRAPPING_QUOTES or text[-1] not in _WRAPPING_QUOTES:
        return text
    inner = text[1:-1]
    if any(q in inner for q in _WRAPPING_QUOTES):
        return text
    return inner.strip()


@runtime_checkable
class LLMProvider(Protocol):
    """Interfaz que consume el Response Generator."""

    name: str

    async def complete(
        self, system_prompt: str, user_message: str, model: Optional[str] = None
    ) -> Dict:
        """Retorna {"text": str, "token_usage": {...}}."""
        ...


class _ChatCompletionsProvider:
    """Base para SDKs con API estilo chat.completions (Groq y OpenAI)."""

    name = "base"
    default_model = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: float = 30.0,
        temperature: float = 0.5,
        max_tokens: int = 1024,
    ):
        self._api_key = api_key
        self.model = model or self.default_model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    def _create_client(self):
        raise NotImplementedError

    def _get_client(self):
        """Inicialización perezosa del cliente del SDK."""
        if self._client is None:
            if not self._api_key:
                raise GenerationFailed(
                    f"API key de {self.name} no configurada", provider=self.name
                )
            self._client = self._create_client()
        return self._client

    async def complete(
        self, system_prompt: str, user_message: str, model: Optional[str] = None
    ) -> Dict:
        """
        Genera una respuesta.

        Raises:
            GenerationFailed: ante cualquier error del SDK o timeout
        """
        client = self._get_client()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]

        try:
            completion = await asyncio.wait_for(
                client.chat.completions.create(
                    messages=messages,
                    model=model or self.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise GenerationFailed(
                f"{self.name} excedió el timeout de {self.timeout_seconds}s",
                provider=self.name,
                original_error=e,
            ) from e
        except Exception as e:
            logger.error(f"Error de {self.name}: {e}")
            raise GenerationFailed(
                "Error al generar respuesta", provider=self.name, original_error=e
            ) from e

        try:
            text = completion.choices[0].message.content or ""
            usage = {}
            if completion.usage:
                usage = {
                    "prompt_tokens": completion.usage.prompt_tokens,
                    "completion_tokens": completion.usage.completion_tokens,
                    "total_tokens": completion.usage.total_tokens,
                }
        except (IndexError, AttributeError, TypeError) as e:
            logger.error(f"Respuesta inesperada de {self.name}: {e}")
            raise GenerationFailed(
                "Respuesta del modelo sin contenido utilizable",
                provider=self.name,
                original_error=e,
            ) from e

        return {"text": strip_wrapping_quotes(text), "token_usage": usage}


class GroqProvider(_ChatCompletionsProvider):
    """LLM vía Groq API."""

    name = "groq"
    default_model = DEFAULT_GROQ_MODEL

    def _create_client(self):
        try:
            from groq import AsyncGroq
        except ImportError:
            raise ImportError("groq es requerido. Ejecuta: pip install groq")

        logger.info(f"Groq provider inicializado (modelo: {self.model})")
        return AsyncGroq(api_key=self._api_key)


class OpenAIProvider(_ChatCompletionsProvider):
    """LLM vía OpenAI API."""

    name = "openai"
    default_model = DEFAULT_OPENAI_MODEL

    def _create_client(self):
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError("openai es requerido. Ejecuta: pip install openai")

        logger.info(f"OpenAI provider inicializado (modelo: {self.model})")
        return AsyncOpenAI(api_key=self._api_key)


class ProviderRegistry:
    """Resuelve el provider por nombre con fallback al default."""

    def __init__(self, default: str = "groq"):
        self._providers: Dict[str, LLMProvider] = {}
        self.default = default

    def register(self, provider: LLMProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: Optional[str] = None) -> LLMProvider:
        if name and name in self._providers:
            return self._providers[name]
        if name:
            logger.warning(f"Provider '{name}' no registrado, usando '{self.default}'")
        if self.default not in self._providers:
            raise GenerationFailed(
                f"Provider por defecto '{self.default}' no registrado",
                provider=self.default,
            )
        return self._providers[self.default]

    @property
    def names(self):
        return sorted(self._providers)


def build_registry(settings) -> ProviderRegistry:
    """Registry con ambos providers configurados desde Settings."""
    registry = ProviderRegistry(default=settings.DEFAULT_LLM_PROVIDER)
    registry.register(
        GroqProvider(
            api_key=settings.GROQ_API_KEY,
            model=settings.LLM_MODEL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        )
    )
    registry.register(
        OpenAIProvider(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        )
    )
    return registry
