"""
Errors — Taxonomía de excepciones del motor de respuestas.

- ValidationError: input inválido, se rechaza antes de persistir nada
- EmbeddingUnavailable / GenerationFailed: fallas en el borde de los providers
- SessionProcessingError: falla dentro del job de entrenamiento en background
- *NotFound: entidades inexistentes
"""

from typing import List, Optional


class ValidationError(ValueError):
    """Input rechazado. Lleva TODAS las reglas violadas, no solo la primera."""

    def __init__(self, issues: List[str], message: str = "Validation failed"):
        self.issues = list(issues)
        self.message = message
        super().__init__(f"{message}: {'; '.join(self.issues)}")


class FlowValidationError(ValidationError):
    """Flujo de conversación mal formado (se valida antes de activarlo)."""

    def __init__(self, issues: List[str]):
        super().__init__(issues, message="Invalid conversation flow")


class ProviderError(Exception):
    """Base para errores de providers externos (embeddings, LLM)."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"Provider: {self.provider}")
        if self.original_error:
            parts.append(f"Cause: {self.original_error!r}")
        return " | ".join(parts)


class EmbeddingUnavailable(ProviderError):
    """El provider de embeddings falló o excedió el timeout."""


class GenerationFailed(ProviderError):
    """El provider LLM falló (después de agotar los reintentos, si aplica)."""


class SessionProcessingError(Exception):
    """Falla del job de entrenamiento. Se guarda en error_log, nunca llega al caller HTTP."""

    def __init__(self, session_id: int, message: str):
        self.session_id = session_id
        super().__init__(message)


class AgentNotFound(LookupError):
    def __init__(self, agent_id: int):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")


class SessionNotFound(LookupError):
    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Training session {session_id} not found")


class KnowledgeItemNotFound(LookupError):
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Knowledge item {item_id} not found")
