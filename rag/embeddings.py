"""
Embeddings - Convierte texto en vectores de dimensión fija.

El motor solo depende de la interfaz EmbeddingProvider:
    await provider.embed(text) -> List[float]

Implementación por defecto: modelo local de sentence-transformers,
cargado la primera vez que se usa. El encode (CPU) corre en un thread
y siempre tiene un timeout; cualquier falla → EmbeddingUnavailable.
"""

import asyncio
import logging
from typing import List, Optional, Protocol, runtime_checkable

from agent.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)

# Modelo multilingüe por defecto (soporta español, inglés, y 50+ idiomas)
DEFAULT_EMBEDDING_MODEL = "paraphrase-multilingual-MiniLM-L12-v2"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Interfaz mínima que consume el Knowledge Store."""

    model_name: str

    async def embed(self, text: str) -> List[float]:
        ...


class SentenceTransformerEmbeddings:
    """Embeddings locales con sentence-transformers."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ):
        """
        Args:
            model_name: Modelo de sentence-transformers (default: multilingüe)
            timeout_seconds: Límite por llamada a embed()
        """
        self.model_name = model_name or DEFAULT_EMBEDDING_MODEL
        self.timeout_seconds = timeout_seconds
        self._model = None

    def _get_model(self):
        """Carga perezosa del modelo (la primera carga descarga pesos)."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers es requerido para embeddings. "
                    "Ejecuta: pip install sentence-transformers"
                )

            logger.info(f"Cargando modelo de embeddings: {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        return self._get_model().get_sentence_embedding_dimension()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def _encode(self, text: str) -> List[float]:
        vector = self._get_model().encode([text], convert_to_numpy=True)[0]
        return [float(x) for x in vector]

    async def embed(self, text: str) -> List[float]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._encode, text), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailable(
                f"Embedding excedió el timeout de {self.timeout_seconds}s",
                provider=self.model_name,
                original_error=e,
            ) from e
        except Exception as e:
            raise EmbeddingUnavailable(
                "No se pudo generar el embedding",
                provider=self.model_name,
                original_error=e,
            ) from e
