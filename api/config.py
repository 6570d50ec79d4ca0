"""
Configuración centralizada de AgentFlow.

Usa Pydantic BaseSettings para:
- Validar las variables de entorno al startup
- Proveer tipos seguros y defaults documentados
- Eliminar load_dotenv() disperso en múltiples módulos

Las API keys de los LLM son opcionales: sin ellas el servicio arranca,
el health check lo reporta como degradado y las respuestas caen en la
disculpa genérica.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# Raíz del proyecto (donde vive .env)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Configuración tipada y validada del motor de agentes."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",  # Ignorar env vars no declaradas
    )

    # LLM
    GROQ_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    DEFAULT_LLM_PROVIDER: str = "groq"
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 30.0
    LLM_RETRY_BASE_SECONDS: float = 0.5
    LLM_MAX_ATTEMPTS: int = 2

    # Embeddings
    EMBEDDING_MODEL: str = "paraphrase-multilingual-MiniLM-L12-v2"
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0

    # Retrieval
    KNOWLEDGE_TOP_K: int = 3
    TRAINING_EXAMPLES_TOP_K: int = 3

    # Training
    TRAINING_STEP_DELAY_SECONDS: float = 2.0

    # Cache (embeddings de queries + dedupe de mensajes)
    CACHE_TTL_SECONDS: int = 300
    CACHE_MAX_SIZE: int = 1000

    # Canales
    WHATSAPP_TOKEN: Optional[str] = None
    WHATSAPP_PHONE_NUMBER_ID: Optional[str] = None
    WHATSAPP_VERIFY_TOKEN: str = "agentflow_webhook"
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    MESSENGER_PAGE_TOKEN: Optional[str] = None
    INSTAGRAM_PAGE_TOKEN: Optional[str] = None
    DISCORD_BOT_TOKEN: Optional[str] = None

    # Database
    DATABASE_PATH: str = "database/sqlite/agentflow.db"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    @property
    def db_full_path(self) -> Path:
        """Ruta absoluta a la base de datos."""
        db = Path(self.DATABASE_PATH)
        if db.is_absolute():
            return db
        return PROJECT_ROOT / db


@lru_cache
def get_settings() -> Settings:
    """Singleton de configuración (cacheado)."""
    return Settings()
