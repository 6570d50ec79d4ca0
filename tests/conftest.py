"""
Configuración compartida de fixtures para los tests de AgentFlow.

Provee:
- Settings de prueba (sin necesidad de .env real)
- DB SQLite temporal con el schema real
- Embedder y LLM falsos, deterministas (no cargan modelos ni llaman APIs)
- Engine completo armado con los fakes
- TestClient de FastAPI con dependency overrides
"""

import random
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.db_service import DBService
from agent.errors import EmbeddingUnavailable, GenerationFailed
from api.config import Settings, get_settings
from api.main import app, build_engine, get_engine
from rag.knowledge_store import KnowledgeStore
from rag.query.cache import TTLCache
from rag.query.pipeline import ResponseGenerator
from rag.query.responder import ProviderRegistry


# Fakes


class FakeEmbedder:
    """Bag-of-words con hashing estable: textos con palabras en común quedan cerca."""

    def __init__(self, dimension: int = 32, model_name: str = "fake-embedder"):
        self.dimension = dimension
        self.model_name = model_name
        self.calls: List[str] = []
        self.fail = False

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dimension
        for token in text.lower().split():
            index = sum(ord(c) for c in token) % self.dimension
            vec[index] += 1.0
        return vec

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingUnavailable("fake embedder down", provider=self.model_name)
        return self.vector(text)


class FakeLLM:
    """Provider LLM que registra cada llamada y puede fallar N veces."""

    def __init__(self, name: str = "groq", reply: str = "Sure, happy to help!"):
        self.name = name
        self.reply = reply
        self.calls: List[Dict] = []
        self.fail_times = 0

    async def complete(self, system_prompt: str, user_message: str, model: Optional[str] = None):
        self.calls.append(
            {"system_prompt": system_prompt, "user_message": user_message, "model": model}
        )
        if self.fail_times > 0:
            self.fail_times -= 1
            raise GenerationFailed("fake llm down", provider=self.name)
        return {
            "text": self.reply,
            "token_usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }


# Datos de ejemplo


BASE_PROMPT = "You are the assistant for Acme Outdoor Gear."


def sample_training_data(n: int = 5) -> List[Dict]:
    return [
        {
            "input": f"Do you ship tents to region {i}?",
            "expected_output": f"Yes, we ship tents to region {i} within five business days.",
            "category": "shipping",
        }
        for i in range(1, n + 1)
    ]


def sample_brand_voice() -> Dict:
    return {
        "tone": "friendly",
        "personality": "Helpful outdoor enthusiast",
        "communication_style": "Short and warm",
        "dos_list": ["mention free returns"],
        "donts_list": ["promise exact delivery dates"],
    }


def sample_business_context() -> Dict:
    return {
        "industry": "Outdoor retail",
        "company_size": "50-200",
        "target_audience": "Weekend hikers",
        "key_products": ["Tents", "Backpacks"],
        "value_proposition": "Gear that lasts a lifetime",
    }


# Fixtures


@pytest.fixture
def make_training_data():
    """Factory: make_training_data(n) → n ejemplos válidos."""
    return sample_training_data


@pytest.fixture
def training_data():
    return sample_training_data(5)


@pytest.fixture
def brand_voice():
    return sample_brand_voice()


@pytest.fixture
def business_context():
    return sample_business_context()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings con valores seguros para testing (no necesita .env)."""
    return Settings(
        GROQ_API_KEY="test-key-fake-12345",
        DATABASE_PATH=str(tmp_path / "engine.db"),
        TRAINING_STEP_DELAY_SECONDS=0,
        LLM_RETRY_BASE_SECONDS=0,
        WHATSAPP_VERIFY_TOKEN="test_token_123",
    )


@pytest.fixture
def db(tmp_path) -> DBService:
    """DBService sobre un archivo temporal con el schema real."""
    service = DBService(tmp_path / "test.db")
    service.init_schema()
    return service


@pytest.fixture
def agent(db) -> Dict:
    return db.create_agent("Acme Bot", BASE_PROMPT)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def providers(llm) -> ProviderRegistry:
    registry = ProviderRegistry(default="groq")
    registry.register(llm)
    return registry


@pytest.fixture
def knowledge(db, embedder) -> KnowledgeStore:
    return KnowledgeStore(db, embedder, cache=TTLCache(ttl_seconds=60))


@pytest.fixture
def generator(db, knowledge, providers) -> ResponseGenerator:
    return ResponseGenerator(db, knowledge, providers, retry_base_seconds=0)


@pytest.fixture
def engine(test_settings, embedder, providers):
    return build_engine(
        test_settings, embedder=embedder, providers=providers, rng=random.Random(7)
    )


@pytest.fixture
def client(test_settings, engine) -> TestClient:
    """
    TestClient de FastAPI con dependency overrides.

    Reemplaza las dependencias reales:
    - get_settings → test_settings (sin .env)
    - get_engine   → engine con embedder y LLM falsos
    """
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_engine] = lambda: engine

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    # Limpiar overrides después del test
    app.dependency_overrides.clear()
