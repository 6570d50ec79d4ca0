"""
Pipeline - Response Generator del motor de agentes.

Flujo de una request:
1. ¿El agente está entrenado? (custom_training.training_status == "trained")
2. TrainedPath: búsqueda de conocimiento (top-K) y ranking de ejemplos
   (top-K) en paralelo; si una fuente falla se loguea y se sigue sin ella
3. StandardPath: solo el system prompt base del agente
4. Llamada al LLM con reintento y backoff exponencial
5. Resultado con el texto y las fuentes usadas

Si el LLM falla después de los reintentos se propaga GenerationFailed;
el mensaje de disculpa lo decide el caller (AgentOrchestrator).
"""

import asyncio
import logging
from typing import Dict, List, Optional

from agent.db_service import DBService
from agent.errors import GenerationFailed
from rag.knowledge_store import KnowledgeStore
from rag.query import composer, example_matcher
from rag.query.responder import ProviderRegistry

logger = logging.getLogger(__name__)


def is_trained(agent: Dict) -> bool:
    training = agent.get("custom_training") or {}
    return training.get("training_status") == "trained"


def _slim_knowledge(item: Dict) -> Dict:
    """Item de conocimiento sin el vector (para la respuesta)."""
    return {
        "id": item.get("id"),
        "title": item.get("title"),
        "content": item.get("content"),
        "category": item.get("category"),
        "similarity": item.get("similarity"),
    }


def _slim_example(example: Dict) -> Dict:
    return {
        "id": example.get("id"),
        "input": example.get("input"),
        "expected_output": example.get("expected_output"),
        "category": example.get("category"),
        "weight": example.get("weight", 1),
        "similarity": example.get("similarity"),
    }


class ResponseGenerator:
    """Recupera contexto, compone el prompt y llama al LLM."""

    def __init__(
        self,
        db: DBService,
        knowledge: KnowledgeStore,
        providers: ProviderRegistry,
        knowledge_top_k: int = 3,
        examples_top_k: int = 3,
        max_attempts: int = 2,
        retry_base_seconds: float = 0.5,
    ):
        """
        Args:
            db: Persistencia (ejemplos individuales del agente)
            knowledge: Knowledge Store del agente
            providers: Registry de providers LLM
            knowledge_top_k: Items de conocimiento a incluir
            examples_top_k: Ejemplos de entrenamiento a incluir
            max_attempts: Intentos totales de la llamada al LLM
            retry_base_seconds: Base del backoff exponencial
        """
        self._db = db
        self._knowledge = knowledge
        self._providers = providers
        self.knowledge_top_k = knowledge_top_k
        self.examples_top_k = examples_top_k
        self.max_attempts = max(1, max_attempts)
        self.retry_base_seconds = retry_base_seconds

    async def _candidate_examples(self, agent: Dict) -> List[Dict]:
        training = agent.get("custom_training") or {}
        examples = list(training.get("training_data") or [])

        individual = await asyncio.to_thread(self._db.get_individual_examples, agent["id"])
        for row in individual:
            examples.append(
                {
                    "id": row["id"],
                    "input": row["input_text"],
                    "expected_output": row["expected_output"],
                    "category": row["category"],
                    "weight": row["weight"],
                }
            )
        return examples

    async def _rank_examples(self, agent: Dict, user_message: str) -> List[Dict]:
        examples = await self._candidate_examples(agent)
        return example_matcher.rank(examples, user_message, self.examples_top_k)

    async def _retrieve(self, agent: Dict, user_message: str):
        """Fan-out/fan-in de las dos fuentes; una falla no tumba a la otra."""
        knowledge_result, examples_result = await asyncio.gather(
            self._knowledge.search(agent["id"], user_message, self.knowledge_top_k),
            self._rank_examples(agent, user_message),
            return_exceptions=True,
        )

        if isinstance(knowledge_result, BaseException):
            logger.warning(
                f"[agent {agent['id']}] búsqueda de conocimiento falló, se sigue sin ella: "
                f"{knowledge_result}"
            )
            knowledge_result = []

        if isinstance(examples_result, BaseException):
            logger.warning(
                f"[agent {agent['id']}] ranking de ejemplos falló, se sigue sin ellos: "
                f"{examples_result}"
            )
            examples_result = []

        return knowledge_result, examples_result

    def build_prompt(
        self,
        agent: Dict,
        knowledge_hits: Optional[List[Dict]] = None,
        training_hits: Optional[List[Dict]] = None,
    ) -> str:
        if not is_trained(agent):
            return agent["system_prompt"]

        training = agent["custom_training"]
        return composer.compose(
            agent["system_prompt"],
            brand_voice=training.get("brand_voice"),
            business_context=training.get("business_context"),
            knowledge_hits=knowledge_hits,
            training_hits=training_hits,
        )

    async def _call_llm(self, agent: Dict, system_prompt: str, user_message: str) -> Dict:
        """Llama al provider; reintenta con backoff base * 2^(intento-1)."""
        last_error: Optional[GenerationFailed] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                provider = self._providers.get(agent.get("llm_provider"))
                return await provider.complete(system_prompt, user_message, agent.get("model"))
            except GenerationFailed as e:
                last_error = e
                if attempt < self.max_attempts:
                    delay = self.retry_base_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        f"[agent {agent['id']}] LLM falló (intento {attempt}/"
                        f"{self.max_attempts}), reintentando en {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)

        logger.error(f"[agent {agent['id']}] LLM falló tras {self.max_attempts} intentos")
        raise last_error

    async def generate_reply(
        self, agent: Dict, user_message: str, session_id: Optional[str] = None
    ) -> Dict:
        """
        Genera la respuesta del agente.

        Args:
            agent: Agente (dict de DBService.get_agent)
            user_message: Mensaje del usuario
            session_id: Identificador de la conversación (para logs)

        Returns:
            Dict con text, knowledge_used, training_examples_used,
            custom_training_used, model_version, token_usage

        Raises:
            GenerationFailed: si el LLM falla después de los reintentos
        """
        trained = is_trained(agent)
        knowledge_hits: List[Dict] = []
        training_hits: List[Dict] = []

        if trained:
            knowledge_hits, training_hits = await self._retrieve(agent, user_message)

        system_prompt = self.build_prompt(agent, knowledge_hits, training_hits)

        logger.info(
            f"[agent {agent['id']}] session={session_id} trained={trained} "
            f"knowledge={len(knowledge_hits)} examples={len(training_hits)}"
        )

        result = await self._call_llm(agent, system_prompt, user_message)

        model_version = None
        if trained:
            model_version = agent["custom_training"].get("model_version")

        return {
            "text": result["text"],
            "knowledge_used": [_slim_knowledge(k) for k in knowledge_hits],
            "training_examples_used": [_slim_example(e) for e in training_hits],
            "custom_training_used": trained,
            "model_version": model_version,
            "token_usage": result.get("token_usage") or {},
        }
