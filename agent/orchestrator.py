"""
Orchestrator — Punto de entrada del motor para cada mensaje entrante.

Flujo:
1. Cargar el agente (AgentNotFound si no existe)
2. Mensaje vacío → respuesta fija, sin LLM
3. Palabra de reinicio → resetear el flujo de la conversación
4. Si el agente tiene flujo activo → FlowEngine
5. Si el flujo no responde → ResponseGenerator
6. Si el LLM falla (GenerationFailed) → disculpa genérica

Además expone el CRUD mínimo de agentes que usa la API.
"""

import asyncio
import logging
from typing import Dict, Optional

from agent.db_service import DBService
from agent.errors import AgentNotFound, GenerationFailed
from agent.flow import FlowEngine, ensure_valid_flow
from rag.query.pipeline import ResponseGenerator

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again."
)
EMPTY_MESSAGE_REPLY = "I didn't receive a message. How can I help you?"

RESET_KEYWORDS = ("restart", "start over", "reset")


def _reply(text: str, source: str, **extra) -> Dict:
    result = {
        "text": text,
        "source": source,
        "knowledge_used": [],
        "training_examples_used": [],
        "custom_training_used": False,
        "model_version": None,
        "token_usage": {},
        "flow_node_id": None,
    }
    result.update(extra)
    return result


class AgentOrchestrator:
    """Orquestador: flujo primero, generador después, disculpa si todo falla."""

    def __init__(
        self,
        db: DBService,
        generator: ResponseGenerator,
        flow_engine: Optional[FlowEngine] = None,
    ):
        self._db = db
        self._generator = generator
        self._flow = flow_engine or FlowEngine(db)

        logger.info("AgentOrchestrator inicializado")

    # Agentes

    async def create_agent(
        self,
        name: str,
        system_prompt: str,
        llm_provider: str = "groq",
        model: str = "llama-3.3-70b-versatile",
    ) -> Dict:
        agent = await asyncio.to_thread(
            self._db.create_agent, name, system_prompt, llm_provider, model
        )
        logger.info(f"Agente #{agent['id']} creado: {name}")
        return agent

    async def get_agent(self, agent_id: int) -> Dict:
        agent = await asyncio.to_thread(self._db.get_agent, agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    async def delete_agent(self, agent_id: int) -> None:
        deleted = await asyncio.to_thread(self._db.delete_agent, agent_id)
        if not deleted:
            raise AgentNotFound(agent_id)
        logger.info(f"Agente #{agent_id} eliminado (cascade)")

    async def set_flow(self, agent_id: int, flow: Optional[Dict], enabled: bool = True) -> Dict:
        """
        Guarda el flujo del agente. Se valida antes de activarlo.

        Raises:
            AgentNotFound: si el agente no existe
            FlowValidationError: con todos los problemas del grafo
        """
        await self.get_agent(agent_id)
        if enabled or flow is not None:
            ensure_valid_flow(flow or {})
        return await asyncio.to_thread(self._db.set_agent_flow, agent_id, flow, enabled)

    # Entry point

    async def handle_message(
        self,
        agent_id: int,
        sender_id: str,
        message: str,
        sender_name: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Dict:
        """
        Procesa un mensaje entrante y devuelve la respuesta.

        Returns:
            Dict con text, source ("flow" | "generator" | "fallback" | "empty")
            y las fuentes usadas por el generador
        """
        agent = await self.get_agent(agent_id)
        message = (message or "").strip()

        if not message:
            return _reply(EMPTY_MESSAGE_REPLY, "empty")

        logger.info(f"[agent {agent_id}:{sender_id}] Mensaje: {message[:60]}")

        if agent.get("flow_enabled"):
            if message.lower() in RESET_KEYWORDS:
                await asyncio.to_thread(self._flow.reset, agent_id, sender_id)

            flow_result = await self._flow.respond(agent, sender_id, message, sender_name)
            if flow_result is not None:
                return _reply(
                    flow_result["message"],
                    "flow",
                    flow_node_id=flow_result["node_id"],
                    flow_ended=flow_result["ended"],
                )

        try:
            result = await self._generator.generate_reply(
                agent, message, session_id=session_id or sender_id
            )
        except GenerationFailed as e:
            logger.error(f"[agent {agent_id}:{sender_id}] Error generando respuesta: {e}")
            return _reply(APOLOGY_MESSAGE, "fallback")

        return _reply(result.pop("text"), "generator", **result)
