"""
Conversation Manager — Estado de flujo por (agente, remitente).

Abstrae el acceso a la tabla `conversations` y expone
helpers de alto nivel para el motor de flujos.

El estado es el id del nodo actual (None = sin flujo en curso).
El contexto guarda:
- conversation_count: turnos procesados
- user_name: nombre del remitente si el canal lo informa
- ended: el flujo llegó a un nodo `end`
- lead / handoff: datos capturados por las acciones del flujo
"""

import logging
from typing import Any, Dict, Optional, Tuple

from agent.db_service import DBService

logger = logging.getLogger(__name__)


class ConversationManager:
    """Gestiona el estado de conversación por (agente, remitente)."""

    def __init__(self, db: DBService):
        self._db = db

    def get_full(self, agent_id: int, sender_id: str) -> Tuple[Optional[str], Dict[str, Any]]:
        """Devuelve (current_node_id, context) en una sola lectura."""
        conv = self._db.get_conversation(agent_id, sender_id)
        if conv is None:
            return None, {}
        return conv["current_node_id"], conv["context"]

    def get_node(self, agent_id: int, sender_id: str) -> Optional[str]:
        return self.get_full(agent_id, sender_id)[0]

    def get_context(self, agent_id: int, sender_id: str) -> Dict[str, Any]:
        return self.get_full(agent_id, sender_id)[1]

    def set_node(
        self,
        agent_id: int,
        sender_id: str,
        node_id: Optional[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Actualiza el nodo actual y opcionalmente el contexto."""
        if context is None:
            # Mantener contexto previo
            context = self.get_context(agent_id, sender_id)
        self._db.upsert_conversation(agent_id, sender_id, node_id, context)
        logger.debug(f"[agent {agent_id}:{sender_id}] nodo → {node_id}")

    def update_context(self, agent_id: int, sender_id: str, **kwargs: Any) -> None:
        """Merge de campos al contexto actual sin cambiar de nodo."""
        node_id, ctx = self.get_full(agent_id, sender_id)
        ctx.update(kwargs)
        self._db.upsert_conversation(agent_id, sender_id, node_id, ctx)

    def reset(self, agent_id: int, sender_id: str) -> None:
        """Vuelve al inicio del flujo y limpia contexto."""
        self._db.clear_conversation(agent_id, sender_id)
        logger.debug(f"[agent {agent_id}:{sender_id}] conversación reseteada")

    def is_ended(self, agent_id: int, sender_id: str) -> bool:
        """True si el flujo de esta conversación ya terminó en un nodo `end`."""
        return bool(self.get_context(agent_id, sender_id).get("ended"))
