"""
Flow Engine — Intérprete de flujos de conversación por agente.

Un flujo es un grafo dirigido:
    {"nodes": [{"id", "type", "data": {...}}], "edges": [{"id", "source", "target", "label"?}]}

Tipos de nodo:
- start:     punto de entrada (exactamente uno)
- message:   emite texto interpolado y espera el próximo turno
- condition: evalúa data.condition y sigue por la rama true/yes o false/no
- action:    ejecuta un efecto (lead, ticket, handoff...) y sigue sin esperar
- end:       termina el flujo para esta conversación

Si el agente no tiene flujo, si no hay nodo alcanzable o si el flujo ya
terminó, respond() devuelve None y el caller usa el Response Generator.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Callable, Dict, List, Optional

from agent.conversation import ConversationManager
from agent.db_service import DBService
from agent.errors import FlowValidationError

logger = logging.getLogger(__name__)

NODE_TYPES = {"start", "message", "condition", "action", "end"}

# Pasos máximos por turno (corta ciclos action → action)
MAX_STEPS = 50

DEFAULT_MESSAGE = "Hello!"
DEFAULT_END_MESSAGE = "Thank you for the conversation!"

# Palabra clave del label → palabras del usuario que la disparan
EDGE_KEYWORDS = {
    "yes": ("yes", "yeah", "sure"),
    "no": ("no", "nope", "not"),
    "help": ("help",),
    "buy": ("buy", "purchase", "order"),
}

TRUE_LABELS = {"true", "yes"}
FALSE_LABELS = {"false", "no"}

_CONTAINS_RE = re.compile(r"contains\s+[\"']([^\"']+)[\"']", re.IGNORECASE)
_EQUALS_RE = re.compile(r"equals\s+[\"']([^\"']+)[\"']", re.IGNORECASE)
_LENGTH_RE = re.compile(r"length\s*>\s*(\d+)", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z0-9']+")


# Validación


def validate_flow(flow: Dict) -> List[str]:
    """
    Valida que el grafo esté bien formado.

    Returns:
        Lista con TODOS los problemas encontrados (vacía = válido)
    """
    errors: List[str] = []

    nodes = flow.get("nodes") if isinstance(flow, dict) else None
    edges = flow.get("edges") if isinstance(flow, dict) else None
    if not isinstance(nodes, list):
        return ["Flow must have a nodes array"]
    if not isinstance(edges, list):
        return ["Flow must have an edges array"]

    starts = [n for n in nodes if n.get("type") == "start"]
    if not starts:
        errors.append("Flow must have at least one start node")
    elif len(starts) > 1:
        errors.append("Flow can only have one start node")

    unknown = [n.get("id") for n in nodes if n.get("type") not in NODE_TYPES]
    if unknown:
        errors.append(f"Unknown node types for nodes: {', '.join(map(str, unknown))}")

    node_ids = [n.get("id") for n in nodes]
    connected = {e.get("source") for e in edges} | {e.get("target") for e in edges}
    orphaned = [
        n.get("id")
        for n in nodes
        if n.get("type") != "start" and n.get("id") not in connected
    ]
    if orphaned:
        errors.append(f"Orphaned nodes found: {', '.join(map(str, orphaned))}")

    for edge in edges:
        if edge.get("source") not in node_ids:
            errors.append(f"Edge references non-existent source node: {edge.get('source')}")
        if edge.get("target") not in node_ids:
            errors.append(f"Edge references non-existent target node: {edge.get('target')}")

    return errors


def ensure_valid_flow(flow: Dict) -> None:
    """Raises FlowValidationError con todos los problemas."""
    errors = validate_flow(flow)
    if errors:
        raise FlowValidationError(errors)


# Evaluación de condiciones


def evaluate_expression(expression: str, user_input: str) -> Optional[bool]:
    """
    Evalúa `contains "x"`, `equals "x"` o `length > n` contra el input.

    Returns:
        True/False, o None si la expresión no tiene un formato conocido
    """
    text = (user_input or "").lower()
    expression = expression or ""

    match = _CONTAINS_RE.search(expression)
    if match:
        return match.group(1).lower() in text

    match = _EQUALS_RE.search(expression)
    if match:
        return text.strip() == match.group(1).lower()

    match = _LENGTH_RE.search(expression)
    if match:
        return len(text) > int(match.group(1))

    return None


def edge_matches(label: Optional[str], user_input: str) -> bool:
    """Un edge sin label siempre matchea; si no, keyword o expresión."""
    if not label or not label.strip():
        return True

    result = evaluate_expression(label, user_input)
    if result is not None:
        return result

    words = set(_WORD_RE.findall((user_input or "").lower()))
    label_words = set(_WORD_RE.findall(label.lower()))
    for keyword, triggers in EDGE_KEYWORDS.items():
        if keyword in label_words and words.intersection(triggers):
            return True
    return False


def interpolate(message: str, context: Dict, user_input: str) -> str:
    return (
        message.replace("{user_name}", context.get("user_name") or "there")
        .replace("{user_input}", user_input)
        .replace("{conversation_count}", str(context.get("conversation_count", 0)))
    )


class FlowEngine:
    """Recorre el flujo del agente turno a turno."""

    def __init__(self, db: DBService, conversations: Optional[ConversationManager] = None):
        self._db = db
        self._conv = conversations or ConversationManager(db)
        self._actions: Dict[str, Callable[[int, str, Dict, str], Dict]] = {
            "save_lead_info": self._save_lead_info,
            "send_email": self._notify,
            "create_ticket": self._notify,
            "schedule_callback": self._notify,
            "transfer_to_human": self._transfer_to_human,
            "update_user_profile": self._update_user_profile,
        }

    # Navegación

    @staticmethod
    def _node(flow: Dict, node_id: Optional[str]) -> Optional[Dict]:
        for node in flow["nodes"]:
            if node.get("id") == node_id:
                return node
        return None

    @staticmethod
    def _outgoing(flow: Dict, node_id: str) -> List[Dict]:
        return [e for e in flow["edges"] if e.get("source") == node_id]

    def _next_node(self, flow: Dict, node_id: str, user_input: str) -> Optional[Dict]:
        """
        1 edge saliente → se sigue siempre.
        Varios → el primero cuyo label matchea; si ninguno, el primero.
        """
        edges = self._outgoing(flow, node_id)
        if not edges:
            return None
        if len(edges) == 1:
            return self._node(flow, edges[0]["target"])

        for edge in edges:
            if edge_matches(edge.get("label"), user_input):
                return self._node(flow, edge["target"])
        return self._node(flow, edges[0]["target"])

    def _branch(self, flow: Dict, node: Dict, user_input: str) -> Optional[Dict]:
        """Siguiente nodo desde un `condition`."""
        holds = bool(evaluate_expression(node.get("data", {}).get("condition", ""), user_input))
        wanted = TRUE_LABELS if holds else FALSE_LABELS

        for edge in self._outgoing(flow, node["id"]):
            if (edge.get("label") or "").strip().lower() in wanted:
                return self._node(flow, edge["target"])
        return self._next_node(flow, node["id"], user_input)

    # Acciones

    def _notify(self, agent_id: int, sender_id: str, context: Dict, user_input: str) -> Dict:
        return {"user_name": context.get("user_name"), "user_input": user_input}

    def _save_lead_info(self, agent_id: int, sender_id: str, context: Dict, user_input: str) -> Dict:
        lead = dict(context.get("lead") or {})
        lead.update(
            {
                "sender_id": sender_id,
                "user_name": context.get("user_name"),
                "last_input": user_input,
                "captured_at": datetime.now().isoformat(),
            }
        )
        context["lead"] = lead
        return lead

    def _transfer_to_human(self, agent_id: int, sender_id: str, context: Dict, user_input: str) -> Dict:
        context["handoff"] = True
        return {"user_input": user_input}

    def _update_user_profile(self, agent_id: int, sender_id: str, context: Dict, user_input: str) -> Dict:
        profile = dict(context.get("profile") or {})
        if context.get("user_name"):
            profile["name"] = context["user_name"]
        profile["last_input"] = user_input
        context["profile"] = profile
        return profile

    def _execute_action(
        self, agent_id: int, sender_id: str, action: str, context: Dict, user_input: str
    ) -> None:
        handler = self._actions.get(action)
        if handler is None:
            logger.warning(f"[agent {agent_id}:{sender_id}] acción desconocida: {action}")
            payload = {"unknown": True, "user_input": user_input}
        else:
            payload = handler(agent_id, sender_id, context, user_input)
            logger.info(f"[agent {agent_id}:{sender_id}] acción ejecutada: {action}")

        self._db.record_flow_action(agent_id, sender_id, action or "", payload)

    # Turno

    def run_turn(
        self,
        agent: Dict,
        sender_id: str,
        user_input: str,
        user_name: Optional[str] = None,
    ) -> Optional[Dict]:
        """
        Procesa un turno (sync; usa la DB directamente).

        Returns:
            {"message", "node_id", "ended"} o None para delegar en el generador
        """
        flow = agent.get("conversation_flow")
        if not agent.get("flow_enabled") or not flow:
            return None

        agent_id = agent["id"]
        current_id, context = self._conv.get_full(agent_id, sender_id)

        if context.get("ended"):
            return None

        start = next((n for n in flow.get("nodes", []) if n.get("type") == "start"), None)
        if start is None:
            return None

        context["conversation_count"] = int(context.get("conversation_count", 0)) + 1
        if user_name:
            context["user_name"] = user_name

        cursor = current_id if self._node(flow, current_id) else start["id"]
        node = self._next_node(flow, cursor, user_input)

        for _ in range(MAX_STEPS):
            if node is None:
                break

            node_type = node.get("type")
            data = node.get("data") or {}

            if node_type == "message":
                message = interpolate(data.get("message") or DEFAULT_MESSAGE, context, user_input)
                self._conv.set_node(agent_id, sender_id, node["id"], context)
                return {"message": message, "node_id": node["id"], "ended": False}

            if node_type == "end":
                context["ended"] = True
                message = interpolate(data.get("message") or DEFAULT_END_MESSAGE, context, user_input)
                self._conv.set_node(agent_id, sender_id, node["id"], context)
                return {"message": message, "node_id": node["id"], "ended": True}

            if node_type == "condition":
                node = self._branch(flow, node, user_input)
            elif node_type == "action":
                self._execute_action(agent_id, sender_id, data.get("action"), context, user_input)
                node = self._next_node(flow, node["id"], user_input)
            elif node_type == "start":
                node = self._next_node(flow, node["id"], user_input)
            else:
                logger.warning(f"[agent {agent_id}] tipo de nodo desconocido: {node_type}")
                break
        else:
            logger.warning(f"[agent {agent_id}:{sender_id}] flujo excedió {MAX_STEPS} pasos")

        # Sin nodo alcanzable: se guarda el contexto (acciones, contador) y se delega
        self._conv.set_node(agent_id, sender_id, current_id, context)
        return None

    async def respond(
        self,
        agent: Dict,
        sender_id: str,
        user_input: str,
        user_name: Optional[str] = None,
    ) -> Optional[Dict]:
        return await asyncio.to_thread(self.run_turn, agent, sender_id, user_input, user_name)

    def reset(self, agent_id: int, sender_id: str) -> None:
        self._conv.reset(agent_id, sender_id)
