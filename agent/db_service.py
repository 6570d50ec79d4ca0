"""
DB Service — Capa de acceso a datos del motor de agentes.

Encapsula TODAS las operaciones SQLite en métodos tipados,
evitando SQL inline disperso en el generador de respuestas,
el gestor de entrenamiento o el motor de flujos.

Las columnas JSON (tags, embedding, metadata, custom_training, ...)
se serializan acá; hacia afuera siempre salen dicts/listas de Python.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "database" / "schema" / "schema.sql"

_JSON_COLUMNS = {
    "tags": [],
    "embedding": [],
    "metadata": {},
    "custom_training": None,
    "conversation_flow": None,
    "training_data": [],
    "brand_voice_config": {},
    "business_context_config": {},
    "metrics": None,
    "context": {},
    "payload": {},
}

_UPDATABLE_KNOWLEDGE_FIELDS = {
    "title",
    "content",
    "category",
    "tags",
    "embedding",
    "embedding_model",
    "metadata",
    "is_active",
}


def _now() -> str:
    return datetime.now().isoformat()


def _decode(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """Convierte una fila a dict, parseando las columnas JSON."""
    if row is None:
        return None
    d = dict(row)
    for column, default in _JSON_COLUMNS.items():
        if column in d:
            raw = d[column]
            d[column] = json.loads(raw) if raw else default
    for flag in ("is_active", "flow_enabled"):
        if flag in d:
            d[flag] = bool(d[flag])
    return d


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class DBService:
    """Servicio de acceso a datos SQLite para agentes, conocimiento y entrenamiento."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    # helpers

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Conexión por llamada; commit al salir, rollback si hay excepción."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_schema(self, schema_path: Path = _SCHEMA_PATH) -> None:
        """Aplica el schema (idempotente: CREATE ... IF NOT EXISTS)."""
        with open(schema_path, "r", encoding="utf-8") as f:
            script = f.read()
        with self._conn() as conn:
            conn.executescript(script)
        logger.info(f"Schema aplicado en {self.db_path}")

    def ping(self) -> bool:
        with self._conn() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # Agents

    def create_agent(
        self,
        name: str,
        system_prompt: str,
        llm_provider: str = "groq",
        model: str = "llama-3.3-70b-versatile",
    ) -> Dict:
        """Crea un agente (sin entrenamiento ni flujo) y lo devuelve."""
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO agents (name, system_prompt, llm_provider, model, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, system_prompt, llm_provider, model, _now()),
            )
            row = conn.execute(
                "SELECT * FROM agents WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return _decode(row)

    def get_agent(self, agent_id: int) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM agents WHERE id = ?", (agent_id,)
            ).fetchone()
            return _decode(row)

    def delete_agent(self, agent_id: int) -> bool:
        """Borra el agente; las tablas hijas cascadean."""
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM agents WHERE id = ?", (agent_id,))
            return cursor.rowcount > 0

    def set_agent_flow(
        self, agent_id: int, flow: Optional[Dict], enabled: bool
    ) -> Optional[Dict]:
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE agents SET conversation_flow = ?, flow_enabled = ?
                WHERE id = ?
                """,
                (_dumps(flow) if flow is not None else None, int(enabled), agent_id),
            )
            row = conn.execute(
                "SELECT * FROM agents WHERE id = ?", (agent_id,)
            ).fetchone()
            return _decode(row)

    # Knowledge items

    def insert_knowledge_item(
        self,
        agent_id: int,
        title: str,
        content: str,
        category: str,
        tags: List[str],
        embedding: List[float],
        embedding_model: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> Dict:
        now = _now()
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO knowledge_items
                    (agent_id, title, content, category, tags, embedding,
                     embedding_model, metadata, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    agent_id,
                    title,
                    content,
                    category,
                    _dumps(tags),
                    _dumps(embedding),
                    embedding_model,
                    _dumps(metadata or {}),
                    now,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM knowledge_items WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return _decode(row)

    def get_knowledge_item(self, item_id: int) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM knowledge_items WHERE id = ?", (item_id,)
            ).fetchone()
            return _decode(row)

    def update_knowledge_item(self, item_id: int, **fields: Any) -> Optional[Dict]:
        """Update-by-id de los campos indicados. Nunca reescribe en bloque."""
        unknown = set(fields) - _UPDATABLE_KNOWLEDGE_FIELDS
        if unknown:
            raise ValueError(f"Campos no actualizables: {sorted(unknown)}")

        assignments = []
        values: List[Any] = []
        for column, value in fields.items():
            if column in ("tags", "embedding", "metadata"):
                value = _dumps(value)
            elif column == "is_active":
                value = int(bool(value))
            assignments.append(f"{column} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.extend([_now(), item_id])

        with self._conn() as conn:
            conn.execute(
                f"UPDATE knowledge_items SET {', '.join(assignments)} WHERE id = ?",
                values,
            )
            row = conn.execute(
                "SELECT * FROM knowledge_items WHERE id = ?", (item_id,)
            ).fetchone()
            return _decode(row)

    def get_active_knowledge_items(self, agent_id: int) -> List[Dict]:
        """Items activos del agente en orden de inserción."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM knowledge_items
                WHERE agent_id = ? AND is_active = 1
                ORDER BY id
                """,
                (agent_id,),
            ).fetchall()
            return [_decode(r) for r in rows]

    def list_knowledge_items(self, agent_id: int) -> List[Dict]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM knowledge_items WHERE agent_id = ? ORDER BY id",
                (agent_id,),
            ).fetchall()
            return [_decode(r) for r in rows]

    # Training sessions

    def create_training_session(
        self,
        agent_id: int,
        session_name: str,
        training_data: List[Dict],
        brand_voice_config: Dict,
        business_context_config: Dict,
    ) -> Dict:
        """Crea la sesión en 'pending' y sus training_examples en una sola transacción."""
        now = _now()
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO training_sessions
                    (agent_id, session_name, training_data, brand_voice_config,
                     business_context_config, status, progress_percentage, created_at)
                VALUES (?, ?, ?, ?, ?, 'pending', 0, ?)
                """,
                (
                    agent_id,
                    session_name,
                    _dumps(training_data),
                    _dumps(brand_voice_config),
                    _dumps(business_context_config),
                    now,
                ),
            )
            session_id = cursor.lastrowid
            conn.executemany(
                """
                INSERT INTO training_examples
                    (agent_id, session_id, input_text, expected_output, category, weight, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        agent_id,
                        session_id,
                        item["input"],
                        item["expected_output"],
                        item["category"],
                        item["weight"],
                        now,
                    )
                    for item in training_data
                ],
            )
            row = conn.execute(
                "SELECT * FROM training_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            return _decode(row)

    def get_training_session(self, session_id: int) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM training_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            return _decode(row)

    def list_training_sessions(self, agent_id: int) -> List[Dict]:
        """Sesiones del agente, más recientes primero (audit trail)."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM training_sessions
                WHERE agent_id = ?
                ORDER BY id DESC
                """,
                (agent_id,),
            ).fetchall()
            return [_decode(r) for r in rows]

    def claim_training_session(self, session_id: int, progress: int) -> bool:
        """pending → processing. False si otra corrida ya la tomó."""
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE training_sessions
                SET status = 'processing',
                    progress_percentage = MAX(progress_percentage, ?)
                WHERE id = ? AND status = 'pending'
                """,
                (progress, session_id),
            )
            return cursor.rowcount == 1

    def update_session_progress(self, session_id: int, progress: int) -> None:
        """El progreso guardado nunca retrocede (MAX con el valor actual)."""
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE training_sessions
                SET progress_percentage = MAX(progress_percentage, ?)
                WHERE id = ? AND status = 'processing'
                """,
                (progress, session_id),
            )

    def complete_training_session(
        self,
        session_id: int,
        agent_id: int,
        custom_training: Dict,
        metrics: Dict,
        model_checkpoint: str,
    ) -> None:
        """Aplica custom_training al agente y cierra la sesión en la misma transacción."""
        now = _now()
        with self._conn() as conn:
            conn.execute(
                "UPDATE agents SET custom_training = ? WHERE id = ?",
                (_dumps(custom_training), agent_id),
            )
            conn.execute(
                """
                UPDATE training_sessions
                SET status = 'completed',
                    progress_percentage = 100,
                    metrics = ?,
                    model_checkpoint = ?,
                    completed_at = ?
                WHERE id = ?
                """,
                (_dumps(metrics), model_checkpoint, now, session_id),
            )

    def fail_training_session(self, session_id: int, error_log: str) -> None:
        """Marca la sesión como fallida. No toca el custom_training del agente."""
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE training_sessions
                SET status = 'failed', error_log = ?
                WHERE id = ?
                """,
                (error_log, session_id),
            )

    # Training examples

    def create_training_example(
        self,
        agent_id: int,
        input_text: str,
        expected_output: str,
        category: str,
        weight: int = 1,
        session_id: Optional[int] = None,
    ) -> Dict:
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO training_examples
                    (agent_id, session_id, input_text, expected_output, category, weight, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (agent_id, session_id, input_text, expected_output, category, weight, _now()),
            )
            row = conn.execute(
                "SELECT * FROM training_examples WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return _decode(row)

    def get_training_examples(
        self, agent_id: int, session_id: Optional[int] = None
    ) -> List[Dict]:
        with self._conn() as conn:
            if session_id is None:
                rows = conn.execute(
                    "SELECT * FROM training_examples WHERE agent_id = ? ORDER BY id",
                    (agent_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM training_examples
                    WHERE agent_id = ? AND session_id = ?
                    ORDER BY id
                    """,
                    (agent_id, session_id),
                ).fetchall()
            return [_decode(r) for r in rows]

    def get_individual_examples(self, agent_id: int) -> List[Dict]:
        """Ejemplos agregados fuera de una sesión de entrenamiento."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM training_examples
                WHERE agent_id = ? AND session_id IS NULL
                ORDER BY id
                """,
                (agent_id,),
            ).fetchall()
            return [_decode(r) for r in rows]

    # Conversations

    def get_conversation(self, agent_id: int, sender_id: str) -> Optional[Dict]:
        """Estado de flujo para (agente, remitente)."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE agent_id = ? AND sender_id = ?",
                (agent_id, sender_id),
            ).fetchone()
            return _decode(row)

    def upsert_conversation(
        self,
        agent_id: int,
        sender_id: str,
        current_node_id: Optional[str],
        context: Dict,
    ) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO conversations (agent_id, sender_id, current_node_id, context, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(agent_id, sender_id) DO UPDATE SET
                    current_node_id = excluded.current_node_id,
                    context = excluded.context,
                    updated_at = excluded.updated_at
                """,
                (agent_id, sender_id, current_node_id, _dumps(context), _now()),
            )

    def clear_conversation(self, agent_id: int, sender_id: str) -> None:
        self.upsert_conversation(agent_id, sender_id, None, {})

    # Flow actions

    def record_flow_action(
        self, agent_id: int, sender_id: str, action: str, payload: Dict
    ) -> Dict:
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO flow_actions (agent_id, sender_id, action, payload, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (agent_id, sender_id, action, _dumps(payload), _now()),
            )
            row = conn.execute(
                "SELECT * FROM flow_actions WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return _decode(row)

    def get_flow_actions(self, agent_id: int, sender_id: Optional[str] = None) -> List[Dict]:
        with self._conn() as conn:
            if sender_id is None:
                rows = conn.execute(
                    "SELECT * FROM flow_actions WHERE agent_id = ? ORDER BY id",
                    (agent_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM flow_actions
                    WHERE agent_id = ? AND sender_id = ?
                    ORDER BY id
                    """,
                    (agent_id, sender_id),
                ).fetchall()
            return [_decode(r) for r in rows]
