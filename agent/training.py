"""
Training — Ciclo de vida de las sesiones de entrenamiento.

"Entrenar" acá es armar artefactos para el prompt (ejemplos, brand voice,
contexto de negocio), NO hacer fine-tuning de un modelo.

Máquina de estados de una sesión:
    pending → processing → completed | failed

1. create(): valida (todas las reglas juntas), persiste la sesión en
   'pending' con sus ejemplos y agenda el procesamiento en background
2. process(): avanza el progreso por checkpoints fijos (10 → 25 → 50 →
   75 → 90 → 100), cada uno persistido y nunca decreciente
3. Éxito: métricas sintéticas + custom_training del agente en la misma
   transacción que cierra la sesión
4. Falla: status=failed + error_log; el custom_training previo queda intacto

Varias sesiones (del mismo agente o no) pueden procesarse a la vez;
la última en completar define el custom_training vigente.
"""

import asyncio
import logging
import random
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from agent.db_service import DBService
from agent.errors import (
    AgentNotFound,
    SessionNotFound,
    SessionProcessingError,
    ValidationError,
)

logger = logging.getLogger(__name__)

START_PROGRESS = 10
PROGRESS_CHECKPOINTS = (25, 50, 75, 90)

MIN_EXAMPLES = 5
MAX_EXAMPLES = 1000
MIN_INPUT_CHARS = 5
MIN_OUTPUT_CHARS = 10
MIN_WEIGHT, MAX_WEIGHT = 1, 10


def _blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_example(item: Dict, index: int) -> List[str]:
    """Reglas por ejemplo. index es 1-based para los mensajes."""
    issues = []

    if _blank(item.get("input")) or len(item["input"].strip()) < MIN_INPUT_CHARS:
        issues.append(f"Item {index}: Input too short (minimum {MIN_INPUT_CHARS} characters)")

    output = item.get("expected_output")
    if _blank(output) or len(output.strip()) < MIN_OUTPUT_CHARS:
        issues.append(
            f"Item {index}: Expected output too short (minimum {MIN_OUTPUT_CHARS} characters)"
        )

    if _blank(item.get("category")):
        issues.append(f"Item {index}: Category is required")

    weight = item.get("weight")
    if weight is not None and (
        isinstance(weight, bool)
        or not isinstance(weight, int)
        or not MIN_WEIGHT <= weight <= MAX_WEIGHT
    ):
        issues.append(f"Item {index}: Weight must be between {MIN_WEIGHT} and {MAX_WEIGHT}")

    return issues


def validate_training_data(
    training_data: List[Dict], brand_voice: Optional[Dict] = None
) -> List[str]:
    """
    Valida el input de una sesión.

    Returns:
        Lista con todas las reglas violadas (vacía = válido)
    """
    issues: List[str] = []

    for index, item in enumerate(training_data, 1):
        issues.extend(validate_example(item, index))

    if len(training_data) < MIN_EXAMPLES:
        issues.append("Minimum 5 training examples required.")

    if len(training_data) > MAX_EXAMPLES:
        issues.append(f"Maximum {MAX_EXAMPLES} training examples allowed per session")

    if brand_voice is not None:
        for label, key in (
            ("tone", "tone"),
            ("personality", "personality"),
            ("communication style", "communication_style"),
        ):
            if _blank(brand_voice.get(key)):
                issues.append(f"Brand voice {label} is required")

    return issues


class TrainingSessionManager:
    """Crea sesiones y las procesa como tareas asyncio desacopladas del request."""

    def __init__(
        self,
        db: DBService,
        step_delay_seconds: float = 2.0,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            db: Persistencia
            step_delay_seconds: Pausa entre checkpoints de progreso
            rng: Fuente de aleatoriedad para las métricas (inyectable en tests)
        """
        self._db = db
        self.step_delay_seconds = step_delay_seconds
        self._rng = rng or random.Random()

        # session_id → tarea en curso (como máximo una por sesión)
        self._tasks: Dict[int, asyncio.Task] = {}

    # Crear

    async def create(
        self,
        agent_id: int,
        training_data: List[Dict],
        brand_voice: Dict,
        business_context: Optional[Dict] = None,
        session_name: Optional[str] = None,
    ) -> Dict:
        """
        Valida, persiste la sesión en 'pending' y agenda el procesamiento.

        Retorna inmediatamente (no espera a que termine el procesamiento).

        Raises:
            AgentNotFound: si el agente no existe
            ValidationError: con todas las reglas violadas
        """
        agent = await asyncio.to_thread(self._db.get_agent, agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        issues = validate_training_data(training_data, brand_voice)
        if issues:
            logger.info(f"[agent {agent_id}] training rechazado: {len(issues)} problemas")
            raise ValidationError(issues, message="Invalid training data")

        items = [
            {
                "id": str(uuid.uuid4()),
                "input": item["input"],
                "expected_output": item["expected_output"],
                "category": item["category"],
                "weight": item.get("weight") or 1,
            }
            for item in training_data
        ]
        name = session_name or f"Training {datetime.now():%Y-%m-%d %H:%M}"

        session = await asyncio.to_thread(
            self._db.create_training_session,
            agent_id,
            name,
            items,
            brand_voice,
            business_context or {},
        )
        logger.info(
            f"[agent {agent_id}] sesión #{session['id']} creada con {len(items)} ejemplos"
        )

        self.schedule(session["id"])
        return session

    def schedule(self, session_id: int) -> Optional[asyncio.Task]:
        """Lanza process() en background si no hay otra corrida de la misma sesión."""
        existing = self._tasks.get(session_id)
        if existing is not None and not existing.done():
            logger.warning(f"Sesión #{session_id} ya se está procesando")
            return None

        task = asyncio.create_task(self.process(session_id), name=f"training-{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda t: self._tasks.pop(session_id, None))
        return task

    # Procesar

    def _build_metrics(self, session: Dict) -> Dict:
        """Métricas sintéticas en rangos plausibles (no son benchmarks reales)."""
        return {
            "accuracy": round(0.7 + self._rng.random() * 0.3, 4),
            "training_time": self._rng.randint(60, 359),
            "data_points": len(session["training_data"]),
            "improvement_score": round(0.6 + self._rng.random() * 0.4, 4),
        }

    async def process(self, session_id: int) -> None:
        """
        Corre una sesión hasta completed o failed.

        Nunca propaga excepciones: cualquier falla queda en error_log.
        """
        claimed = await asyncio.to_thread(
            self._db.claim_training_session, session_id, START_PROGRESS
        )
        if not claimed:
            logger.warning(f"Sesión #{session_id} no está en pending, se ignora")
            return

        try:
            session = await asyncio.to_thread(self._db.get_training_session, session_id)

            for progress in PROGRESS_CHECKPOINTS:
                await asyncio.sleep(self.step_delay_seconds)
                await asyncio.to_thread(self._db.update_session_progress, session_id, progress)
                logger.debug(f"Sesión #{session_id} progreso {progress}%")

            metrics = self._build_metrics(session)
            now = datetime.now()
            custom_training = {
                "training_data": session["training_data"],
                "brand_voice": session["brand_voice_config"],
                "business_context": session["business_context_config"],
                "training_status": "trained",
                "last_training_date": now.isoformat(),
                "model_version": f"custom-{session_id}",
            }
            checkpoint = f"checkpoint-{session_id}-{int(now.timestamp() * 1000)}"

            await asyncio.to_thread(
                self._db.complete_training_session,
                session_id,
                session["agent_id"],
                custom_training,
                metrics,
                checkpoint,
            )
            logger.info(f"Sesión #{session_id} completada (agent {session['agent_id']})")

        except Exception as e:
            error = SessionProcessingError(session_id, str(e) or e.__class__.__name__)
            logger.error(f"Sesión #{session_id} falló: {error}", exc_info=True)
            await asyncio.to_thread(self._db.fail_training_session, session_id, str(error))

    async def drain(self) -> None:
        """Espera a que terminen todas las sesiones en curso."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    @property
    def active_sessions(self) -> List[int]:
        return sorted(sid for sid, t in self._tasks.items() if not t.done())

    # Consultas

    async def get_status(self, session_id: int) -> Dict:
        """
        Raises:
            SessionNotFound: si la sesión no existe
        """
        session = await asyncio.to_thread(self._db.get_training_session, session_id)
        if session is None:
            raise SessionNotFound(session_id)

        return {
            "session_id": session["id"],
            "agent_id": session["agent_id"],
            "session_name": session["session_name"],
            "status": session["status"],
            "progress_percentage": session["progress_percentage"],
            "metrics": session["metrics"],
            "error_log": session["error_log"],
            "model_checkpoint": session["model_checkpoint"],
            "completed_at": session["completed_at"],
        }

    async def list_sessions(self, agent_id: int) -> List[Dict]:
        agent = await asyncio.to_thread(self._db.get_agent, agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return await asyncio.to_thread(self._db.list_training_sessions, agent_id)

    async def add_example(
        self,
        agent_id: int,
        input_text: str,
        expected_output: str,
        category: str,
        weight: int = 1,
    ) -> Dict:
        """Agrega un ejemplo individual (sin sesión)."""
        agent = await asyncio.to_thread(self._db.get_agent, agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        issues = validate_example(
            {
                "input": input_text,
                "expected_output": expected_output,
                "category": category,
                "weight": weight,
            },
            1,
        )
        if issues:
            raise ValidationError(issues, message="Invalid training example")

        example = await asyncio.to_thread(
            self._db.create_training_example,
            agent_id,
            input_text,
            expected_output,
            category,
            weight,
        )
        logger.info(f"[agent {agent_id}] ejemplo individual #{example['id']} agregado")
        return example
