"""
FastAPI Application - API REST del motor de agentes AgentFlow
- Settings centralizado (Pydantic BaseSettings via config.py)
- Dependency Injection con Depends() (un Engine con todos los componentes)
- HTTP Status Codes correctos + Error Handlers globales
- Entrenamiento en background como tareas asyncio

Endpoints:
- GET    /                                → Raíz informativa
- GET    /health                          → Health check
- POST   /agents                          → Crear agente
- GET    /agents/{id}                     → Ver agente
- DELETE /agents/{id}                     → Borrar agente (cascade)
- PUT    /agents/{id}/flow                → Guardar/activar flujo
- POST   /agents/{id}/reply               → Generar respuesta
- POST   /agents/{id}/training            → Iniciar sesión de entrenamiento (202)
- GET    /agents/{id}/training/sessions   → Historial de sesiones
- POST   /agents/{id}/training/examples   → Ejemplo individual
- POST   /agents/{id}/training/analysis   → Analizar conversaciones
- GET    /training/sessions/{id}          → Estado de una sesión
- GET    /agents/{id}/knowledge           → Listar conocimiento
- POST   /agents/{id}/knowledge           → Agregar item
- POST   /agents/{id}/knowledge/import    → Importar documentos
- GET    /agents/{id}/knowledge/search    → Búsqueda semántica
- PATCH  /knowledge/{item_id}             → Editar item
- DELETE /knowledge/{item_id}             → Desactivar item
- GET    /webhook/{channel}[/{agent_id}]  → Verificación (Meta)
- POST   /webhook/{channel}/{agent_id}    → Mensajes entrantes de un canal
"""

import asyncio
import logging
import random
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

# Agregar directorio raíz al path para imports
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.analysis import analyze_conversations
from agent.channels import ChannelNotFound, ChannelRegistry, build_channel_registry
from agent.db_service import DBService
from agent.errors import (
    AgentNotFound,
    EmbeddingUnavailable,
    KnowledgeItemNotFound,
    SessionNotFound,
    ValidationError,
)
from agent.flow import FlowEngine
from agent.orchestrator import APOLOGY_MESSAGE, AgentOrchestrator
from agent.training import TrainingSessionManager
from api.config import Settings, get_settings
from api.models import (
    AgentCreateRequest,
    AgentResponse,
    AnalysisRequest,
    AnalysisResponse,
    ErrorResponse,
    ExampleCreateRequest,
    ExampleResponse,
    FlowRequest,
    HealthResponse,
    KnowledgeCreateRequest,
    KnowledgeImportRequest,
    KnowledgeImportResponse,
    KnowledgeItemResponse,
    KnowledgeSearchResponse,
    KnowledgeUpdateRequest,
    ReplyRequest,
    ReplyResponse,
    SessionStatusResponse,
    SessionSummary,
    TrainingRequest,
    TrainingStartResponse,
    WebhookResponse,
)
from rag.embeddings import EmbeddingProvider, SentenceTransformerEmbeddings
from rag.knowledge_store import KnowledgeStore
from rag.query.cache import TTLCache
from rag.query.pipeline import ResponseGenerator
from rag.query.responder import ProviderRegistry, build_registry

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Ventana de dedupe de mensajes (reintentos de los canales)
DEDUPE_TTL_SECONDS = 300

# Canales que verifican el webhook con hub.mode / hub.verify_token
META_CHANNELS = {"whatsapp", "messenger", "instagram"}

# Detail que usa Starlette cuando ninguna ruta matchea
ROUTE_NOT_FOUND_DETAIL = "Not Found"


# Engine


@dataclass
class Engine:
    """Todos los componentes del motor, construidos una vez por proceso."""

    settings: Settings
    db: DBService
    embedder: EmbeddingProvider
    knowledge: KnowledgeStore
    providers: ProviderRegistry
    generator: ResponseGenerator
    training: TrainingSessionManager
    flow: FlowEngine
    orchestrator: AgentOrchestrator
    channels: ChannelRegistry
    dedupe: TTLCache


def build_engine(
    settings: Settings,
    embedder: Optional[EmbeddingProvider] = None,
    providers: Optional[ProviderRegistry] = None,
    channels: Optional[ChannelRegistry] = None,
    rng: Optional[random.Random] = None,
) -> Engine:
    """
    Construye el Engine. Los tests inyectan embedder/providers falsos.
    """
    db_path = settings.db_full_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = DBService(db_path)
    db.init_schema()

    embedder = embedder or SentenceTransformerEmbeddings(
        model_name=settings.EMBEDDING_MODEL,
        timeout_seconds=settings.EMBEDDING_TIMEOUT_SECONDS,
    )
    query_cache = TTLCache(
        ttl_seconds=settings.CACHE_TTL_SECONDS, max_size=settings.CACHE_MAX_SIZE
    )
    knowledge = KnowledgeStore(db, embedder, cache=query_cache)
    providers = providers or build_registry(settings)

    generator = ResponseGenerator(
        db,
        knowledge,
        providers,
        knowledge_top_k=settings.KNOWLEDGE_TOP_K,
        examples_top_k=settings.TRAINING_EXAMPLES_TOP_K,
        max_attempts=settings.LLM_MAX_ATTEMPTS,
        retry_base_seconds=settings.LLM_RETRY_BASE_SECONDS,
    )
    flow = FlowEngine(db)

    return Engine(
        settings=settings,
        db=db,
        embedder=embedder,
        knowledge=knowledge,
        providers=providers,
        generator=generator,
        training=TrainingSessionManager(
            db, step_delay_seconds=settings.TRAINING_STEP_DELAY_SECONDS, rng=rng
        ),
        flow=flow,
        orchestrator=AgentOrchestrator(db, generator, flow),
        channels=channels or build_channel_registry(settings),
        dedupe=TTLCache(ttl_seconds=DEDUPE_TTL_SECONDS, max_size=settings.CACHE_MAX_SIZE),
    )


# Dependency Injection
# Singleton del engine, inyectable via Depends() para facilitar testing

_engine: Optional[Engine] = None


def get_engine(settings: Settings = Depends(get_settings)) -> Engine:
    """
    Dependency que provee el Engine.

    Permite override en tests via app.dependency_overrides[get_engine].
    """
    global _engine
    if _engine is None:
        logger.info("Inicializando Engine...")
        _engine = build_engine(settings)
        logger.info("Engine inicializado correctamente")
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan: al cerrar espera las sesiones de entrenamiento en curso."""
    logger.info("AgentFlow API iniciando...")
    yield
    if _engine is not None:
        pending = _engine.training.active_sessions
        if pending:
            logger.info(f"Esperando {len(pending)} sesiones de entrenamiento...")
        await _engine.training.drain()
    logger.info("AgentFlow API cerrando...")


# FastAPI App

app = FastAPI(
    title="AgentFlow Engine API",
    description="Motor de respuestas y entrenamiento de agentes conversacionales",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Error de validación"},
        500: {"model": ErrorResponse, "description": "Error interno"},
    },
)

# CORS middleware (el widget web se embebe en sitios de terceros)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status: int, type_: str, title: str, detail: str, issues=None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(
            type=type_, title=title, status=status, detail=detail, issues=issues
        ).model_dump(exclude_none=True),
    )


# Global Error Handlers


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Errores de validación Pydantic → 422 con formato ErrorResponse."""
    return _error(422, "request_validation_error", "Datos de entrada inválidos", str(exc.errors()))


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Reglas de negocio violadas → 400 con TODAS las reglas en issues."""
    return _error(400, "validation_error", exc.message, exc.message, issues=exc.issues)


@app.exception_handler(AgentNotFound)
@app.exception_handler(SessionNotFound)
@app.exception_handler(KnowledgeItemNotFound)
@app.exception_handler(ChannelNotFound)
async def not_found_error_handler(request: Request, exc: LookupError):
    return _error(404, "not_found", "No Encontrado", str(exc))


@app.exception_handler(EmbeddingUnavailable)
async def embedding_unavailable_handler(request: Request, exc: EmbeddingUnavailable):
    logger.error(f"Embeddings no disponibles en {request.url.path}: {exc}")
    return _error(
        503,
        "embedding_unavailable",
        "Servicio de embeddings no disponible",
        "No se pudo calcular el embedding. Intenta nuevamente más tarde.",
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTPException → ErrorResponse con el status original."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error(exc.status_code, "http_error", detail, detail)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Excepción no manejada → 500 genérico.

    Loguea el error real pero devuelve mensaje genérico al cliente.
    """
    logger.error(f"Error no manejado en {request.url.path}: {exc}", exc_info=True)
    return _error(
        500,
        "internal_error",
        "Error Interno",
        "Error interno del servidor. Intenta nuevamente más tarde.",
    )


# Root / Health


@app.get("/", tags=["Root"])
async def root():
    """Endpoint raíz"""
    return {
        "message": "AgentFlow Engine API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(engine: Engine = Depends(get_engine)):
    """
    Health check endpoint.

    Verifica el estado de:
    - Base de datos
    - Modelo de embeddings (cargado o pendiente de carga)
    - Credenciales de los providers LLM
    """
    components = {}
    overall_status = "healthy"

    try:
        await asyncio.to_thread(engine.db.ping)
        components["database"] = "ok"
    except Exception as e:
        logger.error(f"Health: database error: {e}")
        components["database"] = "error"
        overall_status = "unhealthy"

    loaded = getattr(engine.embedder, "is_loaded", None)
    if loaded is None:
        components["embeddings"] = "ok"
    else:
        components["embeddings"] = "ok (loaded)" if loaded else "ok (not loaded)"

    settings = engine.settings
    keys = {"groq": settings.GROQ_API_KEY, "openai": settings.OPENAI_API_KEY}
    for name in engine.providers.names:
        components[f"llm_{name}"] = "ok" if keys.get(name, True) else "no_api_key"

    default_key = components.get(f"llm_{engine.providers.default}")
    if default_key != "ok" and overall_status == "healthy":
        overall_status = "degraded"

    return HealthResponse(status=overall_status, version=API_VERSION, components=components)


# Agents


@app.post("/agents", response_model=AgentResponse, status_code=201, tags=["Agents"])
async def create_agent(body: AgentCreateRequest, engine: Engine = Depends(get_engine)):
    agent = await engine.orchestrator.create_agent(
        body.name, body.system_prompt, body.llm_provider, body.model
    )
    return AgentResponse(**agent)


@app.get("/agents/{agent_id}", response_model=AgentResponse, tags=["Agents"])
async def get_agent(agent_id: int, engine: Engine = Depends(get_engine)):
    return AgentResponse(**await engine.orchestrator.get_agent(agent_id))


@app.delete("/agents/{agent_id}", status_code=204, tags=["Agents"])
async def delete_agent(agent_id: int, engine: Engine = Depends(get_engine)):
    await engine.orchestrator.delete_agent(agent_id)


@app.put("/agents/{agent_id}/flow", response_model=AgentResponse, tags=["Agents"])
async def set_agent_flow(agent_id: int, body: FlowRequest, engine: Engine = Depends(get_engine)):
    """Valida el grafo antes de activarlo (400 con todos los problemas)."""
    agent = await engine.orchestrator.set_flow(agent_id, body.to_flow(), body.enabled)
    return AgentResponse(**agent)


# Reply


@app.post("/agents/{agent_id}/reply", response_model=ReplyResponse, tags=["Reply"])
async def generate_reply(agent_id: int, body: ReplyRequest, engine: Engine = Depends(get_engine)):
    """
    Genera la respuesta del agente.

    **Flujo:**
    1. Flujo de conversación (si el agente tiene uno activo)
    2. Response Generator (conocimiento + ejemplos si está entrenado)
    3. Disculpa genérica si el LLM falla
    """
    result = await engine.orchestrator.handle_message(
        agent_id,
        body.sender_id,
        body.message,
        sender_name=body.sender_name,
        session_id=body.session_id,
    )
    return ReplyResponse(**result)


# Training


@app.post(
    "/agents/{agent_id}/training",
    response_model=TrainingStartResponse,
    status_code=202,
    responses={400: {"model": ErrorResponse, "description": "Training data inválida"}},
    tags=["Training"],
)
async def start_training(agent_id: int, body: TrainingRequest, engine: Engine = Depends(get_engine)):
    """Crea la sesión en 'pending' y procesa en background."""
    session = await engine.training.create(
        agent_id,
        [item.model_dump() for item in body.training_data],
        body.brand_voice.model_dump(),
        body.business_context.model_dump() if body.business_context else {},
        session_name=body.session_name,
    )
    return TrainingStartResponse(session_id=session["id"], status=session["status"])


@app.get(
    "/training/sessions/{session_id}",
    response_model=SessionStatusResponse,
    tags=["Training"],
)
async def get_session_status(session_id: int, engine: Engine = Depends(get_engine)):
    return SessionStatusResponse(**await engine.training.get_status(session_id))


@app.get(
    "/agents/{agent_id}/training/sessions",
    response_model=List[SessionSummary],
    tags=["Training"],
)
async def list_training_sessions(agent_id: int, engine: Engine = Depends(get_engine)):
    sessions = await engine.training.list_sessions(agent_id)
    return [SessionSummary(**s) for s in sessions]


@app.post(
    "/agents/{agent_id}/training/examples",
    response_model=ExampleResponse,
    status_code=201,
    tags=["Training"],
)
async def add_training_example(
    agent_id: int, body: ExampleCreateRequest, engine: Engine = Depends(get_engine)
):
    example = await engine.training.add_example(
        agent_id, body.input, body.expected_output, body.category, body.weight
    )
    return ExampleResponse(
        id=example["id"],
        agent_id=example["agent_id"],
        input=example["input_text"],
        expected_output=example["expected_output"],
        category=example["category"],
        weight=example["weight"],
    )


@app.post(
    "/agents/{agent_id}/training/analysis",
    response_model=AnalysisResponse,
    tags=["Training"],
)
async def analyze_agent_conversations(
    agent_id: int, body: AnalysisRequest, engine: Engine = Depends(get_engine)
):
    agent = await engine.orchestrator.get_agent(agent_id)
    conversations = [c.model_dump() for c in body.conversations]
    return AnalysisResponse(**analyze_conversations(agent, conversations))


# Knowledge


@app.get(
    "/agents/{agent_id}/knowledge",
    response_model=List[KnowledgeItemResponse],
    tags=["Knowledge"],
)
async def list_knowledge(agent_id: int, engine: Engine = Depends(get_engine)):
    await engine.orchestrator.get_agent(agent_id)
    items = await engine.knowledge.list_items(agent_id)
    return [KnowledgeItemResponse(**i) for i in items]


@app.post(
    "/agents/{agent_id}/knowledge",
    response_model=KnowledgeItemResponse,
    status_code=201,
    responses={503: {"model": ErrorResponse, "description": "Embeddings no disponibles"}},
    tags=["Knowledge"],
)
async def add_knowledge(
    agent_id: int, body: KnowledgeCreateRequest, engine: Engine = Depends(get_engine)
):
    item = await engine.knowledge.add(
        agent_id,
        body.title,
        body.content,
        category=body.category,
        tags=body.tags,
        metadata=body.metadata,
    )
    return KnowledgeItemResponse(**item)


@app.post(
    "/agents/{agent_id}/knowledge/import",
    response_model=KnowledgeImportResponse,
    tags=["Knowledge"],
)
async def import_knowledge(
    agent_id: int, body: KnowledgeImportRequest, engine: Engine = Depends(get_engine)
):
    await engine.orchestrator.get_agent(agent_id)
    if body.overlap >= body.chunk_size:
        raise ValidationError(["overlap must be smaller than chunk_size"])

    result = await engine.knowledge.import_documents(
        agent_id,
        [d.model_dump() for d in body.documents],
        chunk_size=body.chunk_size,
        overlap=body.overlap,
    )
    return KnowledgeImportResponse(
        imported=len(result["imported"]),
        items=[KnowledgeItemResponse(**i) for i in result["imported"]],
        failed=result["failed"],
    )


@app.get(
    "/agents/{agent_id}/knowledge/search",
    response_model=KnowledgeSearchResponse,
    tags=["Knowledge"],
)
async def search_knowledge(
    agent_id: int,
    q: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=50),
    engine: Engine = Depends(get_engine),
):
    await engine.orchestrator.get_agent(agent_id)
    results = await engine.knowledge.search(agent_id, q, limit)
    return KnowledgeSearchResponse(
        query=q,
        results=[
            {
                "id": r["id"],
                "title": r["title"],
                "content": r["content"],
                "category": r["category"],
                "similarity": r["similarity"],
            }
            for r in results
        ],
    )


@app.patch("/knowledge/{item_id}", response_model=KnowledgeItemResponse, tags=["Knowledge"])
async def update_knowledge(
    item_id: int, body: KnowledgeUpdateRequest, engine: Engine = Depends(get_engine)
):
    item = await engine.knowledge.update(item_id, **body.model_dump(exclude_none=True))
    return KnowledgeItemResponse(**item)


@app.delete("/knowledge/{item_id}", response_model=KnowledgeItemResponse, tags=["Knowledge"])
async def deactivate_knowledge(item_id: int, engine: Engine = Depends(get_engine)):
    return KnowledgeItemResponse(**await engine.knowledge.deactivate(item_id))


# Webhooks


@app.get("/webhook/{channel}", tags=["Webhook"])
@app.get("/webhook/{channel}/{agent_id}", tags=["Webhook"])
async def verify_webhook(
    channel: str,
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """
    Verificación del webhook (WhatsApp / Messenger / Instagram).

    Meta envía un GET request con:
    - hub.mode=subscribe
    - hub.verify_token=<tu_token>
    - hub.challenge=<string_aleatorio>

    Debemos validar el token y devolver el challenge como texto plano.
    """
    if channel not in META_CHANNELS:
        raise HTTPException(status_code=404, detail=f"Canal sin verificación: {channel}")

    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge")

    if mode == "subscribe" and token == settings.WHATSAPP_VERIFY_TOKEN:
        logger.info(f"Webhook de {channel} verificado correctamente")
        return PlainTextResponse(content=challenge or "", status_code=200)

    logger.warning(f"Verificación de webhook fallida ({channel}): mode={mode}")
    raise HTTPException(status_code=403, detail="Verification failed")


@app.post("/webhook/{channel}/{agent_id}", response_model=WebhookResponse, tags=["Webhook"])
async def handle_webhook(
    channel: str,
    agent_id: int,
    request: Request,
    engine: Engine = Depends(get_engine),
):
    """
    Recibe mensajes de un canal, los procesa y entrega la respuesta.

    - Reintentos del mismo message_id se ignoran por 5 minutos
    - El adapter solo (de)normaliza; la respuesta la genera el orquestador
    - El widget web recibe la respuesta en el body (no hay delivery)
    """
    adapter = engine.channels.get(channel)
    await engine.orchestrator.get_agent(agent_id)

    body = await request.json()
    messages = adapter.normalize(agent_id, body)
    if not messages:
        logger.info(f"[{channel}] evento ignorado (sin mensajes de texto)")
        return WebhookResponse(status="ignored")

    response = WebhookResponse(status="ok")
    for message in messages:
        if message.message_id and not engine.dedupe.add((channel, message.message_id)):
            logger.info(f"[{channel}] mensaje duplicado ignorado: {message.message_id}")
            response.duplicates += 1
            continue

        try:
            result = await engine.orchestrator.handle_message(
                agent_id,
                message.sender_id,
                message.text,
                sender_name=message.sender_name,
            )
            text = result["text"]
        except Exception as e:
            logger.error(f"[{channel}] error en orchestrator: {e}", exc_info=True)
            text = APOLOGY_MESSAGE

        delivered = False
        if adapter.can_deliver:
            delivered = await adapter.deliver(message.recipient, text)

        response.processed += 1
        response.replies.append(
            {
                "recipient": message.recipient,
                "payload": adapter.format_reply(message.recipient, text),
                "delivered": delivered,
            }
        )

    return response


# Error Handler 404


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """
    Handler para 404.

    Rutas inexistentes llegan con el detail por defecto de Starlette; los
    HTTPException(404) levantados por un endpoint conservan su detail.
    """
    detail = getattr(exc, "detail", None)
    if isinstance(detail, str) and detail != ROUTE_NOT_FOUND_DETAIL:
        return _error(404, "not_found", "No Encontrado", detail)
    return _error(404, "not_found", "No Encontrado", f"El endpoint '{request.url.path}' no existe.")


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
        log_level="info",
    )
