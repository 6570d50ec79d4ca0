"""
Pydantic models para validación de requests/responses.

Define schemas tipados para todos los endpoints de la API.
Los requests aceptan tanto snake_case como camelCase
(ej: expected_output / expectedOutput).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Error Response (RFC 7807 simplificado)


class ErrorResponse(BaseModel):
    """
    Modelo de error estructurado inspirado en RFC 7807.

    Se usa en todos los errores para garantizar un formato consistente.
    `issues` lista todas las reglas violadas en errores de validación.
    """

    type: str = Field(..., description="Categoría del error (ej: 'validation_error')")
    title: str = Field(..., description="Título breve del error")
    status: int = Field(..., description="Código HTTP del error")
    detail: str = Field(..., description="Descripción legible del error")
    issues: Optional[List[str]] = Field(None, description="Reglas violadas")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "validation_error",
                    "title": "Invalid training data",
                    "status": 400,
                    "detail": "Invalid training data",
                    "issues": ["Minimum 5 training examples required."],
                }
            ]
        }
    }


# Agents


class AgentCreateRequest(_RequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    system_prompt: str = Field(..., min_length=1, description="Instrucciones base del agente")
    llm_provider: str = Field("groq", description="groq | openai")
    model: str = Field("llama-3.3-70b-versatile")


class AgentResponse(BaseModel):
    id: int
    name: str
    system_prompt: str
    llm_provider: str
    model: str
    flow_enabled: bool
    custom_training: Optional[Dict[str, Any]] = None
    created_at: str


class FlowNode(_RequestModel):
    id: str
    type: str = Field(..., description="start | message | condition | action | end")
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None


class FlowEdge(_RequestModel):
    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = None


class FlowRequest(_RequestModel):
    nodes: List[FlowNode]
    edges: List[FlowEdge]
    enabled: bool = True

    def to_flow(self) -> Dict[str, Any]:
        return {
            "nodes": [n.model_dump(exclude_none=True) for n in self.nodes],
            "edges": [e.model_dump(exclude_none=True) for e in self.edges],
        }


# Reply


class ReplyRequest(_RequestModel):
    message: str = Field(..., max_length=4000, description="Mensaje del usuario")
    sender_id: str = Field("api", min_length=1, description="Identificador del remitente")
    sender_name: Optional[str] = None
    session_id: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [{"message": "Do you ship internationally?", "sender_id": "visitor-42"}]
        },
    )


class KnowledgeHit(BaseModel):
    id: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    similarity: Optional[float] = None


class ExampleHit(BaseModel):
    id: Optional[Any] = None
    input: Optional[str] = None
    expected_output: Optional[str] = None
    category: Optional[str] = None
    weight: int = 1
    similarity: Optional[float] = None


class ReplyResponse(BaseModel):
    text: str
    source: str = Field(..., description="flow | generator | fallback | empty")
    knowledge_used: List[KnowledgeHit] = Field(default_factory=list)
    training_examples_used: List[ExampleHit] = Field(default_factory=list)
    custom_training_used: bool = False
    model_version: Optional[str] = None
    token_usage: Dict[str, int] = Field(default_factory=dict)
    flow_node_id: Optional[str] = None


# Training


class TrainingExampleIn(_RequestModel):
    """Sin restricciones de largo: las reglas se validan juntas en el manager."""

    input: str = ""
    expected_output: str = ""
    category: str = ""
    weight: Optional[int] = None


class BrandVoiceIn(_RequestModel):
    tone: str = ""
    personality: str = ""
    communication_style: str = ""
    dos_list: List[str] = Field(default_factory=list)
    donts_list: List[str] = Field(default_factory=list)


class BusinessContextIn(_RequestModel):
    industry: str = ""
    company_size: str = ""
    target_audience: str = ""
    key_products: List[str] = Field(default_factory=list)
    value_proposition: str = ""


class TrainingRequest(_RequestModel):
    session_name: Optional[str] = None
    training_data: List[TrainingExampleIn]
    brand_voice: BrandVoiceIn
    business_context: Optional[BusinessContextIn] = None


class TrainingStartResponse(BaseModel):
    session_id: int
    status: str


class TrainingMetrics(BaseModel):
    accuracy: float
    training_time: int
    data_points: int
    improvement_score: float


class SessionStatusResponse(BaseModel):
    session_id: int
    agent_id: int
    session_name: str
    status: str
    progress_percentage: int
    metrics: Optional[TrainingMetrics] = None
    error_log: Optional[str] = None
    model_checkpoint: Optional[str] = None
    completed_at: Optional[str] = None


class SessionSummary(BaseModel):
    id: int
    session_name: str
    status: str
    progress_percentage: int
    created_at: str
    completed_at: Optional[str] = None


class ExampleCreateRequest(_RequestModel):
    input: str
    expected_output: str
    category: str
    weight: int = 1


class ExampleResponse(BaseModel):
    id: int
    agent_id: int
    input: str
    expected_output: str
    category: str
    weight: int


class ConversationSample(_RequestModel):
    input: str
    response: str
    feedback: Optional[str] = None


class AnalysisRequest(_RequestModel):
    conversations: List[ConversationSample] = Field(..., min_length=1)


class AnalysisResponse(BaseModel):
    total_conversations: int
    brand_voice_consistency: float
    response_quality: float
    new_training_candidates: List[Dict[str, Any]]
    improvement_suggestions: List[str]


# Knowledge


class KnowledgeCreateRequest(_RequestModel):
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    category: str = "general"
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class KnowledgeItemResponse(BaseModel):
    id: int
    agent_id: int
    title: str
    content: str
    category: str
    tags: List[str]
    metadata: Dict[str, Any]
    is_active: bool
    embedding_model: Optional[str] = None
    created_at: str


class DocumentIn(_RequestModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    category: str = "general"
    tags: List[str] = Field(default_factory=list)


class KnowledgeImportRequest(_RequestModel):
    documents: List[DocumentIn] = Field(..., min_length=1)
    chunk_size: int = Field(800, ge=200, le=4000)
    overlap: int = Field(100, ge=0, le=1000)


class KnowledgeImportResponse(BaseModel):
    imported: int
    items: List[KnowledgeItemResponse]
    failed: List[Dict[str, Any]]


class KnowledgeSearchResponse(BaseModel):
    query: str
    results: List[KnowledgeHit]


# Health / webhooks


class HealthResponse(BaseModel):
    """Response del health check"""

    status: str = Field(..., description="Estado del servicio")
    version: str = Field(..., description="Versión de la API")
    components: Dict[str, str] = Field(..., description="Estado de componentes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "1.0.0",
                    "components": {
                        "database": "ok",
                        "embeddings": "ok (not loaded)",
                        "llm_groq": "ok",
                    },
                }
            ]
        }
    }


class WebhookResponse(BaseModel):
    status: str
    processed: int = 0
    duplicates: int = 0
    replies: List[Dict[str, Any]] = Field(default_factory=list)


class KnowledgeUpdateRequest(_RequestModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
