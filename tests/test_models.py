"""
Tests para los modelos Pydantic de la API.

Cubre:
- ReplyRequest (defaults, max_length, alias camelCase)
- TrainingRequest (sin validación de reglas: eso lo hace el manager)
- FlowRequest.to_flow
- ErrorResponse (formato RFC 7807)
"""

import pytest
from pydantic import ValidationError

from api.models import (
    AgentCreateRequest,
    ErrorResponse,
    FlowRequest,
    KnowledgeImportRequest,
    ReplyRequest,
    ReplyResponse,
    TrainingRequest,
)


class TestReplyRequest:
    """Validación de request entrante."""

    def test_request_valido(self):
        req = ReplyRequest(message="Do you ship to Canada?", sender_id="visitor-1")
        assert req.sender_id == "visitor-1"
        assert req.session_id is None

    def test_sender_default(self):
        assert ReplyRequest(message="hi").sender_id == "api"

    def test_request_sin_message(self):
        with pytest.raises(ValidationError):
            ReplyRequest(sender_id="u1")

    def test_request_message_muy_largo(self):
        with pytest.raises(ValidationError):
            ReplyRequest(message="x" * 4001)

    def test_message_vacio_permitido(self):
        # El orquestador responde a mensajes vacíos sin llamar al LLM
        assert ReplyRequest(message="").message == ""

    def test_alias_camel_case(self):
        req = ReplyRequest.model_validate({"message": "hi", "senderId": "u9", "senderName": "Sam"})
        assert req.sender_id == "u9"
        assert req.sender_name == "Sam"


class TestAgentCreateRequest:
    def test_defaults(self):
        req = AgentCreateRequest(name="Bot", system_prompt="You help.")
        assert req.llm_provider == "groq"
        assert req.model == "llama-3.3-70b-versatile"

    def test_nombre_vacio(self):
        with pytest.raises(ValidationError):
            AgentCreateRequest(name="", system_prompt="You help.")


class TestTrainingRequest:
    def test_camel_case_payload(self):
        req = TrainingRequest.model_validate(
            {
                "sessionName": "Launch",
                "trainingData": [{"input": "hi", "expectedOutput": "hello", "category": "g"}],
                "brandVoice": {"tone": "friendly", "dosList": ["smile"]},
                "businessContext": {"keyProducts": ["Tents"]},
            }
        )
        assert req.session_name == "Launch"
        assert req.training_data[0].expected_output == "hello"
        assert req.brand_voice.dos_list == ["smile"]
        assert req.business_context.key_products == ["Tents"]

    def test_reglas_de_negocio_no_se_validan_aca(self):
        req = TrainingRequest(training_data=[{"input": ""}], brand_voice={})
        assert req.training_data[0].weight is None
        assert req.brand_voice.tone == ""


class TestFlowRequest:
    def test_to_flow_drops_empty_fields(self):
        req = FlowRequest(
            nodes=[{"id": "s", "type": "start"}, {"id": "m", "type": "message", "data": {"message": "Hi"}}],
            edges=[{"source": "s", "target": "m"}],
        )
        flow = req.to_flow()
        assert flow["nodes"][0] == {"id": "s", "type": "start", "data": {}}
        assert flow["edges"] == [{"source": "s", "target": "m"}]
        assert req.enabled is True


class TestKnowledgeImportRequest:
    def test_chunk_size_bounds(self):
        with pytest.raises(ValidationError):
            KnowledgeImportRequest(documents=[{"title": "T", "content": "C"}], chunk_size=50)

    def test_documents_required(self):
        with pytest.raises(ValidationError):
            KnowledgeImportRequest(documents=[])


class TestErrorResponse:
    """Modelo de error RFC 7807."""

    def test_error_response_completo(self):
        err = ErrorResponse(
            type="validation_error",
            title="Invalid training data",
            status=400,
            detail="Invalid training data",
            issues=["Minimum 5 training examples required."],
        )
        assert err.status == 400
        assert err.issues == ["Minimum 5 training examples required."]

    def test_issues_opcional(self):
        err = ErrorResponse(type="not_found", title="No Encontrado", status=404, detail="x")
        assert err.model_dump(exclude_none=True).keys() == {"type", "title", "status", "detail"}


class TestReplyResponse:
    def test_defaults(self):
        resp = ReplyResponse(text="Hi", source="generator")
        assert resp.knowledge_used == []
        assert resp.custom_training_used is False
        assert resp.flow_node_id is None
