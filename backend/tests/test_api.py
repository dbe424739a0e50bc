"""
Integration tests for the decision, health, admin and metrics endpoints.

The decision service is wired with stub LLM collaborators, so no HTTP calls
leave the process.
"""
import pytest
from fastapi.testclient import TestClient

from sales_assistant.core.metrics import http_requests_total
from sales_assistant.main import app
from sales_assistant.services.ai import llm_client as llm_client_module
from sales_assistant.services.decision.classifier import IntentClassifier
from sales_assistant.services.decision.entities import (
    CachedEntityRegistry,
    EntityRecord,
    StaticEntityRegistry,
    set_entity_registry,
)
from sales_assistant.services.decision.orchestration import (
    DecisionLayerService,
    set_decision_service,
)

RECORDS = [
    EntityRecord(id="acme", name="Acme"),
    EntityRecord(id="globex", name="Globex"),
]


class UnavailableLLM:
    """Interpreter and contract selector that always fail, like a missing API key."""

    async def interpret(self, message, context=None):
        raise ConnectionError("llm unavailable")

    async def validate_low_confidence(self, intent, reason, signals, message=""):
        raise ConnectionError("llm unavailable")

    async def select_contract(self, message, intent):
        raise ConnectionError("llm unavailable")


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def decision_service():
    registry = StaticEntityRegistry(RECORDS)
    set_entity_registry(registry)
    llm = UnavailableLLM()
    service = DecisionLayerService(
        classifier=IntentClassifier(entity_registry=registry, interpreter=llm),
        contract_selector=llm,
    )
    set_decision_service(service)
    return service


@pytest.fixture
def no_llm_key(monkeypatch):
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.setattr(llm_client_module, "_llm_client", None)


class TestDecisionEndpoint:

    def test_action_items_for_known_company(self, client, decision_service):
        response = client.post(
            "/decision",
            json={"message": "What are the action items from the last meeting with Acme?"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["classification"]["intent"] == "SINGLE_MEETING"
        assert data["classification"]["decision_metadata"]["resolved_company_id"] == "acme"
        assert data["chain"]["contracts"] == ["NEXT_STEPS"]
        assert data["chain"]["primary_contract"] == "NEXT_STEPS"
        assert data["chain"]["selection_method"] == "keyword"
        assert data["enabled_layers"] == ["product_identity", "single_meeting"]

    def test_comparison_with_scope(self, client, decision_service):
        response = client.post("/decision", json={
            "message": "Compare Acme and Globex's concerns about pricing",
            "scope": {"type": "multi_meeting", "meeting_ids": ["m-1", "m-2"]},
        })
        data = response.json()
        assert data["classification"]["intent"] == "MULTI_MEETING"
        assert data["chain"]["contracts"] == ["COMPARISON"]

    def test_out_of_scope(self, client, decision_service):
        data = client.post("/decision", json={"message": "What's the weather today?"}).json()
        assert data["classification"]["intent"] == "REFUSE"
        assert data["chain"]["contracts"] == ["REFUSE"]

    def test_llm_outage_resolves_to_clarify(self, client, decision_service):
        response = client.post("/decision", json={"message": "what's new?"})

        assert response.status_code == 200
        data = response.json()
        assert data["classification"]["intent"] == "CLARIFY"
        assert data["classification"]["confidence"] <= 0.5
        assert data["classification"]["decision_metadata"]["fallback_reason"] == "llm_unavailable"
        assert data["chain"]["contracts"] == ["CLARIFY"]
        assert data["chain"]["clarify_reason"]

    def test_thread_context_carryover(self, client, decision_service):
        data = client.post("/decision", json={
            "message": "What questions did they ask?",
            "thread_context": {"prior_company_id": "acme", "prior_meeting_id": "m-9"},
        }).json()
        assert data["classification"]["intent"] == "SINGLE_MEETING"
        assert data["classification"]["decision_metadata"]["resolved_meeting_id"] == "m-9"
        assert data["chain"]["contracts"] == ["CUSTOMER_QUESTIONS"]

    def test_empty_message_rejected(self, client, decision_service):
        assert client.post("/decision", json={"message": ""}).status_code == 422


class TestChainEndpoint:

    def test_chain_for_intent_and_scope(self, client):
        response = client.post("/decision/chain", json={
            "message": "What questions did they ask?",
            "intent": "MULTI_MEETING",
            "scope": {"type": "multi_meeting"},
        })
        assert response.status_code == 200
        assert response.json()["contracts"] == ["CROSS_MEETING_QUESTIONS"]

    def test_validation_failure(self, client):
        data = client.post("/decision/chain", json={
            "message": "What are the next steps and how does our product fit?",
            "intent": "SINGLE_MEETING",
            "scope": {"type": "single_meeting"},
        }).json()
        assert data["contracts"] == ["CLARIFY"]
        assert data["selection_method"] == "validation_failure"

    def test_unknown_intent_rejected(self, client):
        response = client.post("/decision/chain", json={"message": "hi", "intent": "SMALL_TALK"})
        assert response.status_code == 422


def test_contract_registry_endpoint(client):
    data = client.get("/decision/contracts").json()
    assert len(data) == 25
    assert data["REFUSE"]["empty_result_behavior"] == "refuse"
    assert data["PRODUCT_KNOWLEDGE"]["ssot_mode"] == "authoritative"


class TestHealth:

    def test_liveness(self, client):
        response = client.get("/health/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_decision_health_degraded_without_llm(self, client, no_llm_key):
        data = client.get("/health/decision").json()
        assert data["status"] == "degraded"
        assert data["llm"]["configured"] is False
        assert data["llm"]["circuit_breaker"]["state"] == "closed"
        assert data["entity_registry"] == {"entities": 0, "stale": False}


class TestAdmin:

    def test_refresh_cached_registry(self, client):
        async def loader():
            return RECORDS

        set_entity_registry(CachedEntityRegistry(loader))
        response = client.post("/admin/entities/refresh")
        assert response.status_code == 200
        assert response.json() == {"status": "refreshed", "entities": 2}

    def test_refresh_failure(self, client):
        async def loader():
            raise OSError("source unavailable")

        set_entity_registry(CachedEntityRegistry(loader))
        response = client.post("/admin/entities/refresh")
        assert response.status_code == 503
        assert response.json()["detail"] == "Entity registry refresh failed"

    def test_http_error_is_counted_once(self, client):
        counter = http_requests_total.labels(
            method="POST", endpoint="/admin/entities/refresh", status="409",
        )
        before = counter._value.get()
        assert client.post("/admin/entities/refresh").status_code == 409
        assert counter._value.get() == before + 1


def test_metrics_endpoint(client):
    client.get("/health/")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
    assert "entity_registry_size" in response.text


class TestStartup:

    def test_cached_registry_refreshes_in_background(self, tmp_path, monkeypatch):
        from sales_assistant import main as main_module
        from sales_assistant.core.config import Settings
        from sales_assistant.services.decision.entities import get_entity_registry

        path = tmp_path / "entities.json"
        path.write_text('[{"id": "acme", "name": "Acme"}]')
        monkeypatch.setattr(main_module, "settings", Settings(entity_registry_path=str(path)))

        with TestClient(app):
            registry = get_entity_registry()
            assert isinstance(registry, CachedEntityRegistry)
            assert [r.id for r in registry.lookup_companies()] == ["acme"]
            task = main_module._registry_refresh_task
            assert task is not None and not task.done()

        assert main_module._registry_refresh_task is None
