"""
Health check endpoints.
"""
from fastapi import APIRouter

from sales_assistant.core.logging import get_logger
from sales_assistant.services.ai.llm_client import get_llm_client
from sales_assistant.services.decision.entities import get_entity_registry

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """Basic liveness check."""
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/decision")
async def decision_health():
    """
    Readiness of the decision layer's collaborators.

    Returns:
        - entity_registry: snapshot size and staleness
        - llm: whether an API key is configured and the circuit breaker state

    The decision layer works without either (deterministic tiers only), so
    status is "degraded" rather than "unavailable" when they are missing.
    """
    registry = get_entity_registry()
    entities = len(registry.lookup_companies())
    is_stale = registry.is_stale() if hasattr(registry, "is_stale") else False

    llm_client = get_llm_client()
    breaker = llm_client.circuit_breaker.snapshot()

    degraded = not llm_client.is_configured or breaker["state"] != "closed" or entities == 0
    return {
        "status": "degraded" if degraded else "ok",
        "entity_registry": {
            "entities": entities,
            "stale": is_stale,
        },
        "llm": {
            "configured": llm_client.is_configured,
            "model": llm_client.model,
            "circuit_breaker": breaker,
        },
    }
