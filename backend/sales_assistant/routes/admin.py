"""
Admin endpoints.

POST /admin/entities/refresh   reload the entity registry out-of-band
"""
from fastapi import APIRouter, HTTPException

from sales_assistant.core.logging import get_logger
from sales_assistant.services.decision.entities import get_entity_registry

logger = get_logger(__name__)

router = APIRouter()


@router.post("/entities/refresh")
async def refresh_entities():
    """
    Reload company/contact names from the configured source.

    Security: Should require admin authentication in production.
    """
    registry = get_entity_registry()
    if not hasattr(registry, "refresh"):
        raise HTTPException(status_code=409, detail="Entity registry is static")

    refreshed = await registry.refresh()
    if not refreshed:
        raise HTTPException(status_code=503, detail="Entity registry refresh failed")

    entities = len(registry.lookup_companies())
    logger.info("admin_entities_refreshed", entities=entities)
    return {"status": "refreshed", "entities": entities}
