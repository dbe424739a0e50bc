"""
Prometheus metrics endpoint.

GET /metrics  Prometheus text format, unauthenticated for scraping.
"""
from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    update_entity_registry_size,
)
from sales_assistant.services.decision.entities import get_entity_registry

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics():
    """Decision, LLM, HTTP and resource metrics for the scraper."""
    try:
        update_entity_registry_size(len(get_entity_registry().lookup_companies()))
        payload = get_metrics()
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        payload = b"# Error collecting metrics\n"
    return Response(content=payload, media_type=get_metrics_content_type())
