import asyncio
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings, load_environment
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.metrics import update_entity_registry_size
from .core.middleware import TraceIDMiddleware
from .routes import admin, decision, health, metrics
from .services.decision.classifier import IntentClassifier
from .services.decision.entities import (
    CachedEntityRegistry,
    StaticEntityRegistry,
    file_loader,
    get_entity_registry,
    set_entity_registry,
)
from .services.decision.orchestration import DecisionLayerService, set_decision_service

load_environment()
settings = get_settings()

# JSON logs in production (containerized), console output in development
configure_logging(log_level=settings.log_level, json_output=settings.log_json)

logger = get_logger(__name__)

app = FastAPI(
    title="Sales Assistant Decision API",
    description="Routes sales-assistant requests to bounded answer contracts",
    version="1.0.0"
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(TraceIDMiddleware)


_registry_refresh_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    """Load the entity registry and wire the decision service."""
    global _registry_refresh_task
    logger.info("app_startup_started")

    if settings.entity_registry_path:
        registry = CachedEntityRegistry(
            file_loader(settings.entity_registry_path),
            ttl_seconds=settings.entity_registry_ttl_seconds,
        )
        if not await registry.refresh():
            logger.warning(
                "app_startup_entity_registry_unavailable",
                path=settings.entity_registry_path,
                message="Entity tier disabled until the registry refreshes.",
            )
        set_entity_registry(registry)
        _registry_refresh_task = asyncio.create_task(registry.refresh_periodically())
    else:
        logger.info(
            "app_startup_entity_registry_empty",
            message="ENTITY_REGISTRY_PATH not set. Entity tier will not match.",
        )
        set_entity_registry(StaticEntityRegistry())

    update_entity_registry_size(len(get_entity_registry().lookup_companies()))
    set_decision_service(DecisionLayerService(
        classifier=IntentClassifier(entity_registry=get_entity_registry()),
    ))

    if not settings.llm_enabled:
        logger.warning(
            "app_startup_llm_disabled",
            message="LLM_API_KEY not set. Unmatched messages will resolve to CLARIFY.",
        )
    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    global _registry_refresh_task
    if _registry_refresh_task is not None:
        _registry_refresh_task.cancel()
        _registry_refresh_task = None
    logger.info("app_shutdown_completed")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions. RED metrics are recorded once, by the middleware."""
    trace_id = get_trace_id()
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "status_code": exc.status_code,
            "trace_id": trace_id,
        }
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    trace_id = get_trace_id()
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "status_code": 500,
            "trace_id": trace_id,
        }
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(decision.router, prefix="/decision", tags=["Decision"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
