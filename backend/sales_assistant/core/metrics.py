"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration of HTTP requests
- Decision Metrics: intent classifications, fallbacks, contract chain selection
- LLM Metrics: requests, latency, errors, tokens, cost, schema failures
- Resource Metrics: CPU, memory, entity registry size

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
import psutil
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from .logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# DECISION LAYER METRICS
# ============================================================================

intent_classifications_total = Counter(
    "intent_classifications_total",
    "Total number of intent classifications",
    ["intent", "method"],
    registry=registry,
)

intent_classification_fallbacks_total = Counter(
    "intent_classification_fallbacks_total",
    "Classifications resolved to a safe default after a collaborator failure",
    ["reason"],
    registry=registry,
)

intent_low_confidence_validations_total = Counter(
    "intent_low_confidence_validations_total",
    "Low-confidence validation outcomes",
    ["outcome"],  # confirmed, overridden, failed
    registry=registry,
)

contract_chains_total = Counter(
    "contract_chains_total",
    "Total number of contract chains selected",
    ["selection_method"],
    registry=registry,
)

contract_chain_validation_failures_total = Counter(
    "contract_chain_validation_failures_total",
    "Contract chains replaced by CLARIFY during validation",
    ["rule"],  # chain_length, authority_mix
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of LLM requests",
    ["agent", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM request latency in seconds",
    ["agent"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of LLM request errors",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total number of LLM tokens",
    ["agent", "direction"],  # input, output
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated LLM spend in USD",
    ["agent"],
    registry=registry,
)

llm_schema_validation_failures_total = Counter(
    "llm_schema_validation_failures_total",
    "LLM responses rejected by schema validation",
    ["agent"],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)

entity_registry_size = Gauge(
    "entity_registry_size",
    "Number of entities in the active registry snapshot",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Strips query parameters and trailing slashes to keep label cardinality low.

    Examples:
        /decision?debug=1 -> /decision
        /health/ -> /health
    """
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_intent_classification(intent: str, method: str) -> None:
    intent_classifications_total.labels(intent=intent, method=method).inc()


def record_classification_fallback(reason: str) -> None:
    intent_classification_fallbacks_total.labels(reason=reason).inc()


def record_low_confidence_validation(outcome: str) -> None:
    intent_low_confidence_validations_total.labels(outcome=outcome).inc()


def record_contract_chain(selection_method: str) -> None:
    contract_chains_total.labels(selection_method=selection_method).inc()


def record_chain_validation_failure(rule: str) -> None:
    contract_chain_validation_failures_total.labels(rule=rule).inc()


def record_llm_request(agent: str, model: str, duration_ms: float) -> None:
    """
    Record one LLM round trip.

    Args:
        agent: Logical agent name ("interpreter", "validator", "contract_selector")
        model: Model identifier sent to the API
        duration_ms: Wall-clock latency in milliseconds (recorded even on failure)
    """
    llm_requests_total.labels(agent=agent, model=model).inc()
    llm_request_duration_seconds.labels(agent=agent).observe(duration_ms / 1000.0)


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    agent: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    """Record token usage and estimated cost for a completed LLM call."""
    if input_tokens > 0:
        llm_tokens_total.labels(agent=agent, direction="input").inc(input_tokens)
    if output_tokens > 0:
        llm_tokens_total.labels(agent=agent, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(agent=agent).inc(cost_usd)
    logger.debug(
        "llm_usage_recorded",
        agent=agent,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=cost_usd,
    )


def record_llm_schema_validation_failure(agent: str) -> None:
    llm_schema_validation_failures_total.labels(agent=agent).inc()


def update_entity_registry_size(size: int) -> None:
    entity_registry_size.set(size)


def update_resource_metrics() -> None:
    """
    Update system resource metrics (CPU, memory).

    Called on-demand when metrics are scraped.
    """
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        system_cpu_usage_percent.set(cpu_percent)

        memory = psutil.virtual_memory()
        system_memory_usage_bytes.set(memory.used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Content type for the metrics endpoint."""
    return CONTENT_TYPE_LATEST
