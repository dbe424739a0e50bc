"""
Unit tests for Prometheus metrics collection.

Tests verify:
- RED metrics (Rate, Errors, Duration) are recorded correctly
- Decision-layer and LLM counters are incremented with the right labels
- Resource metrics are updated on scrape
- Metrics output is valid Prometheus text format
"""
from unittest.mock import patch

from sales_assistant.core.metrics import (
    contract_chains_total,
    entity_registry_size,
    get_metrics,
    get_metrics_content_type,
    http_errors_total,
    http_request_duration_seconds,
    http_requests_total,
    intent_classifications_total,
    intent_low_confidence_validations_total,
    llm_cost_usd_total,
    llm_tokens_total,
    normalize_endpoint,
    record_contract_chain,
    record_http_request,
    record_intent_classification,
    record_llm_tokens_and_cost,
    record_low_confidence_validation,
    system_memory_usage_bytes,
    update_entity_registry_size,
    update_resource_metrics,
)


def test_normalize_endpoint():
    assert normalize_endpoint("/decision?debug=1") == "/decision"
    assert normalize_endpoint("/health/") == "/health"
    assert normalize_endpoint("/") == "/"


class TestRedMetrics:

    def test_successful_request(self):
        counter = http_requests_total.labels(method="POST", endpoint="/decision", status="200")
        before = counter._value.get()

        record_http_request("POST", "/decision/", 200, 0.05)

        assert counter._value.get() == before + 1
        samples = http_request_duration_seconds.labels(method="POST", endpoint="/decision").collect()[0].samples
        assert any(s.name.endswith("_count") and s.value >= 1 for s in samples)

    def test_error_request(self):
        errors = http_errors_total.labels(method="POST", endpoint="/decision/chain", status_code="422")
        before = errors._value.get()
        record_http_request("POST", "/decision/chain", 422, 0.01)
        assert errors._value.get() == before + 1

    def test_success_is_not_an_error(self):
        errors = http_errors_total.labels(method="GET", endpoint="/health", status_code="200")
        before = errors._value.get()
        record_http_request("GET", "/health", 200, 0.01)
        assert errors._value.get() == before


class TestDecisionMetrics:

    def test_intent_classification(self):
        counter = intent_classifications_total.labels(intent="REFUSE", method="pattern")
        before = counter._value.get()
        record_intent_classification("REFUSE", "pattern")
        assert counter._value.get() == before + 1

    def test_low_confidence_validation(self):
        counter = intent_low_confidence_validations_total.labels(outcome="overridden")
        before = counter._value.get()
        record_low_confidence_validation("overridden")
        assert counter._value.get() == before + 1

    def test_contract_chain(self):
        counter = contract_chains_total.labels(selection_method="llm_proposed")
        before = counter._value.get()
        record_contract_chain("llm_proposed")
        assert counter._value.get() == before + 1

    def test_entity_registry_size(self):
        update_entity_registry_size(7)
        assert entity_registry_size._value.get() == 7


def test_llm_tokens_and_cost():
    tokens = llm_tokens_total.labels(agent="contract_selector", direction="output")
    cost = llm_cost_usd_total.labels(agent="contract_selector")
    tokens_before, cost_before = tokens._value.get(), cost._value.get()

    record_llm_tokens_and_cost("contract_selector", "test-model", 100, 20, 0.06)

    assert tokens._value.get() == tokens_before + 20
    assert abs(cost._value.get() - cost_before - 0.06) < 1e-9


def test_resource_metrics_update():
    with patch("sales_assistant.core.metrics.psutil") as mock_psutil:
        mock_psutil.cpu_percent.return_value = 12.5
        mock_psutil.virtual_memory.return_value.used = 1024
        update_resource_metrics()
    assert system_memory_usage_bytes._value.get() == 1024


def test_resource_metrics_failure_is_logged_not_raised():
    with patch("sales_assistant.core.metrics.psutil") as mock_psutil:
        mock_psutil.cpu_percent.side_effect = OSError("no /proc")
        update_resource_metrics()


def test_metrics_output_format():
    record_intent_classification("SINGLE_MEETING", "entity")
    payload = get_metrics().decode("utf-8")
    assert "# TYPE intent_classifications_total counter" in payload
    assert 'intent_classifications_total{intent="SINGLE_MEETING",method="entity"}' in payload
    assert get_metrics_content_type().startswith("text/plain")
