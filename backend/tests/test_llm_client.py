"""
Unit tests for the LLM HTTP client.

``_post`` is monkeypatched, so no network traffic happens.
"""
import httpx
import pytest

from sales_assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from sales_assistant.core.metrics import llm_errors_total, llm_requests_total, llm_tokens_total
from sales_assistant.services.ai.llm_client import LLMClient, LLMNotConfiguredError

API_BASE = "https://llm.example.test/v1/"


def make_client(api_key="sk-test", **kwargs):
    return LLMClient(api_base=API_BASE, api_key=api_key, model="test-model", **kwargs)


def ok_response(payload):
    return httpx.Response(
        200,
        json=payload,
        request=httpx.Request("POST", f"{API_BASE}chat/completions"),
    )


@pytest.mark.asyncio
async def test_missing_api_key():
    counter = llm_errors_total.labels(agent="interpreter", error_type="missing_api_key")
    before = counter._value.get()
    client = make_client(api_key=None)

    assert client.is_configured is False
    with pytest.raises(LLMNotConfiguredError):
        await client.chat("interpreter", [{"role": "user", "content": "hi"}])
    assert counter._value.get() == before + 1


@pytest.mark.asyncio
async def test_chat_posts_payload_and_records_usage(monkeypatch):
    client = make_client(cost_per_1k_tokens=0.5)
    captured = {}

    async def fake_post(path, json_payload):
        captured["path"] = path
        captured["payload"] = json_payload
        return ok_response({
            "choices": [{"message": {"content": "{}"}}],
            "usage": {"prompt_tokens": 120, "completion_tokens": 30},
        })

    monkeypatch.setattr(client, "_post", fake_post)
    requests = llm_requests_total.labels(agent="interpreter", model="test-model")
    tokens_in = llm_tokens_total.labels(agent="interpreter", direction="input")
    requests_before, tokens_before = requests._value.get(), tokens_in._value.get()

    data = await client.chat(
        "interpreter",
        [{"role": "user", "content": "hi"}],
        max_tokens=50,
        response_format={"type": "json_object"},
    )

    assert client.api_base == "https://llm.example.test/v1"
    assert captured["path"] == "/chat/completions"
    assert captured["payload"]["model"] == "test-model"
    assert captured["payload"]["temperature"] == 0.0
    assert captured["payload"]["response_format"] == {"type": "json_object"}
    assert data["usage"]["prompt_tokens"] == 120
    assert requests._value.get() == requests_before + 1
    assert tokens_in._value.get() == tokens_before + 120


@pytest.mark.asyncio
async def test_timeout_is_counted_and_raised(monkeypatch):
    client = make_client()

    async def fake_post(path, json_payload):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(client, "_post", fake_post)
    counter = llm_errors_total.labels(agent="validator", error_type="timeout")
    before = counter._value.get()

    with pytest.raises(httpx.TimeoutException):
        await client.chat("validator", [])
    assert counter._value.get() == before + 1


@pytest.mark.asyncio
async def test_http_error_is_counted_and_raised(monkeypatch):
    client = make_client()
    request = httpx.Request("POST", f"{API_BASE}chat/completions")

    async def fake_post(path, json_payload):
        raise httpx.HTTPStatusError("boom", request=request, response=httpx.Response(503, request=request))

    monkeypatch.setattr(client, "_post", fake_post)
    counter = llm_errors_total.labels(agent="interpreter", error_type="http_error")
    before = counter._value.get()

    with pytest.raises(httpx.HTTPStatusError):
        await client.chat("interpreter", [])
    assert counter._value.get() == before + 1


@pytest.mark.asyncio
async def test_open_circuit_short_circuits(monkeypatch):
    breaker = CircuitBreaker("llm_test", failure_threshold=0.5, min_requests=1)
    client = make_client(circuit_breaker=breaker)
    calls = {"n": 0}

    async def fake_post(path, json_payload):
        calls["n"] += 1
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(client, "_post", fake_post)

    with pytest.raises(httpx.ConnectError):
        await client.chat("interpreter", [])
    with pytest.raises(CircuitBreakerOpenError):
        await client.chat("interpreter", [])
    assert calls["n"] == 1
