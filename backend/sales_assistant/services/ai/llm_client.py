"""
Generic async LLM client for the decision layer.

- Plain httpx against an OpenAI-compatible /chat/completions API (no vendor SDK)
- Every request carries an explicit timeout
- A circuit breaker short-circuits calls while the endpoint is failing
- The LLM is control-plane only: it interprets and proposes, never answers

Configuration comes from ``sales_assistant.core.config`` (LLM_API_BASE,
LLM_API_KEY, LLM_DECISION_MODEL, LLM_TIMEOUT_SECONDS, LLM_COST_PER_1K_TOKENS).
"""
import time
from typing import Any, Dict, List, Optional

import httpx

from sales_assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from sales_assistant.core.config import get_settings
from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)

logger = get_logger(__name__)


class LLMNotConfiguredError(RuntimeError):
    """Raised when no API key is configured; callers fall back."""


class LLMClient:
    """Async HTTP client for decision-layer LLM calls."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 5.0,
        cost_per_1k_tokens: float = 0.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="llm_decision",
            failure_threshold=0.5,
            window_seconds=60,
            open_duration_seconds=30,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        """Low-level POST helper (isolated for the circuit breaker)."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(url, headers=headers, json=json_payload)
            # Raise inside the breaker so 5xx responses count as failures
            response.raise_for_status()
            return response

    async def chat(
        self,
        agent: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 256,
        response_format: Optional[Dict[str, Any]] = None,
        temperature: float = 0.0,
    ) -> Dict[str, Any]:
        """
        Call the chat completion endpoint.

        Args:
            agent: Logical agent name ("interpreter", "validator", "contract_selector")
            messages: OpenAI-style chat messages
            max_tokens: Max tokens for completion
            response_format: Optional response_format for JSON mode
            temperature: Sampling temperature (0 keeps routing repeatable)

        Returns:
            Raw JSON response from the API.

        Raises:
            LLMNotConfiguredError, CircuitBreakerOpenError, httpx.HTTPError
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise LLMNotConfiguredError("LLM API key not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        start = time.time()
        try:
            response: httpx.Response = await self.circuit_breaker.call(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning(
                "llm_timeout",
                agent=agent,
                timeout_seconds=self.timeout_seconds,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning(
                "llm_http_error",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(agent, self.model, (time.time() - start) * 1000.0)

        data = response.json()

        # Token usage & cost (OpenAI-style usage field, best-effort)
        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = input_tokens + output_tokens
        cost_usd = 0.0
        if self.cost_per_1k_tokens > 0 and total_tokens > 0:
            cost_usd = (total_tokens / 1000.0) * self.cost_per_1k_tokens

        record_llm_tokens_and_cost(
            agent=agent,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )
        return data


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Global LLM client built from settings."""
    global _llm_client
    if _llm_client is None:
        settings = get_settings()
        _llm_client = LLMClient(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            model=settings.llm_decision_model,
            timeout_seconds=settings.llm_timeout_seconds,
            cost_per_1k_tokens=settings.llm_cost_per_1k_tokens,
        )
    return _llm_client
