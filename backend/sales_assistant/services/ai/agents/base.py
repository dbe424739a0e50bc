"""
Shared plumbing for JSON-mode agents.

Transport errors from the LLM client propagate to the caller (which owns the
fallback). Malformed JSON and schema violations are logged, counted and turned
into ``None`` so a bad completion can never leak partially-parsed data.
"""
import json
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import record_llm_schema_validation_failure
from sales_assistant.services.ai.llm_client import LLMClient
from sales_assistant.services.ai.schema import SchemaValidationError

logger = get_logger(__name__)

T = TypeVar("T")


def extract_content(response: Dict[str, Any]) -> str:
    """OpenAI-compatible shape: choices[0].message.content."""
    return response.get("choices", [{}])[0].get("message", {}).get("content", "")


class JsonAgent:
    """Base class for agents that expect one JSON object back."""

    agent_name = "agent"
    max_tokens = 256

    def __init__(self, llm_client: LLMClient):
        self._llm_client = llm_client

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        validator: Callable[[Dict[str, Any]], T],
    ) -> Optional[T]:
        response = await self._llm_client.chat(
            agent=self.agent_name,
            messages=messages,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

        try:
            payload = json.loads(extract_content(response))
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
        except (ValueError, TypeError, IndexError, AttributeError) as exc:
            record_llm_schema_validation_failure(self.agent_name)
            logger.warning(
                f"{self.agent_name}_llm_invalid_json",
                error=str(exc),
                raw=response,
            )
            return None

        try:
            return validator(payload)
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure(self.agent_name)
            logger.warning(
                f"{self.agent_name}_llm_schema_invalid",
                error=str(exc),
                raw_payload=payload,
            )
            return None
