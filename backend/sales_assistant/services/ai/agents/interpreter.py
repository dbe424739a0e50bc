"""
Interpreter agent (classification tier 5).

Two calls, both JSON-only and schema-validated:
- ``interpret``: full reading of a message nothing deterministic could route
- ``validate_low_confidence``: confirm or override a weak deterministic guess

Returns None on malformed output; transport errors propagate to the classifier,
which maps every failure to a safe default.
"""
from typing import Iterable, Optional

from sales_assistant.services.ai.agents.base import JsonAgent
from sales_assistant.services.ai.llm_client import LLMClient, get_llm_client
from sales_assistant.services.ai.prompts import (
    build_interpretation_messages,
    build_validation_messages,
)
from sales_assistant.services.ai.schema import (
    InterpretationOutput,
    ValidationOutput,
    validate_interpretation_payload,
    validate_validation_payload,
)
from sales_assistant.services.decision.schema import Intent, ThreadContext


class LLMInterpreterAgent(JsonAgent):
    agent_name = "interpreter"
    max_tokens = 400

    async def interpret(
        self, message: str, context: Optional[ThreadContext] = None
    ) -> Optional[InterpretationOutput]:
        if not message or not message.strip():
            return None
        return await self._complete(
            build_interpretation_messages(message, context),
            validate_interpretation_payload,
        )

    async def validate_low_confidence(
        self,
        intent: Intent,
        reason: str,
        signals: Iterable[str],
        message: str = "",
    ) -> Optional[ValidationOutput]:
        return await self._complete(
            build_validation_messages(message, intent, reason, list(signals)),
            validate_validation_payload,
        )


class ValidatorAgent(LLMInterpreterAgent):
    """Same client, separate metrics label for validation calls."""
    agent_name = "validator"
    max_tokens = 128


class InterpreterService:
    """Routes interpret/validate calls to their agents."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        client = llm_client or get_llm_client()
        self._interpreter = LLMInterpreterAgent(client)
        self._validator = ValidatorAgent(client)

    async def interpret(
        self, message: str, context: Optional[ThreadContext] = None
    ) -> Optional[InterpretationOutput]:
        return await self._interpreter.interpret(message, context)

    async def validate_low_confidence(
        self,
        intent: Intent,
        reason: str,
        signals: Iterable[str],
        message: str = "",
    ) -> Optional[ValidationOutput]:
        return await self._validator.validate_low_confidence(intent, reason, signals, message)


_interpreter: Optional[InterpreterService] = None


def get_interpreter() -> InterpreterService:
    """Global singleton accessor."""
    global _interpreter
    if _interpreter is None:
        _interpreter = InterpreterService()
    return _interpreter
