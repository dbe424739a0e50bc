"""
Pydantic models for LLM agent outputs.

Every LLM response shape has a strict model here. Payloads that fail
validation are rejected as a whole; callers fall back to their safe default
instead of trusting partially-parsed JSON.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from sales_assistant.services.decision.schema import Intent

MAX_ALTERNATIVES = 3


def _coerce_intent(value: Any) -> Intent:
    if isinstance(value, Intent):
        return value
    if not isinstance(value, str):
        raise ValueError("intent must be a string")
    try:
        return Intent(value.strip().upper())
    except ValueError:
        raise ValueError(f"intent must be one of {[i.value for i in Intent]}") from None


class InterpretationOutput(BaseModel):
    """
    Structured output of the interpreter agent.

    Schema:
    {
      "intent": "SINGLE_MEETING | MULTI_MEETING | ... | CLARIFY",
      "proposed_contracts": ["NEXT_STEPS"],
      "extracted_entities": {"company": "Acme"},
      "is_ambiguous": false,
      "confidence": 0.0-1.0,
      "summary": "what the user most likely wants",
      "clarifying_question": "question to ask if ambiguous",
      "alternatives": ["other reading", ...]
    }
    """

    intent: Intent
    proposed_contracts: List[str] = Field(default_factory=list)
    extracted_entities: Dict[str, Any] = Field(default_factory=dict)
    is_ambiguous: bool = False
    confidence: float = Field(..., ge=0.0, le=1.0)
    summary: Optional[str] = None
    clarifying_question: Optional[str] = None
    alternatives: List[str] = Field(default_factory=list)

    @field_validator("intent", mode="before")
    @classmethod
    def validate_intent(cls, value: Any) -> Intent:
        return _coerce_intent(value)

    @field_validator("alternatives")
    @classmethod
    def limit_alternatives(cls, value: List[str]) -> List[str]:
        return [v for v in value if v and v.strip()][:MAX_ALTERNATIVES]


class ValidationOutput(BaseModel):
    """
    Structured output of the low-confidence validator.

    Schema:
    {"confirmed": true|false, "suggested_intent": "..." | null,
     "confidence": 0.0-1.0, "reason": "..."}
    """

    confirmed: bool
    suggested_intent: Optional[Intent] = None
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    reason: Optional[str] = None

    @field_validator("suggested_intent", mode="before")
    @classmethod
    def validate_suggested_intent(cls, value: Any) -> Optional[Intent]:
        if value is None or value == "":
            return None
        return _coerce_intent(value)


class ContractSelectionOutput(BaseModel):
    """Structured output of the fallback contract selector: {"contract": "NAME"}."""

    contract: str = Field(..., min_length=1)


class SchemaValidationError(Exception):
    """Raised when LLM output fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


def _validate(model: type, agent: str, payload: Dict[str, Any]):
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        # Metrics are recorded by the calling agent.
        raise SchemaValidationError(
            agent=agent,
            message=f"Invalid {agent} payload: {exc}",
            raw_output=str(payload),
        ) from exc


def validate_interpretation_payload(payload: Dict[str, Any]) -> InterpretationOutput:
    """Raises SchemaValidationError if validation fails."""
    return _validate(InterpretationOutput, "interpreter", payload)


def validate_validation_payload(payload: Dict[str, Any]) -> ValidationOutput:
    """Raises SchemaValidationError if validation fails."""
    return _validate(ValidationOutput, "validator", payload)


def validate_contract_selection_payload(payload: Dict[str, Any]) -> ContractSelectionOutput:
    """Raises SchemaValidationError if validation fails."""
    return _validate(ContractSelectionOutput, "contract_selector", payload)
