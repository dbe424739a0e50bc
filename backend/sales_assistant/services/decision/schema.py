"""
Data model for the decision layer.

Everything here is immutable once built: a classification is created once per
inbound message, a contract chain once per request, and both are only logged
after being handed to the execution layer.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class Intent(str, Enum):
    """Top-level classification of a request. Exactly one per request."""
    SINGLE_MEETING = "SINGLE_MEETING"
    MULTI_MEETING = "MULTI_MEETING"
    PRODUCT_KNOWLEDGE = "PRODUCT_KNOWLEDGE"
    EXTERNAL_RESEARCH = "EXTERNAL_RESEARCH"
    SLACK_SEARCH = "SLACK_SEARCH"
    GENERAL_HELP = "GENERAL_HELP"
    REFUSE = "REFUSE"
    CLARIFY = "CLARIFY"


TERMINAL_INTENTS = frozenset({Intent.REFUSE, Intent.CLARIFY})


class AnswerContract(str, Enum):
    """Task-shaped execution units. Never parameterized by topic or entity."""
    # Single meeting
    MEETING_SUMMARY = "MEETING_SUMMARY"
    NEXT_STEPS = "NEXT_STEPS"
    ATTENDEES = "ATTENDEES"
    CUSTOMER_QUESTIONS = "CUSTOMER_QUESTIONS"
    EXTRACTIVE_FACT = "EXTRACTIVE_FACT"
    # Multi meeting
    AGGREGATIVE_LIST = "AGGREGATIVE_LIST"
    PATTERN_ANALYSIS = "PATTERN_ANALYSIS"
    COMPARISON = "COMPARISON"
    TREND_SUMMARY = "TREND_SUMMARY"
    CROSS_MEETING_QUESTIONS = "CROSS_MEETING_QUESTIONS"
    # Drafting / product
    PRODUCT_EXPLANATION = "PRODUCT_EXPLANATION"
    VALUE_PROPOSITION = "VALUE_PROPOSITION"
    DRAFT_RESPONSE = "DRAFT_RESPONSE"
    DRAFT_EMAIL = "DRAFT_EMAIL"
    PRODUCT_KNOWLEDGE = "PRODUCT_KNOWLEDGE"
    FEATURE_VERIFICATION = "FEATURE_VERIFICATION"
    FAQ_ANSWER = "FAQ_ANSWER"
    # Research
    EXTERNAL_RESEARCH = "EXTERNAL_RESEARCH"
    SALES_DOCS_PREP = "SALES_DOCS_PREP"
    # Slack
    SLACK_MESSAGE_SEARCH = "SLACK_MESSAGE_SEARCH"
    SLACK_CHANNEL_INFO = "SLACK_CHANNEL_INFO"
    # General / terminal
    GENERAL_RESPONSE = "GENERAL_RESPONSE"
    NOT_FOUND = "NOT_FOUND"
    REFUSE = "REFUSE"
    CLARIFY = "CLARIFY"


class SsotMode(str, Enum):
    NONE = "none"
    DESCRIPTIVE = "descriptive"
    AUTHORITATIVE = "authoritative"


class ResponseFormat(str, Enum):
    TEXT = "text"
    LIST = "list"
    STRUCTURED = "structured"


class EmptyResultBehavior(str, Enum):
    RETURN_EMPTY = "return_empty"
    CLARIFY = "clarify"
    REFUSE = "refuse"


class Phase(str, Enum):
    EXTRACTION = "extraction"
    ANALYSIS = "analysis"
    DRAFTING = "drafting"


class DetectionMethod(str, Enum):
    PATTERN = "pattern"
    ENTITY = "entity"
    LLM_INTERPRETATION = "llm_interpretation"
    DEFAULT = "default"


class SelectionMethod(str, Enum):
    """How the final chain was chosen. KEYWORD and DEFAULT are both builder output."""
    LLM_PROPOSED = "llm_proposed"
    KEYWORD = "keyword"
    DEFAULT = "default"
    LLM_FALLBACK = "llm_fallback"
    VALIDATION_FAILURE = "validation_failure"


class ScopeType(str, Enum):
    SINGLE_MEETING = "single_meeting"
    MULTI_MEETING = "multi_meeting"
    NONE = "none"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class AnswerContractConstraints(FrozenModel):
    """One registry row: authority level, evidence obligations and output shape."""
    ssot_mode: SsotMode
    requires_evidence: bool
    requires_citation: bool
    response_format: ResponseFormat
    empty_result_behavior: EmptyResultBehavior
    phase: Phase
    min_evidence_threshold: Optional[int] = None
    description: str = ""


class ProposedInterpretation(FrozenModel):
    """What we asked the user to confirm when we last answered with CLARIFY."""
    intent: Intent
    contracts: List[AnswerContract] = Field(default_factory=list)
    summary: Optional[str] = None


class ThreadContext(FrozenModel):
    """Entity carryover from earlier turns of the same thread."""
    prior_company_id: Optional[str] = None
    prior_meeting_id: Optional[str] = None
    prior_awaiting_clarification: bool = False
    prior_proposed_interpretation: Optional[ProposedInterpretation] = None

    @property
    def has_entity(self) -> bool:
        return bool(self.prior_company_id or self.prior_meeting_id)


class DecisionMetadata(FrozenModel):
    matched_signals: List[str] = Field(default_factory=list)
    resolved_company_id: Optional[str] = None
    resolved_meeting_id: Optional[str] = None
    context_reused: bool = False
    match_type: Optional[str] = None
    proposed_contracts: List[str] = Field(default_factory=list)
    extracted_entities: Dict[str, Any] = Field(default_factory=dict)
    interpretation_summary: Optional[str] = None
    alternatives: List[str] = Field(default_factory=list)
    clarify_message: Optional[str] = None
    original_intent: Optional[Intent] = None
    validation_caveat: Optional[str] = None
    fallback_reason: Optional[str] = None


class IntentClassification(FrozenModel):
    intent: Intent
    confidence: float = Field(..., ge=0.0, le=1.0)
    detection_method: DetectionMethod
    reason: str
    needs_split: bool = False
    split_options: List[str] = Field(default_factory=list)
    decision_metadata: DecisionMetadata = Field(default_factory=DecisionMetadata)

    @model_validator(mode="after")
    def check_split(self) -> "IntentClassification":
        if self.needs_split and len(self.split_options) < 2:
            raise ValueError("needs_split requires at least two split options")
        return self


class ScopeFilters(FrozenModel):
    company: Optional[str] = None
    topic: Optional[str] = None
    time_range: Optional[str] = None


class ChainBuildScope(FrozenModel):
    """Resolved data boundary a chain operates over."""
    type: ScopeType = ScopeType.NONE
    meeting_id: Optional[str] = None
    meeting_ids: Optional[List[str]] = None
    company_id: Optional[str] = None
    filters: Optional[ScopeFilters] = None
    coverage: Optional[Dict[str, Any]] = None

    @property
    def has_filters(self) -> bool:
        return self.filters is not None and bool(self.filters.company or self.filters.topic)


class ContractChain(FrozenModel):
    contracts: List[AnswerContract] = Field(..., min_length=1)
    selection_method: SelectionMethod
    clarify_reason: Optional[str] = None

    @computed_field
    @property
    def primary_contract(self) -> AnswerContract:
        return self.contracts[0]


class ContextFlags(FrozenModel):
    requires_semantic: bool = False
    requires_product_knowledge: bool = False
    requires_style_matching: bool = False


class ContextLayers(FrozenModel):
    """Capability gates handed unmodified to the execution layer."""
    product_identity: bool = True
    product_ssot: bool = False
    single_meeting: bool = False
    multi_meeting: bool = False
    slack_search: bool = False


class DecisionResult(FrozenModel):
    classification: IntentClassification
    context_layers: ContextLayers
    chain: ContractChain
    enabled_layers: List[str] = Field(default_factory=list)
