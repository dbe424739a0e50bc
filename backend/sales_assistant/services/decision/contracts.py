"""
Answer contract registry.

Single source of truth for every contract's authority level (ssot_mode),
evidence/citation obligations, output shape, empty-result behaviour and chain
phase. Other modules ask the registry instead of hardcoding these properties.

The table is complete by construction: ``validate_registry`` runs at import and
fails loudly if a contract variant is missing, so lookups never need a default.
"""
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

from .schema import (
    AnswerContract,
    AnswerContractConstraints,
    EmptyResultBehavior,
    Intent,
    Phase,
    ResponseFormat,
    SsotMode,
)


class ContractRegistryError(RuntimeError):
    """Raised when the registry table does not cover every contract exactly once."""


def _row(
    ssot_mode: SsotMode,
    response_format: ResponseFormat,
    empty_result_behavior: EmptyResultBehavior,
    phase: Phase,
    description: str,
    requires_evidence: bool = False,
    requires_citation: bool = False,
    min_evidence_threshold: Optional[int] = None,
) -> AnswerContractConstraints:
    return AnswerContractConstraints(
        ssot_mode=ssot_mode,
        requires_evidence=requires_evidence,
        requires_citation=requires_citation,
        response_format=response_format,
        empty_result_behavior=empty_result_behavior,
        phase=phase,
        min_evidence_threshold=min_evidence_threshold,
        description=description,
    )


_NONE = SsotMode.NONE
_DESCRIPTIVE = SsotMode.DESCRIPTIVE
_AUTHORITATIVE = SsotMode.AUTHORITATIVE
_TEXT = ResponseFormat.TEXT
_LIST = ResponseFormat.LIST
_STRUCTURED = ResponseFormat.STRUCTURED
_EMPTY = EmptyResultBehavior.RETURN_EMPTY
_CLARIFY = EmptyResultBehavior.CLARIFY
_REFUSE = EmptyResultBehavior.REFUSE
_EXTRACTION = Phase.EXTRACTION
_ANALYSIS = Phase.ANALYSIS
_DRAFTING = Phase.DRAFTING

_CONSTRAINT_ROWS: Tuple[Tuple[AnswerContract, AnswerContractConstraints], ...] = (
    (AnswerContract.MEETING_SUMMARY, _row(
        _NONE, _TEXT, _CLARIFY, _EXTRACTION,
        "Summary of a single meeting",
    )),
    (AnswerContract.NEXT_STEPS, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Action items and commitments from a meeting",
        requires_evidence=True, requires_citation=True,
    )),
    (AnswerContract.ATTENDEES, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Who took part in a meeting",
    )),
    (AnswerContract.CUSTOMER_QUESTIONS, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Questions the customer asked in a meeting",
        requires_evidence=True, requires_citation=True,
    )),
    (AnswerContract.EXTRACTIVE_FACT, _row(
        _NONE, _TEXT, _CLARIFY, _EXTRACTION,
        "A specific fact stated in a meeting",
        requires_evidence=True, requires_citation=True, min_evidence_threshold=1,
    )),
    (AnswerContract.AGGREGATIVE_LIST, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Topic-scoped listing across meetings",
        requires_evidence=True,
    )),
    (AnswerContract.PATTERN_ANALYSIS, _row(
        _NONE, _TEXT, _CLARIFY, _ANALYSIS,
        "Recurring themes across meetings",
        requires_evidence=True, min_evidence_threshold=2,
    )),
    (AnswerContract.COMPARISON, _row(
        _NONE, _STRUCTURED, _CLARIFY, _ANALYSIS,
        "Direct comparison of a few meetings or accounts",
        requires_evidence=True, min_evidence_threshold=2,
    )),
    (AnswerContract.TREND_SUMMARY, _row(
        _NONE, _TEXT, _CLARIFY, _ANALYSIS,
        "How something changed over time",
        requires_evidence=True, min_evidence_threshold=3,
    )),
    (AnswerContract.CROSS_MEETING_QUESTIONS, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Customer questions gathered across meetings",
        requires_evidence=True, requires_citation=True,
    )),
    (AnswerContract.PRODUCT_EXPLANATION, _row(
        _DESCRIPTIVE, _TEXT, _EMPTY, _DRAFTING,
        "Plain explanation of what the product does",
    )),
    (AnswerContract.VALUE_PROPOSITION, _row(
        _DESCRIPTIVE, _TEXT, _EMPTY, _DRAFTING,
        "Why the product matters to a given customer",
    )),
    (AnswerContract.DRAFT_RESPONSE, _row(
        _DESCRIPTIVE, _TEXT, _EMPTY, _DRAFTING,
        "Draft reply to a customer question",
    )),
    (AnswerContract.DRAFT_EMAIL, _row(
        _DESCRIPTIVE, _TEXT, _EMPTY, _DRAFTING,
        "Draft email",
    )),
    # Authoritative but evidence-free: the one chainable product contract.
    (AnswerContract.PRODUCT_KNOWLEDGE, _row(
        _AUTHORITATIVE, _TEXT, _EMPTY, _EXTRACTION,
        "Product facts from the product knowledge base",
        requires_citation=True,
    )),
    (AnswerContract.FEATURE_VERIFICATION, _row(
        _AUTHORITATIVE, _TEXT, _REFUSE, _DRAFTING,
        "Whether the product supports a capability",
        requires_evidence=True, requires_citation=True, min_evidence_threshold=1,
    )),
    (AnswerContract.FAQ_ANSWER, _row(
        _AUTHORITATIVE, _TEXT, _CLARIFY, _DRAFTING,
        "Answer from approved FAQ content",
        requires_evidence=True,
    )),
    (AnswerContract.EXTERNAL_RESEARCH, _row(
        _DESCRIPTIVE, _TEXT, _CLARIFY, _ANALYSIS,
        "Public research about a company or market",
    )),
    (AnswerContract.SALES_DOCS_PREP, _row(
        _DESCRIPTIVE, _STRUCTURED, _CLARIFY, _ANALYSIS,
        "Outline for slides or other sales collateral",
    )),
    (AnswerContract.SLACK_MESSAGE_SEARCH, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Matching Slack messages",
        requires_evidence=True, requires_citation=True, min_evidence_threshold=1,
    )),
    (AnswerContract.SLACK_CHANNEL_INFO, _row(
        _NONE, _LIST, _EMPTY, _EXTRACTION,
        "Slack channel listing and metadata",
    )),
    (AnswerContract.GENERAL_RESPONSE, _row(
        _NONE, _TEXT, _EMPTY, _DRAFTING,
        "General assistant reply",
    )),
    (AnswerContract.NOT_FOUND, _row(
        _NONE, _TEXT, _EMPTY, _DRAFTING,
        "Nothing relevant was found",
    )),
    (AnswerContract.REFUSE, _row(
        _NONE, _TEXT, _REFUSE, _DRAFTING,
        "Request is out of scope",
    )),
    (AnswerContract.CLARIFY, _row(
        _NONE, _TEXT, _CLARIFY, _DRAFTING,
        "Ask the user to clarify",
    )),
)

CONTRACT_CONSTRAINTS: Mapping[AnswerContract, AnswerContractConstraints] = MappingProxyType(
    dict(_CONSTRAINT_ROWS)
)

TERMINAL_CONTRACTS = frozenset({AnswerContract.REFUSE, AnswerContract.CLARIFY})

PHASE_RANK: Mapping[Phase, int] = MappingProxyType({
    Phase.EXTRACTION: 1,
    Phase.ANALYSIS: 2,
    Phase.DRAFTING: 3,
})

# Contracts an intent can plausibly produce; scopes the LLM fallback prompt.
INTENT_CONTRACTS: Mapping[Intent, Tuple[AnswerContract, ...]] = MappingProxyType({
    Intent.SINGLE_MEETING: (
        AnswerContract.MEETING_SUMMARY,
        AnswerContract.NEXT_STEPS,
        AnswerContract.ATTENDEES,
        AnswerContract.CUSTOMER_QUESTIONS,
        AnswerContract.EXTRACTIVE_FACT,
        AnswerContract.DRAFT_RESPONSE,
        AnswerContract.DRAFT_EMAIL,
    ),
    Intent.MULTI_MEETING: (
        AnswerContract.AGGREGATIVE_LIST,
        AnswerContract.PATTERN_ANALYSIS,
        AnswerContract.COMPARISON,
        AnswerContract.TREND_SUMMARY,
        AnswerContract.CROSS_MEETING_QUESTIONS,
        AnswerContract.DRAFT_RESPONSE,
    ),
    Intent.PRODUCT_KNOWLEDGE: (
        AnswerContract.PRODUCT_KNOWLEDGE,
        AnswerContract.PRODUCT_EXPLANATION,
        AnswerContract.FEATURE_VERIFICATION,
        AnswerContract.FAQ_ANSWER,
        AnswerContract.VALUE_PROPOSITION,
    ),
    Intent.EXTERNAL_RESEARCH: (
        AnswerContract.EXTERNAL_RESEARCH,
        AnswerContract.SALES_DOCS_PREP,
        AnswerContract.VALUE_PROPOSITION,
    ),
    Intent.SLACK_SEARCH: (
        AnswerContract.SLACK_MESSAGE_SEARCH,
        AnswerContract.SLACK_CHANNEL_INFO,
    ),
    Intent.GENERAL_HELP: (
        AnswerContract.GENERAL_RESPONSE,
        AnswerContract.DRAFT_EMAIL,
        AnswerContract.DRAFT_RESPONSE,
        AnswerContract.NOT_FOUND,
    ),
    Intent.REFUSE: (AnswerContract.REFUSE,),
    Intent.CLARIFY: (AnswerContract.CLARIFY,),
})


def validate_registry(
    rows: Iterable[Tuple[AnswerContract, AnswerContractConstraints]] = _CONSTRAINT_ROWS,
) -> None:
    """Every contract variant must have exactly one row; terminals behave as themselves."""
    seen = [contract for contract, _ in rows]
    duplicates = sorted({c.value for c in seen if seen.count(c) > 1})
    missing = sorted(c.value for c in AnswerContract if c not in seen)
    if duplicates or missing:
        raise ContractRegistryError(
            f"Contract registry incomplete: missing={missing} duplicates={duplicates}"
        )
    table = dict(rows)
    if table[AnswerContract.REFUSE].empty_result_behavior != EmptyResultBehavior.REFUSE:
        raise ContractRegistryError("REFUSE must refuse on empty results")
    if table[AnswerContract.CLARIFY].empty_result_behavior != EmptyResultBehavior.CLARIFY:
        raise ContractRegistryError("CLARIFY must clarify on empty results")


validate_registry()


def get_constraints(contract: AnswerContract) -> AnswerContractConstraints:
    """Constraint row for a contract."""
    return CONTRACT_CONSTRAINTS[contract]


def parse_contract(name: object) -> Optional[AnswerContract]:
    """Map an untrusted contract name (e.g. from an LLM) to the enum, or None."""
    if isinstance(name, AnswerContract):
        return name
    if not isinstance(name, str):
        return None
    try:
        return AnswerContract(name.strip().upper())
    except ValueError:
        return None


def is_terminal(contract: AnswerContract) -> bool:
    return contract in TERMINAL_CONTRACTS


def phase_rank(contract: AnswerContract) -> int:
    return PHASE_RANK[CONTRACT_CONSTRAINTS[contract].phase]


def requires_product_ssot(contract: AnswerContract) -> bool:
    """Authoritative contracts may only run with the product SSOT layer enabled."""
    return CONTRACT_CONSTRAINTS[contract].ssot_mode == SsotMode.AUTHORITATIVE


def selectable_contracts(intent: Intent) -> Tuple[AnswerContract, ...]:
    """Non-terminal contracts the fallback selector may pick for an intent."""
    choices = tuple(c for c in INTENT_CONTRACTS.get(intent, ()) if not is_terminal(c))
    return choices or (AnswerContract.GENERAL_RESPONSE,)
