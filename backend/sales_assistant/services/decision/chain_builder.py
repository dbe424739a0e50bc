"""
Contract chain builder.

Turns (message, intent, scope) into an ordered, validated list of answer
contracts. Deterministic and network-free:

1. Task extraction: ordered regex rules, each gated by the intents it serves
2. Task -> contract resolution with scope-aware overrides
3. Stable sort by phase (extraction < analysis < drafting)
4. Validation: oversized chains and authority mixing collapse to [CLARIFY]
"""
import re
from typing import FrozenSet, List, NamedTuple, Optional, Pattern, Sequence, Tuple

from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import record_chain_validation_failure

from .contracts import get_constraints, is_terminal, phase_rank
from .schema import (
    AnswerContract,
    ChainBuildScope,
    ContractChain,
    Intent,
    ScopeType,
    SelectionMethod,
    SsotMode,
)

logger = get_logger(__name__)

MAX_CHAIN_LENGTH = 3

CHAIN_TOO_LONG_REASON = (
    "Your request seems to combine multiple distinct tasks. "
    "Could you break it into separate questions?"
)
AUTHORITY_MIX_REASON = (
    "Your question combines meeting-specific information with product knowledge. "
    "Please ask these as separate questions."
)

# Authoritative contracts allowed next to extractive ones on the LLM-proposed path
CHAINABLE_AUTHORITATIVE: FrozenSet[AnswerContract] = frozenset({AnswerContract.PRODUCT_KNOWLEDGE})

_SM = Intent.SINGLE_MEETING
_MM = Intent.MULTI_MEETING
_PK = Intent.PRODUCT_KNOWLEDGE
_ER = Intent.EXTERNAL_RESEARCH
_SL = Intent.SLACK_SEARCH
_GH = Intent.GENERAL_HELP


class TaskRule(NamedTuple):
    name: str
    pattern: Pattern[str]
    candidates: Tuple[AnswerContract, ...]
    allowed_intents: FrozenSet[Intent]
    single_meeting_contract: Optional[AnswerContract] = None
    multi_meeting_contract: Optional[AnswerContract] = None


def _rule(
    name: str,
    regex: str,
    candidates: Sequence[AnswerContract],
    intents: Sequence[Intent],
    single: Optional[AnswerContract] = None,
    multi: Optional[AnswerContract] = None,
) -> TaskRule:
    return TaskRule(
        name=name,
        pattern=re.compile(regex, re.IGNORECASE),
        candidates=tuple(candidates),
        allowed_intents=frozenset(intents),
        single_meeting_contract=single,
        multi_meeting_contract=multi,
    )


TASK_RULES: Tuple[TaskRule, ...] = (
    _rule(
        "extract_questions",
        r"\b(questions?|asked|objections?)\b",
        [AnswerContract.CUSTOMER_QUESTIONS, AnswerContract.CROSS_MEETING_QUESTIONS],
        [_SM, _MM],
        single=AnswerContract.CUSTOMER_QUESTIONS,
        multi=AnswerContract.CROSS_MEETING_QUESTIONS,
    ),
    _rule(
        "summarize",
        r"\b(summari[sz]e|summary|overview|recap)\b",
        [AnswerContract.MEETING_SUMMARY],
        [_SM],
    ),
    _rule(
        "extract_actions",
        r"\b(action\s+items?|next\s+steps?|to-?dos?)\b",
        [AnswerContract.NEXT_STEPS],
        [_SM, _MM],
        multi=AnswerContract.AGGREGATIVE_LIST,
    ),
    _rule(
        "extract_attendees",
        r"\bwho\s+(was|were|attended|joined)\b|\b(attendees?|participants?)\b",
        [AnswerContract.ATTENDEES],
        [_SM],
    ),
    _rule(
        "analyze_patterns",
        r"\b(patterns?|recurring|common\s+themes?|themes?|concerns|pain\s+points?|keeps?\s+coming\s+up)\b",
        [AnswerContract.PATTERN_ANALYSIS],
        [_MM],
    ),
    _rule(
        "compare",
        r"\b(compare|comparison|differences?|differ|contrast|versus|vs)\b",
        [AnswerContract.COMPARISON],
        [_MM],
    ),
    _rule(
        "analyze_trends",
        r"\b(trends?|over\s+time|changing|evolving|progression)\b",
        [AnswerContract.TREND_SUMMARY],
        [_MM],
    ),
    _rule(
        "draft_response",
        r"\bhelp\s+(me\s+)?(answer|respond|reply)\b|\bdraft\s+(a\s+)?(response|reply)\b"
        r"|\bhow\s+should\s+i\s+(respond|answer|reply)\b",
        [AnswerContract.DRAFT_RESPONSE],
        [_SM, _MM, _GH],
    ),
    _rule(
        "draft_email",
        r"\b(draft|write)\s+(me\s+)?(an?\s+)?(follow[-\s]?up\s+)?email\b|\bemail\s+template\b",
        [AnswerContract.DRAFT_EMAIL],
        [_SM, _MM, _GH],
    ),
    _rule(
        "external_research",
        r"\bresearch\b|\bearnings\s+calls?\b|\bpublic\s+statements?\b|\btheir\s+priorit",
        [AnswerContract.EXTERNAL_RESEARCH],
        [_ER],
    ),
    _rule(
        "sales_docs_prep",
        r"\b(slide|sales|pitch)\s+deck\b|\bpresentation\s+for\b|\b(draft|create|build)\b.*\bslides?\b",
        [AnswerContract.SALES_DOCS_PREP],
        [_ER],
    ),
    _rule(
        "verify_feature",
        r"\b(does|do|can)\s+(we|our\s+product|the\s+product|it)\s+(support|integrate|offer|have|handle)\b"
        r"|\bis\s+there\s+(an?\s+)?(integration|support)\s+for\b",
        [AnswerContract.FEATURE_VERIFICATION],
        [_PK],
    ),
    _rule(
        "faq_answer",
        r"\b(pricing|price|cost|security|compliance|sso|soc\s*2|gdpr)\b",
        [AnswerContract.FAQ_ANSWER],
        [_PK],
    ),
    _rule(
        "value_proposition",
        r"\bvalue\s+prop\w*\b|\bwhy\s+(should|would)\s+they\s+(buy|choose)\b",
        [AnswerContract.VALUE_PROPOSITION],
        [_PK, _ER, _GH],
    ),
    _rule(
        "product_connection",
        r"\bour\s+(product|platform|offering|solution)\b"
        r"|\btie\s+(it\s+)?(back\s+)?to\s+(us|our)\b|\bhow\s+(we|our\s+product)\s+(can\s+)?(help|fit)\b",
        [AnswerContract.PRODUCT_KNOWLEDGE],
        [_ER, _GH, _SM, _MM, _PK],
    ),
    _rule(
        "slack_search",
        r"\b(search|find|look)\b.*\bslack\b|\bslack\s+(messages?|threads?|conversations?)\b"
        r"|\b(in|on)\s+slack\b|(^|\s)#[a-z0-9][\w-]*",
        [AnswerContract.SLACK_MESSAGE_SEARCH],
        [_SL],
    ),
    _rule(
        "slack_channel_info",
        r"\b(which|what|list)\s+(slack\s+)?channels?\b|\bchannel\s+(info|members|list)\b",
        [AnswerContract.SLACK_CHANNEL_INFO],
        [_SL],
    ),
)


def extract_tasks(message: str, intent: Intent, rules: Sequence[TaskRule] = TASK_RULES) -> List[TaskRule]:
    """Rules whose regex matches and whose intents include ``intent``, in table order."""
    matched: List[TaskRule] = []
    seen = set()
    for rule in rules:
        if rule.name in seen or intent not in rule.allowed_intents:
            continue
        if rule.pattern.search(message or ""):
            matched.append(rule)
            seen.add(rule.name)
    return matched


def contract_for_task(rule: TaskRule, scope: ChainBuildScope) -> AnswerContract:
    """Resolve a task to one contract, applying scope overrides in precedence order."""
    if scope.type == ScopeType.SINGLE_MEETING and rule.single_meeting_contract:
        return rule.single_meeting_contract
    if scope.type == ScopeType.MULTI_MEETING and rule.multi_meeting_contract:
        return rule.multi_meeting_contract
    if rule.name == "analyze_patterns" and scope.type == ScopeType.MULTI_MEETING:
        if scope.filters is not None and scope.filters.topic:
            return AnswerContract.AGGREGATIVE_LIST
        if scope.meeting_ids and len(scope.meeting_ids) <= 3:
            return AnswerContract.COMPARISON
    return rule.candidates[0]


def default_contract(intent: Intent, scope: ChainBuildScope) -> Optional[AnswerContract]:
    """Intent/scope-keyed default when no task matched. None means nothing to offer."""
    if intent == Intent.SINGLE_MEETING:
        return AnswerContract.EXTRACTIVE_FACT
    if intent == Intent.MULTI_MEETING:
        return AnswerContract.AGGREGATIVE_LIST if scope.has_filters else AnswerContract.PATTERN_ANALYSIS
    if intent == Intent.PRODUCT_KNOWLEDGE:
        return AnswerContract.PRODUCT_EXPLANATION
    if intent == Intent.EXTERNAL_RESEARCH:
        return AnswerContract.EXTERNAL_RESEARCH
    if intent == Intent.GENERAL_HELP:
        return AnswerContract.GENERAL_RESPONSE
    if intent == Intent.REFUSE:
        return AnswerContract.REFUSE
    if intent == Intent.CLARIFY:
        return AnswerContract.CLARIFY
    return None


def order_by_phase(contracts: Sequence[AnswerContract]) -> List[AnswerContract]:
    """Stable sort by phase rank; ties keep first-encountered order."""
    return sorted(contracts, key=phase_rank)


def check_chain_invariants(
    contracts: Sequence[AnswerContract],
    allow_chainable_authoritative: bool = False,
) -> Optional[Tuple[str, str]]:
    """
    Return ``(rule, user-facing reason)`` for the first violated invariant, or None.

    With ``allow_chainable_authoritative`` the contracts in
    CHAINABLE_AUTHORITATIVE do not count as authoritative for the mixing rule.
    """
    if len(contracts) > MAX_CHAIN_LENGTH:
        return "chain_length", CHAIN_TOO_LONG_REASON

    modes = set()
    for contract in contracts:
        mode = get_constraints(contract).ssot_mode
        if (
            mode == SsotMode.AUTHORITATIVE
            and allow_chainable_authoritative
            and contract in CHAINABLE_AUTHORITATIVE
        ):
            continue
        modes.add(mode)
    if SsotMode.NONE in modes and SsotMode.AUTHORITATIVE in modes:
        return "authority_mix", AUTHORITY_MIX_REASON
    return None


def phase_order_violations(contracts: Sequence[AnswerContract]) -> List[Tuple[AnswerContract, AnswerContract]]:
    return [
        (a, b) for a, b in zip(contracts, contracts[1:]) if phase_rank(a) > phase_rank(b)
    ]


def collapse_terminal(contracts: Sequence[AnswerContract]) -> List[AnswerContract]:
    """A terminal contract ends the plan: nothing runs alongside it."""
    for contract in contracts:
        if is_terminal(contract):
            return [contract]
    return list(contracts)


class ContractChainBuilder:
    """Deterministic planner for one intent and one scope."""

    def __init__(self, rules: Sequence[TaskRule] = TASK_RULES):
        self.rules = tuple(rules)

    def plan(
        self, message: str, intent: Intent, scope: Optional[ChainBuildScope] = None
    ) -> Optional[ContractChain]:
        """Chain from tasks or the intent default; None when neither applies."""
        scope = scope or ChainBuildScope()
        tasks = extract_tasks(message, intent, self.rules)

        if tasks:
            resolved: List[AnswerContract] = []
            for rule in tasks:
                contract = contract_for_task(rule, scope)
                if contract not in resolved:
                    resolved.append(contract)
            selection = SelectionMethod.KEYWORD
        else:
            fallback = default_contract(intent, scope)
            if fallback is None:
                return None
            resolved = [fallback]
            selection = SelectionMethod.DEFAULT

        contracts = order_by_phase(collapse_terminal(resolved))
        return self._validate(contracts, selection, intent, [t.name for t in tasks])

    def build(
        self, message: str, intent: Intent, scope: Optional[ChainBuildScope] = None
    ) -> ContractChain:
        chain = self.plan(message, intent, scope)
        if chain is None:
            return ContractChain(
                contracts=[AnswerContract.GENERAL_RESPONSE],
                selection_method=SelectionMethod.DEFAULT,
            )
        return chain

    def _validate(
        self,
        contracts: List[AnswerContract],
        selection: SelectionMethod,
        intent: Intent,
        task_names: List[str],
    ) -> ContractChain:
        violation = check_chain_invariants(contracts)
        if violation is not None:
            rule, reason = violation
            record_chain_validation_failure(rule)
            logger.warning(
                "contract_chain_validation_failed",
                rule=rule,
                intent=intent.value,
                tasks=task_names,
                contracts=[c.value for c in contracts],
            )
            return ContractChain(
                contracts=[AnswerContract.CLARIFY],
                selection_method=SelectionMethod.VALIDATION_FAILURE,
                clarify_reason=reason,
            )

        violations = phase_order_violations(contracts)
        if violations:
            # Planner defect: report it, keep the sorted chain as-is
            logger.error(
                "contract_chain_phase_order_violation",
                intent=intent.value,
                contracts=[c.value for c in contracts],
                violations=[(a.value, b.value) for a, b in violations],
            )

        return ContractChain(contracts=contracts, selection_method=selection)


_builder: Optional[ContractChainBuilder] = None


def get_chain_builder() -> ContractChainBuilder:
    """Global singleton accessor."""
    global _builder
    if _builder is None:
        _builder = ContractChainBuilder()
    return _builder
