"""
Decision layer orchestration.

classify -> context flags -> context layers -> contract chain.

Final contract selection is a strictly ordered state machine with no re-entry:
LLM_PROPOSED -> KEYWORD_BUILT -> LLM_FALLBACK, with VALIDATION_FAILURE as the
terminal CLARIFY reachable only from the keyword builder's validation step.
"""
import asyncio
from typing import Any, List, Optional

from sales_assistant.core.config import get_settings
from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import record_contract_chain

from .chain_builder import (
    ContractChainBuilder,
    check_chain_invariants,
    get_chain_builder,
    order_by_phase,
)
from .classifier import FALLBACK_CLARIFY_MESSAGE, IntentClassifier, get_intent_classifier
from .context_layers import enabled_layer_names, infer_context_flags, resolve_context_layers
from .contracts import is_terminal, parse_contract
from .schema import (
    TERMINAL_INTENTS,
    AnswerContract,
    ChainBuildScope,
    ContractChain,
    DecisionResult,
    Intent,
    IntentClassification,
    ScopeType,
    SelectionMethod,
    ThreadContext,
)

logger = get_logger(__name__)

REFUSE_REASON = (
    "That's outside what I can help with. I can answer questions about your "
    "meetings, customers, our product, Slack conversations and account research."
)


def default_scope_for(classification: IntentClassification) -> ChainBuildScope:
    """Minimal scope derived from the classification when no resolver supplied one."""
    metadata = classification.decision_metadata
    if classification.intent == Intent.SINGLE_MEETING:
        return ChainBuildScope(
            type=ScopeType.SINGLE_MEETING,
            meeting_id=metadata.resolved_meeting_id,
            company_id=metadata.resolved_company_id,
        )
    if classification.intent == Intent.MULTI_MEETING:
        return ChainBuildScope(
            type=ScopeType.MULTI_MEETING,
            company_id=metadata.resolved_company_id,
        )
    return ChainBuildScope()


def terminal_chain(classification: IntentClassification) -> ContractChain:
    """[REFUSE] or [CLARIFY] carrying the message to show the user."""
    metadata = classification.decision_metadata
    if classification.intent == Intent.REFUSE:
        return ContractChain(
            contracts=[AnswerContract.REFUSE],
            selection_method=SelectionMethod.DEFAULT,
            clarify_reason=REFUSE_REASON,
        )
    reason = metadata.clarify_message or FALLBACK_CLARIFY_MESSAGE
    return ContractChain(
        contracts=[AnswerContract.CLARIFY],
        selection_method=SelectionMethod.DEFAULT,
        clarify_reason=reason,
    )


def proposed_chain(classification: IntentClassification) -> Optional[ContractChain]:
    """LLM_PROPOSED: usable only if every name is a known, non-terminal contract."""
    names = classification.decision_metadata.proposed_contracts
    if not names or classification.intent in TERMINAL_INTENTS:
        return None
    contracts: List[AnswerContract] = []
    for name in names:
        contract = parse_contract(name)
        if contract is None or is_terminal(contract):
            logger.info("llm_proposal_rejected", reason="invalid_contract", contract=name)
            return None
        if contract not in contracts:
            contracts.append(contract)
    contracts = order_by_phase(contracts)
    violation = check_chain_invariants(contracts, allow_chainable_authoritative=True)
    if violation is not None:
        logger.info(
            "llm_proposal_rejected",
            reason=violation[0],
            contracts=[c.value for c in contracts],
        )
        return None
    return ContractChain(contracts=contracts, selection_method=SelectionMethod.LLM_PROPOSED)


class DecisionLayerService:
    """
    Plans the work for one inbound message.

    Never raises for collaborator failures: the worst outcome is a CLARIFY or
    GENERAL_RESPONSE chain.
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        chain_builder: Optional[ContractChainBuilder] = None,
        contract_selector: Any = None,
        llm_timeout_seconds: Optional[float] = None,
    ):
        self.classifier = classifier or get_intent_classifier()
        self.chain_builder = chain_builder or get_chain_builder()
        self._contract_selector = contract_selector
        self.llm_timeout_seconds = llm_timeout_seconds or get_settings().llm_timeout_seconds

    @property
    def contract_selector(self):
        if self._contract_selector is None:
            from sales_assistant.services.ai.agents.contract_selector import get_contract_selector

            self._contract_selector = get_contract_selector()
        return self._contract_selector

    async def decide(
        self,
        message: str,
        thread_context: Optional[ThreadContext] = None,
        scope: Optional[ChainBuildScope] = None,
    ) -> DecisionResult:
        classification = await self.classifier.classify(message, thread_context)
        flags = infer_context_flags(message, classification.decision_metadata.proposed_contracts)
        layers = resolve_context_layers(classification.intent, flags)
        chain = await self.select_chain(message, classification, scope or default_scope_for(classification))

        record_contract_chain(chain.selection_method.value)
        logger.info(
            "contract_chain_built",
            intent=classification.intent.value,
            contracts=[c.value for c in chain.contracts],
            selection_method=chain.selection_method.value,
            clarify_reason=chain.clarify_reason,
            layers=enabled_layer_names(layers),
        )
        return DecisionResult(
            classification=classification,
            context_layers=layers,
            chain=chain,
            enabled_layers=enabled_layer_names(layers),
        )

    async def select_chain(
        self,
        message: str,
        classification: IntentClassification,
        scope: ChainBuildScope,
    ) -> ContractChain:
        if classification.intent in TERMINAL_INTENTS:
            return terminal_chain(classification)

        chain = proposed_chain(classification)
        if chain is not None:
            return chain

        chain = self.chain_builder.plan(message, classification.intent, scope)
        if chain is not None:
            return chain

        contract = await self._llm_fallback(message, classification.intent)
        if contract is not None:
            return ContractChain(contracts=[contract], selection_method=SelectionMethod.LLM_FALLBACK)
        return ContractChain(
            contracts=[AnswerContract.GENERAL_RESPONSE],
            selection_method=SelectionMethod.DEFAULT,
        )

    async def _llm_fallback(self, message: str, intent: Intent) -> Optional[AnswerContract]:
        try:
            return await asyncio.wait_for(
                self.contract_selector.select_contract(message, intent),
                timeout=self.llm_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "contract_selection_fallback_failed",
                intent=intent.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None


_service: Optional[DecisionLayerService] = None


def get_decision_service() -> DecisionLayerService:
    """Global singleton accessor."""
    global _service
    if _service is None:
        _service = DecisionLayerService()
    return _service


def set_decision_service(service: Optional[DecisionLayerService]) -> None:
    """Install (or clear) the global service, e.g. after the registry is built."""
    global _service
    _service = service
