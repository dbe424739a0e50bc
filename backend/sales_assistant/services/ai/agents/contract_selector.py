"""
Fallback contract selector (LLM_FALLBACK state).

One LLM call scoped to the resolved intent, used only when the chain builder
planned nothing. The answer must name one of the contracts offered for the
intent; anything else is treated as no answer.
"""
from typing import Optional

from sales_assistant.core.logging import get_logger
from sales_assistant.services.ai.agents.base import JsonAgent
from sales_assistant.services.ai.llm_client import LLMClient, get_llm_client
from sales_assistant.services.ai.prompts import build_contract_selection_messages
from sales_assistant.services.ai.schema import validate_contract_selection_payload
from sales_assistant.services.decision.contracts import parse_contract, selectable_contracts
from sales_assistant.services.decision.schema import AnswerContract, Intent

logger = get_logger(__name__)


class ContractSelectorAgent(JsonAgent):
    agent_name = "contract_selector"
    max_tokens = 32

    async def select_contract(self, message: str, intent: Intent) -> Optional[AnswerContract]:
        selection = await self._complete(
            build_contract_selection_messages(message, intent),
            validate_contract_selection_payload,
        )
        if selection is None:
            return None
        contract = parse_contract(selection.contract)
        if contract is None or contract not in selectable_contracts(intent):
            logger.warning(
                "contract_selector_rejected",
                contract=selection.contract,
                intent=intent.value,
            )
            return None
        return contract


_contract_selector: Optional[ContractSelectorAgent] = None


def get_contract_selector(llm_client: Optional[LLMClient] = None) -> ContractSelectorAgent:
    """Global singleton accessor."""
    global _contract_selector
    if _contract_selector is None:
        _contract_selector = ContractSelectorAgent(llm_client or get_llm_client())
    return _contract_selector
