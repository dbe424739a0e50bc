"""
Decision endpoints.

POST /decision            classify + plan a message (may call the LLM)
POST /decision/chain      deterministic chain for a given intent and scope
GET  /decision/contracts  the contract registry
"""
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from sales_assistant.core.logging import get_logger
from sales_assistant.services.decision.chain_builder import get_chain_builder
from sales_assistant.services.decision.contracts import CONTRACT_CONSTRAINTS
from sales_assistant.services.decision.orchestration import get_decision_service
from sales_assistant.services.decision.schema import (
    ChainBuildScope,
    ContractChain,
    DecisionResult,
    Intent,
    ThreadContext,
)

logger = get_logger(__name__)

router = APIRouter()


class DecisionRequest(BaseModel):
    """Inbound message plus optional thread carryover and resolved scope."""
    message: str = Field(..., min_length=1, max_length=4000)
    thread_context: Optional[ThreadContext] = None
    scope: Optional[ChainBuildScope] = None


class ChainRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    intent: Intent
    scope: ChainBuildScope = Field(default_factory=ChainBuildScope)


@router.post("", response_model=DecisionResult)
async def decide(request: DecisionRequest):
    """
    Classify the message and plan its contract chain.

    Collaborator failures never surface as errors here; they resolve to a
    CLARIFY or GENERAL_RESPONSE plan.
    """
    service = get_decision_service()
    return await service.decide(
        request.message,
        thread_context=request.thread_context,
        scope=request.scope,
    )


@router.post("/chain", response_model=ContractChain)
async def build_chain(request: ChainRequest):
    """Run only the deterministic chain builder."""
    return get_chain_builder().build(request.message, request.intent, request.scope)


@router.get("/contracts")
async def list_contracts():
    return {
        contract.value: constraints.model_dump(mode="json")
        for contract, constraints in CONTRACT_CONSTRAINTS.items()
    }
