"""
Prompt builders for the decision-layer agents.

Intent and contract vocabularies are rendered from the enums and the contract
registry so prompts never drift from what the validators accept.
"""
import json
from typing import Iterable, List, Optional

from sales_assistant.services.decision.contracts import CONTRACT_CONSTRAINTS, selectable_contracts
from sales_assistant.services.decision.schema import AnswerContract, Intent, ThreadContext

PRODUCT_IDENTITY = (
    "You are the routing layer of a sales assistant used by account executives. "
    "The assistant can read past customer meeting transcripts, search the team's "
    "Slack, look up the company's own product knowledge base and run public "
    "research on prospects."
)

INTENT_DESCRIPTIONS = {
    Intent.SINGLE_MEETING: "about one specific meeting or customer conversation",
    Intent.MULTI_MEETING: "about several meetings, customers or trends across them",
    Intent.PRODUCT_KNOWLEDGE: "about our own product, pricing, features or integrations",
    Intent.EXTERNAL_RESEARCH: "needs public research on a company, market or competitor",
    Intent.SLACK_SEARCH: "asks to search Slack messages or channels",
    Intent.GENERAL_HELP: "general assistance, drafting, or questions about the assistant",
    Intent.REFUSE: "out of scope for a sales assistant",
    Intent.CLARIFY: "too ambiguous to route without asking the user",
}


def _intent_lines() -> str:
    return "\n".join(f"- {i.value}: {INTENT_DESCRIPTIONS[i]}" for i in Intent)


def _contract_lines(contracts: Iterable[AnswerContract]) -> str:
    return "\n".join(
        f"- {c.value}: {CONTRACT_CONSTRAINTS[c].description}" for c in contracts
    )


def _context_block(context: Optional[ThreadContext]) -> str:
    if context is None:
        return "No prior thread context."
    return "Thread context: " + json.dumps(context.model_dump(mode="json"), sort_keys=True)


def build_interpretation_messages(message: str, context: Optional[ThreadContext]) -> List[dict]:
    system_prompt = (
        f"{PRODUCT_IDENTITY}\n\n"
        "Classify the user's message into exactly one intent:\n"
        f"{_intent_lines()}\n\n"
        "Propose the answer contracts that would satisfy it, in execution order, "
        "chosen only from:\n"
        f"{_contract_lines(c for c in AnswerContract if c not in (AnswerContract.REFUSE, AnswerContract.CLARIFY))}\n\n"
        "You MUST respond with a single JSON object only, with keys:\n"
        '{"intent": "<INTENT>", "proposed_contracts": ["<CONTRACT>"], '
        '"extracted_entities": {}, "is_ambiguous": true|false, '
        '"confidence": 0.0-1.0, "summary": "...", '
        '"clarifying_question": "...", "alternatives": ["..."]}\n'
        "Use at most 3 alternatives. Do not include any explanation or extra fields."
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": f"{_context_block(context)}\n\nMessage: {message}"},
    ]


def build_validation_messages(
    message: str, intent: Intent, reason: str, signals: Iterable[str]
) -> List[dict]:
    system_prompt = (
        f"{PRODUCT_IDENTITY}\n\n"
        "A rule-based classifier made a low-confidence guess. Confirm it or "
        "suggest a better intent from:\n"
        f"{_intent_lines()}\n\n"
        "You MUST respond with a single JSON object only, with keys:\n"
        '{"confirmed": true|false, "suggested_intent": "<INTENT>" | null, '
        '"confidence": 0.0-1.0, "reason": "..."}'
    )
    user_content = (
        f"Message: {message}\n"
        f"Guessed intent: {intent.value}\n"
        f"Why: {reason}\n"
        f"Matched signals: {', '.join(signals) or 'none'}"
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_content},
    ]


def build_contract_selection_messages(message: str, intent: Intent) -> List[dict]:
    choices = selectable_contracts(intent)
    system_prompt = (
        f"{PRODUCT_IDENTITY}\n\n"
        f"The request was classified as {intent.value}. Pick the single answer "
        "contract that best fits it from:\n"
        f"{_contract_lines(choices)}\n\n"
        'You MUST respond with a single JSON object only: {"contract": "<CONTRACT>"}'
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": message},
    ]
