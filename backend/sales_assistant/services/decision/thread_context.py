"""
Thread-context carryover.

Follow-up messages in a thread keep the company/meeting resolved earlier
unless the user clearly moves on: asks about another meeting, switches
account, or names a new date range.
"""
import re
from typing import Iterable, Optional

from .schema import ThreadContext

_MONTHS = (
    "january|february|march|april|may|june|july|august|september|october|"
    "november|december|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec"
)

_EXPLICIT_OVERRIDES = (
    re.compile(
        r"\b(different|another|other|new|separate)\s+(meeting|call|customer|company|account|demo)s?\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(switch|change|move)\s+(over\s+)?to\b", re.IGNORECASE),
)

_DATE_RANGE_OVERRIDES = (
    re.compile(r"\b(last|this|next|previous|past)\s+(week|month|quarter|year)\b", re.IGNORECASE),
    re.compile(rf"\b(in|on|from|since|during|for)\s+({_MONTHS})\b", re.IGNORECASE),
    re.compile(r"\bq[1-4]\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/\d{1,2}(/\d{2,4})?\b"),
    re.compile(r"\b(19|20)\d{2}\b"),
)

# A capitalised name introduced after a preposition, e.g. "for Globex".
# All-caps tokens ("for API access") are terms, not names.
_NAME = r"[A-Z][a-z][\w&'-]*"
_NEW_NAME_OVERRIDES = (
    re.compile(rf"\bwith\s+{_NAME}\s+(about|regarding|on)\b"),
    re.compile(rf"\b(for|at|from)\s+{_NAME}"),
)


def _matches_any(patterns, message: str) -> bool:
    return any(p.search(message) for p in patterns)


def should_reuse(
    prior: Optional[ThreadContext],
    message: str,
    mentioned_company_ids: Iterable[str] = (),
) -> bool:
    """
    Decide whether a follow-up keeps the thread's resolved entities.

    Args:
        prior: Thread context from earlier turns (None for a fresh thread)
        message: The new message
        mentioned_company_ids: Registry ids found in the new message, if the
            caller already resolved them

    Returns:
        False when there is nothing to reuse or an override applies, True otherwise.
    """
    if prior is None or not prior.has_entity:
        return False
    text = message or ""

    if _matches_any(_EXPLICIT_OVERRIDES, text):
        return False
    if _matches_any(_DATE_RANGE_OVERRIDES, text):
        return False

    mentioned = {cid for cid in mentioned_company_ids if cid}
    if mentioned:
        return mentioned == {prior.prior_company_id}

    if _matches_any(_NEW_NAME_OVERRIDES, text):
        return False
    return True
