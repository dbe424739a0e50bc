"""
Unit tests for thread-context carryover decisions.
"""
import pytest

from sales_assistant.services.decision.schema import ThreadContext
from sales_assistant.services.decision.thread_context import should_reuse

PRIOR = ThreadContext(prior_company_id="acme", prior_meeting_id="m-1")


def test_nothing_to_reuse():
    assert should_reuse(None, "What did they say?") is False
    assert should_reuse(ThreadContext(), "What did they say?") is False


def test_plain_follow_up_reuses():
    assert should_reuse(PRIOR, "What did they say about pricing?") is True


@pytest.mark.parametrize("message", [
    "What about the other meeting?",
    "Let's look at a different customer",
    "switch to the renewal deal",
])
def test_explicit_override(message):
    assert should_reuse(PRIOR, message) is False


@pytest.mark.parametrize("message", [
    "What did they say last week?",
    "Anything from them in March?",
    "How did Q3 go?",
    "What happened on 3/14?",
    "Summarize 2024",
])
def test_date_range_override(message):
    assert should_reuse(PRIOR, message) is False


def test_same_company_mentioned_reuses():
    assert should_reuse(PRIOR, "What did Acme ask?", ["acme"]) is True


def test_different_company_mentioned():
    assert should_reuse(PRIOR, "What did Globex ask?", ["globex"]) is False


@pytest.mark.parametrize("message", [
    "Now do the same for Initech",
    "What did I discuss with Initech about pricing?",
])
def test_new_name_override(message):
    assert should_reuse(PRIOR, message) is False


@pytest.mark.parametrize("message", [
    "what did they say for API access",
    "Did they ask for SSO?",
    "Any pricing concerns from EMEA?",
])
def test_all_caps_terms_keep_carryover(message):
    assert should_reuse(PRIOR, message) is True
