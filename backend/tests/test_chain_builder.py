"""
Unit tests for the deterministic contract chain builder.
"""
import pytest

from sales_assistant.core.metrics import contract_chain_validation_failures_total
from sales_assistant.services.decision.chain_builder import (
    AUTHORITY_MIX_REASON,
    CHAIN_TOO_LONG_REASON,
    TASK_RULES,
    ContractChainBuilder,
    check_chain_invariants,
    collapse_terminal,
    extract_tasks,
    order_by_phase,
    phase_order_violations,
)
from sales_assistant.services.decision.schema import (
    AnswerContract,
    ChainBuildScope,
    Intent,
    ScopeFilters,
    ScopeType,
    SelectionMethod,
)

SINGLE = ChainBuildScope(type=ScopeType.SINGLE_MEETING, meeting_id="m-1")
MULTI = ChainBuildScope(type=ScopeType.MULTI_MEETING)


@pytest.fixture
def builder():
    return ContractChainBuilder()


def test_rule_names_are_unique():
    names = [rule.name for rule in TASK_RULES]
    assert len(names) == len(set(names))


class TestTaskExtraction:

    def test_rules_gated_by_intent(self):
        assert [t.name for t in extract_tasks("compare them", Intent.MULTI_MEETING)] == ["compare"]
        assert extract_tasks("compare them", Intent.SINGLE_MEETING) == []

    def test_table_order(self):
        tasks = extract_tasks("Summarize the call and list the action items", Intent.SINGLE_MEETING)
        assert [t.name for t in tasks] == ["summarize", "extract_actions"]


class TestKeywordChains:

    def test_action_items_from_single_meeting(self, builder):
        chain = builder.build(
            "What are the action items from the last meeting with Acme?", Intent.SINGLE_MEETING, SINGLE
        )
        assert chain.contracts == [AnswerContract.NEXT_STEPS]
        assert chain.selection_method == SelectionMethod.KEYWORD
        assert chain.primary_contract == AnswerContract.NEXT_STEPS

    def test_action_items_across_meetings(self, builder):
        chain = builder.build("What are the action items from recent calls?", Intent.MULTI_MEETING, MULTI)
        assert chain.contracts == [AnswerContract.AGGREGATIVE_LIST]

    @pytest.mark.parametrize("intent,scope,expected", [
        (Intent.SINGLE_MEETING, SINGLE, AnswerContract.CUSTOMER_QUESTIONS),
        (Intent.MULTI_MEETING, MULTI, AnswerContract.CROSS_MEETING_QUESTIONS),
    ])
    def test_questions_follow_scope(self, builder, intent, scope, expected):
        chain = builder.build("What questions did they ask?", intent, scope)
        assert chain.contracts == [expected]

    def test_comparison_of_few_meetings(self, builder):
        scope = ChainBuildScope(type=ScopeType.MULTI_MEETING, meeting_ids=["m-1", "m-2"])
        chain = builder.build("Compare Acme and Globex's concerns about pricing", Intent.MULTI_MEETING, scope)
        assert chain.contracts == [AnswerContract.COMPARISON]
        assert chain.selection_method == SelectionMethod.KEYWORD

    def test_patterns_with_topic_filter(self, builder):
        scope = ChainBuildScope(
            type=ScopeType.MULTI_MEETING, filters=ScopeFilters(topic="pricing"),
        )
        chain = builder.build("What concerns keep coming up?", Intent.MULTI_MEETING, scope)
        assert chain.contracts == [AnswerContract.AGGREGATIVE_LIST]

    @pytest.mark.parametrize("meeting_ids", [None, [], ["m-1", "m-2", "m-3", "m-4"]])
    def test_patterns_without_narrowing(self, builder, meeting_ids):
        scope = ChainBuildScope(type=ScopeType.MULTI_MEETING, meeting_ids=meeting_ids)
        chain = builder.build("What concerns keep coming up?", Intent.MULTI_MEETING, scope)
        assert chain.contracts == [AnswerContract.PATTERN_ANALYSIS]

    def test_sorted_by_phase(self, builder):
        chain = builder.build(
            "Research Acme and tie it back to our product", Intent.EXTERNAL_RESEARCH
        )
        assert chain.contracts == [AnswerContract.PRODUCT_KNOWLEDGE, AnswerContract.EXTERNAL_RESEARCH]
        assert phase_order_violations(chain.contracts) == []

    def test_authoritative_product_chain(self, builder):
        chain = builder.build("Does our product support SSO?", Intent.PRODUCT_KNOWLEDGE)
        assert chain.contracts == [
            AnswerContract.PRODUCT_KNOWLEDGE,
            AnswerContract.FEATURE_VERIFICATION,
            AnswerContract.FAQ_ANSWER,
        ]

    @pytest.mark.parametrize("message,expected", [
        ("Find the pricing thread in slack", AnswerContract.SLACK_MESSAGE_SEARCH),
        ("Which channels discuss Acme?", AnswerContract.SLACK_CHANNEL_INFO),
    ])
    def test_slack_tasks(self, builder, message, expected):
        assert builder.build(message, Intent.SLACK_SEARCH).contracts == [expected]

    def test_build_is_repeatable(self, builder):
        args = ("Summarize the call and list the action items", Intent.SINGLE_MEETING, SINGLE)
        assert builder.build(*args).model_dump_json() == builder.build(*args).model_dump_json()


class TestDefaults:

    def test_single_meeting_default(self, builder):
        chain = builder.build("Tell me about it", Intent.SINGLE_MEETING, SINGLE)
        assert chain.contracts == [AnswerContract.EXTRACTIVE_FACT]
        assert chain.selection_method == SelectionMethod.DEFAULT

    def test_multi_meeting_default_depends_on_filters(self, builder):
        filtered = ChainBuildScope(type=ScopeType.MULTI_MEETING, filters=ScopeFilters(company="acme"))
        assert builder.build("Tell me more", Intent.MULTI_MEETING, filtered).contracts == [
            AnswerContract.AGGREGATIVE_LIST
        ]
        assert builder.build("Tell me more", Intent.MULTI_MEETING, MULTI).contracts == [
            AnswerContract.PATTERN_ANALYSIS
        ]

    @pytest.mark.parametrize("intent,expected", [
        (Intent.PRODUCT_KNOWLEDGE, AnswerContract.PRODUCT_EXPLANATION),
        (Intent.EXTERNAL_RESEARCH, AnswerContract.EXTERNAL_RESEARCH),
        (Intent.GENERAL_HELP, AnswerContract.GENERAL_RESPONSE),
        (Intent.REFUSE, AnswerContract.REFUSE),
        (Intent.CLARIFY, AnswerContract.CLARIFY),
    ])
    def test_intent_defaults(self, builder, intent, expected):
        assert builder.build("Tell me more", intent).contracts == [expected]

    def test_no_plan_for_unmatched_slack_request(self, builder):
        assert builder.plan("Tell me more", Intent.SLACK_SEARCH) is None
        chain = builder.build("Tell me more", Intent.SLACK_SEARCH)
        assert chain.contracts == [AnswerContract.GENERAL_RESPONSE]
        assert chain.selection_method == SelectionMethod.DEFAULT


class TestValidation:

    def test_too_many_tasks_asks_to_split(self, builder):
        rule = contract_chain_validation_failures_total.labels(rule="chain_length")
        before = rule._value.get()

        chain = builder.build(
            "Summarize the call, list the action items, who attended, and what questions they asked",
            Intent.SINGLE_MEETING,
            SINGLE,
        )

        assert chain.contracts == [AnswerContract.CLARIFY]
        assert chain.selection_method == SelectionMethod.VALIDATION_FAILURE
        assert chain.clarify_reason == CHAIN_TOO_LONG_REASON
        assert rule._value.get() == before + 1

    def test_meeting_facts_cannot_mix_with_product_facts(self, builder):
        chain = builder.build(
            "What are the next steps and how does our product fit?", Intent.SINGLE_MEETING, SINGLE
        )
        assert chain.contracts == [AnswerContract.CLARIFY]
        assert chain.clarify_reason == AUTHORITY_MIX_REASON

    def test_invariants(self):
        mixed = [AnswerContract.NEXT_STEPS, AnswerContract.PRODUCT_KNOWLEDGE]
        assert check_chain_invariants(mixed) == ("authority_mix", AUTHORITY_MIX_REASON)
        assert check_chain_invariants(mixed, allow_chainable_authoritative=True) is None

        verified = [AnswerContract.NEXT_STEPS, AnswerContract.FEATURE_VERIFICATION]
        assert check_chain_invariants(verified, allow_chainable_authoritative=True)[0] == "authority_mix"

        descriptive = [AnswerContract.NEXT_STEPS, AnswerContract.DRAFT_EMAIL]
        assert check_chain_invariants(descriptive) is None

        too_long = [AnswerContract.MEETING_SUMMARY] * 4
        assert check_chain_invariants(too_long)[0] == "chain_length"


def test_order_by_phase_is_stable():
    contracts = [
        AnswerContract.DRAFT_EMAIL,
        AnswerContract.NEXT_STEPS,
        AnswerContract.COMPARISON,
        AnswerContract.ATTENDEES,
    ]
    assert order_by_phase(contracts) == [
        AnswerContract.NEXT_STEPS,
        AnswerContract.ATTENDEES,
        AnswerContract.COMPARISON,
        AnswerContract.DRAFT_EMAIL,
    ]


def test_collapse_terminal():
    assert collapse_terminal([AnswerContract.NEXT_STEPS, AnswerContract.CLARIFY]) == [AnswerContract.CLARIFY]
    assert collapse_terminal([AnswerContract.NEXT_STEPS]) == [AnswerContract.NEXT_STEPS]
