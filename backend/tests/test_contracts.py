"""
Unit tests for the answer contract registry.

Tests verify:
- Every contract variant has exactly one constraint row
- Terminal contracts behave as themselves on empty results
- Authority and phase assignments the chain builder relies on
- Parsing of untrusted contract names
"""
import pytest

from sales_assistant.services.decision.contracts import (
    CONTRACT_CONSTRAINTS,
    INTENT_CONTRACTS,
    TERMINAL_CONTRACTS,
    ContractRegistryError,
    _CONSTRAINT_ROWS,
    get_constraints,
    is_terminal,
    parse_contract,
    phase_rank,
    requires_product_ssot,
    selectable_contracts,
    validate_registry,
)
from sales_assistant.services.decision.schema import (
    AnswerContract,
    EmptyResultBehavior,
    Intent,
    Phase,
    SsotMode,
)


class TestRegistryCompleteness:

    def test_every_contract_has_constraints(self):
        assert set(CONTRACT_CONSTRAINTS) == set(AnswerContract)
        assert len(AnswerContract) == 25

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            CONTRACT_CONSTRAINTS[AnswerContract.REFUSE] = None

    def test_missing_row_is_rejected(self):
        rows = [row for row in _CONSTRAINT_ROWS if row[0] != AnswerContract.ATTENDEES]
        with pytest.raises(ContractRegistryError, match="ATTENDEES"):
            validate_registry(rows)

    def test_duplicate_row_is_rejected(self):
        rows = list(_CONSTRAINT_ROWS) + [_CONSTRAINT_ROWS[0]]
        with pytest.raises(ContractRegistryError, match="duplicates"):
            validate_registry(rows)

    def test_terminal_rows_must_behave_as_themselves(self):
        clarify_row = dict(_CONSTRAINT_ROWS)[AnswerContract.CLARIFY]
        rows = [
            (contract, clarify_row if contract == AnswerContract.REFUSE else constraints)
            for contract, constraints in _CONSTRAINT_ROWS
        ]
        with pytest.raises(ContractRegistryError, match="REFUSE"):
            validate_registry(rows)

    def test_every_intent_lists_contracts(self):
        for intent in Intent:
            assert INTENT_CONTRACTS[intent], intent


class TestConstraintValues:

    def test_terminal_contracts(self):
        assert TERMINAL_CONTRACTS == {AnswerContract.REFUSE, AnswerContract.CLARIFY}
        assert get_constraints(AnswerContract.REFUSE).empty_result_behavior == EmptyResultBehavior.REFUSE
        assert get_constraints(AnswerContract.CLARIFY).empty_result_behavior == EmptyResultBehavior.CLARIFY
        assert is_terminal(AnswerContract.CLARIFY)
        assert not is_terminal(AnswerContract.NEXT_STEPS)

    def test_authoritative_contracts(self):
        authoritative = {
            c for c, row in CONTRACT_CONSTRAINTS.items() if row.ssot_mode == SsotMode.AUTHORITATIVE
        }
        assert authoritative == {
            AnswerContract.PRODUCT_KNOWLEDGE,
            AnswerContract.FEATURE_VERIFICATION,
            AnswerContract.FAQ_ANSWER,
        }
        assert all(requires_product_ssot(c) for c in authoritative)
        assert not requires_product_ssot(AnswerContract.PRODUCT_EXPLANATION)

    def test_product_knowledge_is_evidence_free_extraction(self):
        row = get_constraints(AnswerContract.PRODUCT_KNOWLEDGE)
        assert row.requires_evidence is False
        assert row.phase == Phase.EXTRACTION

    def test_phase_ranks(self):
        assert phase_rank(AnswerContract.NEXT_STEPS) == 1
        assert phase_rank(AnswerContract.COMPARISON) == 2
        assert phase_rank(AnswerContract.DRAFT_EMAIL) == 3

    def test_evidence_thresholds(self):
        assert get_constraints(AnswerContract.TREND_SUMMARY).min_evidence_threshold == 3
        assert get_constraints(AnswerContract.PATTERN_ANALYSIS).min_evidence_threshold == 2
        assert get_constraints(AnswerContract.MEETING_SUMMARY).min_evidence_threshold is None


class TestParseContract:

    @pytest.mark.parametrize("name,expected", [
        ("NEXT_STEPS", AnswerContract.NEXT_STEPS),
        (" next_steps ", AnswerContract.NEXT_STEPS),
        (AnswerContract.COMPARISON, AnswerContract.COMPARISON),
        ("MAKE_COFFEE", None),
        ("", None),
        (None, None),
        (42, None),
    ])
    def test_parse(self, name, expected):
        assert parse_contract(name) == expected


def test_selectable_contracts_are_scoped_to_intent():
    assert selectable_contracts(Intent.SLACK_SEARCH) == (
        AnswerContract.SLACK_MESSAGE_SEARCH,
        AnswerContract.SLACK_CHANNEL_INFO,
    )
    assert AnswerContract.FEATURE_VERIFICATION in selectable_contracts(Intent.PRODUCT_KNOWLEDGE)
    assert selectable_contracts(Intent.REFUSE) == (AnswerContract.GENERAL_RESPONSE,)
