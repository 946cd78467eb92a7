from decimal import Decimal

import pytest

from taskledger.decisions import (
    CancellationDecisions,
    ConvertToCredit,
    DecisionSet,
    Delete,
    Keep,
    KeepAllocation,
    PrepaidResolution,
    ReceivableDecision,
    ReduceTo,
    ReturnToCredit,
    TaskAction,
    parse_cancellation,
    parse_decision_set,
    parse_prepaid_resolution,
)
from taskledger.errors import InvalidDecision, PartialDecisionMissing


def test_parse_decision_set_builds_typed_variants():
    ds = parse_decision_set({
        "payment_decisions": [
            {"payment_id": 1, "action": "keep"},
            {"payment_id": "2", "action": "reduce_to", "new_amount": "150.005", "surplus_action": "convert_to_credit"},
            {"payment_id": 3, "action": "convert_to_credit"},
        ],
        "allocation_decisions": [{"allocation_id": 9, "action": "return_to_credit"}],
    })

    assert ds.payments[1] == Keep(1)
    assert ds.payments[2] == ReduceTo(2, Decimal("150.01"), surplus_to_credit=True)
    assert ds.payments[3] == ConvertToCredit(3)
    assert ds.allocations[9] == ReturnToCredit(9)


@pytest.mark.parametrize("item", [
    {"payment_id": 1, "action": "shred"},
    {"payment_id": 1, "action": "reduce_to"},
    {"payment_id": 1, "action": "reduce_to", "new_amount": "0"},
    {"payment_id": 1, "action": "reduce_to", "new_amount": "abc"},
    {"payment_id": 1, "action": "reduce_to", "new_amount": "NaN"},
    {"payment_id": 1, "action": "reduce_to", "new_amount": "Infinity"},
    {"action": "keep"},
])
def test_bad_payment_decisions_are_rejected(item):
    with pytest.raises(InvalidDecision):
        parse_decision_set({"payment_decisions": [item]})


def test_allocations_cannot_be_reduced():
    with pytest.raises(InvalidDecision):
        parse_decision_set({"allocation_decisions": [{"allocation_id": 4, "action": "reduce_to", "new_amount": 5}]})


def test_duplicate_decisions_are_rejected():
    with pytest.raises(InvalidDecision):
        parse_decision_set({"payment_decisions": [
            {"payment_id": 1, "action": "keep"},
            {"payment_id": 1, "action": "delete"},
        ]})


def test_cancellation_does_not_allow_reduce_to():
    with pytest.raises(InvalidDecision):
        parse_cancellation({
            "task_action": "cancel",
            "main_receivable_decisions": {
                "payment_decisions": [{"payment_id": 1, "action": "reduce_to", "new_amount": 10}],
            },
        })


def test_cancellation_requires_known_task_action():
    with pytest.raises(InvalidDecision):
        parse_cancellation({"task_action": "archive"})

    parsed = parse_cancellation({"task_action": "delete"})
    assert parsed.task_action is TaskAction.DELETE
    assert parsed.prepaid.is_empty() and parsed.main.is_empty()


def test_require_complete_lists_every_undecided_record():
    ds = DecisionSet({1: Keep(1)}, {})

    with pytest.raises(PartialDecisionMissing) as exc:
        ds.require_complete([3, 1, 2], [7])

    assert exc.value.payment_ids == [2, 3]
    assert exc.value.allocation_ids == [7]
    assert exc.value.code == "decisions_incomplete"


def test_prepaid_resolution_payload_round_trip():
    resolution = PrepaidResolution(
        receivable_decision=ReceivableDecision.ADJUST_TO_NEW_AMOUNT,
        prepaid=DecisionSet({5: ReduceTo(5, Decimal("200"))}, {6: KeepAllocation(6)}),
        main=DecisionSet({8: Delete(8)}),
    )
    payload = resolution.to_payload()

    assert payload["receivable_decision"] == "adjust_to_new_amount"
    assert payload["payment_decisions"] == [{"payment_id": 5, "action": "reduce_to", "new_amount": 200.0}]
    assert payload["main_receivable_decisions"]["payment_decisions"] == [{"payment_id": 8, "action": "delete"}]
    assert parse_prepaid_resolution(payload) == resolution


def test_cancellation_payload_omits_empty_receivables():
    payload = CancellationDecisions(TaskAction.CANCEL, main=DecisionSet({1: Keep(1)})).to_payload()

    assert payload == {
        "task_action": "cancel",
        "main_receivable_decisions": {
            "payment_decisions": [{"payment_id": 1, "action": "keep"}],
            "allocation_decisions": [],
        },
    }
