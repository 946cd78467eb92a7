from decimal import Decimal

import pytest

from taskledger.errors import NotFound, ValidationRejected
from taskledger.services import ledger, lifecycle
from taskledger.services.conflict_detector import (
    analyze_cancellation,
    detect_amount_conflict,
    detect_prepaid_conflict,
    load_task,
)


def test_prepaid_reduction_below_paid_reports_surplus(make_task, pay):
    task = make_task(amount="1000", prepaid="400")
    p = pay(task.prepaid_receivable, "400")

    report = detect_prepaid_conflict(task, "200")

    assert report is not None
    assert report.surplus == Decimal("200.00")
    overpayment = report.conflicts[0]
    assert overpayment.type == "overpayment"
    assert overpayment.severity == "high"
    assert report.payment_ids == [p.id]
    body = report.to_dict()
    assert body["conflict_type"] == "prepaid_amount_change_conflict"
    assert body["financial_records"]["payments"][0]["amount"] == 400.0
    assert body["resolution_options"]["payments"][p.id]["recommendations"] == ["reduce_to"]


def test_prepaid_reduction_not_below_paid_is_clean(make_task, pay):
    task = make_task(amount="1000", prepaid="400")
    pay(task.prepaid_receivable, "150")

    assert detect_prepaid_conflict(task, "150") is None
    assert detect_prepaid_conflict(task, "300") is None


def test_prepaid_increase_never_conflicts(make_task, pay):
    task = make_task(amount="1000", prepaid="400")
    pay(task.prepaid_receivable, "400")

    assert detect_prepaid_conflict(task, "600") is None


def test_prepaid_to_zero_flags_elimination(make_task, pay):
    task = make_task(amount="1000", prepaid="400")
    pay(task.prepaid_receivable, "100")

    report = detect_prepaid_conflict(task, "0")

    types = {c.type: c for c in report.conflicts}
    assert set(types) == {"overpayment", "prepaid_elimination"}
    assert types["prepaid_elimination"].severity == "medium"
    assert types["prepaid_elimination"].affected_amount == 100.0


def test_prepaid_above_task_amount_is_rejected(make_task):
    task = make_task(amount="1000", prepaid="400")

    with pytest.raises(ValidationRejected) as exc:
        detect_prepaid_conflict(task, "1200")

    assert exc.value.code == "negative_main_receivable"
    assert exc.value.data["calculated_main_amount"] == -200.0


def test_higher_prepaid_that_squeezes_settled_main_receivable(make_task, pay, admin):
    task = make_task(amount="1000", prepaid="0")
    lifecycle.complete(task, actor=admin)
    pay(task.main_receivable, "900")

    report = detect_prepaid_conflict(task, "300")

    assert [c.type for c in report.conflicts] == ["main_receivable_overpayment"]
    assert report.conflicts[0].surplus == 200.0
    assert report.main_receivable["calculated_new_amount"] == 700.0


def test_amount_conflict_against_main_receivable(make_task, pay, admin):
    task = make_task(amount="1000")
    lifecycle.complete(task, actor=admin)
    pay(task.main_receivable, "1000")

    report = detect_amount_conflict(task, "600")

    assert report.surplus == Decimal("400.00")
    assert report.calculated_new_main_amount == Decimal("600.00")
    assert report.to_dict()["conflict_type"] == "main_receivable_overpayment"


def test_amount_conflict_counts_allocations(make_task, pay, deposit, admin):
    task = make_task(amount="1000")
    lifecycle.complete(task, actor=admin)
    pay(task.main_receivable, "500")
    deposit("300")
    ledger.apply_credit(task.main_receivable, "300", actor=admin)

    assert detect_amount_conflict(task, "800") is None
    report = detect_amount_conflict(task, "700")
    assert report.surplus == Decimal("100.00")
    assert len(report.allocations) == 1


def test_amount_increase_or_missing_main_receivable_never_conflicts(make_task, pay, admin):
    task = make_task(amount="1000")
    assert detect_amount_conflict(task, "10") is None  # nothing billed yet

    lifecycle.complete(task, actor=admin)
    pay(task.main_receivable, "1000")
    assert detect_amount_conflict(task, "1500") is None


def test_amount_below_prepaid_is_rejected(make_task):
    task = make_task(amount="1000", prepaid="400")
    with pytest.raises(ValidationRejected):
        detect_amount_conflict(task, "300")


def test_cancellation_analysis_covers_both_receivables(make_task, pay, admin):
    task = make_task(amount="1000", prepaid="400")
    pay(task.prepaid_receivable, "400")
    lifecycle.complete(task, actor=admin)
    pay(task.main_receivable, "250")

    analysis = analyze_cancellation(task)

    assert analysis.has_financial_records
    assert analysis.total_funds_involved == 650.0
    body = analysis.to_dict()
    assert body["prepaid_receivable"]["total_paid"] == 400.0
    assert body["main_receivable"]["total_paid"] == 250.0
    assert "reduce_to" not in body["available_payment_actions"]


def test_missing_task_is_not_found(app):
    with pytest.raises(NotFound):
        load_task(12345)
    with pytest.raises(NotFound):
        detect_prepaid_conflict(None, "10")
