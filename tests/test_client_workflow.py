from decimal import Decimal

import pytest

from taskledger.client import SpeculativeCache, TaskWorkflow
from taskledger.client.dialogs import (
    AmountConflictDialog,
    CancellationDialog,
    ConcurrentModificationDialog,
    ConfirmDestructiveDialog,
    PrepaidConflictDialog,
    RestoreValidationDialog,
)
from taskledger.decisions import ConvertToCredit, ReduceTo, TaskAction
from taskledger.errors import InvalidTransition, PartialDecisionMissing, ValidationRejected
from taskledger.extensions import db
from taskledger.models import Task
from taskledger.services import ledger, lifecycle


class FakeController:
    """Records every dialog; fills decision dialogs with ``fill``."""

    def __init__(self, fill=None, confirm=True):
        self.fill = fill
        self.answer = confirm
        self.opened = []
        self.closed = []
        self.confirmed = []
        self.toasts = []

    def open(self, dialog):
        self.opened.append(dialog)
        collector = getattr(dialog, "collector", None)
        if collector is None or self.fill is None:
            return None
        self.fill(collector)
        return collector

    def close(self, dialog):
        self.closed.append(dialog)

    def confirm(self, dialog):
        self.confirmed.append(dialog)
        return self.answer

    def toast(self, level, title, detail=None):
        self.toasts.append((level, title))


def _sent(api, method, suffix):
    return [c for c in api.session.calls if c[0] == method and c[1].endswith(suffix)]


def test_plain_edit_is_saved(api, make_task):
    task = api.get_task(make_task().id)
    ui = FakeController()
    workflow = TaskWorkflow(api, ui)

    updated = workflow.update_task(task, {"notes": "call the client"})

    assert updated["notes"] == "call the client"
    assert workflow.cache.get(("task", task["id"]))["notes"] == "call the client"
    assert ui.toasts == [("success", "Task saved")]


def test_prepaid_conflict_goes_through_dialog(api, make_task, pay):
    t = make_task(amount="1000", prepaid="400")
    pid = pay(t.prepaid_receivable, "400").id
    task = api.get_task(t.id)

    def fill(collector):
        collector.decide_payment(ReduceTo(pid, Decimal("200"))).set_receivable_decision("adjust_to_new_amount")

    ui = FakeController(fill=fill)
    result = TaskWorkflow(api, ui).update_task(task, {"prepaid_amount": 200})

    (dialog,) = ui.opened
    assert isinstance(dialog, PrepaidConflictDialog)
    assert dialog.report["surplus"] == 200.0
    assert ui.closed == [dialog]
    assert result["task"]["prepaid_amount"] == 200.0
    assert ui.toasts[-1] == ("success", "Prepaid change applied")


def test_amount_conflict_goes_through_dialog(api, make_task, pay, admin, acme):
    t = make_task(amount="1000")
    lifecycle.complete(t, actor=admin)
    pid = pay(t.main_receivable, "1000").id
    task = api.get_task(t.id)

    ui = FakeController(fill=lambda c: c.decide_payment(ConvertToCredit(pid)))
    result = TaskWorkflow(api, ui).update_task(task, {"amount": 600})

    assert isinstance(ui.opened[0], AmountConflictDialog)
    assert result["task"]["main_receivable"]["amount"] == 600.0
    db.session.expire_all()
    assert ledger.client_credit_balance(acme) == Decimal("1000.00")


def test_backing_out_of_the_dialog_sends_nothing(api, make_task, pay):
    t = make_task(amount="1000", prepaid="400")
    pay(t.prepaid_receivable, "400")
    task = api.get_task(t.id)

    assert TaskWorkflow(api, FakeController()).update_task(task, {"prepaid_amount": 0}) is None
    assert _sent(api, "POST", "/resolve-prepaid-change") == []


def test_incomplete_decisions_never_reach_the_server(api, make_task, pay):
    t = make_task(amount="1000", prepaid="400")
    pay(t.prepaid_receivable, "300")
    pay(t.prepaid_receivable, "100")
    task = api.get_task(t.id)

    ui = FakeController(fill=lambda c: c.set_receivable_decision("eliminate_prepaid"))
    with pytest.raises(PartialDecisionMissing):
        TaskWorkflow(api, ui).update_task(task, {"prepaid_amount": 0})

    assert ui.toasts == [("warning", "Decisions incomplete")]
    assert _sent(api, "POST", "/resolve-prepaid-change") == []


def test_stale_edit_reloads_instead_of_retrying(api, make_task):
    t = make_task()
    task = api.get_task(t.id)
    stale = {**task, "updated_at": "2001-01-01T00:00:00"}
    ui = FakeController()

    fresh = TaskWorkflow(api, ui).update_task(stale, {"notes": "mine"})

    assert fresh["updated_at"] == task["updated_at"]
    (dialog,) = ui.opened
    assert isinstance(dialog, ConcurrentModificationDialog)
    assert dialog.expected_updated_at == "2001-01-01T00:00:00"
    assert ui.toasts == [("warning", "Task was changed by someone else")]
    assert len(_sent(api, "PUT", f"/tasks/{t.id}")) == 1


def test_status_change_is_speculative(api, make_task, admin):
    t = make_task()
    task = api.get_task(t.id)
    cache = SpeculativeCache()
    workflow = TaskWorkflow(api, FakeController(), cache)

    workflow.set_status(task, "Deferred")
    assert cache.get(("task", t.id))["status"] == "Deferred"

    done = make_task()
    lifecycle.complete(done, actor=admin)
    done_dict = api.get_task(done.id)
    ui = FakeController()
    workflow = TaskWorkflow(api, ui, cache)

    with pytest.raises(InvalidTransition):
        workflow.set_status(done_dict, "Deferred")

    assert cache.get(("task", done.id)) == done_dict
    assert cache.pending == []
    assert ui.toasts[0][0] == "error"


def test_delete_with_money_turns_into_cancellation(api, make_task, pay, acme):
    t = make_task(amount="1000", prepaid="400")
    pid = pay(t.prepaid_receivable, "400").id
    task_id = t.id
    task = api.get_task(task_id)

    ui = FakeController(fill=lambda c: c.decide_payment(ConvertToCredit(pid)))
    result = TaskWorkflow(api, ui).delete_task(task)

    (dialog,) = ui.opened
    assert isinstance(dialog, CancellationDialog)
    assert dialog.collector.task_action is TaskAction.DELETE
    assert all(isinstance(d, ConfirmDestructiveDialog) for d in ui.confirmed)
    assert result["task"] is None
    db.session.expire_all()
    assert Task.query.get(task_id) is None
    assert ledger.client_credit_balance(acme) == Decimal("400.00")


def test_declined_delete_sends_nothing(api, make_task):
    task = api.get_task(make_task().id)

    assert TaskWorkflow(api, FakeController(confirm=False)).delete_task(task) is None
    assert _sent(api, "DELETE", f"/tasks/{task['id']}") == []


def test_blocked_restore_only_explains(api, make_task):
    task = api.get_task(make_task().id)
    ui = FakeController()

    assert TaskWorkflow(api, ui).restore_task(task) is None

    (dialog,) = ui.opened
    assert isinstance(dialog, RestoreValidationDialog)
    assert not dialog.allowed
    assert ui.toasts[0][0] == "warning"
    assert _sent(api, "POST", "/restore") == []


def test_restore_after_confirmation(api, make_task, pay, admin):
    t = make_task(amount="500")
    lifecycle.complete(t, actor=admin)
    pay(t.main_receivable, "100")
    task = api.get_task(t.id)
    ui = FakeController()

    restored = TaskWorkflow(api, ui).restore_task(task)

    (dialog,) = ui.confirmed
    assert dialog.has_paid_invoices
    assert restored["status"] == "New"
    assert ui.toasts == [("success", "Task restored")]


def test_combined_amount_and_prepaid_edit_is_refused(api, make_task, pay, admin):
    t = make_task(amount="1000")
    lifecycle.complete(t, actor=admin)
    pay(t.main_receivable, "1000")
    task = api.get_task(t.id)
    ui = FakeController(fill=lambda c: None)

    with pytest.raises(ValidationRejected) as exc:
        TaskWorkflow(api, ui).update_task(task, {"amount": 600, "prepaid_amount": 100})

    assert exc.value.code == "combined_amount_change_conflict"
    assert ui.opened == []
    assert ui.toasts == [("error", "Could not save task")]
    assert _sent(api, "POST", "/resolve-prepaid-change") == []
    fresh = api.get_task(t.id)
    assert fresh["amount"] == 1000.0
    assert fresh["prepaid_amount"] == 0.0
