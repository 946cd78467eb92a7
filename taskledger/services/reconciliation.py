# taskledger/services/reconciliation.py
"""Apply operator decisions to a conflicted receivable in one transaction.

Each entry point either commits every ledger write it made or rolls all of
them back. After the decisions are applied the touched receivables and credits
are checked again; a result that still over-settles a receivable is refused.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..decisions import (
    CancellationDecisions,
    ConvertToCredit,
    Delete,
    DeleteAllocation,
    DecisionSet,
    Keep,
    KeepAllocation,
    PrepaidResolution,
    ReceivableDecision,
    ReduceTo,
    ReturnToCredit,
    TaskAction,
)
from ..errors import InvalidDecision, InvalidTransition, LedgerError, ReconciliationAborted, ValidationRejected
from ..extensions import db
from ..models.credit import SOURCE_PAYMENT_CONVERSION, SOURCE_SURPLUS_CONVERSION
from ..models.task import STATUS_CANCELLED
from ..utils import ZERO, as_float, money
from . import ledger

log = logging.getLogger(__name__)


@dataclass
class ResolutionSummary:
    task: object
    payments_processed: list[dict] = field(default_factory=list)
    allocations_processed: list[dict] = field(default_factory=list)
    credits_created: list[dict] = field(default_factory=list)
    voided: object = ZERO
    converted_to_credit: object = ZERO
    returned_to_credit: object = ZERO
    task_action: str | None = None
    balances: dict = field(default_factory=dict)

    @property
    def financial_impact(self) -> dict:
        return {
            "voided": as_float(self.voided),
            "converted_to_credit": as_float(self.converted_to_credit),
            "returned_to_credit": as_float(self.returned_to_credit),
            "credits_created": len(self.credits_created),
        }

    def to_dict(self, task_serializer=None) -> dict:
        task = self.task
        if task is not None and task_serializer is not None:
            task = task_serializer(task)
        return {
            "task": task,
            "task_action": self.task_action,
            "payments_processed": self.payments_processed,
            "allocations_processed": self.allocations_processed,
            "credits_created": self.credits_created,
            "financial_impact": self.financial_impact,
            "balances": self.balances,
        }


@contextmanager
def atomic(what: str, task_id=None):
    """Commit on success; roll back and re-raise as a ledger error otherwise."""
    try:
        yield
        db.session.commit()
    except LedgerError as e:
        db.session.rollback()
        log.warning("%s aborted: task=%s code=%s message=%s", what, task_id, e.code, e.message)
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        log.exception("%s failed on the database: task=%s", what, task_id)
        raise ReconciliationAborted(f"{what} failed while writing the ledger") from e


# ---- decision application ----

def _check_targets(receivable, decisions: DecisionSet):
    """Every decision must name a record that is still on this receivable."""
    payment_ids = {p.id for p in receivable.payments}
    allocation_ids = {a.id for a in receivable.allocations}
    for pid in decisions.payments:
        if pid not in payment_ids:
            raise ReconciliationAborted(
                f"Payment {pid} is no longer on receivable {receivable.id}",
                record={"type": "payment", "id": pid, "receivable_id": receivable.id},
            )
    for aid in decisions.allocations:
        if aid not in allocation_ids:
            raise ReconciliationAborted(
                f"Allocation {aid} is no longer on receivable {receivable.id}",
                record={"type": "allocation", "id": aid, "receivable_id": receivable.id},
            )
    decisions.require_complete(payment_ids, allocation_ids)


def _apply_payment(payment, decision, ceiling, summary: ResolutionSummary, actor, credits_touched: set):
    original = money(payment.amount)
    receivable = payment.receivable
    entry = {"payment_id": payment.id, "action": decision.action, "original_amount": as_float(original)}

    if isinstance(decision, Keep):
        entry["new_amount"] = as_float(original)

    elif isinstance(decision, Delete):
        ledger.remove_payment(payment)
        summary.voided += original
        entry["new_amount"] = 0.0

    elif isinstance(decision, ConvertToCredit):
        pid = payment.id
        ledger.remove_payment(payment)
        credit = ledger.record_credit(
            receivable.client, original,
            description=f"Converted from payment #{pid}",
            actor=actor,
            source=SOURCE_PAYMENT_CONVERSION,
            source_payment_id=pid,
        )
        credits_touched.add(credit)
        summary.converted_to_credit += original
        summary.credits_created.append({"credit_id": credit.id, "amount": as_float(original), "source_payment_id": pid})
        entry["new_amount"] = 0.0
        entry["credit_id"] = credit.id

    elif isinstance(decision, ReduceTo):
        new_amount = money(decision.new_amount)
        if new_amount > original:
            raise InvalidDecision(
                "reduce_to cannot raise a payment",
                data={"payment_id": payment.id, "original_amount": as_float(original),
                      "new_amount": as_float(new_amount)},
            )
        if new_amount > ceiling:
            raise InvalidDecision(
                "reduce_to cannot exceed the new receivable amount",
                data={"payment_id": payment.id, "ceiling": as_float(ceiling),
                      "new_amount": as_float(new_amount)},
            )
        cut = original - new_amount
        payment.amount = new_amount
        if cut > 0 and decision.surplus_to_credit:
            credit = ledger.record_credit(
                receivable.client, cut,
                description=f"Surplus from payment #{payment.id}",
                actor=actor,
                source=SOURCE_SURPLUS_CONVERSION,
                source_payment_id=payment.id,
            )
            credits_touched.add(credit)
            summary.converted_to_credit += cut
            summary.credits_created.append({"credit_id": credit.id, "amount": as_float(cut),
                                            "source_payment_id": payment.id})
            entry["credit_id"] = credit.id
        else:
            summary.voided += cut
        entry["new_amount"] = as_float(new_amount)

    else:
        raise InvalidDecision(f"Unsupported payment decision {decision!r}")

    summary.payments_processed.append(entry)


def _apply_allocation(allocation, decision, summary: ResolutionSummary, credits_touched: set):
    amount = money(allocation.amount)
    credit = allocation.credit
    entry = {"allocation_id": allocation.id, "action": decision.action,
             "amount": as_float(amount), "credit_id": allocation.credit_id}

    if isinstance(decision, KeepAllocation):
        pass
    elif isinstance(decision, ReturnToCredit):
        ledger.remove_allocation(allocation)
        summary.returned_to_credit += amount
    elif isinstance(decision, DeleteAllocation):
        # the money leaves the pool with the allocation
        credit.amount = money(credit.amount) - amount
        ledger.remove_allocation(allocation)
        summary.voided += amount
    else:
        raise InvalidDecision(f"Unsupported allocation decision {decision!r}")

    credits_touched.add(credit)
    summary.allocations_processed.append(entry)


def apply_decisions(receivable, decisions: DecisionSet, ceiling, summary: ResolutionSummary,
                    actor=None, credits_touched: set | None = None):
    """Apply one decision per record on ``receivable``; ``ceiling`` bounds reduce_to."""
    credits_touched = credits_touched if credits_touched is not None else set()
    _check_targets(receivable, decisions)
    ceiling = max(money(ceiling), ZERO)

    payments = {p.id: p for p in receivable.payments}
    allocations = {a.id: a for a in receivable.allocations}
    for pid, decision in sorted(decisions.payments.items()):
        _apply_payment(payments[pid], decision, ceiling, summary, actor, credits_touched)
    for aid, decision in sorted(decisions.allocations.items()):
        _apply_allocation(allocations[aid], decision, summary, credits_touched)
    db.session.flush()
    return credits_touched


def _require_fits(receivable, amount):
    amount = money(amount)
    settled = receivable.total_settled
    if settled > amount:
        raise InvalidDecision(
            "Decisions leave the receivable over-settled",
            data={"receivable_id": receivable.id, "amount": as_float(amount),
                  "total_settled": as_float(settled), "excess": as_float(settled - amount)},
        )


def verify_invariants(receivables, credits):
    for r in receivables:
        if r is None:
            continue
        if r.total_settled > money(r.amount):
            raise ReconciliationAborted(
                f"Receivable {r.id} is over-settled after reconciliation",
                record={"type": "receivable", "id": r.id},
            )
    for c in credits:
        if c.allocated_amount > money(c.amount) or money(c.amount) < 0:
            raise ReconciliationAborted(
                f"Credit {c.id} is over-allocated after reconciliation",
                record={"type": "credit", "id": c.id},
            )


def _require_editable(task):
    if task.status == STATUS_CANCELLED:
        raise ValidationRejected("Cancelled tasks cannot be edited", code="task_cancelled")


def _balances(task) -> dict:
    out = {}
    for r in (task.prepaid_receivable, task.main_receivable):
        if r is not None:
            out[r.kind] = {"receivable_id": r.id, "amount": as_float(r.amount),
                           "total_paid": as_float(r.total_settled), "balance": as_float(r.remaining)}
    out["client_credit"] = as_float(ledger.client_credit_balance(task.client))
    return out


# ---- entry points ----

def resolve_prepaid_change(task, new_prepaid_amount, resolution: PrepaidResolution, actor=None) -> ResolutionSummary:
    summary = ResolutionSummary(task=task)
    with atomic("Prepaid change", task.id):
        _require_editable(task)
        new_prepaid = money(new_prepaid_amount)
        amount = money(task.amount)
        if new_prepaid < 0 or new_prepaid > amount:
            raise ValidationRejected(
                "Prepaid amount must be between 0 and the task amount",
                data={"task_amount": as_float(amount), "new_prepaid_amount": as_float(new_prepaid)},
                code="negative_main_receivable" if new_prepaid > amount else "invalid_amount",
            )

        pr = task.prepaid_receivable
        touched = set()
        decision = resolution.receivable_decision
        if pr is not None and pr.has_financial_records:
            if decision is None:
                raise InvalidDecision("receivable_decision is required while the prepaid receivable holds records")
            if decision == ReceivableDecision.ELIMINATE_PREPAID:
                if new_prepaid != 0:
                    raise InvalidDecision(
                        "eliminate_prepaid needs a new prepaid amount of 0",
                        data={"new_prepaid_amount": as_float(new_prepaid)},
                    )
                kept = [d.payment_id for d in resolution.prepaid.payments.values() if isinstance(d, Keep)]
                kept += [d.allocation_id for d in resolution.prepaid.allocations.values()
                         if isinstance(d, KeepAllocation)]
                if kept:
                    raise InvalidDecision("Records cannot be kept on an eliminated receivable",
                                          data={"kept_ids": sorted(kept)})
            touched |= apply_decisions(pr, resolution.prepaid, new_prepaid, summary, actor)
            _require_fits(pr, new_prepaid)
        elif not resolution.prepaid.is_empty():
            raise ReconciliationAborted(
                "Decisions were sent for a prepaid receivable with no records",
                record={"type": "receivable", "id": pr.id if pr else None},
            )

        task.prepaid_amount = new_prepaid
        new_main = task.main_amount
        mr = task.main_receivable
        if mr is not None and mr.total_settled > new_main:
            touched |= apply_decisions(mr, resolution.main, new_main, summary, actor)
            _require_fits(mr, new_main)
        elif not resolution.main.is_empty():
            raise ReconciliationAborted(
                "Main receivable decisions were sent but the main receivable is not in conflict",
                record={"type": "receivable", "id": mr.id if mr else None},
            )

        if decision == ReceivableDecision.ELIMINATE_PREPAID and pr is not None:
            ledger.remove_receivable(pr)
        ledger.sync_receivables(task, actor, reason=f"Prepaid changed to {as_float(new_prepaid)}")
        verify_invariants(task.receivables, touched)
        task.touch()

    summary.balances = _balances(task)
    log.info("Prepaid change resolved: task=%s new_prepaid=%s payments=%s allocations=%s impact=%s",
             task.id, new_prepaid, len(summary.payments_processed),
             len(summary.allocations_processed), summary.financial_impact)
    return summary


def resolve_amount_change(task, new_task_amount, decisions: DecisionSet, actor=None) -> ResolutionSummary:
    summary = ResolutionSummary(task=task)
    with atomic("Amount change", task.id):
        _require_editable(task)
        new_amount = money(new_task_amount)
        prepaid = money(task.prepaid_amount)
        if new_amount < prepaid:
            raise ValidationRejected(
                "Task amount cannot be lower than the prepaid amount",
                data={"new_task_amount": as_float(new_amount), "prepaid_amount": as_float(prepaid)},
                code="negative_main_receivable",
            )

        mr = task.main_receivable
        new_main = new_amount - prepaid
        touched = set()
        if mr is not None and mr.has_financial_records:
            touched = apply_decisions(mr, decisions, new_main, summary, actor)
            _require_fits(mr, new_main)
        elif not decisions.is_empty():
            raise ReconciliationAborted(
                "Decisions were sent for a main receivable with no records",
                record={"type": "receivable", "id": mr.id if mr else None},
            )

        task.amount = new_amount
        ledger.sync_receivables(task, actor, reason=f"Task amount changed to {as_float(new_amount)}")
        verify_invariants(task.receivables, touched)
        task.touch()

    summary.balances = _balances(task)
    log.info("Amount change resolved: task=%s new_amount=%s payments=%s allocations=%s impact=%s",
             task.id, new_amount, len(summary.payments_processed),
             len(summary.allocations_processed), summary.financial_impact)
    return summary


def _void_pending_commissions(task):
    for c in task.commissions:
        if c.status == "pending":
            c.status = "void"
            c.voided_at = datetime.utcnow()


def execute_cancellation(task, decisions: CancellationDecisions, actor=None) -> ResolutionSummary:
    """Cancel (soft) or delete (hard) a task after settling its receivables."""
    summary = ResolutionSummary(task=task, task_action=decisions.task_action.value)
    task_id = task.id
    hard_delete = decisions.task_action == TaskAction.DELETE

    with atomic("Cancellation", task_id):
        if not task.is_active and not (hard_delete and task.status == STATUS_CANCELLED):
            raise InvalidTransition(task.status, STATUS_CANCELLED)

        touched = set()
        pairs = ((task.prepaid_receivable, decisions.prepaid), (task.main_receivable, decisions.main))
        for receivable, decision_set in pairs:
            if receivable is None:
                if not decision_set.is_empty():
                    raise ReconciliationAborted("Decisions were sent for a receivable that does not exist",
                                                record={"type": "receivable", "id": None})
                continue
            touched |= apply_decisions(receivable, decision_set, receivable.amount, summary, actor)

        kept = []
        for receivable in list(task.receivables):
            if not receivable.has_financial_records:
                ledger.remove_receivable(receivable)
                continue
            kept.append(receivable)
            # kept records now define what is owed
            receivable.resize(receivable.total_settled, reason="Task cancelled")
            if hard_delete:
                task.receivables.remove(receivable)
                receivable.task_id = None

        verify_invariants(kept, touched)
        _void_pending_commissions(task)

        if hard_delete:
            db.session.delete(task)
            summary.task = None
        else:
            task.status = STATUS_CANCELLED
            task.touch()

    if not hard_delete:
        summary.balances = _balances(task)
    log.info("Task %s: task=%s payments=%s allocations=%s impact=%s",
             "deleted" if hard_delete else "cancelled", task_id,
             len(summary.payments_processed), len(summary.allocations_processed),
             summary.financial_impact)
    return summary
