# taskledger/services/ledger.py
"""Receivable, payment and client-credit primitives.

Nothing in here commits: callers own the transaction so the primitives can be
composed into a single reconciliation.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..extensions import db
from ..errors import ValidationRejected
from ..models.credit import ClientCredit, CreditAllocation, SOURCE_DEPOSIT
from ..models.payment import Payment
from ..models.receivable import Receivable, KIND_MAIN, KIND_PREPAID
from ..utils import money, ZERO, as_float, iso

log = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "bank_transfer", "card", "cheque", "other")


def record_payment(receivable: Receivable, amount, *, method: str = "cash",
                   paid_at: datetime | None = None, note: str | None = None, actor=None) -> Payment:
    amount = money(amount)
    if amount <= 0:
        raise ValidationRejected("Payment amount must be positive", code="invalid_amount")
    if method not in PAYMENT_METHODS:
        raise ValidationRejected(f"Unknown payment method {method!r}", code="invalid_method")
    if amount > receivable.remaining:
        raise ValidationRejected(
            "Payment exceeds the receivable's remaining balance",
            data={"receivable_id": receivable.id, "remaining": as_float(receivable.remaining),
                  "amount": as_float(amount)},
            code="overpayment",
        )

    p = Payment(
        amount=amount,
        method=method,
        paid_at=paid_at or datetime.utcnow(),
        note=note,
        created_by=getattr(actor, "id", None),
    )
    receivable.payments.append(p)
    db.session.flush()
    log.info("Payment recorded: payment=%s receivable=%s amount=%s", p.id, receivable.id, amount)
    return p


def record_credit(client, amount, *, description: str | None = None, actor=None,
                  source: str = SOURCE_DEPOSIT, source_payment_id: int | None = None,
                  received_at: datetime | None = None) -> ClientCredit:
    amount = money(amount)
    if amount <= 0:
        raise ValidationRejected("Credit amount must be positive", code="invalid_amount")
    credit = ClientCredit(
        amount=amount,
        description=description,
        source=source,
        source_payment_id=source_payment_id,
        received_at=received_at or datetime.utcnow(),
        created_by=getattr(actor, "id", None),
    )
    client.credits.append(credit)
    db.session.flush()
    log.info("Credit recorded: credit=%s client=%s amount=%s source=%s",
             credit.id, client.id, amount, source)
    return credit


def client_credit_balance(client):
    return sum((c.remaining_amount for c in client.credits), ZERO)


def apply_credit(receivable: Receivable, amount=None, *, actor=None,
                 description: str | None = None) -> list[CreditAllocation]:
    """Allocate the client's available credit to a receivable, oldest credit first."""
    client = receivable.client
    available = client_credit_balance(client)
    wanted = receivable.remaining if amount is None else money(amount)
    if wanted <= 0:
        raise ValidationRejected("Nothing to allocate", code="invalid_amount")
    if wanted > receivable.remaining:
        raise ValidationRejected("Allocation exceeds the receivable's remaining balance", code="overpayment")
    if wanted > available:
        raise ValidationRejected(
            "Not enough client credit",
            data={"available": as_float(available), "requested": as_float(wanted)},
            code="insufficient_credit",
        )

    created = []
    left = wanted
    for credit in sorted(client.credits, key=lambda c: (c.received_at, c.id)):
        if left <= 0:
            break
        take = min(left, credit.remaining_amount)
        if take <= 0:
            continue
        alloc = CreditAllocation(
            amount=take,
            description=description,
            allocated_at=datetime.utcnow(),
            allocated_by=getattr(actor, "id", None),
        )
        credit.allocations.append(alloc)
        receivable.allocations.append(alloc)
        created.append(alloc)
        left -= take

    db.session.flush()
    log.info("Credit applied: receivable=%s amount=%s allocations=%s",
             receivable.id, wanted, [a.id for a in created])
    return created


# ---- removal helpers (keep both sides of each collection in sync) ----

def remove_payment(payment: Payment):
    receivable = payment.receivable
    receivable.payments.remove(payment)
    db.session.delete(payment)


def remove_allocation(allocation: CreditAllocation):
    credit = allocation.credit
    receivable = allocation.receivable
    if allocation in credit.allocations:
        credit.allocations.remove(allocation)
    if allocation in receivable.allocations:
        receivable.allocations.remove(allocation)
    db.session.delete(allocation)


def remove_receivable(receivable: Receivable):
    for p in list(receivable.payments):
        remove_payment(p)
    for a in list(receivable.allocations):
        remove_allocation(a)
    if receivable.task is not None and receivable in receivable.task.receivables:
        receivable.task.receivables.remove(receivable)
    db.session.delete(receivable)


# ---- snapshots ----

def payment_state(p: Payment) -> dict:
    creator = p.creator
    return {
        "id": p.id,
        "receivable_id": p.receivable_id,
        "amount": as_float(p.amount),
        "method": p.method,
        "payment_method_name": (p.method or "cash").replace("_", " ").title(),
        "paid_at": iso(p.paid_at),
        "note": p.note,
        "created_by": p.created_by,
        "created_by_name": getattr(creator, "name", None),
    }


def allocation_state(a: CreditAllocation) -> dict:
    credit = a.credit
    return {
        "id": a.id,
        "credit_id": a.credit_id,
        "receivable_id": a.receivable_id,
        "amount": as_float(a.amount),
        "allocated_at": iso(a.allocated_at),
        "allocated_by": a.allocated_by,
        "description": a.description,
        "credit_description": getattr(credit, "description", None),
        "credit_received_at": iso(getattr(credit, "received_at", None)),
    }


def receivable_state(r: Receivable | None) -> dict | None:
    if r is None:
        return None
    return {
        "receivable_id": r.id,
        "kind": r.kind,
        "amount": as_float(r.amount),
        "total_paid": as_float(r.total_settled),
        "balance": as_float(r.remaining),
        "payments": [payment_state(p) for p in r.payments],
        "allocations": [allocation_state(a) for a in r.allocations],
    }


# ---- task <-> receivable sync ----

def _new_receivable(task, kind, amount, actor=None) -> Receivable:
    label = "Prepaid" if kind == KIND_PREPAID else "Balance"
    r = Receivable(
        client=task.client,
        kind=kind,
        description=f"{label}: {task.task_name or f'Task #{task.id}'}",
        amount=money(amount),
        original_amount=money(amount),
        due_date=(datetime.utcnow() + timedelta(days=30)).date(),
        created_by=getattr(actor, "id", None),
    )
    task.receivables.append(r)
    return r


def ensure_main_receivable(task, actor=None, due_date=None) -> Receivable:
    r = task.main_receivable
    if r is None:
        r = _new_receivable(task, KIND_MAIN, task.main_amount, actor)
        if due_date:
            r.due_date = due_date
        db.session.flush()
        log.info("Main receivable created: task=%s receivable=%s amount=%s", task.id, r.id, r.amount)
    return r


def sync_receivables(task, actor=None, reason: str | None = None):
    """Bring the task's receivables in line with its amounts.

    Only call when no conflict exists: a receivable is never resized below what
    is already settled on it.
    """
    prepaid = money(task.prepaid_amount)
    pr = task.prepaid_receivable
    if prepaid > 0:
        if pr is None:
            pr = _new_receivable(task, KIND_PREPAID, prepaid, actor)
        elif money(pr.amount) != prepaid:
            pr.resize(prepaid, reason)
    elif pr is not None:
        if pr.has_financial_records:
            pr.resize(ZERO, reason)
        else:
            remove_receivable(pr)

    mr = task.main_receivable
    if mr is not None and money(mr.amount) != task.main_amount:
        mr.resize(task.main_amount, reason)
        for inv in task.invoices:
            if inv.receivable_id == mr.id:
                inv.amount = mr.amount
    db.session.flush()
