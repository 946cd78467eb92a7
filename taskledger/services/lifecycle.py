# taskledger/services/lifecycle.py
"""Task state machine.

    New <-> Deferred
    New/Deferred -> Pending Review -> Completed | New (rejected)
    New/Deferred -> Completed            (admin, direct)
    any active   -> Cancelled            (decision flow, see reconciliation)
    Completed    -> New                  (restore, validated first)

Amount edits go through the conflict detector first; a conflicting edit is
refused with ConflictDetected and has to be resolved through the decision flow.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from flask import current_app

from ..decisions import CancellationDecisions
from ..errors import (
    ConcurrentModification,
    ConflictDetected,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationRejected,
)
from ..extensions import db
from ..models.client import Client
from ..models.commission import Commission
from ..models.invoice import Invoice
from ..models.task import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DEFERRED,
    STATUS_NEW,
    STATUS_PENDING_REVIEW,
    TASK_TYPES,
    Tag,
    Task,
    TaskRequirement,
)
from ..models.user import User
from ..utils import ZERO, as_float, iso, money, parse_date, parse_datetime, to_decimal
from . import ledger
from .conflict_detector import analyze_cancellation, detect_amount_conflict, detect_prepaid_conflict
from .reconciliation import atomic, execute_cancellation

log = logging.getLogger(__name__)


def parse_amount(payload: dict, key: str, default=None):
    if key not in payload or payload[key] in (None, ""):
        return default
    try:
        value = money(payload[key])
    except ValueError:
        raise ValidationRejected(f"{key} is not a number", data={"field": key}, code="invalid_amount")
    if value < 0:
        raise ValidationRejected(f"{key} cannot be negative", data={"field": key}, code="invalid_amount")
    return value


def _assignee(user_id):
    if user_id in (None, ""):
        return None
    user = User.query.get(int(user_id))
    if user is None:
        raise NotFound("user", user_id)
    return user


def _set_tags(task: Task, names):
    tags = []
    for name in names or []:
        name = str(name).strip()
        if not name:
            continue
        tag = Tag.query.filter_by(name=name).first() or Tag(name=name)
        tags.append(tag)
    task.tags = tags


def _set_requirements(task: Task, items):
    task.requirements = [
        TaskRequirement(requirement_text=item, is_provided=False) if isinstance(item, str)
        else TaskRequirement(requirement_text=item["requirement_text"],
                             is_provided=bool(item.get("is_provided")))
        for item in items or []
    ]


def _require(task: Task, allowed, target: str):
    if task.status not in allowed:
        raise InvalidTransition(task.status, target)


# ---- create / edit ----

def create_task(payload: dict, actor=None) -> Task:
    client = Client.query.get(payload.get("client_id") or 0)
    if client is None:
        raise NotFound("client", payload.get("client_id"))

    amount = parse_amount(payload, "amount", ZERO)
    prepaid = parse_amount(payload, "prepaid_amount", ZERO)
    if prepaid > amount:
        raise ValidationRejected(
            "Prepaid amount cannot exceed the task amount",
            data={"amount": as_float(amount), "prepaid_amount": as_float(prepaid)},
            code="negative_main_receivable",
        )
    task_type = payload.get("type") or "Other"
    if task_type not in TASK_TYPES:
        raise ValidationRejected(f"Unknown task type {task_type!r}", data={"field": "type"})

    with atomic("Create task"):
        task = Task(
            client=client,
            assignee=_assignee(payload.get("assigned_to_id")),
            task_name=(payload.get("task_name") or "").strip() or None,
            type=task_type,
            status=STATUS_NEW,
            amount=amount,
            prepaid_amount=prepaid,
            expense_amount=parse_amount(payload, "expense_amount", ZERO),
            start_date=parse_date(payload.get("start_date")) or date.today(),
            end_date=parse_date(payload.get("end_date")),
            notes=payload.get("notes"),
        )
        _set_tags(task, payload.get("tags"))
        _set_requirements(task, payload.get("requirements"))
        db.session.add(task)
        db.session.flush()
        ledger.sync_receivables(task, actor)

    log.info("Task created: task=%s client=%s amount=%s prepaid=%s", task.id, client.id, amount, prepaid)
    return task


def check_not_stale(task: Task, expected_updated_at, serializer=None):
    """Raise ConcurrentModification if the caller's copy of the task is out of date."""
    if not expected_updated_at:
        return
    expected = parse_datetime(expected_updated_at)
    if expected is None or expected != task.updated_at:
        log.info("Stale write refused: task=%s expected=%s current=%s",
                 task.id, expected_updated_at, iso(task.updated_at))
        raise ConcurrentModification(
            str(expected_updated_at),
            iso(task.updated_at),
            serializer(task) if serializer else None,
        )


def update_task(task: Task, payload: dict, actor=None, serializer=None) -> Task:
    check_not_stale(task, payload.get("expected_updated_at"), serializer)
    if task.status == STATUS_CANCELLED:
        raise ValidationRejected("Cancelled tasks cannot be edited", code="task_cancelled")

    new_amount = parse_amount(payload, "amount", money(task.amount))
    new_prepaid = parse_amount(payload, "prepaid_amount", money(task.prepaid_amount))

    prepaid_changed = new_prepaid != money(task.prepaid_amount)
    amount_changed = new_amount != money(task.amount)
    report = None
    if prepaid_changed:
        report = detect_prepaid_conflict(task, new_prepaid, task_amount=new_amount)
    if report is None and amount_changed:
        report = detect_amount_conflict(task, new_amount, prepaid_amount=new_prepaid)
    if report is not None:
        if prepaid_changed and amount_changed:
            # each resolve endpoint reconciles against one changed figure only
            raise ValidationRejected(
                "Amount and prepaid amount both conflict with recorded money; change them one at a time",
                data={"conflict_type": report.conflict_type,
                      "amount": as_float(new_amount), "prepaid_amount": as_float(new_prepaid)},
                code="combined_amount_change_conflict",
            )
        raise ConflictDetected(report.conflict_type, report.to_dict())
    if new_prepaid > new_amount:
        raise ValidationRejected(
            "Prepaid amount cannot exceed the task amount",
            data={"amount": as_float(new_amount), "prepaid_amount": as_float(new_prepaid)},
            code="negative_main_receivable",
        )

    with atomic("Update task", task.id):
        if "task_name" in payload:
            task.task_name = (payload.get("task_name") or "").strip() or None
        if "type" in payload:
            if payload["type"] not in TASK_TYPES:
                raise ValidationRejected(f"Unknown task type {payload['type']!r}", data={"field": "type"})
            task.type = payload["type"]
        if "notes" in payload:
            task.notes = payload.get("notes")
        if "start_date" in payload:
            task.start_date = parse_date(payload.get("start_date"))
        if "end_date" in payload:
            task.end_date = parse_date(payload.get("end_date"))
        if "assigned_to_id" in payload:
            task.assignee = _assignee(payload.get("assigned_to_id"))
        if "expense_amount" in payload:
            task.expense_amount = parse_amount(payload, "expense_amount", ZERO)
        if "tags" in payload:
            _set_tags(task, payload.get("tags"))
        if "requirements" in payload:
            _set_requirements(task, payload.get("requirements"))

        task.amount = new_amount
        task.prepaid_amount = new_prepaid
        ledger.sync_receivables(task, actor, reason="Task edited")
        task.touch()

    log.info("Task updated: task=%s amount=%s prepaid=%s", task.id, new_amount, new_prepaid)
    return task


# ---- transitions ----

def set_status(task: Task, status: str, actor=None) -> Task:
    """Defer (New -> Deferred) or resume (Deferred -> New)."""
    if status == STATUS_DEFERRED:
        _require(task, (STATUS_NEW,), status)
    elif status == STATUS_NEW:
        _require(task, (STATUS_DEFERRED,), status)
    else:
        raise InvalidTransition(task.status, status, "Only Deferred and New can be set directly")
    with atomic("Set status", task.id):
        task.status = status
        task.touch()
    log.info("Task status: task=%s status=%s by=%s", task.id, status, getattr(actor, "id", None))
    return task


def submit_for_review(task: Task, actor=None) -> Task:
    _require(task, (STATUS_NEW, STATUS_DEFERRED), STATUS_PENDING_REVIEW)
    if actor is not None and not actor.is_admin and task.assigned_to_id != actor.id:
        raise PermissionDenied("Only the assigned employee can submit this task")
    with atomic("Submit for review", task.id):
        task.status = STATUS_PENDING_REVIEW
        task.rejection_reason = None
        task.touch()
    log.info("Task submitted for review: task=%s by=%s", task.id, getattr(actor, "id", None))
    return task


def _commission_rate(user: User):
    if user.commission_rate is not None:
        return to_decimal(user.commission_rate)
    return to_decimal(current_app.config.get("COMMISSION_RATE", "0"))


def _finish(task: Task, actor=None, expense_amount=None, notes=None):
    if expense_amount is not None:
        task.expense_amount = expense_amount
    if notes:
        task.notes = notes
    task.status = STATUS_COMPLETED
    task.end_date = task.end_date or date.today()

    mr = ledger.ensure_main_receivable(task, actor)
    if mr.amount > 0 and not task.invoices:
        task.invoices.append(Invoice(
            receivable_id=mr.id,
            description=f"Invoice: {task.task_name or f'Task #{task.id}'}",
            amount=mr.amount,
            currency=current_app.config.get("CURRENCY", "SAR"),
        ))

    if task.assignee is not None and not any(c.status != "void" for c in task.commissions):
        rate = _commission_rate(task.assignee)
        base = max(money(task.amount) - money(task.expense_amount), ZERO)
        task.commissions.append(Commission(
            employee_id=task.assignee.id,
            rate=rate,
            amount=money(base * rate),
        ))
    task.touch()
    db.session.flush()
    return mr


def approve(task: Task, actor=None, expense_amount=None, notes=None) -> Task:
    _require(task, (STATUS_PENDING_REVIEW,), STATUS_COMPLETED)
    with atomic("Approve", task.id):
        _finish(task, actor, expense_amount, notes)
    log.info("Task approved: task=%s by=%s", task.id, getattr(actor, "id", None))
    return task


def reject(task: Task, actor=None, reason: str | None = None) -> Task:
    _require(task, (STATUS_PENDING_REVIEW,), STATUS_NEW)
    with atomic("Reject", task.id):
        task.status = STATUS_NEW
        task.rejection_reason = (reason or "").strip() or None
        task.touch()
    log.info("Task rejected: task=%s by=%s", task.id, getattr(actor, "id", None))
    return task


def complete(task: Task, payload: dict | None = None, actor=None) -> Task:
    """Admin completion straight from New or Deferred, optionally taking a payment."""
    payload = payload or {}
    _require(task, (STATUS_NEW, STATUS_DEFERRED), STATUS_COMPLETED)
    with atomic("Complete", task.id):
        mr = _finish(task, actor, parse_amount(payload, "expense_amount"), payload.get("notes"))
        payment = payload.get("payment") or {}
        if payment.get("amount"):
            ledger.record_payment(
                mr, payment["amount"],
                method=payment.get("method") or "cash",
                note=payment.get("note"),
                actor=actor,
            )
    log.info("Task completed: task=%s by=%s", task.id, getattr(actor, "id", None))
    return task


# ---- cancellation / deletion ----

def cancellation_analysis(task: Task):
    return analyze_cancellation(task)


def cancel(task: Task, decisions: CancellationDecisions, actor=None):
    return execute_cancellation(task, decisions, actor)


def delete_task(task: Task, actor=None):
    analysis = analyze_cancellation(task)
    if analysis.has_financial_records:
        raise ConflictDetected(analysis.conflict_type, analysis.to_dict(),
                               "Task has payments or credit allocations")
    task_id = task.id
    with atomic("Delete task", task_id):
        for r in list(task.receivables):
            ledger.remove_receivable(r)
        db.session.delete(task)
    log.info("Task deleted: task=%s by=%s", task_id, getattr(actor, "id", None))


# ---- restore ----

@dataclass
class RestoreValidation:
    allowed: bool
    reasons: list[str] = field(default_factory=list)
    consequences: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reasons": self.reasons, "consequences": self.consequences}


def validate_restore(task: Task) -> RestoreValidation:
    reasons = []
    if task.status != STATUS_COMPLETED:
        reasons.append(f"Only completed tasks can be restored (status is {task.status})")

    paid = [c for c in task.commissions if c.status == "paid"]
    if paid:
        reasons.append("Commission for this task has already been paid out")

    invoices = [{
        "invoice_id": inv.id,
        "description": inv.description,
        "amount": as_float(inv.amount),
        "paid_amount": as_float(inv.paid_amount),
        "has_payments": inv.paid_amount > 0,
    } for inv in task.invoices]

    mr = task.main_receivable
    payments = [ledger.payment_state(p) for p in mr.payments] if mr else []
    allocations = [ledger.allocation_state(a) for a in mr.allocations] if mr else []

    commission = next((c for c in task.commissions if c.status != "void"), None)
    commission_info = None
    if commission is not None:
        commission_info = {
            "commission_id": commission.id,
            "employee_id": commission.employee_id,
            "amount": as_float(commission.amount),
            "status": commission.status,
        }

    return RestoreValidation(
        allowed=not reasons,
        reasons=reasons,
        consequences={
            "task": {"id": task.id, "name": task.task_name,
                     "current_status": task.status, "new_status": STATUS_NEW},
            "invoices_to_delete": invoices,
            "payments_to_delete": payments,
            "allocations_to_return": allocations,
            "commission_to_delete": commission_info,
        },
    )


def restore(task: Task, confirmed: bool, actor=None) -> Task:
    if not confirmed:
        raise ValidationRejected("Restore must be confirmed", code="confirmation_required",
                                 data=validate_restore(task).to_dict())
    validation = validate_restore(task)
    if not validation.allowed:
        raise ValidationRejected("Task cannot be restored", data=validation.to_dict(), code="restore_blocked")

    with atomic("Restore", task.id):
        for inv in list(task.invoices):
            task.invoices.remove(inv)
        mr = task.main_receivable
        if mr is not None:
            ledger.remove_receivable(mr)
        for c in task.commissions:
            if c.status == "pending":
                c.status = "void"
                c.voided_at = datetime.utcnow()
        task.status = STATUS_NEW
        task.end_date = None
        task.touch()

    log.info("Task restored: task=%s invoices=%s payments=%s by=%s",
             task.id, len(validation.consequences["invoices_to_delete"]),
             len(validation.consequences["payments_to_delete"]), getattr(actor, "id", None))
    return task
