# taskledger/services/conflict_detector.py
"""Decide whether a proposed amount change would over-settle a receivable.

A receivable is in conflict exactly when what has already been paid or
allocated against it exceeds the amount it is about to shrink to. The task
carries two amount fields, so the prepaid receivable and the main receivable
are checked independently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..decisions import ALL_ALLOCATION_ACTIONS, ALL_PAYMENT_ACTIONS, CANCELLATION_PAYMENT_ACTIONS
from ..errors import NotFound, ValidationRejected
from ..models.task import Task
from ..utils import money, as_float, ZERO
from .ledger import payment_state, allocation_state, receivable_state

log = logging.getLogger(__name__)

PREPAID_CONFLICT = "prepaid_amount_change_conflict"
AMOUNT_CONFLICT = "main_receivable_overpayment"
CANCELLATION_CONFLICT = "task_cancellation_conflict"


def load_task(task_id) -> Task:
    task = Task.query.get(task_id) if task_id is not None else None
    if task is None:
        raise NotFound("task", task_id)
    return task


@dataclass
class Conflict:
    type: str
    severity: str  # low|medium|high
    message: str
    surplus: float | None = None
    affected_amount: float | None = None
    calculated_main_amount: float | None = None
    receivable_id: int | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


def _resolution_options(receivable, ceiling, payment_actions=ALL_PAYMENT_ACTIONS) -> dict:
    """Per-record actions and hints for the decision form."""
    payments = {}
    for p in receivable.payments:
        recs = []
        if ceiling <= 0:
            recs.append("convert_to_credit")
        elif money(p.amount) > ceiling:
            recs.append("reduce_to")
        else:
            recs.append("keep")
        payments[p.id] = {
            "current_amount": as_float(p.amount),
            "available_actions": list(payment_actions),
            "recommendations": recs,
            "max_reduce_to": as_float(min(money(p.amount), ceiling)) if ceiling > 0 else None,
        }
    allocations = {
        a.id: {
            "current_amount": as_float(a.amount),
            "available_actions": list(ALL_ALLOCATION_ACTIONS),
            "credit_source": a.credit_id,
        }
        for a in receivable.allocations
    }
    return {"payments": payments, "allocations": allocations}


@dataclass
class PrepaidConflictReport:
    task_id: int
    current_prepaid_amount: object
    new_prepaid_amount: object
    total_paid: object
    task_amount: object
    prepaid_receivable_id: int | None
    conflicts: list[Conflict] = field(default_factory=list)
    payments: list[dict] = field(default_factory=list)
    allocations: list[dict] = field(default_factory=list)
    resolution_options: dict = field(default_factory=dict)
    main_receivable: dict | None = None

    conflict_type = PREPAID_CONFLICT

    @property
    def surplus(self):
        return max(money(self.total_paid) - money(self.new_prepaid_amount), ZERO)

    @property
    def payment_ids(self):
        return [p["id"] for p in self.payments]

    @property
    def allocation_ids(self):
        return [a["id"] for a in self.allocations]

    def to_dict(self) -> dict:
        return {
            "conflict_type": self.conflict_type,
            "task_id": self.task_id,
            "current_prepaid_amount": as_float(self.current_prepaid_amount),
            "new_prepaid_amount": as_float(self.new_prepaid_amount),
            "total_paid": as_float(self.total_paid),
            "task_amount": as_float(self.task_amount),
            "surplus": as_float(self.surplus),
            "prepaid_receivable_id": self.prepaid_receivable_id,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "financial_records": {"payments": self.payments, "allocations": self.allocations},
            "resolution_options": self.resolution_options,
            "main_receivable": self.main_receivable,
        }


@dataclass
class AmountConflictReport:
    task_id: int
    current_task_amount: object
    new_task_amount: object
    current_main_receivable_amount: object
    calculated_new_main_amount: object
    main_receivable_paid: object
    main_receivable_id: int
    conflicts: list[Conflict] = field(default_factory=list)
    payments: list[dict] = field(default_factory=list)
    allocations: list[dict] = field(default_factory=list)
    resolution_options: dict = field(default_factory=dict)

    conflict_type = AMOUNT_CONFLICT

    @property
    def surplus(self):
        return money(self.main_receivable_paid) - money(self.calculated_new_main_amount)

    @property
    def payment_ids(self):
        return [p["id"] for p in self.payments]

    @property
    def allocation_ids(self):
        return [a["id"] for a in self.allocations]

    def to_dict(self) -> dict:
        return {
            "conflict_type": self.conflict_type,
            "task_id": self.task_id,
            "current_task_amount": as_float(self.current_task_amount),
            "new_task_amount": as_float(self.new_task_amount),
            "current_main_receivable_amount": as_float(self.current_main_receivable_amount),
            "calculated_new_main_amount": as_float(self.calculated_new_main_amount),
            "main_receivable_paid": as_float(self.main_receivable_paid),
            "surplus": as_float(self.surplus),
            "main_receivable_id": self.main_receivable_id,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "financial_records": {"payments": self.payments, "allocations": self.allocations},
            "resolution_options": self.resolution_options,
        }


@dataclass
class CancellationAnalysis:
    task_id: int
    prepaid_receivable: dict | None
    main_receivable: dict | None

    conflict_type = CANCELLATION_CONFLICT

    @property
    def total_funds_involved(self) -> float:
        return sum((r["total_paid"] for r in (self.prepaid_receivable, self.main_receivable) if r), 0.0)

    @property
    def has_financial_records(self) -> bool:
        return any(
            r and (r["payments"] or r["allocations"])
            for r in (self.prepaid_receivable, self.main_receivable)
        )

    def to_dict(self) -> dict:
        return {
            "conflict_type": self.conflict_type,
            "task_id": self.task_id,
            "prepaid_receivable": self.prepaid_receivable,
            "main_receivable": self.main_receivable,
            "total_funds_involved": self.total_funds_involved,
            "available_payment_actions": list(CANCELLATION_PAYMENT_ACTIONS),
            "available_allocation_actions": list(ALL_ALLOCATION_ACTIONS),
        }


def detect_prepaid_conflict(task: Task, new_prepaid_amount, *, task_amount=None) -> PrepaidConflictReport | None:
    if task is None:
        raise NotFound("task", None)
    new_prepaid = money(new_prepaid_amount)
    task_amount = money(task.amount if task_amount is None else task_amount)

    if new_prepaid < 0:
        raise ValidationRejected("Prepaid amount cannot be negative", code="invalid_amount")
    if new_prepaid > task_amount:
        raise ValidationRejected(
            "Prepaid amount cannot exceed the task amount",
            data={"task_amount": as_float(task_amount), "new_prepaid_amount": as_float(new_prepaid),
                  "calculated_main_amount": as_float(task_amount - new_prepaid)},
            code="negative_main_receivable",
        )

    pr = task.prepaid_receivable
    paid = pr.total_settled if pr else ZERO
    conflicts = []

    if pr is not None and paid > new_prepaid:
        surplus = paid - new_prepaid
        conflicts.append(Conflict(
            type="overpayment",
            severity="high",
            message=f"{as_float(paid)} already collected against a prepaid amount of {as_float(new_prepaid)}",
            surplus=as_float(surplus),
            receivable_id=pr.id,
        ))
        if new_prepaid == 0:
            conflicts.append(Conflict(
                type="prepaid_elimination",
                severity="medium",
                message="Prepaid receivable would be eliminated while it still holds payments",
                affected_amount=as_float(paid),
                receivable_id=pr.id,
            ))

    mr = task.main_receivable
    main_state = None
    new_main = task_amount - new_prepaid
    if mr is not None and mr.total_settled > new_main:
        conflicts.append(Conflict(
            type=AMOUNT_CONFLICT,
            severity="high",
            message="Main receivable would drop below what is already settled on it",
            surplus=as_float(mr.total_settled - new_main),
            calculated_main_amount=as_float(new_main),
            receivable_id=mr.id,
        ))
        main_state = receivable_state(mr)
        main_state["calculated_new_amount"] = as_float(new_main)
        main_state["resolution_options"] = _resolution_options(mr, new_main)

    if not conflicts:
        return None

    report = PrepaidConflictReport(
        task_id=task.id,
        current_prepaid_amount=money(task.prepaid_amount),
        new_prepaid_amount=new_prepaid,
        total_paid=paid,
        task_amount=task_amount,
        prepaid_receivable_id=pr.id if pr else None,
        conflicts=conflicts,
        payments=[payment_state(p) for p in pr.payments] if pr else [],
        allocations=[allocation_state(a) for a in pr.allocations] if pr else [],
        resolution_options=_resolution_options(pr, new_prepaid) if pr else {},
        main_receivable=main_state,
    )
    log.info("Prepaid conflict: task=%s new_prepaid=%s paid=%s types=%s",
             task.id, new_prepaid, paid, [c.type for c in conflicts])
    return report


def detect_amount_conflict(task: Task, new_task_amount, *, prepaid_amount=None) -> AmountConflictReport | None:
    if task is None:
        raise NotFound("task", None)
    new_amount = money(new_task_amount)
    prepaid = money(task.prepaid_amount if prepaid_amount is None else prepaid_amount)
    if new_amount < 0:
        raise ValidationRejected("Task amount cannot be negative", code="invalid_amount")
    if new_amount < prepaid:
        raise ValidationRejected(
            "Task amount cannot be lower than the prepaid amount",
            data={"new_task_amount": as_float(new_amount), "prepaid_amount": as_float(prepaid)},
            code="negative_main_receivable",
        )

    mr = task.main_receivable
    if mr is None:
        return None
    new_main = new_amount - prepaid
    settled = mr.total_settled
    if settled <= new_main:
        return None

    surplus = settled - new_main
    report = AmountConflictReport(
        task_id=task.id,
        current_task_amount=money(task.amount),
        new_task_amount=new_amount,
        current_main_receivable_amount=money(mr.amount),
        calculated_new_main_amount=new_main,
        main_receivable_paid=settled,
        main_receivable_id=mr.id,
        conflicts=[Conflict(
            type="overpayment",
            severity="high",
            message=f"{as_float(settled)} already settled against a new balance of {as_float(new_main)}",
            surplus=as_float(surplus),
            receivable_id=mr.id,
        )],
        payments=[payment_state(p) for p in mr.payments],
        allocations=[allocation_state(a) for a in mr.allocations],
        resolution_options=_resolution_options(mr, new_main),
    )
    log.info("Amount conflict: task=%s new_amount=%s settled=%s surplus=%s",
             task.id, new_amount, settled, surplus)
    return report


def analyze_cancellation(task: Task) -> CancellationAnalysis:
    if task is None:
        raise NotFound("task", None)
    return CancellationAnalysis(
        task_id=task.id,
        prepaid_receivable=receivable_state(task.prepaid_receivable),
        main_receivable=receivable_state(task.main_receivable),
    )
