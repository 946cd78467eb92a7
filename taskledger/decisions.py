"""
Operator decisions for payments and credit allocations on a conflicted receivable.

Each decision kind is its own frozen dataclass so that, for instance, a
``ReduceTo`` cannot exist without an amount and an allocation cannot be
reduced at all. The same types are used by the server (parsing request
bodies) and by the client SDK (building them).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Iterable, Mapping, Union

from .errors import InvalidDecision, PartialDecisionMissing
from .utils import money, as_float


class ReceivableDecision(str, Enum):
    ELIMINATE_PREPAID = "eliminate_prepaid"
    ADJUST_TO_NEW_AMOUNT = "adjust_to_new_amount"


class TaskAction(str, Enum):
    CANCEL = "cancel"
    DELETE = "delete"


# ---- payment decisions ----

@dataclass(frozen=True)
class Keep:
    payment_id: int
    action: ClassVar[str] = "keep"

    def to_payload(self) -> dict:
        return {"payment_id": self.payment_id, "action": self.action}


@dataclass(frozen=True)
class Delete:
    payment_id: int
    action: ClassVar[str] = "delete"

    def to_payload(self) -> dict:
        return {"payment_id": self.payment_id, "action": self.action}


@dataclass(frozen=True)
class ConvertToCredit:
    payment_id: int
    action: ClassVar[str] = "convert_to_credit"

    def to_payload(self) -> dict:
        return {"payment_id": self.payment_id, "action": self.action}


@dataclass(frozen=True)
class ReduceTo:
    payment_id: int
    new_amount: Decimal
    # deposit the cut-off part into client credit instead of voiding it
    surplus_to_credit: bool = False
    action: ClassVar[str] = "reduce_to"

    def to_payload(self) -> dict:
        payload = {"payment_id": self.payment_id, "action": self.action,
                   "new_amount": as_float(self.new_amount)}
        if self.surplus_to_credit:
            payload["surplus_action"] = "convert_to_credit"
        return payload


PaymentDecision = Union[Keep, Delete, ConvertToCredit, ReduceTo]


# ---- allocation decisions ----

@dataclass(frozen=True)
class KeepAllocation:
    allocation_id: int
    action: ClassVar[str] = "keep"

    def to_payload(self) -> dict:
        return {"allocation_id": self.allocation_id, "action": self.action}


@dataclass(frozen=True)
class ReturnToCredit:
    allocation_id: int
    action: ClassVar[str] = "return_to_credit"

    def to_payload(self) -> dict:
        return {"allocation_id": self.allocation_id, "action": self.action}


@dataclass(frozen=True)
class DeleteAllocation:
    allocation_id: int
    action: ClassVar[str] = "delete_allocation"

    def to_payload(self) -> dict:
        return {"allocation_id": self.allocation_id, "action": self.action}


AllocationDecision = Union[KeepAllocation, ReturnToCredit, DeleteAllocation]

PAYMENT_ACTIONS = {cls.action: cls for cls in (Keep, Delete, ConvertToCredit, ReduceTo)}
ALLOCATION_ACTIONS = {cls.action: cls for cls in (KeepAllocation, ReturnToCredit, DeleteAllocation)}

# task cancellation never shrinks a payment
CANCELLATION_PAYMENT_ACTIONS = ("keep", "delete", "convert_to_credit")
ALL_PAYMENT_ACTIONS = tuple(PAYMENT_ACTIONS)
ALL_ALLOCATION_ACTIONS = tuple(ALLOCATION_ACTIONS)


@dataclass(frozen=True)
class DecisionSet:
    """One decision per payment and per allocation of a single receivable."""
    payments: Mapping[int, PaymentDecision] = field(default_factory=dict)
    allocations: Mapping[int, AllocationDecision] = field(default_factory=dict)

    def missing(self, payment_ids: Iterable[int], allocation_ids: Iterable[int]):
        return (
            [pid for pid in payment_ids if pid not in self.payments],
            [aid for aid in allocation_ids if aid not in self.allocations],
        )

    def require_complete(self, payment_ids: Iterable[int], allocation_ids: Iterable[int]):
        missing_p, missing_a = self.missing(payment_ids, allocation_ids)
        if missing_p or missing_a:
            raise PartialDecisionMissing(missing_p, missing_a)

    def is_empty(self) -> bool:
        return not self.payments and not self.allocations

    def to_payload(self) -> dict:
        return {
            "payment_decisions": [d.to_payload() for d in self.payments.values()],
            "allocation_decisions": [d.to_payload() for d in self.allocations.values()],
        }


@dataclass(frozen=True)
class PrepaidResolution:
    receivable_decision: ReceivableDecision | None
    prepaid: DecisionSet
    # only needed when a higher prepaid shrinks an already-settled main receivable
    main: DecisionSet = field(default_factory=DecisionSet)

    def to_payload(self) -> dict:
        payload = dict(self.prepaid.to_payload())
        if self.receivable_decision is not None:
            payload["receivable_decision"] = self.receivable_decision.value
        if not self.main.is_empty():
            payload["main_receivable_decisions"] = self.main.to_payload()
        return payload


@dataclass(frozen=True)
class CancellationDecisions:
    task_action: TaskAction
    prepaid: DecisionSet = field(default_factory=DecisionSet)
    main: DecisionSet = field(default_factory=DecisionSet)

    def to_payload(self) -> dict:
        payload = {"task_action": self.task_action.value}
        if not self.prepaid.is_empty():
            payload["prepaid_receivable_decisions"] = self.prepaid.to_payload()
        if not self.main.is_empty():
            payload["main_receivable_decisions"] = self.main.to_payload()
        return payload


# ---- parsing ----

def _record_id(item: Mapping, key: str) -> int:
    try:
        return int(item[key])
    except (KeyError, TypeError, ValueError):
        raise InvalidDecision(f"Decision is missing a valid {key}", data={"decision": dict(item)})


def parse_payment_decision(item: Mapping, allowed=ALL_PAYMENT_ACTIONS) -> PaymentDecision:
    if not isinstance(item, Mapping):
        raise InvalidDecision("Payment decision must be an object")
    pid = _record_id(item, "payment_id")
    action = item.get("action")
    if action not in PAYMENT_ACTIONS:
        raise InvalidDecision(f"Unknown payment action {action!r}", data={"payment_id": pid})
    if action not in allowed:
        raise InvalidDecision(f"Action {action!r} is not allowed here", data={"payment_id": pid})

    if action == "reduce_to":
        raw = item.get("new_amount")
        if raw is None:
            raise InvalidDecision("reduce_to needs new_amount", data={"payment_id": pid})
        try:
            new_amount = money(raw)
        except ValueError:
            raise InvalidDecision("reduce_to new_amount is not a number", data={"payment_id": pid})
        if new_amount <= 0:
            raise InvalidDecision("reduce_to new_amount must be positive", data={"payment_id": pid})
        surplus_action = item.get("surplus_action")
        if surplus_action not in (None, "", "convert_to_credit"):
            raise InvalidDecision(f"Unknown surplus_action {surplus_action!r}", data={"payment_id": pid})
        return ReduceTo(pid, new_amount, surplus_to_credit=surplus_action == "convert_to_credit")
    return PAYMENT_ACTIONS[action](pid)


def parse_allocation_decision(item: Mapping, allowed=ALL_ALLOCATION_ACTIONS) -> AllocationDecision:
    if not isinstance(item, Mapping):
        raise InvalidDecision("Allocation decision must be an object")
    aid = _record_id(item, "allocation_id")
    action = item.get("action")
    if action not in ALLOCATION_ACTIONS or action not in allowed:
        raise InvalidDecision(f"Unknown allocation action {action!r}", data={"allocation_id": aid})
    return ALLOCATION_ACTIONS[action](aid)


def parse_decision_set(payload: Mapping | None, *, payment_actions=ALL_PAYMENT_ACTIONS) -> DecisionSet:
    payload = payload or {}
    if not isinstance(payload, Mapping):
        raise InvalidDecision("Decisions must be an object")

    payments: dict[int, PaymentDecision] = {}
    for item in payload.get("payment_decisions") or []:
        d = parse_payment_decision(item, payment_actions)
        if d.payment_id in payments:
            raise InvalidDecision("Duplicate decision for payment", data={"payment_id": d.payment_id})
        payments[d.payment_id] = d

    allocations: dict[int, AllocationDecision] = {}
    for item in payload.get("allocation_decisions") or []:
        d = parse_allocation_decision(item)
        if d.allocation_id in allocations:
            raise InvalidDecision("Duplicate decision for allocation", data={"allocation_id": d.allocation_id})
        allocations[d.allocation_id] = d

    return DecisionSet(payments, allocations)


def parse_receivable_decision(value) -> ReceivableDecision | None:
    if value in (None, ""):
        return None
    try:
        return ReceivableDecision(value)
    except ValueError:
        raise InvalidDecision(f"Unknown receivable_decision {value!r}")


def parse_task_action(value) -> TaskAction:
    try:
        return TaskAction(value)
    except ValueError:
        raise InvalidDecision(f"task_action must be 'cancel' or 'delete', got {value!r}")


def parse_prepaid_resolution(decisions: Mapping | None) -> PrepaidResolution:
    decisions = decisions or {}
    return PrepaidResolution(
        receivable_decision=parse_receivable_decision(decisions.get("receivable_decision")),
        prepaid=parse_decision_set(decisions),
        main=parse_decision_set(decisions.get("main_receivable_decisions")),
    )


def parse_cancellation(body: Mapping | None) -> CancellationDecisions:
    body = body or {}
    return CancellationDecisions(
        task_action=parse_task_action(body.get("task_action")),
        prepaid=parse_decision_set(body.get("prepaid_receivable_decisions"),
                                   payment_actions=CANCELLATION_PAYMENT_ACTIONS),
        main=parse_decision_set(body.get("main_receivable_decisions"),
                                payment_actions=CANCELLATION_PAYMENT_ACTIONS),
    )
