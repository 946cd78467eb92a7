# taskledger/client/collector.py
"""Gather one decision per affected record before anything is sent.

A collector is built from the ``data`` of a 409 conflict (or from a
cancellation analysis) and refuses to produce a payload until every payment
and allocation it lists has an explicit decision.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ..decisions import (
    CANCELLATION_PAYMENT_ACTIONS,
    CancellationDecisions,
    DecisionSet,
    PrepaidResolution,
    ReceivableDecision,
    ReduceTo,
    TaskAction,
    PAYMENT_ACTIONS,
    ALLOCATION_ACTIONS,
)
from ..errors import InvalidDecision, PartialDecisionMissing
from ..utils import money

PREPAID_FLOW = "prepaid_amount_change_conflict"
AMOUNT_FLOW = "main_receivable_overpayment"
CANCELLATION_FLOW = "task_cancellation_conflict"


@dataclass
class _Group:
    payments: dict = field(default_factory=dict)     # id -> current amount
    allocations: dict = field(default_factory=dict)  # id -> current amount
    payment_decisions: dict = field(default_factory=dict)
    allocation_decisions: dict = field(default_factory=dict)

    @classmethod
    def from_records(cls, payments, allocations):
        return cls(
            payments={p["id"]: money(p["amount"]) for p in payments or []},
            allocations={a["id"]: money(a["amount"]) for a in allocations or []},
        )

    def missing(self):
        return (
            [pid for pid in self.payments if pid not in self.payment_decisions],
            [aid for aid in self.allocations if aid not in self.allocation_decisions],
        )

    def decision_set(self) -> DecisionSet:
        return DecisionSet(dict(self.payment_decisions), dict(self.allocation_decisions))


class DecisionCollector:
    def __init__(self, flow: str, groups: dict[str, _Group], *, task_id=None,
                 needs_receivable_decision: bool = False, ceilings: dict | None = None):
        self.flow = flow
        self.task_id = task_id
        self.groups = groups
        self.needs_receivable_decision = needs_receivable_decision
        self.ceilings = ceilings or {}
        self.receivable_decision: ReceivableDecision | None = None
        self.task_action: TaskAction | None = None

    @classmethod
    def from_conflict(cls, data: dict) -> "DecisionCollector":
        flow = data.get("conflict_type")
        if flow == PREPAID_FLOW:
            records = data.get("financial_records") or {}
            prepaid = _Group.from_records(records.get("payments"), records.get("allocations"))
            groups = {"prepaid": prepaid}
            ceilings = {"prepaid": money(data.get("new_prepaid_amount"))}
            main = data.get("main_receivable")
            if main:
                groups["main"] = _Group.from_records(main.get("payments"), main.get("allocations"))
                ceilings["main"] = money(main.get("calculated_new_amount"))
            return cls(flow, groups, task_id=data.get("task_id"),
                       needs_receivable_decision=bool(prepaid.payments or prepaid.allocations),
                       ceilings=ceilings)

        if flow == AMOUNT_FLOW:
            records = data.get("financial_records") or {}
            return cls(flow, {"main": _Group.from_records(records.get("payments"), records.get("allocations"))},
                       task_id=data.get("task_id"),
                       ceilings={"main": money(data.get("calculated_new_main_amount"))})

        if flow == CANCELLATION_FLOW:
            groups = {}
            for key in ("prepaid", "main"):
                state = data.get(f"{key}_receivable")
                if state:
                    groups[key] = _Group.from_records(state.get("payments"), state.get("allocations"))
            return cls(flow, groups, task_id=data.get("task_id"))

        raise InvalidDecision(f"No decision flow for conflict type {flow!r}")

    # ---- recording ----

    def _group_for(self, kind: str, record_id: int) -> _Group:
        for group in self.groups.values():
            if record_id in getattr(group, kind):
                return group
        raise InvalidDecision(f"{kind[:-1].capitalize()} {record_id} is not part of this conflict",
                              data={f"{kind[:-1]}_id": record_id})

    def decide_payment(self, decision):
        if decision.action not in PAYMENT_ACTIONS:
            raise InvalidDecision(f"Not a payment decision: {decision!r}")
        if self.flow == CANCELLATION_FLOW and decision.action not in CANCELLATION_PAYMENT_ACTIONS:
            raise InvalidDecision(f"{decision.action} is not available when cancelling a task",
                                  data={"payment_id": decision.payment_id})
        group = self._group_for("payments", decision.payment_id)
        if isinstance(decision, ReduceTo):
            original = group.payments[decision.payment_id]
            key = next(k for k, g in self.groups.items() if g is group)
            ceiling = self.ceilings.get(key)
            new_amount = money(decision.new_amount)
            if new_amount <= 0 or new_amount > original or (ceiling is not None and new_amount > ceiling):
                raise InvalidDecision(
                    "reduce_to must be positive, no more than the payment and no more than the new amount",
                    data={"payment_id": decision.payment_id, "new_amount": float(new_amount)},
                )
        group.payment_decisions[decision.payment_id] = decision
        return self

    def decide_allocation(self, decision):
        if decision.action not in ALLOCATION_ACTIONS:
            raise InvalidDecision(f"Not an allocation decision: {decision!r}")
        group = self._group_for("allocations", decision.allocation_id)
        group.allocation_decisions[decision.allocation_id] = decision
        return self

    def set_receivable_decision(self, decision: ReceivableDecision | str):
        if self.flow != PREPAID_FLOW:
            raise InvalidDecision("receivable_decision only applies to prepaid changes")
        self.receivable_decision = ReceivableDecision(decision)
        return self

    def set_task_action(self, action: TaskAction | str):
        if self.flow != CANCELLATION_FLOW:
            raise InvalidDecision("task_action only applies to cancellation")
        self.task_action = TaskAction(action)
        return self

    # ---- validation / output ----

    def missing(self) -> dict:
        payment_ids, allocation_ids = [], []
        for group in self.groups.values():
            p, a = group.missing()
            payment_ids += p
            allocation_ids += a
        return {
            "payment_ids": sorted(payment_ids),
            "allocation_ids": sorted(allocation_ids),
            "receivable_decision": self.needs_receivable_decision and self.receivable_decision is None,
            "task_action": self.flow == CANCELLATION_FLOW and self.task_action is None,
        }

    @property
    def is_complete(self) -> bool:
        m = self.missing()
        return not (m["payment_ids"] or m["allocation_ids"] or m["receivable_decision"] or m["task_action"])

    def _require_complete(self):
        m = self.missing()
        if m["payment_ids"] or m["allocation_ids"]:
            raise PartialDecisionMissing(m["payment_ids"], m["allocation_ids"])
        if m["receivable_decision"]:
            raise PartialDecisionMissing(message="Choose whether to eliminate or adjust the prepaid receivable")
        if m["task_action"]:
            raise PartialDecisionMissing(message="Choose whether to cancel or delete the task")

    def build(self):
        """The typed decisions; raises PartialDecisionMissing while anything is undecided."""
        self._require_complete()
        empty = DecisionSet()
        if self.flow == PREPAID_FLOW:
            return PrepaidResolution(
                receivable_decision=self.receivable_decision,
                prepaid=self.groups["prepaid"].decision_set(),
                main=self.groups["main"].decision_set() if "main" in self.groups else empty,
            )
        if self.flow == AMOUNT_FLOW:
            return self.groups["main"].decision_set()
        return CancellationDecisions(
            task_action=self.task_action,
            prepaid=self.groups["prepaid"].decision_set() if "prepaid" in self.groups else empty,
            main=self.groups["main"].decision_set() if "main" in self.groups else empty,
        )

    def build_payload(self) -> dict:
        return self.build().to_payload()

    @property
    def destructive_actions(self) -> list[str]:
        """Chosen actions that need an explicit confirmation before sending."""
        actions = []
        if self.task_action == TaskAction.DELETE:
            actions.append("delete_task")
        for group in self.groups.values():
            for d in group.allocation_decisions.values():
                if d.action in ("return_to_credit", "delete_allocation"):
                    actions.append(d.action)
        return sorted(set(actions))
