# taskledger/client/dialogs.py
"""Dialogs the workflow can ask an operator to complete, and the workflow itself.

The workflow never renders anything. It hands one of the dialog variants below
to an injected ``DialogController`` and acts on what comes back:

* ``open(dialog)`` shows a dialog. Decision dialogs return the filled-in
  ``DecisionCollector`` (or ``None`` if the operator backed out); the others
  return ``None``.
* ``confirm(dialog)`` asks a yes/no question and returns a bool.
* ``close(dialog)`` dismisses a dialog the workflow opened.
* ``toast(level, title, detail)`` shows a transient notification.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Protocol, Union

from ..decisions import TaskAction
from ..errors import ConcurrentModification, ConflictDetected, LedgerError, PartialDecisionMissing
from .collector import AMOUNT_FLOW, CANCELLATION_FLOW, PREPAID_FLOW, DecisionCollector
from .speculative import SpeculativeCache

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrepaidConflictDialog:
    task_id: int
    new_prepaid_amount: float
    report: dict
    collector: DecisionCollector = field(compare=False)
    kind: ClassVar[str] = "prepaid_conflict"


@dataclass(frozen=True)
class AmountConflictDialog:
    task_id: int
    new_task_amount: float
    report: dict
    collector: DecisionCollector = field(compare=False)
    kind: ClassVar[str] = "amount_conflict"


@dataclass(frozen=True)
class CancellationDialog:
    task_id: int
    analysis: dict
    collector: DecisionCollector = field(compare=False)
    kind: ClassVar[str] = "cancellation"


@dataclass(frozen=True)
class ConcurrentModificationDialog:
    task_id: int
    expected_updated_at: Optional[str]
    current_updated_at: Optional[str]
    current_task: Optional[dict]
    kind: ClassVar[str] = "concurrent_modification"


@dataclass(frozen=True)
class RestoreValidationDialog:
    task_id: int
    allowed: bool
    reasons: tuple
    consequences: dict
    kind: ClassVar[str] = "restore_validation"

    @property
    def has_paid_invoices(self) -> bool:
        return any(inv.get("has_payments") for inv in self.consequences.get("invoices_to_delete", []))


@dataclass(frozen=True)
class ConfirmDestructiveDialog:
    task_id: int
    actions: tuple
    title: str
    message: str
    kind: ClassVar[str] = "confirm_destructive"


Dialog = Union[
    PrepaidConflictDialog,
    AmountConflictDialog,
    CancellationDialog,
    ConcurrentModificationDialog,
    RestoreValidationDialog,
    ConfirmDestructiveDialog,
]


class DialogController(Protocol):
    def open(self, dialog: Dialog) -> Any: ...

    def close(self, dialog: Dialog) -> None: ...

    def confirm(self, dialog: Dialog) -> bool: ...

    def toast(self, level: str, title: str, detail: str | None = None) -> None: ...


_DESTRUCTIVE_TEXT = {
    "delete_task": "The task will be removed permanently.",
    "return_to_credit": "Allocated credit will be taken back from the receivable.",
    "delete_allocation": "Allocated credit will be voided and cannot be recovered.",
}


class TaskWorkflow:
    """Drives task edits and lifecycle actions through the API and the dialogs."""

    def __init__(self, api, controller: DialogController, cache: SpeculativeCache | None = None):
        self.api = api
        self.controller = controller
        self.cache = cache or SpeculativeCache()

    # ---- shared plumbing ----

    def _fail(self, title: str, err: LedgerError):
        log.info("%s: %s %s", title, err.code, err.message)
        self.controller.toast("error", title, err.message)

    def _confirm_destructive(self, task_id: int, actions) -> bool:
        actions = tuple(actions)
        if not actions:
            return True
        dialog = ConfirmDestructiveDialog(
            task_id=task_id,
            actions=actions,
            title="This cannot be undone",
            message=" ".join(_DESTRUCTIVE_TEXT.get(a, a) for a in actions),
        )
        return bool(self.controller.confirm(dialog))

    def _stale(self, task_id: int, err: ConcurrentModification):
        """Someone else changed the task: re-fetch, never retry blindly."""
        try:
            fresh = self.api.get_task(task_id)
        except LedgerError as e:
            self._fail("Could not reload task", e)
            raise
        self.cache.set(("task", task_id), fresh)
        self.controller.open(ConcurrentModificationDialog(
            task_id=task_id,
            expected_updated_at=err.expected_updated_at,
            current_updated_at=err.current_updated_at,
            current_task=fresh,
        ))
        self.controller.toast("warning", "Task was changed by someone else", "The latest version has been loaded.")
        return fresh

    def _submit(self, title: str, dialog, collector: DecisionCollector, send):
        try:
            payload = collector.build()
        except PartialDecisionMissing as e:
            # never reaches the server
            self.controller.toast("warning", "Decisions incomplete", e.message)
            raise
        if not self._confirm_destructive(dialog.task_id, collector.destructive_actions):
            return None
        try:
            result = send(payload)
        except ConcurrentModification as e:
            self.controller.close(dialog)
            return self._stale(dialog.task_id, e)
        except LedgerError as e:
            self._fail(title, e)
            raise
        self.controller.close(dialog)
        task = result.get("task") if isinstance(result, dict) else None
        if task:
            self.cache.set(("task", dialog.task_id), task)
        else:
            self.cache.discard(("task", dialog.task_id))
        self.controller.toast("success", title)
        return result

    # ---- edits ----

    def update_task(self, task: dict, changes: dict):
        task_id = task["id"]
        try:
            updated = self.api.update_task(task_id, changes, expected_updated_at=task.get("updated_at"))
        except ConflictDetected as e:
            return self._resolve_conflict(task, changes, e)
        except ConcurrentModification as e:
            return self._stale(task_id, e)
        except LedgerError as e:
            self._fail("Could not save task", e)
            raise
        self.cache.set(("task", task_id), updated)
        self.controller.toast("success", "Task saved")
        return updated

    def _resolve_conflict(self, task: dict, changes: dict, err: ConflictDetected):
        task_id = task["id"]
        collector = DecisionCollector.from_conflict(err.data)
        if collector.flow == PREPAID_FLOW:
            new_prepaid = changes.get("prepaid_amount", err.data.get("new_prepaid_amount"))
            dialog = PrepaidConflictDialog(task_id, new_prepaid, err.data, collector)
        elif collector.flow == AMOUNT_FLOW:
            new_amount = changes.get("amount", err.data.get("new_task_amount"))
            dialog = AmountConflictDialog(task_id, new_amount, err.data, collector)
        else:
            dialog = CancellationDialog(task_id, err.data, collector)

        filled = self.controller.open(dialog)
        if filled is None:
            return None
        if isinstance(dialog, PrepaidConflictDialog):
            send = lambda decisions: self.api.resolve_prepaid_change(
                task_id, dialog.new_prepaid_amount, decisions, expected_updated_at=task.get("updated_at"))
            return self._submit("Prepaid change applied", dialog, filled, send)
        if isinstance(dialog, AmountConflictDialog):
            send = lambda decisions: self.api.resolve_amount_change(
                task_id, dialog.new_task_amount, decisions, expected_updated_at=task.get("updated_at"))
            return self._submit("Amount change applied", dialog, filled, send)
        return self._submit_cancellation(task, dialog, filled)

    # ---- status ----

    def set_status(self, task: dict, status: str):
        """Show the new status at once and put the old one back if the server refuses."""
        task_id = task["id"]
        key = ("task", task_id)
        if self.cache.get(key) is None:
            self.cache.set(key, task)
        op_id = f"status:{task_id}:{status}"
        try:
            with self.cache.speculate(op_id, key, lambda t: {**t, "status": status}):
                updated = self.api.set_status(task_id, status, expected_updated_at=task.get("updated_at"))
        except ConcurrentModification as e:
            return self._stale(task_id, e)
        except LedgerError as e:
            self._fail("Could not change status", e)
            raise
        self.cache.set(key, updated)
        return updated

    # ---- cancellation / deletion ----

    def cancel_task(self, task: dict, task_action: TaskAction | str | None = None):
        task_id = task["id"]
        try:
            analysis = self.api.cancellation_analysis(task_id)
        except LedgerError as e:
            self._fail("Could not load cancellation details", e)
            raise
        collector = DecisionCollector.from_conflict(analysis)
        if task_action is not None:
            collector.set_task_action(task_action)
        dialog = CancellationDialog(task_id, analysis, collector)
        filled = self.controller.open(dialog)
        if filled is None:
            return None
        return self._submit_cancellation(task, dialog, filled)

    def _submit_cancellation(self, task: dict, dialog, collector: DecisionCollector):
        task_id = task["id"]
        title = "Task deleted" if collector.task_action == TaskAction.DELETE else "Task cancelled"
        send = lambda decisions: self.api.cancel(task_id, decisions, expected_updated_at=task.get("updated_at"))
        return self._submit(title, dialog, collector, send)

    def delete_task(self, task: dict):
        task_id = task["id"]
        if not self._confirm_destructive(task_id, ["delete_task"]):
            return None
        try:
            result = self.api.delete_task(task_id)
        except ConflictDetected as e:
            if e.conflict_type != CANCELLATION_FLOW:
                self._fail("Could not delete task", e)
                raise
            # money is attached: decide per record, deleting the task at the end
            collector = DecisionCollector.from_conflict(e.data).set_task_action(TaskAction.DELETE)
            dialog = CancellationDialog(task_id, e.data, collector)
            filled = self.controller.open(dialog)
            if filled is None:
                return None
            return self._submit_cancellation(task, dialog, filled)
        except LedgerError as e:
            self._fail("Could not delete task", e)
            raise
        self.cache.discard(("task", task_id))
        self.controller.toast("success", "Task deleted")
        return result

    # ---- restore ----

    def restore_task(self, task: dict):
        task_id = task["id"]
        try:
            validation = self.api.validate_restore(task_id)
        except LedgerError as e:
            self._fail("Could not check restore", e)
            raise
        dialog = RestoreValidationDialog(
            task_id=task_id,
            allowed=bool(validation.get("allowed")),
            reasons=tuple(validation.get("reasons") or ()),
            consequences=validation.get("consequences") or {},
        )
        if not dialog.allowed:
            self.controller.open(dialog)
            self.controller.toast("warning", "Task cannot be restored", "; ".join(dialog.reasons) or None)
            return None
        if not self.controller.confirm(dialog):
            return None
        try:
            restored = self.api.restore(task_id, confirmed=True)
        except LedgerError as e:
            self._fail("Could not restore task", e)
            raise
        self.cache.set(("task", task_id), restored)
        self.controller.toast("success", "Task restored")
        return restored
