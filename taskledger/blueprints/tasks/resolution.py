# taskledger/blueprints/tasks/resolution.py
"""Decision-flow endpoints: amount conflicts, cancellation and restore."""
from flask_login import login_required, current_user

from ...decisions import parse_cancellation, parse_decision_set, parse_prepaid_resolution
from ...errors import ValidationRejected
from ...models.task import Task
from ...security import roles_required
from ...serializers import task_to_dict
from ...services import lifecycle, reconciliation
from ..utils import ok, json_body, get_or_404
from . import tasks_bp


def _required_amount(body, key):
    value = lifecycle.parse_amount(body, key)
    if value is None:
        raise ValidationRejected(f"{key} is required", data={"field": key}, code="missing_field")
    return value


def _summary(summary):
    return summary.to_dict(lambda t: task_to_dict(t, detail=True))


@tasks_bp.post("/tasks/<int:task_id>/resolve-prepaid-change")
@login_required
@roles_required("admin")
def resolve_prepaid_change(task_id):
    task = get_or_404(Task, "task", task_id)
    body = json_body()
    lifecycle.check_not_stale(task, body.get("expected_updated_at"), task_to_dict)
    new_prepaid = _required_amount(body, "new_prepaid_amount")
    resolution = parse_prepaid_resolution(body.get("decisions"))
    summary = reconciliation.resolve_prepaid_change(task, new_prepaid, resolution, actor=current_user)
    return ok(_summary(summary), "Prepaid change applied")


@tasks_bp.post("/tasks/<int:task_id>/resolve-amount-change")
@login_required
@roles_required("admin")
def resolve_amount_change(task_id):
    task = get_or_404(Task, "task", task_id)
    body = json_body()
    lifecycle.check_not_stale(task, body.get("expected_updated_at"), task_to_dict)
    new_amount = _required_amount(body, "new_task_amount")
    decisions = parse_decision_set(body.get("main_receivable_decisions"))
    summary = reconciliation.resolve_amount_change(task, new_amount, decisions, actor=current_user)
    return ok(_summary(summary), "Amount change applied")


@tasks_bp.get("/tasks/<int:task_id>/cancellation-analysis")
@login_required
@roles_required("admin")
def cancellation_analysis(task_id):
    task = get_or_404(Task, "task", task_id)
    return ok(lifecycle.cancellation_analysis(task).to_dict())


@tasks_bp.post("/tasks/<int:task_id>/cancel")
@login_required
@roles_required("admin")
def cancel(task_id):
    task = get_or_404(Task, "task", task_id)
    body = json_body()
    lifecycle.check_not_stale(task, body.get("expected_updated_at"), task_to_dict)
    decisions = parse_cancellation(body)
    summary = lifecycle.cancel(task, decisions, actor=current_user)
    message = "Task deleted" if summary.task is None else "Task cancelled"
    return ok(_summary(summary), message)


@tasks_bp.get("/tasks/<int:task_id>/validate-restore")
@login_required
@roles_required("admin")
def validate_restore(task_id):
    task = get_or_404(Task, "task", task_id)
    return ok(lifecycle.validate_restore(task).to_dict())


@tasks_bp.post("/tasks/<int:task_id>/restore")
@login_required
@roles_required("admin")
def restore(task_id):
    task = get_or_404(Task, "task", task_id)
    body = json_body()
    task = lifecycle.restore(task, body.get("confirmed") is True, actor=current_user)
    return ok(task_to_dict(task, detail=True), "Task restored")
