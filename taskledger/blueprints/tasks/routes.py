# taskledger/blueprints/tasks/routes.py
from flask import request
from flask_login import login_required, current_user
from sqlalchemy import or_, desc, func
from sqlalchemy.orm import selectinload

from ...security import roles_required
from ...extensions import db
from ...models.client import Client
from ...models.task import Task, TASK_STATUSES
from ...serializers import task_to_dict
from ...services import lifecycle
from ..utils import ok, json_body, get_or_404, page_args, require_task_access
from . import tasks_bp


@tasks_bp.get("/tasks")
@login_required
def list_tasks():
    q         = (request.args.get("search") or "").strip()
    status    = (request.args.get("status") or "").strip()
    task_type = (request.args.get("type") or "").strip()
    client_id = request.args.get("client_id", type=int)
    page, per_page = page_args()

    base = Task.query.options(
        selectinload(Task.client),
        selectinload(Task.assignee),
    )
    if not current_user.is_admin:
        base = base.filter(Task.assigned_to_id == current_user.id)

    if q:
        like = f"%{q}%"
        base = (
            base.join(Client, Task.client_id == Client.id)
                .filter(
                    or_(
                        Task.task_name.ilike(like),
                        Task.notes.ilike(like),
                        func.cast(Task.id, db.String).ilike(like),
                        Client.name.ilike(like),
                    )
                )
        )
    if status:
        base = base.filter(Task.status == status)
    if task_type:
        base = base.filter(Task.type == task_type)
    if client_id:
        base = base.filter(Task.client_id == client_id)

    total = base.count()
    pages = max((total + per_page - 1) // per_page, 1)
    page = min(page, pages)
    tasks = base.order_by(desc(Task.created_at), desc(Task.id)).offset((page - 1) * per_page).limit(per_page).all()

    counts = {s: 0 for s in TASK_STATUSES}
    for s, c in db.session.query(Task.status, func.count()).group_by(Task.status).all():
        if s in counts:
            counts[s] = c

    return ok({
        "items": [task_to_dict(t) for t in tasks],
        "page": page,
        "per_page": per_page,
        "pages": pages,
        "total": total,
        "status_counts": counts,
    })


@tasks_bp.post("/tasks")
@login_required
@roles_required("admin")
def create_task():
    task = lifecycle.create_task(json_body(), actor=current_user)
    return ok(task_to_dict(task, detail=True), "Task created", 201)


@tasks_bp.get("/tasks/<int:task_id>")
@login_required
def get_task(task_id):
    task = require_task_access(get_or_404(Task, "task", task_id))
    return ok(task_to_dict(task, detail=True))


@tasks_bp.put("/tasks/<int:task_id>")
@login_required
@roles_required("admin")
def update_task(task_id):
    task = get_or_404(Task, "task", task_id)
    task = lifecycle.update_task(task, json_body(), actor=current_user, serializer=task_to_dict)
    return ok(task_to_dict(task, detail=True), "Task updated")


@tasks_bp.delete("/tasks/<int:task_id>")
@login_required
@roles_required("admin")
def delete_task(task_id):
    task = get_or_404(Task, "task", task_id)
    lifecycle.delete_task(task, actor=current_user)
    return ok({"task_id": task_id}, "Task deleted")


@tasks_bp.put("/tasks/<int:task_id>/status")
@login_required
@roles_required("admin")
def set_status(task_id):
    task = get_or_404(Task, "task", task_id)
    body = json_body()
    lifecycle.check_not_stale(task, body.get("expected_updated_at"), task_to_dict)
    task = lifecycle.set_status(task, (body.get("status") or "").strip(), actor=current_user)
    return ok(task_to_dict(task), f"Task is now {task.status}")


@tasks_bp.post("/tasks/<int:task_id>/submit-for-review")
@login_required
def submit_for_review(task_id):
    task = require_task_access(get_or_404(Task, "task", task_id))
    task = lifecycle.submit_for_review(task, actor=current_user)
    return ok(task_to_dict(task), "Submitted for review")


@tasks_bp.post("/tasks/<int:task_id>/approve")
@login_required
@roles_required("admin")
def approve(task_id):
    task = get_or_404(Task, "task", task_id)
    body = json_body()
    task = lifecycle.approve(
        task,
        actor=current_user,
        expense_amount=lifecycle.parse_amount(body, "expense_amount"),
        notes=body.get("notes"),
    )
    return ok(task_to_dict(task, detail=True), "Task approved")


@tasks_bp.post("/tasks/<int:task_id>/reject")
@login_required
@roles_required("admin")
def reject(task_id):
    task = get_or_404(Task, "task", task_id)
    task = lifecycle.reject(task, actor=current_user, reason=json_body().get("reason"))
    return ok(task_to_dict(task), "Task sent back")


@tasks_bp.post("/tasks/<int:task_id>/complete")
@login_required
@roles_required("admin")
def complete(task_id):
    task = get_or_404(Task, "task", task_id)
    task = lifecycle.complete(task, json_body(), actor=current_user)
    return ok(task_to_dict(task, detail=True), "Task completed")
