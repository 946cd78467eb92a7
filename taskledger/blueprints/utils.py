from flask import jsonify, request, current_app
from flask_login import current_user

from ..errors import NotFound, PermissionDenied, ValidationRejected


def ok(data=None, message=None, status=200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationRejected("Request body must be a JSON object", code="invalid_body")
    return body


def get_or_404(model, entity: str, obj_id):
    obj = model.query.get(obj_id) if obj_id is not None else None
    if obj is None:
        raise NotFound(entity, obj_id)
    return obj


def page_args():
    default = current_app.config.get("DEFAULT_PER_PAGE", 25)
    cap = current_app.config.get("MAX_PER_PAGE", 1000)
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    per_page = min(max(request.args.get("per_page", default, type=int) or default, 1), cap)
    return page, per_page


def require_task_access(task):
    """Admins see every task, employees only the ones assigned to them."""
    if current_user.is_admin or task.assigned_to_id == current_user.id:
        return task
    raise PermissionDenied("Task is not assigned to you", data={"task_id": task.id})
