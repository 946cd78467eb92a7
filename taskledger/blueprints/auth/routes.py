# taskledger/blueprints/auth/routes.py
from flask import request, jsonify, current_app
from flask_login import login_required, current_user

from ...errors import Unauthorized, ValidationRejected
from ...extensions import db
from ...models.user import User
from ...serializers import user_to_dict
from . import auth_bp


@auth_bp.post("/auth/token")
def issue_token():
    """Exchange email + password for the user's API token."""
    body = request.get_json(silent=True) or {}
    email = (body.get("email") or "").strip().lower()
    password = body.get("password") or ""
    if not email or not password:
        raise ValidationRejected("email and password are required", code="missing_credentials")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password) or not user.is_active_account:
        current_app.logger.info("Token refused for %s", email)
        raise Unauthorized("Invalid email or password")

    if body.get("rotate"):
        user.rotate_token()
    user.mark_login()
    db.session.commit()
    return jsonify({"success": True, "data": {"token": user.api_token, "user": user_to_dict(user)}})


@auth_bp.get("/auth/me")
@login_required
def me():
    return jsonify({"success": True, "data": user_to_dict(current_user)})
