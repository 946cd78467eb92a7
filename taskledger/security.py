from functools import wraps

from flask import request
from flask_login import current_user

from .errors import PermissionDenied, Unauthorized
from .extensions import login_manager
from .models.user import User


@login_manager.request_loader
def load_user_from_request(req):
    header = req.headers.get("Authorization", "")
    if not header.lower().startswith("bearer "):
        return None
    token = header[7:].strip()
    if not token:
        return None
    user = User.query.filter_by(api_token=token).first()
    if user is None or not user.is_active_account:
        return None
    return user


@login_manager.user_loader
def load_user(user_id):
    return User.query.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthorized("Missing or invalid API token")


def roles_required(*roles):
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                raise Unauthorized("Missing or invalid API token")
            if current_user.role not in roles:
                raise PermissionDenied(
                    f"{current_user.role} cannot {request.method} {request.path}",
                    data={"required_roles": list(roles)},
                )
            return fn(*args, **kwargs)
        return wrapper
    return deco
