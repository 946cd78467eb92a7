from flask import Blueprint

auth_bp = Blueprint("auth", __name__)

# Import route modules to register their endpoints
from . import routes  # noqa: E402,F401
