from flask import Blueprint

tasks_bp = Blueprint("tasks", __name__)

# Import route modules to register their endpoints
from . import routes  # noqa: E402,F401
from . import resolution  # noqa: E402,F401
