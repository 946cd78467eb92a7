from flask import Blueprint

ledger_bp = Blueprint("ledger", __name__)

# Import route modules to register their endpoints
from . import routes  # noqa: E402,F401
