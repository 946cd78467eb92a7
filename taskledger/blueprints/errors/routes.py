from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException
from ...errors import LedgerError
from ...extensions import db
from . import errors_bp


def _envelope(code, message, data=None, status=400):
    return jsonify({"success": False, "code": code, "message": message, "data": data or {}}), status


# Typed ledger errors carry their own status and body
@errors_bp.app_errorhandler(LedgerError)
def err_ledger(e: LedgerError):
    db.session.rollback()
    if e.status >= 500:
        current_app.logger.error("%s %s -> %s %s", request.method, request.path, e.code, e.message)
    else:
        current_app.logger.info("%s %s -> %s %s", request.method, request.path, e.status, e.code)
    return jsonify(e.to_dict()), e.status


# 404: unknown route
@errors_bp.app_errorhandler(404)
def err_404(e):
    return _envelope("not_found", "Not found", {"path": request.path}, 404)


# 405: Method Not Allowed
@errors_bp.app_errorhandler(405)
def err_405(e):
    return _envelope("method_not_allowed", e.description, {"method": request.method}, 405)


# 500: Internal Server Error
@errors_bp.app_errorhandler(500)
def err_500(e):
    # if a DB action caused this, roll back so the session is usable again
    db.session.rollback()
    return _envelope("internal_error", "Internal server error", status=500)


# Fallback for uncaught HTTPException (bad JSON, 413, ...)
@errors_bp.app_errorhandler(HTTPException)
def err_http(e: HTTPException):
    return _envelope(e.name.lower().replace(" ", "_"), e.description, status=e.code)


# Last-resort: any other Exception
@errors_bp.app_errorhandler(Exception)
def err_unexpected(e):
    db.session.rollback()
    current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    # Generic 500, no internals in the body
    return _envelope("internal_error", "Internal server error", status=500)
