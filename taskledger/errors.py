"""
Typed errors shared by the API server and the client SDK.

Every error carries an HTTP ``status``, a machine-readable ``code``, a
human-readable ``message`` and structured ``data``. The server renders them as
``{"success": false, "code", "message", "data"}``; the client rebuilds the same
class from that envelope, so both sides catch by type rather than by message.

    LedgerError
    +-- NotFound                 404  record missing, fatal
    +-- ConflictDetected         409  edit would break the ledger invariant
    +-- ConcurrentModification   409  stale expected_updated_at, re-fetch
    +-- ReconciliationAborted    409  mid-execution inconsistency, rolled back
    +-- InvalidTransition        409  lifecycle move not allowed
    +-- ValidationRejected       422  precondition failed (e.g. restore blocked)
    +-- InvalidDecision          422  malformed or disallowed decision
    +-- PartialDecisionMissing   422  a record was left without a decision
    +-- Unauthorized             401  missing or unknown API token
    +-- PermissionDenied         403
"""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    status = 400
    code = "ledger_error"

    def __init__(self, message: str = "", *, data: Any = None, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.data = data if data is not None else {}
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "data": self.data,
        }


class NotFound(LedgerError):
    status = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id, message: str = ""):
        super().__init__(
            message or f"{entity} {entity_id} not found",
            data={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ConflictDetected(LedgerError):
    """The requested edit would over-settle a receivable.

    ``code`` is the conflict type (``prepaid_amount_change_conflict``,
    ``main_receivable_overpayment`` or ``task_cancellation_conflict``) and
    ``data`` is the full conflict report the decision flow is built from.
    """
    status = 409

    def __init__(self, conflict_type: str, data: dict, message: str = ""):
        super().__init__(
            message or "Change conflicts with recorded payments",
            data={"conflict_type": conflict_type, **data},
            code=conflict_type,
        )
        self.conflict_type = conflict_type


class ConcurrentModification(LedgerError):
    status = 409
    code = "concurrent_modification"

    def __init__(self, expected_updated_at: str | None, current_updated_at: str | None,
                 current_task_data: dict | None = None, message: str = ""):
        super().__init__(
            message or "Task was modified by someone else",
            data={
                "expected_updated_at": expected_updated_at,
                "current_updated_at": current_updated_at,
                "current_task_data": current_task_data,
            },
        )
        self.expected_updated_at = expected_updated_at
        self.current_updated_at = current_updated_at


class ReconciliationAborted(LedgerError):
    status = 409
    code = "reconciliation_aborted"

    def __init__(self, message: str, *, record: dict | None = None):
        super().__init__(message, data={"record": record})
        self.record = record


class InvalidTransition(LedgerError):
    status = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str = ""):
        super().__init__(
            message or f"Cannot move task from {current} to {target}",
            data={"current_status": current, "target_status": target},
        )


class ValidationRejected(LedgerError):
    status = 422
    code = "validation_rejected"


class InvalidDecision(LedgerError):
    status = 422
    code = "invalid_decision"


class PartialDecisionMissing(LedgerError):
    status = 422
    code = "decisions_incomplete"

    def __init__(self, payment_ids=(), allocation_ids=(), message: str = ""):
        payment_ids = sorted(payment_ids)
        allocation_ids = sorted(allocation_ids)
        super().__init__(
            message or "Every payment and allocation needs a decision",
            data={"payment_ids": payment_ids, "allocation_ids": allocation_ids},
        )
        self.payment_ids = payment_ids
        self.allocation_ids = allocation_ids


class Unauthorized(LedgerError):
    status = 401
    code = "unauthorized"


class PermissionDenied(LedgerError):
    status = 403
    code = "forbidden"


def error_from_response(status: int, body: dict | None) -> LedgerError:
    """Rebuild a typed error from an API error envelope."""
    body = body or {}
    data = body.get("data") or {}
    message = body.get("message") or ""
    code = body.get("code") or ""

    if status == 404:
        return NotFound(data.get("entity", "record"), data.get("id"), message)
    if status == 409 and "conflict_type" in data:
        rest = {k: v for k, v in data.items() if k != "conflict_type"}
        return ConflictDetected(data["conflict_type"], rest, message)
    if status == 409 and code == ConcurrentModification.code:
        return ConcurrentModification(
            data.get("expected_updated_at"),
            data.get("current_updated_at"),
            data.get("current_task_data"),
            message,
        )
    if code == ReconciliationAborted.code:
        return ReconciliationAborted(message, record=data.get("record"))
    if code == InvalidTransition.code:
        return InvalidTransition(data.get("current_status"), data.get("target_status"), message)
    if code == PartialDecisionMissing.code:
        return PartialDecisionMissing(data.get("payment_ids", ()), data.get("allocation_ids", ()), message)
    if code == InvalidDecision.code:
        return InvalidDecision(message, data=data)
    if status == 401:
        return Unauthorized(message, data=data)
    if status == 403:
        return PermissionDenied(message, data=data)
    if status == 422:
        return ValidationRejected(message, data=data, code=code or None)

    err = LedgerError(message, data=data, code=code or None)
    err.status = status
    return err
