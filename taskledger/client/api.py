# taskledger/client/api.py
from __future__ import annotations

import logging
from typing import Any

import requests

from ..decisions import CancellationDecisions, DecisionSet, PrepaidResolution
from ..errors import error_from_response

log = logging.getLogger(__name__)


def _payload(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_payload"):
        return obj.to_payload()
    return dict(obj)


class LedgerClient:
    """Thin ``requests`` wrapper: one method per endpoint, typed errors on failure.

    4xx responses are raised as the matching ``LedgerError`` subclass. 5xx
    responses and network failures surface as ``requests`` exceptions, which
    is what the poller treats as transient.
    """

    def __init__(self, settings, session: requests.Session | None = None):
        self.settings = settings
        self.session = session or requests.Session()

    # ---- transport ----

    def _headers(self) -> dict:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        return headers

    def request(self, method: str, path: str, *, json: Any = None, params: dict | None = None):
        url = f"{self.settings.base_url}{path}"
        r = self.session.request(
            method, url,
            json=json,
            params={k: v for k, v in (params or {}).items() if v not in (None, "")} or None,
            headers=self._headers(),
            timeout=self.settings.timeout,
        )
        log.debug("%s %s -> %s", method, path, r.status_code)

        if r.status_code >= 500:
            log.error("Server error %s on %s %s | body=%s", r.status_code, method, path, r.text[:500])
            r.raise_for_status()
        try:
            body = r.json()
        except ValueError:
            body = {}
        if r.status_code >= 400:
            err = error_from_response(r.status_code, body)
            log.info("%s %s refused: %s %s", method, path, r.status_code, err.code)
            raise err
        return body.get("data") if isinstance(body, dict) else body

    def get(self, path, **params):
        return self.request("GET", path, params=params)

    def post(self, path, body=None):
        return self.request("POST", path, json=body or {})

    def put(self, path, body=None):
        return self.request("PUT", path, json=body or {})

    def delete(self, path):
        return self.request("DELETE", path)

    # ---- auth ----

    def login(self, email: str, password: str) -> dict:
        data = self.post("/auth/token", {"email": email, "password": password})
        self.settings.token = data["token"]
        return data["user"]

    # ---- tasks ----

    def list_tasks(self, **filters) -> dict:
        return self.get("/tasks", **filters)

    def get_task(self, task_id: int) -> dict:
        return self.get(f"/tasks/{task_id}")

    def create_task(self, payload: dict) -> dict:
        return self.post("/tasks", payload)

    def update_task(self, task_id: int, changes: dict, expected_updated_at: str | None = None) -> dict:
        body = dict(changes)
        if expected_updated_at:
            body["expected_updated_at"] = expected_updated_at
        return self.put(f"/tasks/{task_id}", body)

    def delete_task(self, task_id: int) -> dict:
        return self.delete(f"/tasks/{task_id}")

    def set_status(self, task_id: int, status: str, expected_updated_at: str | None = None) -> dict:
        return self.put(f"/tasks/{task_id}/status",
                        {"status": status, "expected_updated_at": expected_updated_at})

    def submit_for_review(self, task_id: int) -> dict:
        return self.post(f"/tasks/{task_id}/submit-for-review")

    def approve(self, task_id: int, expense_amount=None, notes: str | None = None) -> dict:
        return self.post(f"/tasks/{task_id}/approve", {"expense_amount": expense_amount, "notes": notes})

    def reject(self, task_id: int, reason: str) -> dict:
        return self.post(f"/tasks/{task_id}/reject", {"reason": reason})

    def complete(self, task_id: int, payload: dict | None = None) -> dict:
        return self.post(f"/tasks/{task_id}/complete", payload)

    # ---- decision flows ----

    def resolve_prepaid_change(self, task_id: int, new_prepaid_amount, resolution: PrepaidResolution | dict,
                               expected_updated_at: str | None = None) -> dict:
        return self.post(f"/tasks/{task_id}/resolve-prepaid-change", {
            "new_prepaid_amount": float(new_prepaid_amount),
            "decisions": _payload(resolution),
            "expected_updated_at": expected_updated_at,
        })

    def resolve_amount_change(self, task_id: int, new_task_amount, decisions: DecisionSet | dict,
                              expected_updated_at: str | None = None) -> dict:
        return self.post(f"/tasks/{task_id}/resolve-amount-change", {
            "new_task_amount": float(new_task_amount),
            "main_receivable_decisions": _payload(decisions),
            "expected_updated_at": expected_updated_at,
        })

    def cancellation_analysis(self, task_id: int) -> dict:
        return self.get(f"/tasks/{task_id}/cancellation-analysis")

    def cancel(self, task_id: int, decisions: CancellationDecisions | dict,
               expected_updated_at: str | None = None) -> dict:
        body = _payload(decisions)
        if expected_updated_at:
            body["expected_updated_at"] = expected_updated_at
        return self.post(f"/tasks/{task_id}/cancel", body)

    def validate_restore(self, task_id: int) -> dict:
        return self.get(f"/tasks/{task_id}/validate-restore")

    def restore(self, task_id: int, confirmed: bool) -> dict:
        return self.post(f"/tasks/{task_id}/restore", {"confirmed": confirmed})

    # ---- ledger ----

    def create_client(self, name: str, type: str = "Other", phone: str | None = None) -> dict:
        return self.post("/clients", {"name": name, "type": type, "phone": phone})

    def get_client(self, client_id: int) -> dict:
        return self.get(f"/clients/{client_id}")

    def list_credits(self, client_id: int) -> dict:
        return self.get(f"/clients/{client_id}/credits")

    def add_credit(self, client_id: int, amount, description: str | None = None) -> dict:
        return self.post(f"/clients/{client_id}/credits", {"amount": float(amount), "description": description})

    def get_receivable(self, receivable_id: int) -> dict:
        return self.get(f"/receivables/{receivable_id}")

    def apply_credit(self, receivable_id: int, amount=None) -> dict:
        return self.post(f"/receivables/{receivable_id}/apply-credit",
                         {"amount": float(amount) if amount is not None else None})

    def record_payment(self, receivable_id: int, amount, method: str = "cash", note: str | None = None) -> dict:
        return self.post("/payments", {"receivable_id": receivable_id, "amount": float(amount),
                                       "method": method, "note": note})

    def get_payment(self, payment_id: int) -> dict:
        return self.get(f"/payments/{payment_id}")
