from decimal import Decimal

import pytest

from taskledger.extensions import db
from taskledger.models import ClientCredit, Payment, Task


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "ok"


# ---- auth ----

def test_requests_without_token_are_unauthorized(client, admin):
    r = client.get("/tasks")
    assert r.status_code == 401
    assert r.get_json() == {"success": False, "code": "unauthorized",
                            "message": "Missing or invalid API token", "data": {}}

    r = client.get("/tasks", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


def test_token_exchange(client, admin):
    r = client.post("/auth/token", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401

    r = client.post("/auth/token", json={"email": "Admin@Example.com", "password": "secret123"})
    assert r.status_code == 200
    token = r.get_json()["data"]["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.get_json()["data"]["role"] == "admin"


def test_employee_cannot_mutate(client, employee, acme, auth_headers):
    r = client.post("/tasks", json={"client_id": acme.id, "amount": 10}, headers=auth_headers(employee))
    assert r.status_code == 403
    assert r.get_json()["code"] == "forbidden"


def test_employee_sees_only_assigned_tasks(client, make_task, employee, auth_headers):
    mine = make_task(assigned_to_id=employee.id)
    other = make_task()

    r = client.get("/tasks", headers=auth_headers(employee))
    assert [t["id"] for t in r.get_json()["data"]["items"]] == [mine.id]

    r = client.get(f"/tasks/{other.id}", headers=auth_headers(employee))
    assert r.status_code == 403

    r = client.post(f"/tasks/{mine.id}/submit-for-review", headers=auth_headers(employee))
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "Pending Review"


# ---- tasks ----

def test_create_and_list_tasks(client, admin, acme, auth_headers):
    r = client.post("/tasks", json={
        "client_id": acme.id, "task_name": "Deed registration", "type": "Government",
        "amount": "1500", "prepaid_amount": "500", "tags": ["urgent"],
    }, headers=auth_headers(admin))
    assert r.status_code == 201
    task = r.get_json()["data"]
    assert task["prepaid_receivable"]["amount"] == 500.0
    assert task["main_amount"] == 1000.0

    r = client.get("/tasks?search=deed&status=New", headers=auth_headers(admin))
    body = r.get_json()["data"]
    assert body["total"] == 1
    assert body["status_counts"]["New"] == 1


def test_missing_task_is_404(client, admin, auth_headers):
    r = client.get("/tasks/999", headers=auth_headers(admin))
    assert r.status_code == 404
    assert r.get_json()["code"] == "not_found"


def test_conflicting_edit_returns_report(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    p = pay(task.prepaid_receivable, "400")

    r = client.put(f"/tasks/{task.id}", json={"prepaid_amount": 200}, headers=auth_headers(admin))

    assert r.status_code == 409
    body = r.get_json()
    assert body["success"] is False
    assert body["code"] == "prepaid_amount_change_conflict"
    assert body["data"]["surplus"] == 200.0
    assert [x["id"] for x in body["data"]["financial_records"]["payments"]] == [p.id]


def test_stale_edit_is_refused(client, make_task, admin, auth_headers):
    task = make_task()

    r = client.put(f"/tasks/{task.id}", json={"notes": "late", "expected_updated_at": "2001-01-01T00:00:00"},
                   headers=auth_headers(admin))

    assert r.status_code == 409
    body = r.get_json()
    assert body["code"] == "concurrent_modification"
    assert body["data"]["current_task_data"]["id"] == task.id


def test_resolve_prepaid_change(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    p = pay(task.prepaid_receivable, "400")

    r = client.post(f"/tasks/{task.id}/resolve-prepaid-change", json={
        "new_prepaid_amount": 200,
        "decisions": {
            "receivable_decision": "adjust_to_new_amount",
            "payment_decisions": [{"payment_id": p.id, "action": "reduce_to", "new_amount": 200}],
        },
    }, headers=auth_headers(admin))

    assert r.status_code == 200, r.get_json()
    data = r.get_json()["data"]
    assert data["task"]["prepaid_amount"] == 200.0
    assert data["task"]["prepaid_receivable"]["balance"] == 0.0
    assert data["financial_impact"]["voided"] == 200.0
    assert data["balances"]["prepaid"]["total_paid"] == 200.0


def test_resolve_with_missing_decision(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    p1 = pay(task.prepaid_receivable, "200")
    p2 = pay(task.prepaid_receivable, "200")

    r = client.post(f"/tasks/{task.id}/resolve-prepaid-change", json={
        "new_prepaid_amount": 0,
        "decisions": {
            "receivable_decision": "eliminate_prepaid",
            "payment_decisions": [{"payment_id": p1.id, "action": "delete"}],
        },
    }, headers=auth_headers(admin))

    assert r.status_code == 422
    body = r.get_json()
    assert body["code"] == "decisions_incomplete"
    assert body["data"]["payment_ids"] == [p2.id]
    db.session.expire_all()
    assert Payment.query.count() == 2


def test_resolve_with_unknown_record(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000")
    client.post(f"/tasks/{task.id}/complete", headers=auth_headers(admin))
    db.session.expire_all()
    task = Task.query.get(task.id)
    p = pay(task.main_receivable, "1000")

    r = client.post(f"/tasks/{task.id}/resolve-amount-change", json={
        "new_task_amount": 600,
        "main_receivable_decisions": {"payment_decisions": [
            {"payment_id": p.id, "action": "convert_to_credit"},
            {"payment_id": 4242, "action": "delete"},
        ]},
    }, headers=auth_headers(admin))

    assert r.status_code == 409
    body = r.get_json()
    assert body["code"] == "reconciliation_aborted"
    assert body["data"]["record"]["id"] == 4242
    db.session.expire_all()
    assert ClientCredit.query.count() == 0
    assert Task.query.get(task.id).amount == Decimal("1000.00")


def test_resolve_amount_change(client, make_task, pay, admin, acme, auth_headers):
    task = make_task(amount="1000")
    client.post(f"/tasks/{task.id}/complete", headers=auth_headers(admin))
    db.session.expire_all()
    task = Task.query.get(task.id)
    p = pay(task.main_receivable, "1000")

    r = client.post(f"/tasks/{task.id}/resolve-amount-change", json={
        "new_task_amount": 600,
        "main_receivable_decisions": {"payment_decisions": [{"payment_id": p.id, "action": "convert_to_credit"}]},
    }, headers=auth_headers(admin))

    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["task"]["main_receivable"]["amount"] == 600.0
    assert data["task"]["main_receivable"]["total_paid"] == 0.0
    assert data["balances"]["client_credit"] == 1000.0
    assert data["credits_created"][0]["amount"] == 1000.0


def test_cancellation_flow(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    p = pay(task.prepaid_receivable, "400")

    r = client.delete(f"/tasks/{task.id}", headers=auth_headers(admin))
    assert r.status_code == 409
    assert r.get_json()["code"] == "task_cancellation_conflict"

    r = client.get(f"/tasks/{task.id}/cancellation-analysis", headers=auth_headers(admin))
    analysis = r.get_json()["data"]
    assert analysis["total_funds_involved"] == 400.0
    assert analysis["available_payment_actions"] == ["keep", "delete", "convert_to_credit"]

    r = client.post(f"/tasks/{task.id}/cancel", json={
        "task_action": "cancel",
        "prepaid_receivable_decisions": {"payment_decisions": [{"payment_id": p.id, "action": "keep"}]},
    }, headers=auth_headers(admin))
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["task"]["status"] == "Cancelled"
    assert data["task_action"] == "cancel"

    r = client.put(f"/tasks/{task.id}", json={"notes": "x"}, headers=auth_headers(admin))
    assert r.status_code == 422
    assert r.get_json()["code"] == "task_cancelled"


def test_hard_delete_via_cancel(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    p = pay(task.prepaid_receivable, "400")
    task_id = task.id

    r = client.post(f"/tasks/{task_id}/cancel", json={
        "task_action": "delete",
        "prepaid_receivable_decisions": {"payment_decisions": [{"payment_id": p.id, "action": "delete"}]},
    }, headers=auth_headers(admin))

    assert r.status_code == 200
    assert r.get_json()["data"]["task"] is None
    assert r.get_json()["message"] == "Task deleted"
    db.session.expire_all()
    assert Task.query.get(task_id) is None


def test_invalid_transition(client, make_task, admin, auth_headers):
    task = make_task()
    r = client.post(f"/tasks/{task.id}/approve", headers=auth_headers(admin))
    assert r.status_code == 409
    assert r.get_json()["data"] == {"current_status": "New", "target_status": "Completed"}


def test_restore_endpoints(client, make_task, admin, auth_headers):
    task = make_task(amount="300")
    client.post(f"/tasks/{task.id}/complete", headers=auth_headers(admin))

    r = client.get(f"/tasks/{task.id}/validate-restore", headers=auth_headers(admin))
    assert r.get_json()["data"]["allowed"] is True

    r = client.post(f"/tasks/{task.id}/restore", json={}, headers=auth_headers(admin))
    assert r.status_code == 422
    assert r.get_json()["code"] == "confirmation_required"

    r = client.post(f"/tasks/{task.id}/restore", json={"confirmed": True}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "New"
    assert r.get_json()["data"]["invoices"] == []


# ---- ledger ----

def test_payment_cannot_overpay(client, make_task, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")

    r = client.post("/payments", json={"receivable_id": task.prepaid_receivable.id, "amount": 500},
                    headers=auth_headers(admin))

    assert r.status_code == 422
    assert r.get_json()["code"] == "overpayment"


def test_credit_and_allocation(client, make_task, admin, acme, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    rid = task.prepaid_receivable.id

    r = client.post(f"/clients/{acme.id}/credits", json={"amount": 250, "description": "Deposit"},
                    headers=auth_headers(admin))
    assert r.status_code == 201

    r = client.post(f"/receivables/{rid}/apply-credit", json={"amount": 100}, headers=auth_headers(admin))
    assert r.status_code == 201
    assert r.get_json()["data"]["receivable"]["balance"] == 300.0

    r = client.get(f"/clients/{acme.id}/credits", headers=auth_headers(admin))
    assert r.get_json()["data"]["balance"] == 150.0


def test_bad_amount_is_rejected(client, acme, admin, auth_headers):
    r = client.post(f"/clients/{acme.id}/credits", json={"amount": "lots"}, headers=auth_headers(admin))
    assert r.status_code == 422
    assert r.get_json()["code"] == "invalid_amount"


@pytest.mark.parametrize("raw", ["NaN", "Infinity"])
def test_non_finite_amount_is_rejected(client, acme, admin, auth_headers, raw):
    r = client.post("/tasks", json={"client_id": acme.id, "amount": raw}, headers=auth_headers(admin))
    assert r.status_code == 422
    assert r.get_json()["code"] == "invalid_amount"


def test_non_finite_reduce_to_is_rejected(client, make_task, pay, admin, auth_headers):
    task = make_task(amount="1000", prepaid="400")
    p = pay(task.prepaid_receivable, "400")

    r = client.post(f"/tasks/{task.id}/resolve-prepaid-change", json={
        "new_prepaid_amount": 200,
        "decisions": {
            "receivable_decision": "adjust_to_new_amount",
            "payment_decisions": [{"payment_id": p.id, "action": "reduce_to", "new_amount": "NaN"}],
        },
    }, headers=auth_headers(admin))

    assert r.status_code == 422
    assert r.get_json()["code"] == "invalid_decision"


def test_restore_needs_literal_confirmation(client, make_task, admin, auth_headers):
    task = make_task(amount="300")
    client.post(f"/tasks/{task.id}/complete", headers=auth_headers(admin))

    for confirmed in ("false", "yes", 1):
        r = client.post(f"/tasks/{task.id}/restore", json={"confirmed": confirmed}, headers=auth_headers(admin))
        assert r.status_code == 422
        assert r.get_json()["code"] == "confirmation_required"

    db.session.expire_all()
    assert Task.query.get(task.id).status == "Completed"
