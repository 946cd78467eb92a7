# taskledger/serializers.py
from __future__ import annotations

from .services.ledger import allocation_state, client_credit_balance, payment_state, receivable_state
from .utils import as_float, iso


def task_to_dict(t, detail: bool = False) -> dict:
    data = {
        "id": t.id,
        "client_id": t.client_id,
        "client_name": t.client.name if t.client else None,
        "assigned_to_id": t.assigned_to_id,
        "assigned_to_name": t.assignee.name if t.assignee else None,
        "task_name": t.task_name,
        "type": t.type,
        "status": t.status,
        "amount": as_float(t.amount),
        "prepaid_amount": as_float(t.prepaid_amount),
        "expense_amount": as_float(t.expense_amount),
        "main_amount": as_float(t.main_amount),
        "start_date": iso(t.start_date),
        "end_date": iso(t.end_date),
        "notes": t.notes,
        "rejection_reason": t.rejection_reason,
        "tags": [tag.name for tag in t.tags],
        "requirements": [
            {"id": r.id, "requirement_text": r.requirement_text, "is_provided": r.is_provided}
            for r in t.requirements
        ],
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
    }
    if detail:
        data["prepaid_receivable"] = receivable_state(t.prepaid_receivable)
        data["main_receivable"] = receivable_state(t.main_receivable)
        data["invoices"] = [invoice_to_dict(i) for i in t.invoices]
        data["commissions"] = [commission_to_dict(c) for c in t.commissions]
    return data


def receivable_to_dict(r) -> dict:
    data = receivable_state(r)
    data.update({
        "id": r.id,
        "client_id": r.client_id,
        "task_id": r.task_id,
        "description": r.description,
        "original_amount": as_float(r.original_amount) if r.original_amount is not None else None,
        "adjustment_reason": r.adjustment_reason,
        "due_date": iso(r.due_date),
    })
    return data


def payment_to_dict(p) -> dict:
    return payment_state(p)


def allocation_to_dict(a) -> dict:
    return allocation_state(a)


def credit_to_dict(c) -> dict:
    return {
        "id": c.id,
        "client_id": c.client_id,
        "amount": as_float(c.amount),
        "allocated_amount": as_float(c.allocated_amount),
        "remaining_amount": as_float(c.remaining_amount),
        "description": c.description,
        "source": c.source,
        "source_payment_id": c.source_payment_id,
        "received_at": iso(c.received_at),
    }


def client_to_dict(c, with_credits: bool = False) -> dict:
    data = {
        "id": c.id,
        "name": c.name,
        "phone": c.phone,
        "type": c.type,
        "notes": c.notes,
        "credit_balance": as_float(client_credit_balance(c)),
        "created_at": iso(c.created_at),
    }
    if with_credits:
        data["credits"] = [credit_to_dict(cr) for cr in c.credits]
    return data


def invoice_to_dict(i) -> dict:
    return {
        "id": i.id,
        "task_id": i.task_id,
        "receivable_id": i.receivable_id,
        "description": i.description,
        "amount": as_float(i.amount),
        "paid_amount": as_float(i.paid_amount),
        "currency": i.currency,
        "status": i.status,
        "issued_at": iso(i.issued_at),
    }


def commission_to_dict(c) -> dict:
    return {
        "id": c.id,
        "task_id": c.task_id,
        "employee_id": c.employee_id,
        "amount": as_float(c.amount),
        "rate": float(c.rate) if c.rate is not None else None,
        "status": c.status,
        "created_at": iso(c.created_at),
        "paid_at": iso(c.paid_at),
        "voided_at": iso(c.voided_at),
    }


def user_to_dict(u) -> dict:
    return {"id": u.id, "name": u.name, "email": u.email, "role": u.role}
