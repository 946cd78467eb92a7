# taskledger/blueprints/ledger/routes.py
from flask import current_app
from flask_login import login_required, current_user

from ...security import roles_required
from ...errors import ValidationRejected
from ...extensions import db
from ...models.client import Client, CLIENT_TYPES
from ...models.payment import Payment
from ...models.receivable import Receivable
from ...serializers import client_to_dict, credit_to_dict, payment_to_dict, receivable_to_dict, allocation_to_dict
from ...services import ledger
from ...utils import parse_datetime
from ..utils import ok, json_body, get_or_404
from . import ledger_bp


# -----------------
# Clients & credit
# -----------------

@ledger_bp.post("/clients")
@login_required
@roles_required("admin")
def create_client():
    body = json_body()
    name = (body.get("name") or "").strip()
    if not name:
        raise ValidationRejected("name is required", data={"field": "name"}, code="missing_field")
    ctype = body.get("type") or "Other"
    if ctype not in CLIENT_TYPES:
        raise ValidationRejected(f"Unknown client type {ctype!r}", data={"field": "type"})

    client = Client(name=name, phone=body.get("phone"), type=ctype, notes=body.get("notes"))
    db.session.add(client)
    db.session.commit()
    current_app.logger.info("Client created: client=%s by=%s", client.id, current_user.id)
    return ok(client_to_dict(client), "Client created", 201)


@ledger_bp.get("/clients/<int:client_id>")
@login_required
@roles_required("admin")
def get_client(client_id):
    return ok(client_to_dict(get_or_404(Client, "client", client_id), with_credits=True))


@ledger_bp.get("/clients/<int:client_id>/credits")
@login_required
@roles_required("admin")
def list_credits(client_id):
    client = get_or_404(Client, "client", client_id)
    return ok({
        "client_id": client.id,
        "balance": client_to_dict(client)["credit_balance"],
        "items": [credit_to_dict(c) for c in client.credits],
    })


@ledger_bp.post("/clients/<int:client_id>/credits")
@login_required
@roles_required("admin")
def add_credit(client_id):
    client = get_or_404(Client, "client", client_id)
    body = json_body()
    try:
        credit = ledger.record_credit(
            client, body.get("amount"),
            description=body.get("description"),
            actor=current_user,
            received_at=parse_datetime(body.get("received_at")),
        )
    except ValueError:
        raise ValidationRejected("amount is not a number", data={"field": "amount"}, code="invalid_amount")
    db.session.commit()
    return ok(credit_to_dict(credit), "Credit recorded", 201)


# -----------------
# Receivables
# -----------------

@ledger_bp.get("/receivables/<int:receivable_id>")
@login_required
@roles_required("admin")
def get_receivable(receivable_id):
    return ok(receivable_to_dict(get_or_404(Receivable, "receivable", receivable_id)))


@ledger_bp.post("/receivables/<int:receivable_id>/apply-credit")
@login_required
@roles_required("admin")
def apply_credit(receivable_id):
    receivable = get_or_404(Receivable, "receivable", receivable_id)
    body = json_body()
    try:
        allocations = ledger.apply_credit(
            receivable, body.get("amount"),
            actor=current_user,
            description=body.get("description"),
        )
    except ValueError:
        raise ValidationRejected("amount is not a number", data={"field": "amount"}, code="invalid_amount")
    db.session.commit()
    return ok({
        "receivable": receivable_to_dict(receivable),
        "allocations": [allocation_to_dict(a) for a in allocations],
    }, "Credit applied", 201)


# -----------------
# Payments
# -----------------

@ledger_bp.post("/payments")
@login_required
@roles_required("admin")
def create_payment():
    body = json_body()
    receivable = get_or_404(Receivable, "receivable", body.get("receivable_id"))
    try:
        payment = ledger.record_payment(
            receivable, body.get("amount"),
            method=body.get("method") or "cash",
            paid_at=parse_datetime(body.get("paid_at")),
            note=body.get("note"),
            actor=current_user,
        )
    except ValueError:
        raise ValidationRejected("amount is not a number", data={"field": "amount"}, code="invalid_amount")
    db.session.commit()
    return ok(payment_to_dict(payment), "Payment recorded", 201)


@ledger_bp.get("/payments/<int:payment_id>")
@login_required
@roles_required("admin")
def get_payment(payment_id):
    return ok(payment_to_dict(get_or_404(Payment, "payment", payment_id)))
