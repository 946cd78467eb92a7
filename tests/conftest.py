from decimal import Decimal

import pytest
import requests
from flask.testing import FlaskClient

from taskledger import create_app
from taskledger.config import TestConfig
from taskledger.extensions import db
from taskledger.models import Client, User
from taskledger.services import ledger, lifecycle


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


class IsolatedClient(FlaskClient):
    """Runs each request in its own app context, as a real server would.

    Flask-Login caches the user on ``g`` and Flask-SQLAlchemy scopes the session
    to the app context, so sharing the fixture context would leak both between
    requests.
    """

    def open(self, *args, **kwargs):
        with self.application.app_context():
            return super().open(*args, **kwargs)


@pytest.fixture()
def client(app):
    app.test_client_class = IsolatedClient
    return app.test_client()


def _user(name, email, role, **kw):
    user = User(name=name, email=email, role=role, **kw)
    user.set_password("secret123")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def admin(app):
    return _user("Admin", "admin@example.com", "admin")


@pytest.fixture()
def employee(app):
    return _user("Sara Employee", "sara@example.com", "employee", commission_rate=Decimal("0.2000"))


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {user.api_token}"}
    return _headers


@pytest.fixture()
def acme(app):
    c = Client(name="Acme Holdings", type="RealEstate", phone="0500000000")
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture()
def make_task(acme, admin):
    def _make(amount="1000", prepaid="0", **extra):
        payload = {"client_id": acme.id, "task_name": "Title transfer", "type": "RealEstate",
                   "amount": amount, "prepaid_amount": prepaid}
        payload.update(extra)
        return lifecycle.create_task(payload, actor=admin)
    return _make


@pytest.fixture()
def pay(admin):
    def _pay(receivable, amount, method="cash"):
        p = ledger.record_payment(receivable, amount, method=method, actor=admin)
        db.session.commit()
        return p
    return _pay


@pytest.fixture()
def deposit(acme, admin):
    def _deposit(amount, client=None):
        c = ledger.record_credit(client or acme, amount, description="Deposit", actor=admin)
        db.session.commit()
        return c
    return _deposit


class _FlaskResponse:
    """Just enough of requests.Response for LedgerClient."""

    def __init__(self, resp):
        self.status_code = resp.status_code
        self._resp = resp
        self.text = resp.get_data(as_text=True)

    def json(self):
        data = self._resp.get_json(silent=True)
        if data is None:
            raise ValueError("no JSON body")
        return data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FlaskSession:
    """A requests-compatible session that sends every call to the Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        path = url.split("://", 1)[-1]
        path = path[path.index("/"):] if "/" in path else "/"
        self.calls.append((method, path, json))
        resp = self.test_client.open(path, method=method, json=json, query_string=params, headers=headers)
        return _FlaskResponse(resp)


@pytest.fixture()
def api(client, admin):
    from taskledger.client import ClientSettings, LedgerClient

    settings = ClientSettings(base_url="http://testserver", token=admin.api_token)
    return LedgerClient(settings, session=FlaskSession(client))
