# taskledger/models/user.py
import secrets
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from ..extensions import db


def _token() -> str:
    return secrets.token_hex(24)


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(50))

    password_hash = db.Column(db.String(255))
    api_token = db.Column(db.String(64), unique=True, index=True, default=_token)

    # admin|employee
    role = db.Column(db.String(20), nullable=False, default="employee", index=True)

    # active|suspended
    status = db.Column(db.String(20), default="active", index=True)

    # None = use COMMISSION_RATE from config
    commission_rate = db.Column(db.Numeric(5, 4))

    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    assigned_tasks = db.relationship(
        "Task",
        back_populates="assignee",
        foreign_keys="Task.assigned_to_id",
        lazy="dynamic",
    )

    # --- Auth helpers ---
    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    def rotate_token(self) -> str:
        self.api_token = _token()
        return self.api_token

    # --- Convenience flags ---
    @property
    def is_active_account(self) -> bool:
        return self.status == "active"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def mark_login(self):
        self.last_login_at = datetime.utcnow()

    def __repr__(self):
        return f"<User id={self.id} role={self.role}>"
