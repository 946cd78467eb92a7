from datetime import datetime
from ..extensions import db
from ..utils import money, ZERO

KIND_PREPAID = "prepaid"
KIND_MAIN = "main"


class Receivable(db.Model):
    __tablename__ = "receivable"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("client.id"), nullable=False, index=True)
    # NULL once the owning task is hard-deleted but money was kept on it
    task_id = db.Column(db.Integer, db.ForeignKey("task.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    kind = db.Column(db.String(10), nullable=False, default=KIND_MAIN, index=True)  # prepaid|main
    description = db.Column(db.String(255))
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    original_amount = db.Column(db.Numeric(12, 2))
    adjustment_reason = db.Column(db.String(255))
    due_date = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    task = db.relationship("Task", back_populates="receivables")
    client = db.relationship("Client")

    payments = db.relationship(
        "Payment",
        back_populates="receivable",
        lazy="selectin",
        order_by="Payment.paid_at",
        cascade="all, delete-orphan",
    )
    allocations = db.relationship(
        "CreditAllocation",
        back_populates="receivable",
        lazy="selectin",
        order_by="CreditAllocation.allocated_at",
        cascade="all, delete-orphan",
    )

    @property
    def total_paid(self):
        return sum((money(p.amount) for p in self.payments), ZERO)

    @property
    def total_allocated(self):
        return sum((money(a.amount) for a in self.allocations), ZERO)

    @property
    def total_settled(self):
        return self.total_paid + self.total_allocated

    @property
    def remaining(self):
        return money(self.amount) - self.total_settled

    @property
    def has_financial_records(self) -> bool:
        return bool(self.payments or self.allocations)

    def resize(self, new_amount, reason: str | None = None):
        if self.original_amount is None:
            self.original_amount = self.amount
        self.amount = money(new_amount)
        if reason:
            self.adjustment_reason = reason

    def __repr__(self):
        return f"<Receivable id={self.id} kind={self.kind} amount={self.amount}>"
