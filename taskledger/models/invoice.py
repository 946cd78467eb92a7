from datetime import datetime
from ..extensions import db
from ..utils import ZERO


class Invoice(db.Model):
    """Billing document issued when a task completes.

    The money itself lives on the linked receivable; the invoice only records
    what was billed and when, so restoring a completed task deletes it.
    """
    __tablename__ = "invoice"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id", ondelete="CASCADE"), nullable=False, index=True)
    receivable_id = db.Column(db.Integer, db.ForeignKey("receivable.id", ondelete="SET NULL"), index=True)

    description = db.Column(db.String(255))
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), default="SAR")
    issued_at = db.Column(db.DateTime, default=datetime.utcnow)

    task = db.relationship("Task", back_populates="invoices")
    receivable = db.relationship("Receivable")

    @property
    def paid_amount(self):
        return self.receivable.total_settled if self.receivable else ZERO

    @property
    def status(self) -> str:
        paid = self.paid_amount
        if paid <= 0:
            return "pending"
        if paid < self.amount:
            return "partially_paid"
        return "paid"
