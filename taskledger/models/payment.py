from datetime import datetime
from ..extensions import db


class Payment(db.Model):
    __tablename__ = "payment"

    id = db.Column(db.Integer, primary_key=True)
    receivable_id = db.Column(db.Integer, db.ForeignKey("receivable.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(40), default="cash")  # cash|bank_transfer|card|cheque|other
    paid_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    note = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    receivable = db.relationship("Receivable", back_populates="payments")
    creator = db.relationship("User", foreign_keys=[created_by])

    def __repr__(self):
        return f"<Payment id={self.id} receivable_id={self.receivable_id} amount={self.amount}>"
