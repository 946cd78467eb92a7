from datetime import datetime
from ..extensions import db
from ..utils import money, ZERO

# deposit|payment_conversion|surplus_conversion
SOURCE_DEPOSIT = "deposit"
SOURCE_PAYMENT_CONVERSION = "payment_conversion"
SOURCE_SURPLUS_CONVERSION = "surplus_conversion"


class ClientCredit(db.Model):
    __tablename__ = "client_credit"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("client.id"), nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(255))
    source = db.Column(db.String(30), default=SOURCE_DEPOSIT, nullable=False)
    # payment this credit was converted from, if any (the payment row itself is gone)
    source_payment_id = db.Column(db.Integer)
    received_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    client = db.relationship("Client", back_populates="credits")
    allocations = db.relationship("CreditAllocation", back_populates="credit", lazy="selectin")

    @property
    def allocated_amount(self):
        return sum((money(a.amount) for a in self.allocations), ZERO)

    @property
    def remaining_amount(self):
        return money(self.amount) - self.allocated_amount

    def __repr__(self):
        return f"<ClientCredit id={self.id} client_id={self.client_id} amount={self.amount}>"


class CreditAllocation(db.Model):
    __tablename__ = "credit_allocation"

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("client_credit.id"), nullable=False, index=True)
    receivable_id = db.Column(db.Integer, db.ForeignKey("receivable.id", ondelete="CASCADE"), nullable=False, index=True)
    allocated_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(255))
    allocated_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    credit = db.relationship("ClientCredit", back_populates="allocations")
    receivable = db.relationship("Receivable", back_populates="allocations")

    def __repr__(self):
        return f"<CreditAllocation id={self.id} credit_id={self.credit_id} amount={self.amount}>"
