from datetime import datetime
from ..extensions import db


class Commission(db.Model):
    __tablename__ = "commission"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    rate = db.Column(db.Numeric(5, 4))
    # pending|paid|void
    status = db.Column(db.String(20), default="pending", index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    paid_at = db.Column(db.DateTime)
    voided_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)

    task = db.relationship("Task", back_populates="commissions")
    employee = db.relationship("User")
