from datetime import datetime
from ..extensions import db

CLIENT_TYPES = ("Government", "RealEstate", "Accounting", "Other")


class Client(db.Model):
    __tablename__ = "client"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False, index=True)
    phone = db.Column(db.String(50))
    type = db.Column(db.String(20), default="Other", nullable=False, index=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tasks = db.relationship("Task", back_populates="client", lazy="dynamic")
    credits = db.relationship(
        "ClientCredit",
        back_populates="client",
        lazy="selectin",
        order_by="ClientCredit.received_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Client id={self.id} name={self.name!r}>"
