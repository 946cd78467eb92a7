# taskledger/models/task.py
from datetime import datetime
from ..extensions import db
from ..utils import money

STATUS_NEW = "New"
STATUS_DEFERRED = "Deferred"
STATUS_PENDING_REVIEW = "Pending Review"
STATUS_COMPLETED = "Completed"
STATUS_CANCELLED = "Cancelled"

TASK_STATUSES = (
    STATUS_NEW,
    STATUS_DEFERRED,
    STATUS_PENDING_REVIEW,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)
ACTIVE_STATUSES = (STATUS_NEW, STATUS_DEFERRED, STATUS_PENDING_REVIEW)
TASK_TYPES = ("Government", "RealEstate", "Accounting", "Other")


task_tags = db.Table(
    "task_tags",
    db.Column("task_id", db.Integer, db.ForeignKey("task.id", ondelete="CASCADE"), primary_key=True),
    db.Column("tag_id", db.Integer, db.ForeignKey("tag.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(db.Model):
    __tablename__ = "tag"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(60), unique=True, nullable=False, index=True)
    color = db.Column(db.String(20))


class Task(db.Model):
    __tablename__ = "task"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("client.id"), nullable=False, index=True)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True, index=True)

    task_name = db.Column(db.String(200), index=True)
    type = db.Column(db.String(20), default="Other", nullable=False, index=True)
    status = db.Column(db.String(20), default=STATUS_NEW, nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    prepaid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expense_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    start_date = db.Column(db.Date, index=True)
    end_date = db.Column(db.Date)
    notes = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    # optimistic lock token; bumped by touch() on every write
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    client = db.relationship("Client", back_populates="tasks")
    assignee = db.relationship("User", back_populates="assigned_tasks", foreign_keys=[assigned_to_id])

    tags = db.relationship("Tag", secondary=task_tags, lazy="selectin", order_by="Tag.name")
    requirements = db.relationship(
        "TaskRequirement",
        back_populates="task",
        lazy="selectin",
        order_by="TaskRequirement.id",
        cascade="all, delete-orphan",
    )

    # no delete cascade: receivables that keep money outlive a hard-deleted task
    receivables = db.relationship("Receivable", back_populates="task", lazy="selectin")

    invoices = db.relationship(
        "Invoice",
        back_populates="task",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    commissions = db.relationship(
        "Commission",
        back_populates="task",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def _receivable(self, kind):
        for r in self.receivables or []:
            if r.kind == kind:
                return r
        return None

    @property
    def prepaid_receivable(self):
        return self._receivable("prepaid")

    @property
    def main_receivable(self):
        return self._receivable("main")

    @property
    def main_amount(self):
        return money(self.amount) - money(self.prepaid_amount)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def touch(self):
        self.updated_at = datetime.utcnow()

    def __repr__(self):
        return f"<Task id={self.id} status={self.status} amount={self.amount}>"


class TaskRequirement(db.Model):
    __tablename__ = "task_requirement"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id", ondelete="CASCADE"), nullable=False, index=True)
    requirement_text = db.Column(db.String(500), nullable=False)
    is_provided = db.Column(db.Boolean, default=False, nullable=False)

    task = db.relationship("Task", back_populates="requirements")
