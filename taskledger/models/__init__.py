from .user import User
from .client import Client
from .task import Task, TaskRequirement, Tag
from .receivable import Receivable
from .payment import Payment
from .credit import ClientCredit, CreditAllocation
from .invoice import Invoice
from .commission import Commission
