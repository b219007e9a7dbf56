"""
Database Models

Foundry-owned rows carry foundry_id for isolation. Marketplace rows
(provider profiles, responses, broadcasts) and fraud rows are keyed by
provider or user instead.
"""
from centaur.models.foundry import Foundry
from centaur.models.user import User
from centaur.models.provider import ProviderProfile
from centaur.models.rfq import RFQ, RFQResponse, RFQBroadcast
from centaur.models.retainer import Retainer, TimesheetEntry
from centaur.models.order import Order, Dispute
from centaur.models.fraud import FraudSignal, TransactionLimit
from centaur.models.objective import Objective, Task

__all__ = [
    "Foundry",
    "User",
    "ProviderProfile",
    "RFQ",
    "RFQResponse",
    "RFQBroadcast",
    "Retainer",
    "TimesheetEntry",
    "Order",
    "Dispute",
    "FraudSignal",
    "TransactionLimit",
    "Objective",
    "Task",
]
