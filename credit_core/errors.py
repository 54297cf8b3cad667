"""
Error Taxonomy Module

Exceptions raised by the ledger, schedule, credit and scheduler components.
Validation errors subclass ValueError so callers that only know about
ValueError keep working.
"""

from typing import Optional


class CreditCoreError(Exception):
    """Base class for all engine errors"""


class ValidationError(CreditCoreError, ValueError):
    """Malformed amount, term or request"""


class NotFoundError(CreditCoreError, LookupError):
    """Referenced entity does not exist"""

    entity = "entity"

    def __init__(self, entity_id: str, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity.capitalize()} {entity_id} not found")


class AccountNotFound(NotFoundError):
    entity = "account"


class CreditNotFound(NotFoundError):
    entity = "credit"


class ScheduleEntryNotFound(NotFoundError):
    entity = "schedule entry"


class AccountInactive(CreditCoreError):
    """Account is blocked or closed"""

    def __init__(self, account_id: str, status: str):
        self.account_id = account_id
        self.status = status
        super().__init__(f"Account {account_id} is not active (status: {status})")


class InsufficientFunds(CreditCoreError):
    """Balance does not cover the requested debit. A business outcome, not a fault."""

    def __init__(self, account_id: str, balance, requested):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"balance {balance}, requested {requested}"
        )


class RateProviderError(CreditCoreError):
    """Key rate could not be fetched or parsed"""


class NotificationError(CreditCoreError):
    """Notification could not be delivered"""


class PersistenceError(CreditCoreError):
    """Storage backend failed while executing an operation"""
