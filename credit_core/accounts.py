"""
Account Management Module

Manages client current accounts: numbering, lifecycle states and lookups.
Balances are only ever written by the ledger (see ``ledger.LedgerStore``)
and by overdue settlement, which goes through the ledger as well.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, DEFAULT_CURRENCY
from .storage import StorageInterface, StorageRecord, parse_datetime
from .errors import AccountNotFound, ValidationError
from .logging_config import log_action


# Current accounts of resident individuals in roubles
ACCOUNT_NUMBER_PREFIX = "40817810"
ACCOUNT_NUMBER_SUFFIX_DIGITS = 12

# Credit statuses that still hold a claim on the funding account
OPEN_CREDIT_STATUSES = ("active", "overdue")


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"      # Normal operation
    BLOCKED = "blocked"    # Temporarily suspended, no money movement
    CLOSED = "closed"      # Permanently closed


@dataclass
class Account(StorageRecord):
    """Client current account"""
    user_id: str
    number: str
    balance: Money
    currency: Currency = DEFAULT_CURRENCY
    status: AccountStatus = AccountStatus.ACTIVE

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        currency = Currency.from_code(data.get('currency', DEFAULT_CURRENCY.code))
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            user_id=data['user_id'],
            number=data['number'],
            balance=Money(Decimal(data['balance']), currency),
            currency=currency,
            status=AccountStatus(data['status'])
        )


class AccountManager:
    """
    Manages account lifecycle and lookups
    """

    def __init__(self, storage: StorageInterface, logger: Optional[logging.Logger] = None):
        self.storage = storage
        self.logger = logger or logging.getLogger("credit_core.accounts")
        self.accounts_table = "accounts"
        self.credits_table = "credits"

    def create_account(self, user_id: str, currency: Currency = DEFAULT_CURRENCY) -> Account:
        """
        Open a new zero-balance account

        Args:
            user_id: ID of account owner
            currency: Account currency, only RUB is accepted

        Returns:
            Created Account object
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if isinstance(currency, str):
            try:
                currency = Currency.from_code(currency)
            except ValueError as e:
                raise ValidationError(str(e)) from e
        if currency != DEFAULT_CURRENCY:
            raise ValidationError(f"Unsupported currency: {currency.code}. Only RUB is supported")

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            number=self._generate_account_number(),
            balance=Money.zero(currency),
            currency=currency
        )
        self.save_account(account)

        log_action(self.logger, "info", "Account opened",
                   user_id=user_id, action="account_create",
                   resource=f"account:{account.id}",
                   extra={"number": account.number, "currency": currency.code})
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return Account.from_dict(account_dict)
        return None

    def require_account(self, account_id: str) -> Account:
        """Get account by ID or raise AccountNotFound"""
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def get_account_by_number(self, number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.accounts_table, {"number": number})
        if accounts:
            return Account.from_dict(accounts[0])
        return None

    def get_user_accounts(self, user_id: str) -> List[Account]:
        """Get all accounts of a user, oldest first"""
        accounts = [Account.from_dict(data)
                    for data in self.storage.find(self.accounts_table, {"user_id": user_id})]
        return sorted(accounts, key=lambda a: a.created_at)

    def block_account(self, account_id: str, reason: str = "") -> Account:
        return self._update_status(account_id, AccountStatus.BLOCKED, reason)

    def unblock_account(self, account_id: str, reason: str = "") -> Account:
        account = self.require_account(account_id)
        if account.status == AccountStatus.CLOSED:
            raise ValidationError(f"Account {account_id} is closed and cannot be reactivated")
        return self._update_status(account_id, AccountStatus.ACTIVE, reason)

    def close_account(self, account_id: str, reason: str = "") -> Account:
        """Close an account with zero balance and no open credits"""
        with self.storage.lock_records(self.accounts_table, [account_id]):
            account = self.require_account(account_id)
            if not account.balance.is_zero():
                raise ValidationError(
                    f"Cannot close account with non-zero balance: {account.balance.to_string()}"
                )
            if self.has_open_credits(account_id):
                raise ValidationError(f"Account {account_id} funds an open credit")
            return self._update_status(account_id, AccountStatus.CLOSED, reason)

    def has_open_credits(self, account_id: str) -> bool:
        """True if a credit that is not paid off or cancelled uses this account"""
        return any(
            credit.get('status') in OPEN_CREDIT_STATUSES
            for credit in self.storage.find(self.credits_table, {"account_id": account_id})
        )

    def save_account(self, account: Account) -> None:
        """Persist account state. Balance changes must come from the ledger."""
        self.storage.save(self.accounts_table, account.id, account.to_dict())

    def _update_status(self, account_id: str, new_status: AccountStatus, reason: str) -> Account:
        with self.storage.lock_records(self.accounts_table, [account_id]):
            account = self.require_account(account_id)
            old_status = account.status
            account.status = new_status
            account.touch()
            self.save_account(account)

        log_action(self.logger, "info", f"Account status changed to {new_status.value}",
                   user_id=account.user_id, action="account_status",
                   resource=f"account:{account_id}",
                   extra={"old_status": old_status.value, "new_status": new_status.value,
                          "reason": reason})
        return account

    def _generate_account_number(self) -> str:
        """Generate a unique 20-digit account number"""
        while True:
            suffix = uuid.uuid4().int % (10 ** ACCOUNT_NUMBER_SUFFIX_DIGITS)
            number = f"{ACCOUNT_NUMBER_PREFIX}{suffix:0{ACCOUNT_NUMBER_SUFFIX_DIGITS}d}"
            if self.get_account_by_number(number) is None:
                return number
