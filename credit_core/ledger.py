"""
Ledger Module

Atomic balance mutations (deposit, withdraw, transfer) and the append-only
transaction journal that records every balance change.

Every read-modify-write of a balance runs inside ``storage.atomic()`` while
holding the row locks of all affected accounts. Locks are taken in sorted id
order so concurrent transfers over overlapping pairs cannot deadlock.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, DEFAULT_CURRENCY, to_decimal, round_money
from .storage import StorageInterface, StorageRecord, parse_datetime
from .accounts import AccountManager, Account
from .errors import (
    CreditCoreError, ValidationError, AccountInactive, InsufficientFunds, PersistenceError
)
from .logging_config import log_action


DEFAULT_MAX_OPERATION_AMOUNT = Decimal("1000000000.00")


class TransactionType(Enum):
    """Types of balance-changing operations"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    CREDIT_DISBURSEMENT = "credit_disbursement"  # Loan principal paid out to the client
    CREDIT_PAYMENT = "credit_payment"            # Scheduled payment collected by the sweep


class TransactionStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Transaction(StorageRecord):
    """Immutable journal entry for one balance change"""
    transaction_type: TransactionType
    from_account_id: Optional[str]  # None for money entering from outside
    to_account_id: Optional[str]    # None for money leaving to outside
    amount: Money
    description: str = ""
    status: TransactionStatus = TransactionStatus.COMPLETED

    def __post_init__(self):
        if not self.from_account_id and not self.to_account_id:
            raise ValueError("Transaction must have at least one account (from_account_id or to_account_id)")
        if not self.amount.is_positive():
            raise ValueError("Transaction amount must be positive")

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.amount.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        currency = Currency.from_code(data.get('currency', DEFAULT_CURRENCY.code))
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            transaction_type=TransactionType(data['transaction_type']),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            amount=Money(Decimal(data['amount']), currency),
            description=data.get('description', ''),
            status=TransactionStatus(data.get('status', TransactionStatus.COMPLETED.value))
        )


class LedgerStore:
    """
    Owns account balances. All money movement goes through this class.
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        max_operation_amount: Decimal = DEFAULT_MAX_OPERATION_AMOUNT,
        logger: Optional[logging.Logger] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.max_operation_amount = to_decimal(max_operation_amount)
        self.logger = logger or logging.getLogger("credit_core.ledger")
        self.table_name = "transactions"

    def deposit(self, account_id: str, amount, description: str = "Deposit") -> Transaction:
        """Add funds to an active account"""
        return self._move(None, account_id, amount, TransactionType.DEPOSIT, description)

    def withdraw(self, account_id: str, amount, description: str = "Withdrawal") -> Transaction:
        """Remove funds from an active account; fails with InsufficientFunds"""
        return self._move(account_id, None, amount, TransactionType.WITHDRAW, description)

    def transfer(self, from_account_id: str, to_account_id: str, amount,
                 description: str = "Transfer") -> Transaction:
        """
        Move funds between two active accounts. Debit and credit are applied
        together or not at all.
        """
        if from_account_id == to_account_id:
            raise ValidationError("Cannot transfer to the same account")
        return self._move(from_account_id, to_account_id, amount, TransactionType.TRANSFER, description)

    def credit_account(self, account_id: str, amount, transaction_type: TransactionType,
                       description: str) -> Transaction:
        """Increase a balance on behalf of another component (e.g. disbursement)"""
        return self._move(None, account_id, amount, transaction_type, description)

    def debit_account(self, account_id: str, amount, transaction_type: TransactionType,
                      description: str) -> Transaction:
        """Decrease a balance on behalf of another component (e.g. loan repayment)"""
        return self._move(account_id, None, amount, transaction_type, description)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        transaction_dict = self.storage.load(self.table_name, transaction_id)
        if transaction_dict:
            return Transaction.from_dict(transaction_dict)
        return None

    def get_account_transactions(
        self,
        account_id: str,
        transaction_types: Optional[List[TransactionType]] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """
        Get transactions touching an account, most recent first

        Args:
            account_id: Account ID
            transaction_types: Optional transaction type filter
            limit: Optional limit on number of transactions
        """
        transactions = [
            Transaction.from_dict(data) for data in self.storage.load_all(self.table_name)
            if data.get('from_account_id') == account_id or data.get('to_account_id') == account_id
        ]

        if transaction_types:
            transactions = [t for t in transactions if t.transaction_type in transaction_types]

        transactions.sort(key=lambda t: t.created_at, reverse=True)

        if limit:
            transactions = transactions[:limit]
        return transactions

    def validate_amount(self, amount) -> Money:
        """Normalize an amount and check it is positive and within the ceiling"""
        if isinstance(amount, Money):
            if amount.currency != DEFAULT_CURRENCY:
                raise ValidationError(f"Unsupported currency: {amount.currency.code}")
            value = amount.amount
        else:
            try:
                value = to_decimal(amount)
            except (InvalidOperation, ValueError, TypeError) as e:
                raise ValidationError(f"Invalid amount: {amount!r}") from e
            if not value.is_finite():
                raise ValidationError(f"Invalid amount: {amount!r}")

        if value > self.max_operation_amount:
            raise ValidationError(
                f"Amount {value} exceeds the operation limit of {self.max_operation_amount}"
            )
        if value != round_money(value):
            raise ValidationError(f"Amount must have at most two decimal places: {value}")
        money = Money(value)
        if not money.is_positive():
            raise ValidationError("Amount must be positive")
        return money

    def _load_active(self, account_id: str) -> Account:
        account = self.account_manager.require_account(account_id)
        if not account.is_active:
            raise AccountInactive(account_id, account.status.value)
        return account

    def _move(self, from_account_id: Optional[str], to_account_id: Optional[str], amount,
              transaction_type: TransactionType, description: str) -> Transaction:
        money = self.validate_amount(amount)
        account_ids = [a for a in (from_account_id, to_account_id) if a]

        try:
            with self.storage.lock_records(self.account_manager.accounts_table, account_ids):
                with self.storage.atomic():
                    source = self._load_active(from_account_id) if from_account_id else None
                    target = self._load_active(to_account_id) if to_account_id else None

                    if source is not None:
                        if source.balance < money:
                            raise InsufficientFunds(source.id, source.balance.amount, money.amount)
                        source.balance = source.balance - money
                        source.touch()
                        self.account_manager.save_account(source)

                    if target is not None:
                        target.balance = target.balance + money
                        target.touch()
                        self.account_manager.save_account(target)
        except CreditCoreError as e:
            log_action(self.logger, "info", f"{transaction_type.value} rejected: {e}",
                       action=transaction_type.value,
                       resource=f"account:{from_account_id or to_account_id}",
                       extra={"amount": str(money.amount), "error": type(e).__name__})
            raise
        except Exception as e:
            log_action(self.logger, "error", f"{transaction_type.value} failed in storage",
                       action=transaction_type.value,
                       resource=f"account:{from_account_id or to_account_id}",
                       extra={"amount": str(money.amount), "from_account": from_account_id,
                              "to_account": to_account_id},
                       exc_info=True)
            raise PersistenceError(f"{transaction_type.value} failed: {e}") from e

        transaction = self._record(from_account_id, to_account_id, money, transaction_type, description)

        log_action(self.logger, "info", f"{transaction_type.value} completed",
                   action=transaction_type.value, resource=f"transaction:{transaction.id}",
                   extra={"amount": money.to_string(), "from_account": from_account_id,
                          "to_account": to_account_id})
        return transaction

    def _record(self, from_account_id: Optional[str], to_account_id: Optional[str], amount: Money,
                transaction_type: TransactionType, description: str) -> Transaction:
        """Append the journal entry. The balance is already committed; failures are only logged."""
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_type=transaction_type,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            description=description
        )
        try:
            self.storage.save(self.table_name, transaction.id, transaction.to_dict())
        except Exception:
            log_action(self.logger, "error", "Failed to record transaction after balance change",
                       action="record_transaction", resource=f"transaction:{transaction.id}",
                       extra={"transaction_type": transaction_type.value,
                              "amount": str(amount.amount),
                              "from_account": from_account_id, "to_account": to_account_id},
                       exc_info=True)
        return transaction
