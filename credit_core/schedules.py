"""
Payment Schedule Module

Persists one row per scheduled payment of a credit. Rows are created once,
in a single batch, when the credit is issued; afterwards only the settlement
path changes their status, penalty and paid fields.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from enum import Enum
import logging

from .currency import Money
from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime
from .amortization import AmortizationEntry
from .errors import ScheduleEntryNotFound, ValidationError, PersistenceError
from .logging_config import log_action


class PaymentStatus(Enum):
    """Schedule entry states"""
    PENDING = "pending"        # Not yet due or not yet swept
    PAID = "paid"              # Settled by the sweep
    OVERDUE = "overdue"        # Past due, funds were insufficient at the last sweep
    CANCELLED = "cancelled"


# Entries the overdue sweep still has to collect
UNSETTLED_STATUSES = (PaymentStatus.PENDING, PaymentStatus.OVERDUE)


def schedule_entry_id(credit_id: str, payment_number: int) -> str:
    return f"{credit_id}_{payment_number}"


@dataclass
class PaymentScheduleEntry(StorageRecord):
    """One scheduled payment of a credit"""
    credit_id: str
    payment_number: int
    due_date: date
    payment_amount: Money
    principal_amount: Money
    interest_amount: Money
    remaining_balance: Money
    penalty_amount: Money = None    # Accumulated over all sweeps
    paid_amount: Money = None
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        zero_amount = Money.zero(self.payment_amount.currency)
        if self.penalty_amount is None:
            self.penalty_amount = zero_amount
        if self.paid_amount is None:
            self.paid_amount = zero_amount

    @property
    def is_settled(self) -> bool:
        return self.status in (PaymentStatus.PAID, PaymentStatus.CANCELLED)

    def is_due(self, as_of: date) -> bool:
        return self.status in UNSETTLED_STATUSES and self.due_date < as_of

    def mark_paid(self, paid_amount: Money, penalty: Money, paid_at: datetime) -> None:
        self.penalty_amount = self.penalty_amount + penalty
        self.paid_amount = paid_amount
        self.paid_at = paid_at
        self.status = PaymentStatus.PAID
        self.updated_at = paid_at

    def mark_overdue(self, penalty: Money, now: datetime) -> None:
        self.penalty_amount = self.penalty_amount + penalty
        self.status = PaymentStatus.OVERDUE
        self.updated_at = now

    @classmethod
    def from_amortization(cls, credit_id: str, entry: AmortizationEntry,
                          now: datetime) -> 'PaymentScheduleEntry':
        return cls(
            id=schedule_entry_id(credit_id, entry.payment_number),
            created_at=now,
            updated_at=now,
            credit_id=credit_id,
            payment_number=entry.payment_number,
            due_date=entry.due_date,
            payment_amount=entry.payment_amount,
            principal_amount=entry.principal_amount,
            interest_amount=entry.interest_amount,
            remaining_balance=entry.remaining_balance
        )

    @classmethod
    def from_dict(cls, data: Dict) -> 'PaymentScheduleEntry':
        def get_money(field_name: str) -> Money:
            return Money(Decimal(data.get(field_name) or '0'))

        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            credit_id=data['credit_id'],
            payment_number=int(data['payment_number']),
            due_date=parse_date(data['due_date']),
            payment_amount=get_money('payment_amount'),
            principal_amount=get_money('principal_amount'),
            interest_amount=get_money('interest_amount'),
            remaining_balance=get_money('remaining_balance'),
            penalty_amount=get_money('penalty_amount'),
            paid_amount=get_money('paid_amount'),
            status=PaymentStatus(data['status']),
            paid_at=parse_datetime(data.get('paid_at'))
        )


class PaymentScheduleStore:
    """
    Owns schedule rows: batch creation, lookups and status updates
    """

    def __init__(self, storage: StorageInterface, logger: Optional[logging.Logger] = None):
        self.storage = storage
        self.logger = logger or logging.getLogger("credit_core.schedules")
        self.table_name = "payment_schedules"

    def create_batch(self, credit_id: str,
                     entries: Iterable[AmortizationEntry]) -> List[PaymentScheduleEntry]:
        """
        Persist a credit's whole schedule in one atomic batch

        Raises:
            ValidationError: if the schedule is empty or rows already exist
        """
        now = datetime.now(timezone.utc)
        rows = [PaymentScheduleEntry.from_amortization(credit_id, entry, now) for entry in entries]
        if not rows:
            raise ValidationError(f"Empty schedule for credit {credit_id}")
        if self.storage.exists(self.table_name, rows[0].id):
            raise ValidationError(f"Schedule for credit {credit_id} already exists")

        try:
            self.storage.save_many(self.table_name, {row.id: row.to_dict() for row in rows})
        except Exception as e:
            log_action(self.logger, "error", "Failed to persist payment schedule",
                       action="schedule_create", resource=f"credit:{credit_id}",
                       extra={"entries": len(rows)}, exc_info=True)
            raise PersistenceError(f"Failed to persist schedule for credit {credit_id}: {e}") from e

        log_action(self.logger, "info", "Payment schedule created",
                   action="schedule_create", resource=f"credit:{credit_id}",
                   extra={"entries": len(rows),
                          "first_due_date": rows[0].due_date.isoformat(),
                          "last_due_date": rows[-1].due_date.isoformat()})
        return rows

    def get_entry(self, entry_id: str) -> Optional[PaymentScheduleEntry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return PaymentScheduleEntry.from_dict(data)
        return None

    def require_entry(self, entry_id: str) -> PaymentScheduleEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise ScheduleEntryNotFound(entry_id)
        return entry

    def get_by_credit(self, credit_id: str) -> List[PaymentScheduleEntry]:
        """All entries of a credit ordered by payment number"""
        entries = [PaymentScheduleEntry.from_dict(data)
                   for data in self.storage.find(self.table_name, {"credit_id": credit_id})]
        return sorted(entries, key=lambda e: e.payment_number)

    def find_due(self, as_of: date) -> List[PaymentScheduleEntry]:
        """
        Unsettled entries whose due date is before ``as_of``,
        oldest due date first
        """
        entries = [PaymentScheduleEntry.from_dict(data)
                   for data in self.storage.load_all(self.table_name)]
        due = [entry for entry in entries if entry.is_due(as_of)]
        return sorted(due, key=lambda e: (e.due_date, e.credit_id, e.payment_number))

    def next_payment(self, credit_id: str) -> Optional[PaymentScheduleEntry]:
        """Earliest entry of a credit that is still to be paid"""
        for entry in self.get_by_credit(credit_id):
            if entry.status in UNSETTLED_STATUSES:
                return entry
        return None

    def count_overdue(self, credit_id: str) -> int:
        return len(self.storage.find(
            self.table_name, {"credit_id": credit_id, "status": PaymentStatus.OVERDUE.value}
        ))

    def save(self, entry: PaymentScheduleEntry) -> None:
        """Write back a mutated entry (settlement path only)"""
        self.storage.save(self.table_name, entry.id, entry.to_dict())
