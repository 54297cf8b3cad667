"""
Credit Module

Handles credit origination (pricing, schedule generation, disbursement),
remaining debt bookkeeping and credit analytics.
"""

from decimal import Decimal, InvalidOperation
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Money, to_decimal, round_money
from .storage import StorageInterface, StorageRecord, parse_datetime, parse_date
from .accounts import AccountManager
from .ledger import LedgerStore, TransactionType
from .schedules import PaymentScheduleStore, PaymentScheduleEntry, PaymentStatus
from .rates import RateProvider
from .notifications import NotificationDispatcher, NotificationKind
from .amortization import build_schedule, compute_monthly_payment, effective_rate
from .errors import (
    ValidationError, AccountInactive, CreditNotFound, PersistenceError, RateProviderError
)
from .logging_config import log_action


DEFAULT_MAX_CREDIT_AMOUNT = Decimal("100000000.00")
DEFAULT_MAX_TERM_MONTHS = 360
DEFAULT_FALLBACK_RATE = Decimal("16.0")
DEFAULT_BANK_MARGIN = Decimal("5.0")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CreditStatus(Enum):
    """Credit lifecycle states"""
    ACTIVE = "active"        # Regular repayment
    PAID_OFF = "paid_off"    # Remaining debt reached zero
    OVERDUE = "overdue"      # At least one scheduled payment is overdue
    CANCELLED = "cancelled"


OPEN_STATUSES = (CreditStatus.ACTIVE, CreditStatus.OVERDUE)


@dataclass
class Credit(StorageRecord):
    """Consumer credit disbursed to a current account"""
    user_id: str
    account_id: str
    amount: Money                 # Original principal
    interest_rate: Decimal        # Annual, percent
    term_months: int
    monthly_payment: Money
    remaining_debt: Money
    status: CreditStatus = CreditStatus.ACTIVE
    issued_on: Optional[date] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @classmethod
    def from_dict(cls, data: Dict) -> 'Credit':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            user_id=data['user_id'],
            account_id=data['account_id'],
            amount=Money(Decimal(data['amount'])),
            interest_rate=Decimal(data['interest_rate']),
            term_months=int(data['term_months']),
            monthly_payment=Money(Decimal(data['monthly_payment'])),
            remaining_debt=Money(Decimal(data['remaining_debt'])),
            status=CreditStatus(data['status']),
            issued_on=parse_date(data.get('issued_on'))
        )


class CreditLifecycleManager:
    """
    Manages credits from origination through payoff
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        ledger: LedgerStore,
        schedules: PaymentScheduleStore,
        rate_provider: RateProvider,
        notifier: Optional[NotificationDispatcher] = None,
        max_credit_amount: Decimal = DEFAULT_MAX_CREDIT_AMOUNT,
        max_term_months: int = DEFAULT_MAX_TERM_MONTHS,
        fallback_annual_rate: Decimal = DEFAULT_FALLBACK_RATE,
        bank_margin: Decimal = DEFAULT_BANK_MARGIN,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.ledger = ledger
        self.schedules = schedules
        self.rate_provider = rate_provider
        self.notifier = notifier
        self.max_credit_amount = to_decimal(max_credit_amount)
        self.max_term_months = max_term_months
        self.fallback_annual_rate = to_decimal(fallback_annual_rate)
        self.bank_margin = to_decimal(bank_margin)
        self.clock = clock
        self.logger = logger or logging.getLogger("credit_core.credits")
        self.credits_table = "credits"

    def create_credit(self, user_id: str, account_id: str, amount, term_months: int) -> Credit:
        """
        Issue a credit and disburse it to the funding account

        Args:
            user_id: Borrower
            account_id: Active account that receives the funds and repays
            amount: Principal, positive and within the credit ceiling
            term_months: Number of monthly payments

        Returns:
            The persisted Credit

        Raises:
            ValidationError: malformed amount or term, nothing is persisted
            AccountNotFound / AccountInactive: funding account unusable
        """
        principal = self._validate_request(amount, term_months)

        account = self.account_manager.require_account(account_id)
        if not account.is_active:
            raise AccountInactive(account_id, account.status.value)

        base_rate = self._base_rate()
        credit_rate = base_rate + self.bank_margin
        monthly_payment = compute_monthly_payment(principal, credit_rate, term_months)

        log_action(self.logger, "info", "Credit rate calculated",
                   user_id=user_id, action="credit_rate", resource=f"account:{account_id}",
                   extra={"base_rate": str(base_rate), "credit_rate": str(credit_rate),
                          "monthly_payment": str(monthly_payment)})

        now = self.clock()
        credit = Credit(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            account_id=account_id,
            amount=Money(principal),
            interest_rate=credit_rate,
            term_months=term_months,
            monthly_payment=Money(monthly_payment),
            remaining_debt=Money(principal),
            issued_on=now.date()
        )
        try:
            self._save_credit(credit)
        except Exception as e:
            log_action(self.logger, "error", "Failed to create credit",
                       user_id=user_id, action="credit_create",
                       resource=f"account:{account_id}", exc_info=True)
            raise PersistenceError(f"Failed to create credit: {e}") from e

        # A credit without a schedule is kept; the disbursement still happens
        try:
            self.schedules.create_batch(
                credit.id,
                build_schedule(principal, credit_rate, term_months, credit.issued_on, monthly_payment)
            )
        except Exception:
            log_action(self.logger, "error", "Failed to create payment schedule",
                       user_id=user_id, action="schedule_create",
                       resource=f"credit:{credit.id}", exc_info=True)

        self.ledger.credit_account(
            account_id, credit.amount, TransactionType.CREDIT_DISBURSEMENT,
            f"Credit disbursement (Credit ID: {credit.id})"
        )

        log_action(self.logger, "info", "Credit created",
                   user_id=user_id, action="credit_create", resource=f"credit:{credit.id}",
                   extra={"account_id": account_id, "amount": str(principal),
                          "rate": str(credit_rate), "term_months": term_months,
                          "monthly_payment": str(monthly_payment)})

        self._notify(NotificationKind.CREDIT_ISSUED, credit, {
            "credit_id": credit.id,
            "amount": credit.amount.amount,
            "interest_rate": credit_rate,
            "term_months": term_months,
            "monthly_payment": credit.monthly_payment.amount,
        })
        return credit

    def get_credit(self, credit_id: str) -> Optional[Credit]:
        """Get credit by ID"""
        data = self.storage.load(self.credits_table, credit_id)
        if data:
            return Credit.from_dict(data)
        return None

    def require_credit(self, credit_id: str) -> Credit:
        credit = self.get_credit(credit_id)
        if credit is None:
            raise CreditNotFound(credit_id)
        return credit

    def get_user_credits(self, user_id: str) -> List[Credit]:
        credits = [Credit.from_dict(data)
                   for data in self.storage.find(self.credits_table, {"user_id": user_id})]
        return sorted(credits, key=lambda c: c.created_at)

    def get_schedule(self, credit_id: str) -> List[PaymentScheduleEntry]:
        """Schedule of an existing credit ordered by payment number"""
        credit = self.require_credit(credit_id)
        schedule = self.schedules.get_by_credit(credit_id)
        self.logger.debug(f"Retrieved {len(schedule)} schedule entries for credit {credit_id} "
                          f"({credit.status.value})")
        return schedule

    def apply_principal_payment(self, credit_id: str, principal: Money) -> Credit:
        """
        Reduce remaining debt by a settled principal portion.
        The credit becomes paid off when the debt reaches zero.
        """
        with self.storage.lock_records(self.credits_table, [credit_id]):
            credit = self.require_credit(credit_id)
            remaining = credit.remaining_debt - principal
            if remaining.is_negative():
                remaining = Money.zero(remaining.currency)
            credit.remaining_debt = remaining
            if remaining.is_zero():
                credit.status = CreditStatus.PAID_OFF
            credit.updated_at = self.clock()
            self._save_credit(credit)

        if credit.status == CreditStatus.PAID_OFF:
            log_action(self.logger, "info", "Credit paid off",
                       user_id=credit.user_id, action="credit_paid_off",
                       resource=f"credit:{credit_id}")
        return credit

    def mark_overdue(self, credit_id: str) -> Credit:
        """Flag an active credit as overdue"""
        return self._transition(credit_id, CreditStatus.ACTIVE, CreditStatus.OVERDUE)

    def restore_active(self, credit_id: str) -> Credit:
        """Return an overdue credit to active once no overdue entries remain"""
        if self.schedules.count_overdue(credit_id) > 0:
            return self.require_credit(credit_id)
        return self._transition(credit_id, CreditStatus.OVERDUE, CreditStatus.ACTIVE)

    def get_credit_summary(self, credit_id: str) -> Dict[str, Any]:
        """Cost and repayment progress of one credit"""
        credit = self.require_credit(credit_id)
        schedule = self.schedules.get_by_credit(credit_id)

        zero = Money.zero()
        total_cost = sum((e.payment_amount for e in schedule), zero)
        total_interest = sum((e.interest_amount for e in schedule), zero)
        total_penalty = sum((e.penalty_amount for e in schedule), zero)
        paid = [e for e in schedule if e.status == PaymentStatus.PAID]
        overdue = [e for e in schedule if e.status == PaymentStatus.OVERDUE]
        upcoming = next((e for e in schedule if e.status in (PaymentStatus.PENDING, PaymentStatus.OVERDUE)), None)

        return {
            "credit_id": credit.id,
            "status": credit.status.value,
            "amount": credit.amount.amount,
            "interest_rate": credit.interest_rate,
            "monthly_payment": credit.monthly_payment.amount,
            "remaining_debt": credit.remaining_debt.amount,
            "total_cost": total_cost.amount,
            "total_interest": total_interest.amount,
            "total_penalty": total_penalty.amount,
            "effective_rate": effective_rate(credit.amount.amount, credit.monthly_payment.amount,
                                             credit.term_months, schedule),
            "payments_made": len(paid),
            "payments_remaining": len(schedule) - len(paid),
            "overdue_payments": len(overdue),
            "next_payment_date": upcoming.due_date if upcoming else None,
            "next_payment_amount": upcoming.payment_amount.amount if upcoming else None,
        }

    def get_credit_load(self, user_id: str) -> Dict[str, Any]:
        """Aggregate debt burden of a user across open credits"""
        open_credits = [c for c in self.get_user_credits(user_id) if c.is_open]
        zero = Money.zero()
        overdue_entries = sum(self.schedules.count_overdue(c.id) for c in open_credits)

        load = {
            "user_id": user_id,
            "active_credits": len(open_credits),
            "total_debt": sum((c.remaining_debt for c in open_credits), zero).amount,
            "monthly_payments": sum((c.monthly_payment for c in open_credits), zero).amount,
            "overdue_payments": overdue_entries,
        }
        log_action(self.logger, "info", "Credit load calculated",
                   user_id=user_id, action="credit_load",
                   extra={k: str(v) for k, v in load.items() if k != "user_id"})
        return load

    def _validate_request(self, amount, term_months) -> Decimal:
        try:
            principal = to_decimal(amount.amount if isinstance(amount, Money) else amount)
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValidationError(f"Invalid credit amount: {amount!r}") from e
        if not principal.is_finite() or principal <= 0:
            raise ValidationError("Credit amount must be positive")
        if principal > self.max_credit_amount:
            raise ValidationError(f"Credit amount exceeds the limit of {self.max_credit_amount}")
        if isinstance(term_months, bool) or not isinstance(term_months, int):
            raise ValidationError(f"Invalid credit term: {term_months!r}")
        if term_months <= 0 or term_months > self.max_term_months:
            raise ValidationError(f"Credit term must be between 1 and {self.max_term_months} months")
        if principal != round_money(principal):
            raise ValidationError(f"Credit amount must have at most two decimal places: {principal}")
        return Money(principal).amount

    def _base_rate(self) -> Decimal:
        try:
            rate = to_decimal(self.rate_provider.get_annual_rate())
            if not rate.is_finite() or rate < 0:
                raise RateProviderError(f"Invalid rate value: {rate}")
            return rate
        except Exception as e:
            log_action(self.logger, "warning", "Failed to get key rate, using fallback",
                       action="credit_rate",
                       extra={"error": str(e), "fallback_rate": str(self.fallback_annual_rate)})
            return self.fallback_annual_rate

    def _transition(self, credit_id: str, from_status: CreditStatus, to_status: CreditStatus) -> Credit:
        with self.storage.lock_records(self.credits_table, [credit_id]):
            credit = self.require_credit(credit_id)
            if credit.status != from_status:
                return credit
            credit.status = to_status
            credit.updated_at = self.clock()
            self._save_credit(credit)

        log_action(self.logger, "info", f"Credit status changed to {to_status.value}",
                   user_id=credit.user_id, action="credit_status",
                   resource=f"credit:{credit_id}",
                   extra={"old_status": from_status.value, "new_status": to_status.value})
        return credit

    def _notify(self, kind: NotificationKind, credit: Credit, payload: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send(kind, credit.user_id, payload)
        except Exception:
            log_action(self.logger, "error", f"Failed to send {kind.value} notification",
                       user_id=credit.user_id, action="notify",
                       resource=f"credit:{credit.id}", exc_info=True)

    def _save_credit(self, credit: Credit) -> None:
        self.storage.save(self.credits_table, credit.id, credit.to_dict())
