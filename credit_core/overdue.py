"""
Overdue Payment Processor Module

Background task that periodically sweeps past-due schedule entries and
either collects them (payment plus penalty) or marks them overdue and
accrues the penalty. One entry failing never stops the sweep.

Lifecycle: IDLE -> RUNNING (start) -> STOPPED (stop). A stopped processor
can be started again.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Optional
from enum import Enum
import logging
import threading
import time

from .currency import Money, to_decimal
from .storage import StorageInterface
from .ledger import LedgerStore, TransactionType
from .schedules import PaymentScheduleStore, PaymentScheduleEntry
from .credits import CreditLifecycleManager, CreditStatus, utc_now
from .notifications import NotificationDispatcher, NotificationKind
from .errors import ValidationError
from .logging_config import log_action


DEFAULT_INTERVAL_SECONDS = 12 * 60 * 60
DEFAULT_PENALTY_RATE = Decimal("0.10")
DEFAULT_SHUTDOWN_TIMEOUT = 30.0


class ProcessorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class SettlementOutcome(Enum):
    SETTLED = "settled"        # Payment and penalty collected
    PENALIZED = "penalized"    # Insufficient funds, penalty accrued
    SKIPPED = "skipped"        # Settled or no longer due when re-read under lock


@dataclass
class SweepSummary:
    """Counters for one pass over the due entries"""
    total: int = 0
    processed: int = 0
    failed: int = 0
    settled: int = 0
    penalized: int = 0
    skipped: int = 0

    def record(self, outcome: SettlementOutcome) -> None:
        self.processed += 1
        if outcome == SettlementOutcome.SETTLED:
            self.settled += 1
        elif outcome == SettlementOutcome.PENALIZED:
            self.penalized += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def validate_penalty_rate(penalty_rate) -> Decimal:
    rate = to_decimal(penalty_rate)
    if not rate.is_finite() or rate < 0:
        raise ValidationError(f"Penalty rate must be a non-negative fraction, got {penalty_rate}")
    return rate


def validate_interval(interval) -> float:
    interval = float(interval)
    if interval <= 0:
        raise ValidationError(f"Sweep interval must be positive, got {interval}")
    return interval


class OverduePaymentProcessor:
    """
    Periodic overdue-payment sweep running on a daemon thread.

    ``run_sweep`` can also be called directly; sweeps never overlap.
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: LedgerStore,
        schedules: PaymentScheduleStore,
        credits: CreditLifecycleManager,
        notifier: Optional[NotificationDispatcher] = None,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        penalty_rate: Decimal = DEFAULT_PENALTY_RATE,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None
    ):
        self.storage = storage
        self.ledger = ledger
        self.schedules = schedules
        self.credits = credits
        self.notifier = notifier
        self.interval = validate_interval(interval)
        self.penalty_rate = validate_penalty_rate(penalty_rate)
        self.shutdown_timeout = shutdown_timeout
        self.clock = clock
        self.logger = logger or logging.getLogger("credit_core.overdue")

        self._state = ProcessorState.IDLE
        self._state_lock = threading.Lock()
        self._sweep_lock = threading.Lock()
        self._sweep_done = threading.Condition()
        self._sweeps_completed = 0
        self._thread: Optional[threading.Thread] = None
        self._stop_requested: Optional[threading.Event] = None
        self._wakeup: Optional[threading.Event] = None
        self.last_summary: Optional[SweepSummary] = None

    @property
    def state(self) -> ProcessorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ProcessorState.RUNNING

    @property
    def sweeps_completed(self) -> int:
        with self._sweep_done:
            return self._sweeps_completed

    def start(self, interval: Optional[float] = None, penalty_rate=None) -> bool:
        """
        Run a sweep now and then every ``interval`` seconds.

        Returns False if the processor is already running.
        """
        with self._state_lock:
            if self._state == ProcessorState.RUNNING:
                self.logger.debug("Overdue processor already running")
                return False

            if interval is not None:
                self.interval = validate_interval(interval)
            if penalty_rate is not None:
                self.penalty_rate = validate_penalty_rate(penalty_rate)

            # Fresh events per run so a thread left over from a timed-out stop stays stopped
            self._stop_requested = threading.Event()
            self._wakeup = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_requested, self._wakeup),
                name="overdue-payment-processor",
                daemon=True
            )
            self._state = ProcessorState.RUNNING
            self._thread.start()

        log_action(self.logger, "info", "Overdue processor started",
                   action="scheduler_start",
                   extra={"interval_seconds": self.interval,
                          "penalty_rate": str(self.penalty_rate)})
        return True

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop future sweeps. An in-flight sweep is allowed to finish; waits at
        most ``timeout`` seconds for it. Safe to call repeatedly.

        Returns True if the background thread has exited.
        """
        with self._state_lock:
            thread = self._thread
            if self._state != ProcessorState.RUNNING:
                return thread is None or not thread.is_alive()
            self._state = ProcessorState.STOPPED
            self._stop_requested.set()
            self._wakeup.set()

        if timeout is None:
            timeout = self.shutdown_timeout
        if thread is not threading.current_thread():
            thread.join(timeout)

        stopped = not thread.is_alive()
        if stopped:
            log_action(self.logger, "info", "Overdue processor stopped", action="scheduler_stop")
        else:
            log_action(self.logger, "warning", "Overdue processor did not stop within the deadline",
                       action="scheduler_stop", extra={"timeout_seconds": timeout})
        return stopped

    def trigger(self) -> bool:
        """Request an extra sweep now. Returns False when not running."""
        with self._state_lock:
            if self._state != ProcessorState.RUNNING:
                return False
            self._wakeup.set()
            return True

    def wait_for_sweeps(self, count: int, timeout: Optional[float] = None) -> bool:
        """Block until at least ``count`` sweeps have completed"""
        with self._sweep_done:
            return self._sweep_done.wait_for(lambda: self._sweeps_completed >= count, timeout)

    def run_sweep(self, as_of: Optional[date] = None, penalty_rate=None) -> SweepSummary:
        """
        One synchronous pass over every unsettled entry due before ``as_of``
        (today by default) whose credit is still open.
        """
        rate = self.penalty_rate if penalty_rate is None else validate_penalty_rate(penalty_rate)

        with self._sweep_lock:
            now = self.clock()
            as_of = as_of or now.date()
            started = time.monotonic()
            summary = SweepSummary()

            candidates = self._due_entries(as_of)
            summary.total = len(candidates)
            log_action(self.logger, "info", "Starting overdue payments processing",
                       action="overdue_sweep",
                       extra={"as_of": as_of.isoformat(), "due_entries": summary.total})

            for entry in candidates:
                try:
                    outcome = self._process_entry(entry, as_of, rate)
                    summary.record(outcome)
                except Exception:
                    summary.failed += 1
                    log_action(self.logger, "error", "Failed to process overdue payment",
                               action="overdue_sweep", resource=f"payment:{entry.id}",
                               extra={"credit_id": entry.credit_id}, exc_info=True)

            self.last_summary = summary
            log_action(self.logger, "info", "Overdue payments processing completed",
                       action="overdue_sweep",
                       extra={**summary.to_dict(),
                              "duration_ms": round((time.monotonic() - started) * 1000, 2)})

        with self._sweep_done:
            self._sweeps_completed += 1
            self._sweep_done.notify_all()
        return summary

    def _run_loop(self, stop_requested: threading.Event, wakeup: threading.Event) -> None:
        while not stop_requested.is_set():
            wakeup.clear()
            try:
                self.run_sweep()
            except Exception:
                log_action(self.logger, "error", "Overdue sweep failed",
                           action="overdue_sweep", exc_info=True)
            wakeup.wait(self.interval)
        self.logger.info("Overdue processor loop exited")

    def _due_entries(self, as_of: date):
        credit_status: Dict[str, Optional[CreditStatus]] = {}
        candidates = []
        for entry in self.schedules.find_due(as_of):
            if entry.credit_id not in credit_status:
                credit = self.credits.get_credit(entry.credit_id)
                credit_status[entry.credit_id] = credit.status if credit else None
            status = credit_status[entry.credit_id]
            # Entries of missing credits are kept so they surface as failures
            if status is None or status in (CreditStatus.ACTIVE, CreditStatus.OVERDUE):
                candidates.append(entry)
        return candidates

    def _process_entry(self, entry: PaymentScheduleEntry, as_of: date,
                       penalty_rate: Decimal) -> SettlementOutcome:
        credit = self.credits.require_credit(entry.credit_id)
        account_id = credit.account_id
        accounts_table = self.ledger.account_manager.accounts_table

        with self.storage.lock_records(accounts_table, [account_id]):
            with self.storage.atomic():
                # Re-read under the lock: a concurrent or earlier sweep may have settled it
                entry = self.schedules.require_entry(entry.id)
                credit = self.credits.require_credit(entry.credit_id)
                if not entry.is_due(as_of) or not credit.is_open:
                    return SettlementOutcome.SKIPPED

                account = self.ledger.account_manager.require_account(account_id)
                penalty = entry.payment_amount * penalty_rate
                total = entry.payment_amount + penalty
                now = self.clock()

                if account.is_active and account.balance >= total:
                    if total.is_positive():
                        self.ledger.debit_account(
                            account_id, total, TransactionType.CREDIT_PAYMENT,
                            f"Credit payment #{entry.payment_number} with penalty {penalty.amount}"
                        )
                    entry.mark_paid(total, penalty, now)
                    self.schedules.save(entry)
                    credit = self.credits.apply_principal_payment(credit.id, entry.principal_amount)
                    if credit.status == CreditStatus.OVERDUE:
                        credit = self.credits.restore_active(credit.id)
                    outcome = SettlementOutcome.SETTLED
                else:
                    entry.mark_overdue(penalty, now)
                    self.schedules.save(entry)
                    credit = self.credits.mark_overdue(credit.id)
                    outcome = SettlementOutcome.PENALIZED

        if outcome == SettlementOutcome.SETTLED:
            log_action(self.logger, "info", "Overdue payment collected with penalty",
                       user_id=credit.user_id, action="overdue_settle",
                       resource=f"payment:{entry.id}",
                       extra={"amount_deducted": str(total.amount), "penalty": str(penalty.amount)})
        else:
            log_action(self.logger, "warning", "Insufficient funds for overdue payment, penalty added",
                       user_id=credit.user_id, action="overdue_penalty",
                       resource=f"payment:{entry.id}",
                       extra={"required": str(total.amount), "available": str(account.balance.amount),
                              "account_status": account.status.value,
                              "total_penalty": str(entry.penalty_amount.amount)})

        self._notify(outcome, credit.user_id, entry, penalty)
        return outcome

    def _notify(self, outcome: SettlementOutcome, user_id: str,
                entry: PaymentScheduleEntry, penalty: Money) -> None:
        if self.notifier is None:
            return
        kind = (NotificationKind.PAYMENT_SETTLED if outcome == SettlementOutcome.SETTLED
                else NotificationKind.PAYMENT_OVERDUE)
        payload = {
            "credit_id": entry.credit_id,
            "payment_number": entry.payment_number,
            "due_date": entry.due_date,
            "payment_amount": entry.payment_amount.amount,
            "penalty": penalty.amount,
            "total_penalty": entry.penalty_amount.amount,
            "paid_amount": entry.paid_amount.amount,
        }
        try:
            self.notifier.send(kind, user_id, payload)
        except Exception:
            log_action(self.logger, "error", f"Failed to send {kind.value} notification",
                       user_id=user_id, action="notify", resource=f"payment:{entry.id}",
                       exc_info=True)
