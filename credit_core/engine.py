"""
Engine Wiring Module

Builds the component graph from configuration. This is the only place that
reads CreditCoreConfig; every component receives its collaborators and
settings through its constructor.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import logging

from .config import CreditCoreConfig, get_config
from .storage import StorageInterface, create_storage
from .accounts import AccountManager
from .ledger import LedgerStore
from .schedules import PaymentScheduleStore
from .credits import CreditLifecycleManager, utc_now
from .overdue import OverduePaymentProcessor
from .rates import RateProvider, create_rate_provider
from .notifications import NotificationDispatcher, create_dispatcher
from .logging_config import get_logger, log_action


@dataclass
class CreditEngine:
    """All engine components sharing one storage backend"""
    config: CreditCoreConfig
    storage: StorageInterface
    accounts: AccountManager
    ledger: LedgerStore
    schedules: PaymentScheduleStore
    credits: CreditLifecycleManager
    processor: OverduePaymentProcessor
    rate_provider: RateProvider
    notifier: NotificationDispatcher

    def start(self) -> bool:
        return self.processor.start(
            interval=self.config.scheduler_interval_seconds,
            penalty_rate=self.config.scheduler_penalty_rate
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        if timeout is None:
            timeout = self.config.shutdown_timeout_seconds
        return self.processor.stop(timeout)

    def close(self) -> bool:
        """
        Stop the processor and release the storage and HTTP clients.

        Storage stays open while a sweep is still running past the shutdown
        deadline. Returns False in that case.
        """
        stopped = self.stop()
        close_client = getattr(self.rate_provider, "close", None)
        if close_client is not None:
            close_client()
        if not stopped:
            log_action(self.processor.logger, "warning",
                       "Sweep still running at shutdown, leaving storage open",
                       action="engine_close")
            return False
        self.storage.close()
        return True


def build_engine(
    config: Optional[CreditCoreConfig] = None,
    storage: Optional[StorageInterface] = None,
    rate_provider: Optional[RateProvider] = None,
    notifier: Optional[NotificationDispatcher] = None,
    clock: Callable[[], datetime] = utc_now,
    logger: Optional[logging.Logger] = None
) -> CreditEngine:
    """
    Assemble an engine. Explicit arguments override what the configuration
    would build.
    """
    config = config or get_config()
    logger = logger or get_logger("credit_core")

    storage = storage or create_storage(config.database_url)
    rate_provider = rate_provider or create_rate_provider(
        enabled=config.rate_provider_enabled,
        service_url=config.rate_provider_url,
        timeout=config.rate_provider_timeout,
        fallback_rate=config.fallback_annual_rate
    )
    notifier = notifier or create_dispatcher(
        webhook_url=config.notification_webhook_url,
        timeout=config.notification_timeout,
        logger=logger.getChild("notifications")
    )

    accounts = AccountManager(storage, logger=logger.getChild("accounts"))
    ledger = LedgerStore(
        storage, accounts,
        max_operation_amount=config.max_operation_amount,
        logger=logger.getChild("ledger")
    )
    schedules = PaymentScheduleStore(storage, logger=logger.getChild("schedules"))
    credits = CreditLifecycleManager(
        storage, accounts, ledger, schedules, rate_provider,
        notifier=notifier,
        max_credit_amount=config.max_credit_amount,
        max_term_months=config.max_term_months,
        fallback_annual_rate=config.fallback_annual_rate,
        bank_margin=config.bank_margin,
        clock=clock,
        logger=logger.getChild("credits")
    )
    processor = OverduePaymentProcessor(
        storage, ledger, schedules, credits,
        notifier=notifier,
        interval=config.scheduler_interval_seconds,
        penalty_rate=config.scheduler_penalty_rate,
        shutdown_timeout=config.shutdown_timeout_seconds,
        clock=clock,
        logger=logger.getChild("overdue")
    )

    return CreditEngine(
        config=config,
        storage=storage,
        accounts=accounts,
        ledger=ledger,
        schedules=schedules,
        credits=credits,
        processor=processor,
        rate_provider=rate_provider,
        notifier=notifier
    )
