"""
Tests for payment schedule persistence
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone
from unittest.mock import patch

from credit_core.currency import Money
from credit_core.storage import InMemoryStorage
from credit_core.amortization import build_schedule
from credit_core.schedules import (
    PaymentScheduleStore, PaymentScheduleEntry, PaymentStatus, schedule_entry_id
)
from credit_core.errors import ScheduleEntryNotFound, ValidationError, PersistenceError


class TestPaymentScheduleStore:
    """Test batch creation, lookups and updates"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = PaymentScheduleStore(self.storage)
        self.amortization = build_schedule(Decimal('12000'), Decimal('21'), 6, date(2024, 1, 10))

    def test_create_batch(self):
        rows = self.store.create_batch("credit-1", self.amortization)

        assert len(rows) == 6
        assert self.storage.count("payment_schedules") == 6
        assert rows[0].id == "credit-1_1"
        assert rows[0].status == PaymentStatus.PENDING
        assert rows[0].penalty_amount == Money.zero()
        assert rows[0].paid_amount == Money.zero()
        assert rows[0].paid_at is None

    def test_round_trip_preserves_amounts(self):
        self.store.create_batch("credit-1", self.amortization)
        entries = self.store.get_by_credit("credit-1")

        for entry, source in zip(entries, self.amortization):
            assert entry.payment_number == source.payment_number
            assert entry.due_date == source.due_date
            assert entry.payment_amount == source.payment_amount
            assert entry.principal_amount == source.principal_amount
            assert entry.interest_amount == source.interest_amount
            assert entry.remaining_balance == source.remaining_balance

    def test_get_by_credit_ordered(self):
        self.store.create_batch("credit-1", reversed(self.amortization))
        self.store.create_batch("credit-2", build_schedule(Decimal('100'), Decimal('0'), 2, date(2024, 1, 1)))

        assert [e.payment_number for e in self.store.get_by_credit("credit-1")] == [1, 2, 3, 4, 5, 6]
        assert len(self.store.get_by_credit("credit-2")) == 2
        assert self.store.get_by_credit("missing") == []

    def test_duplicate_batch_rejected(self):
        self.store.create_batch("credit-1", self.amortization)
        with pytest.raises(ValidationError, match="already exists"):
            self.store.create_batch("credit-1", self.amortization)
        assert self.storage.count("payment_schedules") == 6

    def test_empty_batch_rejected(self):
        with pytest.raises(ValidationError):
            self.store.create_batch("credit-1", [])

    def test_batch_is_all_or_nothing(self):
        original_save = self.storage.save
        calls = []

        def fail_on_fourth(table, record_id, data):
            calls.append(record_id)
            if len(calls) == 4:
                raise RuntimeError("write failed")
            return original_save(table, record_id, data)

        with patch.object(self.storage, "save", side_effect=fail_on_fourth):
            with pytest.raises(PersistenceError):
                self.store.create_batch("credit-1", self.amortization)

        assert self.storage.count("payment_schedules") == 0

    def test_get_entry(self):
        self.store.create_batch("credit-1", self.amortization)
        entry = self.store.get_entry(schedule_entry_id("credit-1", 3))
        assert entry.payment_number == 3
        assert self.store.get_entry("credit-1_99") is None
        with pytest.raises(ScheduleEntryNotFound):
            self.store.require_entry("credit-1_99")

    def test_find_due(self):
        self.store.create_batch("credit-1", self.amortization)
        # Due dates: 2024-02-10 .. 2024-07-10

        assert self.store.find_due(date(2024, 2, 10)) == []
        due = self.store.find_due(date(2024, 3, 11))
        assert [e.payment_number for e in due] == [1, 2]

    def test_find_due_includes_overdue_and_skips_paid(self):
        self.store.create_batch("credit-1", self.amortization)
        now = datetime.now(timezone.utc)

        first = self.store.require_entry("credit-1_1")
        first.mark_paid(first.payment_amount, Money.zero(), now)
        self.store.save(first)

        second = self.store.require_entry("credit-1_2")
        second.mark_overdue(Money(Decimal('10')), now)
        self.store.save(second)

        due = self.store.find_due(date(2024, 4, 11))
        assert [(e.payment_number, e.status) for e in due] == [
            (2, PaymentStatus.OVERDUE), (3, PaymentStatus.PENDING)
        ]
        assert self.store.count_overdue("credit-1") == 1
        assert self.store.next_payment("credit-1").payment_number == 2

    def test_mark_paid_and_overdue_accumulate_penalty(self):
        self.store.create_batch("credit-1", self.amortization)
        entry = self.store.require_entry("credit-1_1")
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)

        entry.mark_overdue(Money(Decimal('20.00')), now)
        entry.mark_overdue(Money(Decimal('20.00')), now)
        entry.mark_paid(Money(Decimal('2220.00')), Money(Decimal('20.00')), now)
        self.store.save(entry)

        stored = self.store.require_entry("credit-1_1")
        assert stored.status == PaymentStatus.PAID
        assert stored.penalty_amount == Money(Decimal('60.00'))
        assert stored.paid_amount == Money(Decimal('2220.00'))
        assert stored.paid_at == now
        assert stored.is_settled
        assert not stored.is_due(date(2030, 1, 1))
