"""Tests for the booking store: locking, conflict retries and patches."""

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from tests.conftest import TUESDAY, at, fetch_booking, make_booking, make_service, seed
from zootel.domain.scheduling.exceptions import ConflictError, PersistenceError, SlotFull
from zootel.domain.scheduling.schemas import BookingCreate, BookingPatch
from zootel.domain.scheduling.service import BookingCreated, BookingFailure
from zootel.domain.scheduling.store import (
    BookingStore,
    KeyedLocks,
    advisory_lock_id,
    employee_lock_key,
    is_serialization_failure,
    slot_lock_key,
)
from zootel.models import Booking

NINE = at(TUESDAY, 9)


def locked_db_error() -> OperationalError:
    return OperationalError("INSERT INTO bookings ...", {}, Exception("database is locked"))


class TestLockKeys:
    def test_keys_name_what_they_guard(self):
        assert slot_lock_key("svc-1", NINE) == "service-slot:svc-1:2030-01-08T09:00:00"
        assert employee_lock_key("emp-a", NINE) == "employee-slot:emp-a:2030-01-08T09:00:00"

    def test_advisory_lock_id_is_stable_signed_64_bit(self):
        key = slot_lock_key("svc-1", NINE)
        assert advisory_lock_id(key) == advisory_lock_id(key)
        assert advisory_lock_id(key) != advisory_lock_id(slot_lock_key("svc-1", at(TUESDAY, 9, 30)))
        assert -(2**63) <= advisory_lock_id(key) < 2**63

    def test_serialization_failures(self):
        assert is_serialization_failure(ConflictError())
        assert is_serialization_failure(locked_db_error())
        assert not is_serialization_failure(OperationalError("SELECT 1", {}, Exception("disk I/O error")))
        assert not is_serialization_failure(ValueError("nope"))


class TestKeyedLocks:
    def test_same_key_is_exclusive(self):
        locks = KeyedLocks()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with locks.hold("k"):
                entered.set()
                release.wait(timeout=5)
                order.append("first")

        def waiter():
            entered.wait(timeout=5)
            with locks.hold("k"):
                order.append("second")

        threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
        for t in threads:
            t.start()
        entered.wait(timeout=5)
        release.set()
        for t in threads:
            t.join(timeout=5)
        assert order == ["first", "second"]

    def test_unused_locks_are_dropped(self):
        locks = KeyedLocks()
        with locks.hold("a"), locks.hold("b"):
            pass
        assert locks._locks == {}


class TestRunLocked:
    def test_commits_operation_result(self, session_factory, base_records):
        store = BookingStore(session_factory, backoff_seconds=0)
        seed(session_factory, make_service())

        def insert(tx):
            tx.add(make_booking("b-1", NINE))
            return "done"

        assert store.run_locked([slot_lock_key("svc-1", NINE)], insert) == "done"
        assert fetch_booking(session_factory, "b-1").status == "pending"

    def test_domain_error_rolls_back(self, session_factory, base_records):
        store = BookingStore(session_factory, backoff_seconds=0)

        def insert_then_fail(tx):
            tx.add(make_booking("b-1", NINE))
            tx.flush()
            raise SlotFull("taken")

        with pytest.raises(SlotFull):
            store.run_locked(["k"], insert_then_fail)
        with store.session() as db:
            assert db.query(Booking).count() == 0

    def test_retries_conflicts_then_succeeds(self, session_factory):
        sleeps = []
        store = BookingStore(session_factory, retries=2, backoff_seconds=0.1, sleep=sleeps.append)
        attempts = []

        def flaky(tx):
            attempts.append(1)
            if len(attempts) < 3:
                raise locked_db_error()
            return len(attempts)

        assert store.run_locked(["k"], flaky) == 3
        assert sleeps == [0.1, 0.2]

    def test_exhausted_retries_become_slot_full(self, session_factory):
        sleeps = []
        store = BookingStore(session_factory, retries=2, backoff_seconds=0, sleep=sleeps.append)
        calls = []

        def always_conflicts(tx):
            calls.append(1)
            raise ConflictError("lost the race")

        with pytest.raises(SlotFull):
            store.run_locked(["k"], always_conflicts)
        assert len(calls) == 3
        assert len(sleeps) == 2

    def test_other_database_errors_are_persistence_errors(self, session_factory):
        store = BookingStore(session_factory, backoff_seconds=0)

        def broken(tx):
            raise OperationalError("INSERT ...", {}, Exception("disk I/O error"))

        with pytest.raises(PersistenceError):
            store.run_locked(["k"], broken)


class TestApplyPatch:
    def test_only_provided_fields_change(self):
        booking = make_booking("b-1", NINE, notes="keep me", employee_id="emp-a")
        BookingStore.apply_patch(booking, BookingPatch(status="confirmed"))
        assert booking.status == "confirmed"
        assert booking.notes == "keep me"
        assert booking.employee_id == "emp-a"
        assert booking.date_time == NINE

    def test_moves_time_and_duration(self):
        booking = make_booking("b-1", NINE)
        later = datetime(2030, 1, 9, 10, 0)
        BookingStore.apply_patch(booking, BookingPatch(date_time=later, duration=45))
        assert (booking.date_time, booking.duration) == (later, 45)

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            BookingPatch(duration=0)


class TestConcurrentBooking:
    def test_only_one_of_two_racing_requests_wins(self, booking_service, session_factory, base_records):
        seed(session_factory, make_service(max_bookings_per_slot=1))
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def book(user_id):
            try:
                barrier.wait(timeout=5)
                results.append(
                    booking_service.create_booking(
                        BookingCreate(service_id="svc-1", date_time=NINE), user_id
                    )
                )
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=book, args=(u,)) for u in ("user-1", "user-2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        created = [r for r in results if isinstance(r, BookingCreated)]
        failed = [r for r in results if isinstance(r, BookingFailure)]
        assert len(created) == 1
        assert len(failed) == 1
        assert failed[0].error == "SlotFull"
        with booking_service.store.session() as db:
            assert booking_service.repo.count_active_bookings(db, NINE, service_id="svc-1") == 1
