"""Shared test fixtures and helpers."""

import asyncio
import os
import threading
from datetime import datetime
from typing import Optional

import pytest

os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from arq import Retry  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from zootel.database import Base, build_engine  # noqa: E402
from zootel.domain.scheduling.service import BookingService  # noqa: E402
from zootel.domain.scheduling.store import BookingStore  # noqa: E402
from zootel.models import Booking, Company, Employee, Pet, Service, User  # noqa: E402
from zootel.services.notification_service import BookingNotifier  # noqa: E402
from zootel.shared.ids import IdGenerator  # noqa: E402
from zootel.worker import WorkerSettings  # noqa: E402

# Monday 7 January 2030, 08:00
NOW = datetime(2030, 1, 7, 8, 0)
# Tuesday 8 January 2030
TUESDAY = datetime(2030, 1, 8)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]


def at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSink:
    """Notification sink that remembers every call"""

    def __init__(self):
        self._lock = threading.Lock()
        self.scheduled: list[dict] = []
        self.cancelled: list[str] = []

    def schedule_notification(self, user_id, type, scheduled_at, payload):
        with self._lock:
            self.scheduled.append(
                {"user_id": user_id, "type": type, "scheduled_at": scheduled_at, "payload": payload}
            )
        return True

    def cancel_scheduled_notifications(self, booking_id):
        with self._lock:
            self.cancelled.append(booking_id)
        return 0

    def scheduled_for(self, booking_id: str, type: Optional[str] = None) -> list[dict]:
        return [
            n
            for n in self.scheduled
            if n["payload"]["booking_id"] == booking_id and (type is None or n["type"] == type)
        ]


class RecordingPayments:
    def __init__(self):
        self.completed: list[str] = []

    def mark_service_completed(self, booking_id):
        self.completed.append(booking_id)
        return True


class InlineJobQueue:
    """
    Stands in for the ARQ pool: jobs are recorded on enqueue and ``run()``
    executes them in order through the worker's own job functions, retrying
    on ``Retry`` up to ``max_tries`` like the worker does.
    """

    def __init__(self, ctx: dict, max_tries: int = WorkerSettings.max_tries):
        self.ctx = ctx
        self.max_tries = max_tries
        self._lock = threading.Lock()
        self.pending: list[tuple] = []
        self.enqueued: list[str] = []
        self.failed: list[tuple] = []
        self.tries: list[tuple] = []

    def enqueue(self, function, *args):
        with self._lock:
            self.pending.append((function, args))
            self.enqueued.append(function)
            return f"job-{len(self.enqueued)}"

    def run(self) -> None:
        functions = {f.__name__: f for f in WorkerSettings.functions}
        while self.pending:
            function, args = self.pending.pop(0)
            for job_try in range(1, self.max_tries + 1):
                self.tries.append((function, job_try))
                try:
                    asyncio.run(functions[function]({**self.ctx, "job_try": job_try}, *args))
                    break
                except Retry:
                    continue
                except Exception as e:
                    self.failed.append((function, e))
                    break


class FakeOwnership:
    def __init__(self, owned: Optional[set] = None):
        self.owned = owned if owned is not None else {("pet-1", "user-1")}

    def validate_pet_ownership(self, pet_id, user_id):
        return (pet_id, user_id) in self.owned


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'zootel-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def payments():
    return RecordingPayments()


@pytest.fixture
def ownership():
    return FakeOwnership()


@pytest.fixture
def jobs(sink, payments):
    return InlineJobQueue({"notification_sink": sink, "payments": payments})


@pytest.fixture
def store(session_factory):
    return BookingStore(session_factory, backoff_seconds=0)


@pytest.fixture
def booking_service(store, ownership, jobs, clock):
    return BookingService(
        store=store,
        ownership=ownership,
        notifier=BookingNotifier(jobs),
        jobs=jobs,
        clock=clock,
        ids=IdGenerator(seed=1234),
    )


def seed(session_factory, *objects):
    db = session_factory()
    try:
        db.add_all(objects)
        db.commit()
    finally:
        db.close()


def make_service(**overrides) -> Service:
    values = dict(
        id="svc-1",
        company_id="co-1",
        name="Dog grooming",
        price=50.0,
        duration=30,
        max_bookings_per_slot=1,
        available_days=list(WEEKDAYS),
        start_time="09:00",
        end_time="10:00",
        buffer_time_before=0,
        buffer_time_after=0,
        advance_booking_days=30,
        assigned_employees=[],
        is_active=True,
    )
    values.update(overrides)
    return Service(**values)


def make_employee(employee_id: str, **overrides) -> Employee:
    values = dict(
        id=employee_id,
        company_id="co-1",
        first_name=employee_id.replace("emp-", "").title(),
        last_name="Walker",
        work_schedule=None,
        is_active=True,
    )
    values.update(overrides)
    return Employee(**values)


def make_booking(booking_id: str, date_time: datetime, **overrides) -> Booking:
    values = dict(
        id=booking_id,
        user_id="user-1",
        company_id="co-1",
        service_id="svc-1",
        pet_id=None,
        employee_id=None,
        date_time=date_time,
        duration=30,
        price=50.0,
        status="pending",
    )
    values.update(overrides)
    return Booking(**values)


@pytest.fixture
def base_records(session_factory):
    """Company, customer and pet shared by most scenarios"""
    seed(
        session_factory,
        Company(id="co-1", name="Happy Paws"),
        User(id="user-1", full_name="Ana Diaz", email="ana@example.com"),
        User(id="user-2", full_name="Ben Cole", email="ben@example.com"),
        Pet(id="pet-1", owner_id="user-1", name="Rex", species="dog"),
    )


def fetch_booking(session_factory, booking_id: str) -> Booking:
    db = session_factory()
    try:
        return db.query(Booking).filter(Booking.id == booking_id).one()
    finally:
        db.close()
