"""
Booking store - transactional boundary for the scheduling engine

Every capacity check that precedes an insert or a move runs inside
``locked_transaction`` so that two requests for the same slot cannot both
observe spare capacity. On PostgreSQL the lock is a transaction-scoped
advisory lock; other backends (SQLite in development and tests) use
process-local keyed locks.
"""

import hashlib
import logging
import threading
import time
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import BOOKING_CONFLICT_RETRIES, BOOKING_RETRY_BACKOFF_SECONDS
from ...models import Booking
from .exceptions import ConflictError, PersistenceError, SlotFull
from .schemas import BookingPatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE serialization_failure / deadlock_detected
SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def slot_lock_key(service_id: str, date_time: datetime) -> str:
    """Guards the service-level capacity of one slot"""
    return f"service-slot:{service_id}:{date_time.isoformat()}"


def employee_lock_key(employee_id: str, date_time: datetime) -> str:
    """Guards one employee at one instant, across every service they work"""
    return f"employee-slot:{employee_id}:{date_time.isoformat()}"


def advisory_lock_id(key: str) -> int:
    """Signed 64-bit id for pg_advisory_xact_lock"""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def is_serialization_failure(error: Exception) -> bool:
    if isinstance(error, ConflictError):
        return True
    if not isinstance(error, DBAPIError):
        return False
    orig = error.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


class KeyedLocks:
    """Process-local locks created on demand and dropped when unused"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class BookingStore:
    """Opens sessions, wraps them in transactions and serializes slot writers"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        retries: int = BOOKING_CONFLICT_RETRIES,
        backoff_seconds: float = BOOKING_RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._local_locks = KeyedLocks()
        self._dialect: Optional[str] = None

    def _new_session(self) -> Session:
        db = self.session_factory()
        # Objects handed back to callers stay readable after the session closes
        db.expire_on_commit = False
        return db

    @property
    def dialect(self) -> str:
        if self._dialect is None:
            db = self.session_factory()
            try:
                self._dialect = db.get_bind().dialect.name
            finally:
                db.close()
        return self._dialect

    @contextmanager
    def session(self):
        """Read-only unit of work; nothing is committed"""
        db = self._new_session()
        try:
            yield db
        finally:
            # close() detaches loaded objects without expiring them
            db.close()

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on any exception"""
        db = self._new_session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def locked_transaction(self, keys: Iterable[str]):
        """
        Transaction holding an exclusive lock on every key until it commits
        or rolls back. Keys are taken in sorted order so overlapping key
        sets cannot deadlock.
        """
        ordered = sorted(set(keys))
        use_advisory = self.dialect == "postgresql"
        with ExitStack() as stack:
            if not use_advisory:
                # Entered before the transaction so they are released after commit
                for key in ordered:
                    stack.enter_context(self._local_locks.hold(key))
            db = stack.enter_context(self.transaction())
            if use_advisory:
                for key in ordered:
                    db.execute(
                        text("SELECT pg_advisory_xact_lock(:lock_id)"),
                        {"lock_id": advisory_lock_id(key)},
                    )
            yield db

    def run_locked(self, keys: Iterable[str], operation: Callable[[Session], T]) -> T:
        """
        Run ``operation`` inside ``locked_transaction``. A serialization
        conflict re-runs the whole unit after a backoff; once retries are
        exhausted the caller sees SlotFull.
        """
        keys = list(keys)
        attempt = 0
        while True:
            try:
                with self.locked_transaction(keys) as db:
                    return operation(db)
            except (ConflictError, DBAPIError) as e:
                if not is_serialization_failure(e):
                    logger.error(f"❌ Booking persistence failed: {e}")
                    raise PersistenceError("Booking could not be saved") from e
                if attempt >= self.retries:
                    logger.warning(
                        f"⚠️ Giving up after {attempt + 1} conflicting attempts on {keys}"
                    )
                    raise SlotFull("Slot was taken by a concurrent booking") from e
                delay = self.backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    f"⚠️ Serialization conflict on {keys}, retry {attempt}/{self.retries} in {delay:.2f}s"
                )
                self._sleep(delay)
            except SQLAlchemyError as e:
                logger.error(f"❌ Booking persistence failed: {e}")
                raise PersistenceError("Booking could not be saved") from e

    @staticmethod
    def apply_patch(booking: Booking, patch: BookingPatch) -> Booking:
        """Copy the provided fields of ``patch`` onto ``booking``"""
        for field, value in patch.model_dump(exclude_none=True).items():
            setattr(booking, field, value)
        return booking
