"""
Alternative slot search

When the requested slot cannot be booked, scan the following days for slots
that can, and rank them by closeness to the original request with a small
bonus for less busy employees.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...config import ALTERNATIVE_SEARCH_DAYS, ALTERNATIVE_SEARCH_WORKERS, MAX_ALTERNATIVES
from ...models import Service
from .availability import AvailabilityChecker, EmployeeAvailabilityResolver
from .exceptions import ServiceNotFound
from .repository import BookingRepository
from .schemas import AlternativeSlot
from .slots import generate_slots, normalize_days, weekday_name
from .store import BookingStore

logger = logging.getLogger(__name__)


def priority_score(time_diff: timedelta, current_bookings: int) -> float:
    """Closeness in days dominates; employee load breaks near-ties"""
    hours_diff = time_diff.total_seconds() / 3600
    return 100 / (1 + hours_diff / 24) + 10 / (1 + current_bookings)


class AlternativeSlotSearch:
    def __init__(
        self,
        store: BookingStore,
        clock: Callable[[], datetime] = datetime.now,
        max_results: int = MAX_ALTERNATIVES,
        workers: int = ALTERNATIVE_SEARCH_WORKERS,
    ):
        self.store = store
        self.clock = clock
        self.max_results = max_results
        self.workers = max(workers, 1)
        self.repo = BookingRepository()

    def candidate_dates(self, service: Service, requested: datetime, days_to_search: int) -> list[date]:
        open_days = normalize_days(service.available_days)
        start = requested.date()
        dates = [start + timedelta(days=offset) for offset in range(max(days_to_search, 0))]
        return [d for d in dates if weekday_name(d) in open_days]

    def scan_day(
        self, db: Session, service: Service, day: date, requested: datetime, now: datetime
    ) -> list[AlternativeSlot]:
        """Viable (slot, employee) pairs for one date, in slot order"""
        checker = AvailabilityChecker(db)
        resolver = EmployeeAvailabilityResolver(db)
        latest = now + timedelta(days=service.advance_booking_days or 0)

        found = []
        for slot in generate_slots(service, day):
            if slot <= now or slot > latest:
                continue
            if not checker.is_available(service, slot):
                continue

            if service.assigned_employees:
                best = resolver.pick_best(service, slot)
                if best is None:
                    continue
                employee_id, employee_name, load = best.employee_id, best.name, best.current_bookings
            else:
                employee_id, employee_name = None, None
                load = checker.count_active(service.id, slot)

            time_diff = abs(slot - requested)
            found.append(
                AlternativeSlot(
                    date_time=slot,
                    employee_id=employee_id,
                    employee_name=employee_name,
                    time_diff=time_diff,
                    priority=priority_score(time_diff, load),
                )
            )
        return found

    def _scan_day_in_own_session(
        self, service_id: str, day: date, requested: datetime, now: datetime
    ) -> list[AlternativeSlot]:
        with self.store.session() as db:
            service = self.repo.get_service(db, service_id)
            return self.scan_day(db, service, day, requested, now)

    def search(
        self,
        service_id: str,
        requested: datetime,
        days_to_search: Optional[int] = None,
    ) -> list[AlternativeSlot]:
        if days_to_search is None:
            days_to_search = ALTERNATIVE_SEARCH_DAYS
        now = self.clock()

        with self.store.session() as db:
            service = self.repo.get_service(db, service_id)
            if not service:
                raise ServiceNotFound(f"Service {service_id} not found")
            dates = self.candidate_dates(service, requested, days_to_search)

            if self.workers == 1 or len(dates) < 2:
                per_day = [self.scan_day(db, service, d, requested, now) for d in dates]
            else:
                per_day = None

        if per_day is None:
            # Each date gets its own session; map() keeps results in date order
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                per_day = list(
                    pool.map(
                        lambda d: self._scan_day_in_own_session(service_id, d, requested, now),
                        dates,
                    )
                )

        candidates = [slot for day_slots in per_day for slot in day_slots]
        # Stable sort: equal priorities stay in date/slot order
        candidates.sort(key=lambda c: c.priority, reverse=True)
        logger.info(
            f"🔎 Alternative search for service {service_id} around {requested}: "
            f"{len(candidates)} viable slot(s) over {len(dates)} day(s)"
        )
        return candidates[: self.max_results]
