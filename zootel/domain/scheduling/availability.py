"""
Capacity arithmetic for slots and employees.

Both classes work on whatever session they are given, so the same checks run
read-only for availability queries and under the slot lock right before an
insert.
"""

import logging
from datetime import datetime, time, timedelta
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from ...models import Employee, Service
from .exceptions import EmployeeNotFound
from .repository import BookingRepository
from .schemas import AvailabilitySlot, EmployeeAvailability
from .slots import parse_time_of_day, weekday_name

logger = logging.getLogger(__name__)


class AvailabilityChecker:
    """Counts active bookings at a slot and compares against capacity"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    @staticmethod
    def capacity(service: Service, employee_id: Optional[str] = None) -> int:
        # An employee cannot hold two bookings at the same instant
        if employee_id is not None:
            return 1
        return max(service.max_bookings_per_slot or 1, 1)

    def count_active(
        self,
        service_id: str,
        date_time: datetime,
        employee_id: Optional[str] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> int:
        return self.repo.count_active_bookings(
            self.db,
            date_time,
            service_id=service_id,
            employee_id=employee_id,
            exclude_booking_id=exclude_booking_id,
        )

    def is_available(
        self,
        service: Service,
        date_time: datetime,
        employee_id: Optional[str] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        count = self.count_active(service.id, date_time, employee_id, exclude_booking_id)
        return count < self.capacity(service, employee_id)

    def slot_status(
        self, service: Service, date_time: datetime, employee_id: Optional[str] = None
    ) -> AvailabilitySlot:
        count = self.count_active(service.id, date_time, employee_id)
        capacity = self.capacity(service, employee_id)
        return AvailabilitySlot(
            date_time=date_time,
            available=count < capacity,
            current_count=count,
            max_bookings=capacity,
        )


class WorkWindow(NamedTuple):
    working: bool
    start: Optional[time] = None
    end: Optional[time] = None


def parse_schedule_entry(schedule, day_key: str) -> tuple[Optional[WorkWindow], str]:
    """
    Resolve one weekday of an employee's work schedule.

    Returns ``(window, "")`` for a usable entry, ``(None, reason)`` otherwise.
    Accepted entry shapes: ``{"is_working": bool, "start": "HH:MM", "end": "HH:MM"}``,
    the string ``"off"``, or a ``"HH:MM-HH:MM"`` range.
    """
    if not isinstance(schedule, dict):
        return None, "no work schedule"
    entry = schedule.get(day_key)
    if entry is None:
        return None, f"no entry for {day_key}"

    try:
        if isinstance(entry, str):
            value = entry.strip().lower()
            if value in ("off", "closed", "none", ""):
                return WorkWindow(working=False), ""
            start, end = value.split("-", 1)
            return WorkWindow(True, parse_time_of_day(start), parse_time_of_day(end)), ""

        if isinstance(entry, dict):
            is_working = entry.get("is_working", entry.get("isWorking", True))
            if not is_working:
                return WorkWindow(working=False), ""
            start = entry.get("start")
            end = entry.get("end")
            if start is None or end is None:
                return None, f"{day_key} entry has no hours"
            return WorkWindow(True, parse_time_of_day(start), parse_time_of_day(end)), ""
    except (TypeError, ValueError) as e:
        return None, f"unparseable {day_key} entry ({e})"

    return None, f"unsupported {day_key} entry"


class EmployeeAvailabilityResolver:
    """Decides whether an employee can take a booking at a given time"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    def is_working(self, employee: Employee, service: Service, date_time: datetime) -> bool:
        day_key = weekday_name(date_time)
        window, reason = parse_schedule_entry(employee.work_schedule, day_key)
        if window is None:
            # Permissive fallback: an employee without usable hours counts as available
            logger.warning(
                f"⚠️ Work schedule fallback for employee {employee.id}: {reason}; treating as available"
            )
            return True
        if not window.working:
            return False
        shift_start = datetime.combine(date_time.date(), window.start)
        shift_end = datetime.combine(date_time.date(), window.end)
        booking_end = date_time + timedelta(minutes=service.duration)
        return shift_start <= date_time and booking_end <= shift_end

    def resolve(
        self,
        employee_id: str,
        service: Service,
        date_time: datetime,
        employee: Optional[Employee] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> EmployeeAvailability:
        if employee is None:
            employee = self.repo.get_employee(self.db, employee_id)
        if not employee:
            raise EmployeeNotFound(f"Employee {employee_id} not found")

        current_bookings = self.repo.count_active_bookings(
            self.db, date_time, employee_id=employee.id, exclude_booking_id=exclude_booking_id
        )

        available = bool(employee.is_active) and self.is_working(employee, service, date_time)
        if current_bookings >= (service.max_bookings_per_slot or 1):
            available = False

        return EmployeeAvailability(
            employee_id=employee.id,
            name=employee.name,
            available=available,
            current_bookings=current_bookings,
        )

    def resolve_all(
        self,
        service: Service,
        date_time: datetime,
        candidate_ids: Optional[list[str]] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> list[EmployeeAvailability]:
        """Resolve candidates in list order; ids with no employee row are skipped"""
        if candidate_ids is None:
            candidate_ids = list(service.assigned_employees or [])
        employees = self.repo.get_employees(self.db, candidate_ids)

        results = []
        for employee_id in candidate_ids:
            employee = employees.get(employee_id)
            if employee is None:
                logger.warning(
                    f"⚠️ Service {service.id} lists unknown employee {employee_id}; skipping"
                )
                continue
            results.append(
                self.resolve(
                    employee_id,
                    service,
                    date_time,
                    employee=employee,
                    exclude_booking_id=exclude_booking_id,
                )
            )
        return results

    def pick_best(
        self,
        service: Service,
        date_time: datetime,
        candidate_ids: Optional[list[str]] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[EmployeeAvailability]:
        """Available candidate with the fewest bookings; the first one wins ties"""
        best = None
        for availability in self.resolve_all(service, date_time, candidate_ids, exclude_booking_id):
            if not availability.available:
                continue
            if best is None or availability.current_bookings < best.current_bookings:
                best = availability
        return best
