"""
Booking assignment

Turns a booking request into a committed ``pending`` booking with an employee,
or raises a CapacityError the caller can answer with alternatives.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...models import Booking, Service
from ...services.notification_service import BookingNotifier
from ...services.ownership_service import OwnershipValidator
from ...shared.ids import IdGenerator, get_id_generator
from .availability import AvailabilityChecker, EmployeeAvailabilityResolver
from .exceptions import (
    NoEmployeeAvailable,
    PastOrOutOfWindowDate,
    PetOwnershipMismatch,
    ServiceInactive,
    ServiceNotFound,
    SlotFull,
)
from .repository import BookingRepository
from .schemas import BookingCreate, EmployeeAvailability
from .store import BookingStore, employee_lock_key, slot_lock_key

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    booking: Booking
    employee: Optional[EmployeeAvailability]


def booking_lock_keys(service_id: str, employee_id: Optional[str], date_time: datetime) -> list[str]:
    keys = [slot_lock_key(service_id, date_time)]
    if employee_id:
        keys.append(employee_lock_key(employee_id, date_time))
    return keys


class BookingAssigner:
    def __init__(
        self,
        store: BookingStore,
        ownership: OwnershipValidator,
        notifier: BookingNotifier,
        clock: Callable[[], datetime] = datetime.now,
        ids: Optional[IdGenerator] = None,
    ):
        self.store = store
        self.ownership = ownership
        self.notifier = notifier
        self.clock = clock
        self.ids = ids or get_id_generator()
        self.repo = BookingRepository()

    def get_bookable_service(self, db: Session, service_id: str) -> Service:
        service = self.repo.get_service(db, service_id)
        if not service:
            raise ServiceNotFound(f"Service {service_id} not found")
        if not service.is_active:
            raise ServiceInactive(f"Service {service_id} is not accepting bookings")
        return service

    def validate_window(self, service: Service, date_time: datetime) -> None:
        now = self.clock()
        if date_time <= now:
            raise PastOrOutOfWindowDate("Booking time must be in the future")
        latest = now + timedelta(days=service.advance_booking_days or 0)
        if date_time > latest:
            raise PastOrOutOfWindowDate(
                f"Bookings can be made at most {service.advance_booking_days} days in advance"
            )

    def select_employee(
        self,
        db: Session,
        service: Service,
        date_time: datetime,
        employee_id: Optional[str] = None,
        strict: bool = False,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[EmployeeAvailability]:
        """
        Pick who takes the booking. ``None`` means the service has no assigned
        staff and the booking is held at service level only.
        """
        resolver = EmployeeAvailabilityResolver(db)
        assigned = list(service.assigned_employees or [])

        if employee_id:
            requested = resolver.resolve(
                employee_id, service, date_time, exclude_booking_id=exclude_booking_id
            )
            if requested.available:
                return requested
            if strict:
                raise NoEmployeeAvailable(f"Employee {employee_id} is not available at {date_time}")
            logger.info(
                f"ℹ️ Requested employee {employee_id} unavailable at {date_time}; trying other assigned staff"
            )
            candidates = [e for e in assigned if e != employee_id]
            if not candidates:
                raise NoEmployeeAvailable(f"Employee {employee_id} is not available at {date_time}")
        elif not assigned:
            return None
        else:
            candidates = assigned

        best = resolver.pick_best(service, date_time, candidates, exclude_booking_id)
        if best is None:
            raise NoEmployeeAvailable(f"No employee available at {date_time}")
        return best

    def assign(
        self, request: BookingCreate, user_id: str, company_id: Optional[str] = None
    ) -> AssignmentResult:
        """
        Book ``request`` for ``user_id``. With ``company_id`` the booking is
        made by that company on the customer's behalf: the service must be
        one of its own and pet ownership is not checked.
        """
        date_time = request.date_time

        with self.store.session() as db:
            service = self.get_bookable_service(db, request.service_id)
            if company_id is not None and service.company_id != company_id:
                raise ServiceNotFound(f"Service {request.service_id} not found for company {company_id}")
            self.validate_window(service, date_time)
            if (
                company_id is None
                and request.pet_id
                and not self.ownership.validate_pet_ownership(request.pet_id, user_id)
            ):
                raise PetOwnershipMismatch("Pet does not belong to the requesting user")

            if not AvailabilityChecker(db).is_available(service, date_time):
                raise SlotFull(f"Service {service.id} is fully booked at {date_time}")

            chosen = self.select_employee(
                db, service, date_time, request.employee_id, request.strict_employee
            )

        employee_id = chosen.employee_id if chosen else None

        def _insert(tx: Session) -> Booking:
            # Same checks again, now under the slot lock
            locked_service = self.repo.get_service(tx, service.id)
            checker = AvailabilityChecker(tx)
            if not checker.is_available(locked_service, date_time):
                raise SlotFull(f"Service {service.id} is fully booked at {date_time}")
            if employee_id:
                if not checker.is_available(locked_service, date_time, employee_id):
                    raise SlotFull(f"Employee {employee_id} is already booked at {date_time}")
                recheck = EmployeeAvailabilityResolver(tx).resolve(employee_id, locked_service, date_time)
                if not recheck.available:
                    raise SlotFull(f"Employee {employee_id} is no longer available at {date_time}")

            return self.repo.add_booking(
                tx,
                id=self.ids.new_id(),
                user_id=user_id,
                company_id=locked_service.company_id,
                service_id=locked_service.id,
                pet_id=request.pet_id,
                employee_id=employee_id,
                date_time=date_time,
                duration=locked_service.duration,
                price=locked_service.price or 0.0,
                status="pending",
                notes=request.notes,
            )

        booking = self.store.run_locked(booking_lock_keys(service.id, employee_id, date_time), _insert)
        logger.info(
            f"✅ Booking {booking.id} created: service={service.id} employee={employee_id} at {date_time}"
        )

        self.notifier.schedule_reminders(booking, self.clock())
        return AssignmentResult(booking=booking, employee=chosen)
