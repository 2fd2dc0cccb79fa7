"""Booking service - Business logic behind the booking endpoints"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from ...models import Booking
from ...services.job_queue import JobQueue
from ...services.notification_service import BookingNotifier
from ...services.ownership_service import DatabaseOwnershipValidator, OwnershipValidator
from ...shared.ids import IdGenerator
from .alternatives import AlternativeSlotSearch
from .assigner import AssignmentResult, BookingAssigner, booking_lock_keys
from .availability import AvailabilityChecker, EmployeeAvailabilityResolver
from .exceptions import (
    BookingNotFound,
    CapacityError,
    EmployeeNotFound,
    InvalidStateTransition,
    ServiceNotFound,
    SlotFull,
)
from .repository import BookingRepository
from .schemas import (
    AlternativeSlot,
    AssignedEmployeeInfo,
    AvailabilitySlot,
    BookingCreate,
    BookingPatch,
    CompanyBookingCreate,
    ConfirmAlternativeRequest,
    EmployeeAvailability,
    ServiceAvailabilitySummary,
)
from .slots import generate_slots
from .state_machine import BookingStateMachine, merge_notes
from .store import BookingStore

logger = logging.getLogger(__name__)

RESCHEDULABLE_STATUSES = ("pending", "confirmed", "rescheduled")


def booking_row_key(booking_id: str) -> str:
    return f"booking:{booking_id}"


@dataclass
class BookingCreated:
    booking: Booking
    employee: Optional[EmployeeAvailability] = None


@dataclass
class BookingFailure:
    reason: str
    error: str
    alternatives: list[AlternativeSlot] = field(default_factory=list)


class BookingService:
    """Service layer for booking business logic"""

    def __init__(
        self,
        store: BookingStore,
        ownership: OwnershipValidator,
        notifier: BookingNotifier,
        jobs: JobQueue,
        clock: Callable[[], datetime] = datetime.now,
        ids: Optional[IdGenerator] = None,
        alternative_search: Optional[AlternativeSlotSearch] = None,
    ):
        self.store = store
        self.clock = clock
        self.notifier = notifier
        self.repo = BookingRepository()
        self.assigner = BookingAssigner(store, ownership, notifier, clock=clock, ids=ids)
        self.alternatives = alternative_search or AlternativeSlotSearch(store, clock=clock)
        self.state_machine = BookingStateMachine(notifier, jobs, clock=clock)

    # ------------------------------------------------------------------
    # Booking creation
    # ------------------------------------------------------------------

    def create_booking(
        self, request: BookingCreate, user_id: str, company_id: Optional[str] = None
    ) -> Union[BookingCreated, BookingFailure]:
        """Book the exact request, or explain why not and offer alternatives"""
        try:
            result: AssignmentResult = self.assigner.assign(request, user_id, company_id)
        except CapacityError as e:
            logger.warning(
                f"⚠️ Booking rejected for service {request.service_id} at {request.date_time}: {e.reason}"
            )
            alternatives = self.alternatives.search(request.service_id, request.date_time)
            return BookingFailure(
                reason=e.reason, error=type(e).__name__, alternatives=alternatives
            )
        return BookingCreated(booking=result.booking, employee=result.employee)

    def confirm_alternative(
        self, request: ConfirmAlternativeRequest, user_id: str
    ) -> Union[BookingCreated, BookingFailure]:
        """Book a proposed alternative, keeping the employee it was proposed with"""
        return self.create_booking(
            BookingCreate(
                service_id=request.service_id,
                date_time=request.date_time,
                pet_id=request.pet_id,
                employee_id=request.employee_id,
                notes=request.notes,
                strict_employee=request.employee_id is not None,
            ),
            user_id,
        )

    def create_company_booking(
        self, company_id: str, request: CompanyBookingCreate
    ) -> Union[BookingCreated, BookingFailure]:
        """Book on a customer's behalf, e.g. for a phone reservation taken by staff"""
        logger.info(
            f"🏢 Company {company_id} booking service {request.service_id} for user {request.customer_user_id}"
        )
        booking_request = BookingCreate(**request.model_dump(exclude={"customer_user_id"}))
        return self.create_booking(booking_request, request.customer_user_id, company_id=company_id)

    # ------------------------------------------------------------------
    # Read-only availability
    # ------------------------------------------------------------------

    def check_availability(
        self, service_id: str, day: date, employee_id: Optional[str] = None
    ) -> list[AvailabilitySlot]:
        now = self.clock()
        with self.store.session() as db:
            service = self._get_service(db, service_id)
            employee = None
            if employee_id:
                employee = self.repo.get_employee(db, employee_id)
                if not employee:
                    raise EmployeeNotFound(f"Employee {employee_id} not found")

            checker = AvailabilityChecker(db)
            resolver = EmployeeAvailabilityResolver(db)
            slots = []
            for slot in generate_slots(service, day):
                status = checker.slot_status(service, slot, employee_id)
                available = status.available and slot > now
                if available and employee is not None:
                    available = resolver.resolve(employee.id, service, slot, employee=employee).available
                slots.append(status.model_copy(update={"available": available}))
            return slots

    def find_available_employees(
        self, service_id: str, date_time: datetime
    ) -> list[EmployeeAvailability]:
        with self.store.session() as db:
            service = self._get_service(db, service_id)
            return EmployeeAvailabilityResolver(db).resolve_all(service, date_time)

    def get_alternatives(
        self, service_id: str, requested: datetime, days_to_search: Optional[int] = None
    ) -> list[AlternativeSlot]:
        return self.alternatives.search(service_id, requested, days_to_search)

    def get_service_availability(self, service_id: str) -> ServiceAvailabilitySummary:
        with self.store.session() as db:
            service = self._get_service(db, service_id)
            assigned = list(service.assigned_employees or [])
            employees = self.repo.get_employees(db, assigned)
            return ServiceAvailabilitySummary(
                service_id=service.id,
                available_days=list(service.available_days or []),
                start_time=service.start_time,
                end_time=service.end_time,
                duration=service.duration,
                max_bookings_per_slot=service.max_bookings_per_slot,
                buffer_time_before=service.buffer_time_before or 0,
                buffer_time_after=service.buffer_time_after or 0,
                advance_booking_days=service.advance_booking_days or 0,
                assigned_employees=[
                    AssignedEmployeeInfo(id=e.id, name=e.name, work_schedule=e.work_schedule)
                    for e in (employees.get(eid) for eid in assigned)
                    if e is not None and e.is_active
                ],
            )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str, user_id: Optional[str] = None) -> Booking:
        with self.store.session() as db:
            booking = self.repo.get_booking(db, booking_id)
            if not booking or (user_id is not None and booking.user_id != user_id):
                raise BookingNotFound(f"Booking {booking_id} not found")
            return booking

    def list_user_bookings(self, user_id: str, status: Optional[str] = None) -> list[Booking]:
        with self.store.session() as db:
            return self.repo.get_user_bookings(db, user_id, status)

    def list_company_bookings(
        self,
        company_id: str,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> list[Booking]:
        with self.store.session() as db:
            return self.repo.get_company_bookings(db, company_id, status, start_date, end_date)

    # ------------------------------------------------------------------
    # Mutations on existing bookings
    # ------------------------------------------------------------------

    def update_booking_status(
        self, booking_id: str, new_status: str, notes: Optional[str] = None
    ) -> Booking:
        def _apply(tx: Session):
            booking = self._get_booking(tx, booking_id)
            previous = booking.status
            patch = self.state_machine.transition(booking, new_status, notes)
            self.store.apply_patch(booking, patch)
            self.repo.save_booking(tx, booking)
            return booking, previous

        booking, previous = self.store.run_locked([booking_row_key(booking_id)], _apply)
        self.state_machine.run_side_effects(booking, previous)
        return booking

    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        return self.update_booking_status(booking_id, "cancelled", reason)

    def update_booking(self, booking_id: str, patch: BookingPatch) -> Booking:
        """
        Change only the fields set on ``patch``.

        A new status must be a valid transition from the current one. A new
        time or employee is checked against capacity under the same locks as a
        reschedule; ``notes`` and ``duration`` replace the stored values.
        """
        with self.store.session() as db:
            booking = self._get_booking(db, booking_id)
            if patch.status is not None and patch.status != booking.status:
                self.state_machine.validate(booking.status, patch.status)

            date_time = patch.date_time or booking.date_time
            employee_id = patch.employee_id or booking.employee_id
            moving = date_time != booking.date_time or employee_id != booking.employee_id
            keys = [booking_row_key(booking_id)]
            if moving:
                if booking.status not in RESCHEDULABLE_STATUSES:
                    raise InvalidStateTransition(booking.status, "rescheduled")
                service = self._get_service(db, booking.service_id)
                self.assigner.validate_window(service, date_time)
                chosen = self.assigner.select_employee(
                    db,
                    service,
                    date_time,
                    employee_id,
                    strict=patch.employee_id is not None,
                    exclude_booking_id=booking.id,
                )
                if chosen:
                    employee_id = chosen.employee_id
                keys = booking_lock_keys(service.id, employee_id, date_time) + keys

        def _update(tx: Session):
            locked = self._get_booking(tx, booking_id)
            previous = locked.status
            if patch.status is not None and patch.status != previous:
                self.state_machine.validate(previous, patch.status)
            if moving:
                if previous not in RESCHEDULABLE_STATUSES:
                    raise InvalidStateTransition(previous, "rescheduled")
                self._recheck_capacity(tx, locked, date_time, employee_id)

            changes = patch.model_copy(update={"employee_id": employee_id}) if moving else patch
            self.store.apply_patch(locked, changes)
            self.repo.save_booking(tx, locked)
            return locked, previous

        booking, previous = self.store.run_locked(keys, _update)
        logger.info(
            f"✏️ Booking {booking.id} updated: {sorted(patch.model_dump(exclude_none=True))}"
        )

        status_changed = booking.status != previous
        if status_changed:
            self.state_machine.run_side_effects(booking, previous)
        # Entering "confirmed" already replaced the reminders
        if moving and booking.status in RESCHEDULABLE_STATUSES and not (
            status_changed and booking.status == "confirmed"
        ):
            self.notifier.replace_reminders(booking, self.clock())
        return booking

    def reschedule_booking(
        self, booking_id: str, new_date_time: datetime, reason: Optional[str] = None
    ) -> Booking:
        with self.store.session() as db:
            booking = self._get_booking(db, booking_id)
            if booking.status not in RESCHEDULABLE_STATUSES:
                raise InvalidStateTransition(booking.status, "rescheduled")

            service = self._get_service(db, booking.service_id)
            self.assigner.validate_window(service, new_date_time)
            try:
                chosen = self.assigner.select_employee(
                    db, service, new_date_time, booking.employee_id, exclude_booking_id=booking.id
                )
            except CapacityError as e:
                raise SlotFull(e.reason) from e

        employee_id = chosen.employee_id if chosen else None
        keys = booking_lock_keys(service.id, employee_id, new_date_time) + [booking_row_key(booking_id)]

        def _move(tx: Session):
            locked = self._get_booking(tx, booking_id)
            if locked.status not in RESCHEDULABLE_STATUSES:
                raise InvalidStateTransition(locked.status, "rescheduled")
            self._recheck_capacity(tx, locked, new_date_time, employee_id)

            previous = locked.status
            new_status = None
            if previous == "confirmed":
                self.state_machine.validate(previous, "rescheduled")
                new_status = "rescheduled"

            note = f"Rescheduled from {locked.date_time.isoformat()}"
            if reason:
                note = f"{note}: {reason}"
            self.store.apply_patch(
                locked,
                BookingPatch(
                    date_time=new_date_time,
                    employee_id=employee_id,
                    status=new_status,
                    notes=merge_notes(locked.notes, note),
                ),
            )
            self.repo.save_booking(tx, locked)
            return locked, previous

        booking, previous = self.store.run_locked(keys, _move)
        logger.info(f"📆 Booking {booking.id} moved to {new_date_time} (employee={booking.employee_id})")

        if booking.status != previous:
            self.state_machine.run_side_effects(booking, previous)
        self.notifier.replace_reminders(booking, self.clock())
        return booking

    def _recheck_capacity(
        self, tx: Session, booking: Booking, date_time: datetime, employee_id: Optional[str]
    ) -> None:
        """Capacity checks for moving ``booking``, run under the slot locks; the booking itself is not counted"""
        service = self._get_service(tx, booking.service_id)
        checker = AvailabilityChecker(tx)
        if not checker.is_available(service, date_time, exclude_booking_id=booking.id):
            raise SlotFull(f"Service {service.id} is fully booked at {date_time}")
        if employee_id:
            if not checker.is_available(service, date_time, employee_id, exclude_booking_id=booking.id):
                raise SlotFull(f"Employee {employee_id} is already booked at {date_time}")
            recheck = EmployeeAvailabilityResolver(tx).resolve(
                employee_id, service, date_time, exclude_booking_id=booking.id
            )
            if not recheck.available:
                raise SlotFull(f"Employee {employee_id} is no longer available at {date_time}")

    def _get_booking(self, db: Session, booking_id: str) -> Booking:
        booking = self.repo.get_booking(db, booking_id)
        if not booking:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    def _get_service(self, db: Session, service_id: str):
        service = self.repo.get_service(db, service_id)
        if not service:
            raise ServiceNotFound(f"Service {service_id} not found")
        return service


def build_booking_service(
    session_factory: Callable[[], Session],
    jobs: JobQueue,
    ownership: Optional[OwnershipValidator] = None,
    clock: Callable[[], datetime] = datetime.now,
    ids: Optional[IdGenerator] = None,
) -> BookingService:
    """Wire a BookingService with the database-backed collaborators by default"""
    return BookingService(
        store=BookingStore(session_factory),
        ownership=ownership or DatabaseOwnershipValidator(session_factory),
        notifier=BookingNotifier(jobs),
        jobs=jobs,
        clock=clock,
        ids=ids,
    )
