"""Scheduling repository - Database operations for bookings, services and employees"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import INACTIVE_BOOKING_STATUSES, Booking, Employee, Service


class BookingRepository:
    """Repository for scheduling database operations"""

    @staticmethod
    def get_service(db: Session, service_id: str) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id).first()

    @staticmethod
    def get_employee(db: Session, employee_id: str) -> Optional[Employee]:
        return db.query(Employee).filter(Employee.id == employee_id).first()

    @staticmethod
    def get_employees(db: Session, employee_ids: list[str]) -> dict[str, Employee]:
        """Fetch employees by id; callers keep their own ordering"""
        if not employee_ids:
            return {}
        employees = db.query(Employee).filter(Employee.id.in_(employee_ids)).all()
        return {e.id: e for e in employees}

    @staticmethod
    def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def count_active_bookings(
        db: Session,
        date_time: datetime,
        service_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> int:
        """Count bookings at exactly ``date_time`` that still hold capacity"""
        query = db.query(func.count(Booking.id)).filter(
            Booking.date_time == date_time,
            Booking.status.notin_(INACTIVE_BOOKING_STATUSES),
        )
        if service_id is not None:
            query = query.filter(Booking.service_id == service_id)
        if employee_id is not None:
            query = query.filter(Booking.employee_id == employee_id)
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.scalar() or 0

    @staticmethod
    def add_booking(db: Session, **booking_data) -> Booking:
        """Stage a booking in the current transaction; the caller commits"""
        booking = Booking(**booking_data)
        db.add(booking)
        db.flush()
        db.refresh(booking)
        return booking

    @staticmethod
    def save_booking(db: Session, booking: Booking) -> Booking:
        """Flush pending changes and reload server-set columns"""
        db.flush()
        db.refresh(booking)
        return booking

    @staticmethod
    def get_user_bookings(
        db: Session, user_id: str, status: Optional[str] = None
    ) -> list[Booking]:
        query = db.query(Booking).filter(Booking.user_id == user_id)
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.date_time.desc()).all()

    @staticmethod
    def get_company_bookings(
        db: Session,
        company_id: str,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> list[Booking]:
        query = db.query(Booking).filter(Booking.company_id == company_id)
        if status:
            query = query.filter(Booking.status == status)
        if start_date:
            query = query.filter(Booking.date_time >= start_date)
        if end_date:
            query = query.filter(Booking.date_time <= end_date)
        return query.order_by(Booking.date_time.asc()).all()
