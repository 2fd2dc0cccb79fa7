from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .shared.ids import generate_id

# Statuses that no longer hold capacity
INACTIVE_BOOKING_STATUSES = ("cancelled", "rejected")


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    services = relationship("Service", back_populates="company")
    employees = relationship("Employee", back_populates="company")


class User(Base):
    """Customer account; profile fields are owned by the user service"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    pets = relationship("Pet", back_populates="owner")


class Pet(Base):
    __tablename__ = "pets"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    species = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    owner = relationship("User", back_populates="pets")


class Employee(Base):
    __tablename__ = "employees"

    id = Column(String(36), primary_key=True, default=generate_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    # weekday name -> {"is_working": bool, "start": "HH:MM", "end": "HH:MM"}
    work_schedule = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="employees")

    @property
    def name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, default=0.0, nullable=False)

    # Scheduling
    duration = Column(Integer, nullable=False)  # minutes
    max_bookings_per_slot = Column(Integer, default=1, nullable=False)
    available_days = Column(JSON, nullable=True)  # ["monday", "tuesday", ...]
    start_time = Column(String(5), default="09:00", nullable=False)  # HH:MM format
    end_time = Column(String(5), default="17:00", nullable=False)
    buffer_time_before = Column(Integer, default=0, nullable=False)  # minutes
    buffer_time_after = Column(Integer, default=0, nullable=False)
    advance_booking_days = Column(Integer, default=30, nullable=False)
    assigned_employees = Column(JSON, nullable=True)  # ordered employee ids

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="services")


class Booking(Base):
    """A service appointment. Cancellation is a status; rows are never deleted."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_service_slot", "service_id", "date_time"),
        Index("ix_bookings_employee_slot", "employee_id", "date_time"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    pet_id = Column(String(36), ForeignKey("pets.id"), nullable=True)
    employee_id = Column(String(36), ForeignKey("employees.id"), nullable=True)

    date_time = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # snapshot of service duration
    price = Column(Float, default=0.0, nullable=False)  # snapshot of service price

    # Status workflow: pending → confirmed → in_progress → completed
    # (cancelled / rejected / rescheduled branch off, see state_machine.py)
    status = Column(String(20), default="pending", nullable=False, index=True)
    notes = Column(Text, nullable=True)
    payment_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service = relationship("Service")
    employee = relationship("Employee")


class ScheduledNotification(Base):
    """Notification queued for future delivery by the worker"""

    __tablename__ = "scheduled_notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), nullable=False, index=True)
    booking_id = Column(String(36), nullable=True, index=True)
    type = Column(String(50), nullable=False)  # booking_reminder, booking_follow_up, ...
    scheduled_at = Column(DateTime, nullable=False, index=True)
    payload = Column(JSON, nullable=True)

    # scheduled → sent | cancelled | failed
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Payment(Base):
    """Payment record owned by the payment service; the core only flips transfer_status"""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_id)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True, index=True)
    amount = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), default="succeeded", nullable=False)
    # held → eligible (service completed) → transferred (payout done)
    transfer_status = Column(String(20), default="held", nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
