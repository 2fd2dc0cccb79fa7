"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime, timedelta
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

BookingStatusValue = Literal[
    "pending", "confirmed", "in_progress", "completed", "cancelled", "rejected", "rescheduled"
]


class NaiveDateTimeModel(BaseModel):
    """Base for bodies carrying a ``date_time``; slots are stored as naive local times"""

    @field_validator("date_time", check_fields=False)
    @classmethod
    def strip_timezone(cls, v):
        if v is not None and v.tzinfo is not None:
            return v.replace(tzinfo=None)
        return v


class BookingCreate(NaiveDateTimeModel):
    """Schema for a booking request"""

    service_id: str
    date_time: datetime
    pet_id: Optional[str] = None
    employee_id: Optional[str] = None
    notes: Optional[str] = None
    # Fail instead of falling back to another employee when the requested one is busy
    strict_employee: bool = False


class CompanyBookingCreate(BookingCreate):
    """Booking made by a company for one of its customers"""

    customer_user_id: str


class ConfirmAlternativeRequest(NaiveDateTimeModel):
    """Schema for booking a previously proposed alternative slot"""

    service_id: str
    employee_id: Optional[str] = None
    date_time: datetime
    pet_id: Optional[str] = None
    notes: Optional[str] = None


class BookingStatusUpdate(BaseModel):
    status: BookingStatusValue
    notes: Optional[str] = None


class BookingReschedule(NaiveDateTimeModel):
    date_time: datetime
    reason: Optional[str] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class BookingPatch(NaiveDateTimeModel):
    """
    Fields a booking update may touch. ``None`` means "leave unchanged";
    anything not listed here cannot be modified after creation.
    """

    date_time: Optional[datetime] = None
    notes: Optional[str] = None
    employee_id: Optional[str] = None
    status: Optional[BookingStatusValue] = None
    duration: Optional[int] = Field(default=None, gt=0)


class BookingResponse(BaseModel):
    id: str
    user_id: str
    company_id: str
    service_id: str
    pet_id: Optional[str]
    employee_id: Optional[str]
    date_time: datetime
    duration: int
    price: float
    status: str
    notes: Optional[str]
    payment_id: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmployeeAvailability(BaseModel):
    employee_id: str
    name: str
    available: bool
    current_bookings: int


class AvailabilitySlot(BaseModel):
    date_time: datetime
    available: bool
    current_count: int
    max_bookings: int


class AlternativeSlot(BaseModel):
    date_time: datetime
    employee_id: Optional[str]
    employee_name: Optional[str] = None
    time_diff: timedelta
    priority: float


class BookingCreatedResponse(BaseModel):
    booking: BookingResponse
    employee: Optional[EmployeeAvailability] = None


class BookingFailureResponse(BaseModel):
    reason: str
    error: str
    alternatives: list[AlternativeSlot]


class AssignedEmployeeInfo(BaseModel):
    id: str
    name: str
    work_schedule: Optional[dict] = None


class ServiceAvailabilitySummary(BaseModel):
    service_id: str
    available_days: list[str]
    start_time: str
    end_time: str
    duration: int
    max_bookings_per_slot: int
    buffer_time_before: int
    buffer_time_after: int
    advance_booking_days: int
    assigned_employees: list[AssignedEmployeeInfo]
