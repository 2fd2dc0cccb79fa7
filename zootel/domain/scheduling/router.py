"""Booking router - FastAPI endpoints for scheduling operations"""

import logging
from datetime import date, datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ...auth import get_current_user_id
from .schemas import (
    AlternativeSlot,
    AvailabilitySlot,
    BookingCancel,
    BookingCreate,
    BookingCreatedResponse,
    BookingFailureResponse,
    BookingPatch,
    BookingReschedule,
    BookingResponse,
    BookingStatusUpdate,
    CompanyBookingCreate,
    ConfirmAlternativeRequest,
    EmployeeAvailability,
    ServiceAvailabilitySummary,
)
from .service import BookingCreated, BookingFailure, BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(request: Request) -> BookingService:
    """Dependency injection for BookingService (built once in the app lifespan)"""
    return request.app.state.booking_service


def _creation_response(result: Union[BookingCreated, BookingFailure]):
    if isinstance(result, BookingFailure):
        body = BookingFailureResponse(
            reason=result.reason, error=result.error, alternatives=result.alternatives
        )
        return JSONResponse(status_code=409, content=body.model_dump(mode="json"))

    body = BookingCreatedResponse(
        booking=BookingResponse.model_validate(result.booking), employee=result.employee
    )
    return JSONResponse(status_code=201, content=body.model_dump(mode="json"))


# ============================================================================
# BOOKING CREATION
# ============================================================================


@router.post(
    "",
    response_model=BookingCreatedResponse,
    status_code=201,
    responses={409: {"model": BookingFailureResponse}},
)
def create_booking(
    data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Book a service slot; a full slot answers 409 with ranked alternatives"""
    return _creation_response(service.create_booking(data, user_id))


@router.post(
    "/confirm-alternative",
    response_model=BookingCreatedResponse,
    status_code=201,
    responses={409: {"model": BookingFailureResponse}},
)
def confirm_alternative(
    data: ConfirmAlternativeRequest,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return _creation_response(service.confirm_alternative(data, user_id))


@router.post(
    "/company/{company_id}",
    response_model=BookingCreatedResponse,
    status_code=201,
    responses={409: {"model": BookingFailureResponse}},
)
def create_company_booking(
    company_id: str,
    data: CompanyBookingCreate,
    _user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Staff booking on behalf of a customer; the pet ownership check is skipped"""
    return _creation_response(service.create_company_booking(company_id, data))


@router.get("", response_model=list[BookingResponse])
def get_user_bookings(
    status: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return service.list_user_bookings(user_id, status)


# ============================================================================
# AVAILABILITY (read-only)
# ============================================================================


@router.get("/availability", response_model=list[AvailabilitySlot])
def check_availability(
    service_id: str = Query(...),
    day: date = Query(..., alias="date"),
    employee_id: Optional[str] = Query(None),
    service: BookingService = Depends(get_booking_service),
):
    return service.check_availability(service_id, day, employee_id)


@router.get("/find-employee", response_model=list[EmployeeAvailability])
def find_available_employees(
    service_id: str = Query(...),
    date_time: datetime = Query(...),
    service: BookingService = Depends(get_booking_service),
):
    return service.find_available_employees(service_id, date_time.replace(tzinfo=None))


@router.get("/alternatives", response_model=list[AlternativeSlot])
def get_alternative_slots(
    service_id: str = Query(...),
    date_time: datetime = Query(...),
    days: Optional[int] = Query(None, ge=1, le=90),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_alternatives(service_id, date_time.replace(tzinfo=None), days)


@router.get("/services/{service_id}/availability", response_model=ServiceAvailabilitySummary)
def get_service_availability(
    service_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return service.get_service_availability(service_id)


@router.get("/company/{company_id}", response_model=list[BookingResponse])
def get_company_bookings(
    company_id: str,
    status: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    _user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return service.list_company_bookings(company_id, status, start_date, end_date)


# ============================================================================
# SINGLE BOOKING OPERATIONS
# ============================================================================


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_booking(booking_id, user_id)


@router.put("/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    data: BookingPatch,
    _user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Partial update: only the fields present in the body change"""
    return service.update_booking(booking_id, data)


@router.put("/{booking_id}/status", response_model=BookingResponse)
def update_booking_status(
    booking_id: str,
    data: BookingStatusUpdate,
    _user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return service.update_booking_status(booking_id, data.status, data.notes)


@router.put("/{booking_id}/reschedule", response_model=BookingResponse)
def reschedule_booking(
    booking_id: str,
    data: BookingReschedule,
    _user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return service.reschedule_booking(booking_id, data.date_time, data.reason)


@router.delete("/{booking_id}", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    data: Optional[BookingCancel] = None,
    _user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a booking; the row is kept with status 'cancelled'"""
    return service.cancel_booking(booking_id, data.reason if data else None)
