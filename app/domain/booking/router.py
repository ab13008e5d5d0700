"""Booking router - FastAPI endpoints for availability and appointments"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...email_service import NotificationDispatcher, get_notification_dispatcher
from ...models import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentUpdate,
    AvailabilityResponse,
    SlotResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    doctorId: int = Query(...),
    day: date = Query(..., alias="date"),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Slot grid for a doctor on a date with availability flags"""
    slots = service.get_availability(doctorId, day)
    return AvailabilityResponse(
        doctorId=doctorId,
        date=day,
        slots=[SlotResponse.from_slot(slot) for slot in slots],
    )


@router.get("/track/{tracking_code}", response_model=AppointmentResponse)
async def track_appointment(
    tracking_code: str,
    service: BookingService = Depends(get_booking_service),
):
    """Public lookup by tracking ID"""
    return AppointmentResponse.from_model(service.track(tracking_code))


@router.get("/doctor", response_model=list[AppointmentResponse])
async def get_doctor_appointments(
    current_user: User = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    service: BookingService = Depends(get_booking_service),
):
    return [AppointmentResponse.from_model(a) for a in service.list_for_doctor(current_user)]


@router.get("/patient", response_model=list[AppointmentResponse])
async def get_patient_appointments(
    current_user: User = Depends(require_roles(ROLE_PATIENT, ROLE_ADMIN)),
    service: BookingService = Depends(get_booking_service),
):
    return [AppointmentResponse.from_model(a) for a in service.list_for_patient(current_user)]


@router.get("", response_model=list[AppointmentResponse])
async def get_appointments(
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    service: BookingService = Depends(get_booking_service),
):
    """All appointments, newest first (admin)"""
    return [AppointmentResponse.from_model(a) for a in service.list_all()]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return AppointmentResponse.from_model(service.get_appointment(appointment_id, current_user))


@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Direct booking by a doctor or admin; patients go through checkout"""
    return AppointmentResponse.from_model(service.create_appointment(data, current_user))


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Change status or notes; the patient is emailed on status changes"""
    appointment = await service.update_appointment(appointment_id, data, current_user, dispatcher)
    return AppointmentResponse.from_model(appointment)
