"""Booking service - Availability, staff bookings and appointment lifecycle"""

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import APPOINTMENT_SLOT_MINUTES, CLINIC_DAY_END, CLINIC_DAY_START
from ...email_service import NotificationDispatcher, send_appointment_status_email
from ...errors import (
    SLOT_ALREADY_BOOKED,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    conflict_message,
)
from ...models import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_PENDING,
    PAYMENT_UNPAID,
    ROLE_ADMIN,
    ROLE_DOCTOR,
    ROLE_PATIENT,
    Appointment,
    Doctor,
    User,
)
from ..doctors.repository import DoctorRepository
from ..payments.repository import PaymentIntentRepository
from .guard import ConflictGuard
from .repository import AppointmentRepository
from .schemas import AppointmentCreate, AppointmentUpdate
from .slots import Slot, build_slot_grid, resolve_daily_window

logger = logging.getLogger(__name__)

APPOINTMENT_TRANSITIONS = {
    APPOINTMENT_PENDING: {APPOINTMENT_CONFIRMED, APPOINTMENT_CANCELLED},
    APPOINTMENT_CONFIRMED: {APPOINTMENT_COMPLETED, APPOINTMENT_CANCELLED},
    APPOINTMENT_COMPLETED: set(),
    APPOINTMENT_CANCELLED: set(),
}


def slot_grid_for(doctor: Doctor, day: date, taken: Iterable[str] = ()) -> list[Slot]:
    """Grid for a doctor-day using the clinic window unless the doctor overrides it"""
    window = resolve_daily_window(day, CLINIC_DAY_START, CLINIC_DAY_END, doctor.availability)
    return build_slot_grid(day, window, APPOINTMENT_SLOT_MINUTES, taken)


def ensure_bookable_slot(doctor: Doctor, day: date, time_slot: str) -> None:
    if time_slot not in {slot.label for slot in slot_grid_for(doctor, day)}:
        raise ValidationError(f"{time_slot} is not a bookable slot for this doctor on {day}")


class BookingService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock
        self.repo = AppointmentRepository()

    def get_availability(self, doctor_id: int, day: date) -> list[Slot]:
        """Slots for the day; booked slots and live payment holds are unavailable"""
        doctor = DoctorRepository.get_active_doctor(self.db, doctor_id)
        if not doctor:
            raise NotFoundError("Doctor not found or not active")

        taken = self.repo.taken_slot_labels(self.db, doctor_id, day)
        taken |= PaymentIntentRepository.held_slot_labels(self.db, doctor_id, day, self.clock())
        return slot_grid_for(doctor, day, taken)

    def create_appointment(self, data: AppointmentCreate, user: User) -> Appointment:
        """Book a slot directly, without payment. Staff only."""
        if user.role == ROLE_PATIENT:
            raise AuthorizationError(
                "Patients must complete online payment to book appointments. "
                "Please use the checkout flow."
            )

        doctor = DoctorRepository.get_doctor(self.db, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")
        ensure_bookable_slot(doctor, data.date, data.timeSlot)

        patient_id = data.patientId or user.id
        if data.patientId and not self.db.get(User, data.patientId):
            raise NotFoundError("Patient not found")

        # A pending online payment does not block staff; reconciliation handles the loser
        decision = ConflictGuard(self.db).try_reserve(
            doctor.id,
            data.date,
            data.timeSlot,
            requested_by=user.id,
            now=self.clock(),
            respect_payment_holds=False,
        )
        if not decision.accepted:
            self.db.rollback()
            decision.raise_if_rejected()

        try:
            appointment = self.repo.add_appointment(
                self.db,
                doctor_id=doctor.id,
                patient_id=patient_id,
                date=data.date,
                time_slot=data.timeSlot,
                notes=data.notes,
                status=APPOINTMENT_PENDING,
                payment_status=PAYMENT_UNPAID,
                amount=DoctorRepository.consultation_fee(doctor),
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Concurrent booking lost the race for {data.date} {data.timeSlot}: {e}")
            raise ConflictError(conflict_message(SLOT_ALREADY_BOOKED), reason=SLOT_ALREADY_BOOKED) from e

        logger.info(
            f"Appointment {appointment.tracking_code} booked directly by user {user.id} "
            f"for doctor {doctor.id} on {data.date} {data.timeSlot}"
        )
        return self.repo.get_appointment(self.db, appointment.id)

    def _staff_can_manage(self, appointment: Appointment, user: User) -> bool:
        if user.role == ROLE_ADMIN:
            return True
        if user.role == ROLE_DOCTOR:
            profile = DoctorRepository.get_doctor_by_user_id(self.db, user.id)
            return bool(profile and profile.id == appointment.doctor_id)
        return False

    def get_appointment(self, appointment_id: int, user: User) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if appointment.patient_id != user.id and not self._staff_can_manage(appointment, user):
            raise AuthorizationError("Not authorized")
        return appointment

    async def update_appointment(
        self,
        appointment_id: int,
        data: AppointmentUpdate,
        user: User,
        dispatcher: NotificationDispatcher,
    ) -> Appointment:
        """Apply a status transition; the patient is emailed after the commit"""
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if not self._staff_can_manage(appointment, user):
            raise AuthorizationError("Not authorized")

        previous_status = appointment.status
        status_changed = data.status is not None and data.status != previous_status
        if status_changed and data.status not in APPOINTMENT_TRANSITIONS[previous_status]:
            raise ValidationError(f"Cannot change appointment from {previous_status} to {data.status}")

        if status_changed:
            appointment.status = data.status
        if data.notes is not None:
            appointment.notes = data.notes
        self.db.commit()
        self.db.refresh(appointment)

        if status_changed:
            logger.info(f"Appointment {appointment.tracking_code}: {previous_status} -> {data.status}")
            await send_appointment_status_email(dispatcher, appointment, data.status)
        return appointment

    def track(self, tracking_code: str) -> Appointment:
        appointment = self.repo.get_by_tracking_code(self.db, tracking_code)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def list_all(self) -> list[Appointment]:
        return self.repo.list_all(self.db)

    def list_for_doctor(self, user: User) -> list[Appointment]:
        profile = DoctorRepository.get_doctor_by_user_id(self.db, user.id)
        if not profile:
            raise NotFoundError("Doctor profile not found")
        return self.repo.list_for_doctor(self.db, profile.id)

    def list_for_patient(self, user: User) -> list[Appointment]:
        return self.repo.list_for_patient(self.db, user.id)
