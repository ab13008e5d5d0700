"""Booking domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...models import APPOINTMENT_STATUSES, Appointment
from .slots import Slot, parse_time_label


def validate_time_slot(value: str) -> str:
    try:
        parse_time_label(value)
    except ValueError as e:
        raise ValueError("timeSlot must be a HH:MM label such as 09:15") from e
    return value


class SlotResponse(BaseModel):
    startTime: datetime
    endTime: datetime
    label: str
    displayLabel: str
    available: bool

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotResponse":
        return cls(
            startTime=slot.start,
            endTime=slot.end,
            label=slot.label,
            displayLabel=slot.display_label,
            available=slot.available,
        )


class AvailabilityResponse(BaseModel):
    doctorId: int
    date: date
    slots: list[SlotResponse]


class AppointmentCreate(BaseModel):
    """Direct (unpaid) booking by staff"""

    doctorId: int
    date: date
    timeSlot: str
    patientId: Optional[int] = None  # defaults to the caller
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("timeSlot")
    @classmethod
    def validate_slot(cls, v):
        return validate_time_slot(v)


class AppointmentUpdate(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in APPOINTMENT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(APPOINTMENT_STATUSES)}")
        return v


class AppointmentResponse(BaseModel):
    id: int
    trackingCode: Optional[str]
    doctorId: int
    doctorName: Optional[str] = None
    specialty: Optional[str] = None
    patientId: int
    patientName: Optional[str] = None
    date: date
    timeSlot: str
    status: str
    paymentStatus: str
    amount: float
    notes: Optional[str] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, appointment: Appointment) -> "AppointmentResponse":
        doctor = appointment.doctor
        patient = appointment.patient
        return cls(
            id=appointment.id,
            trackingCode=appointment.tracking_code,
            doctorId=appointment.doctor_id,
            doctorName=doctor.name if doctor else None,
            specialty=doctor.specialty if doctor else None,
            patientId=appointment.patient_id,
            patientName=patient.name if patient else None,
            date=appointment.date,
            timeSlot=appointment.time_slot,
            status=appointment.status,
            paymentStatus=appointment.payment_status,
            amount=appointment.amount,
            notes=appointment.notes,
            createdAt=appointment.created_at,
        )
