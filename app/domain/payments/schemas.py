"""Payment domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...models import Doctor, PaymentIntent
from ..booking.schemas import validate_time_slot


class StartBookingRequest(BaseModel):
    doctorId: int
    date: date
    timeSlot: str
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("timeSlot")
    @classmethod
    def validate_slot(cls, v):
        return validate_time_slot(v)


class DoctorSummary(BaseModel):
    id: int
    name: str
    specialty: str

    @classmethod
    def from_model(cls, doctor: Doctor) -> "DoctorSummary":
        return cls(id=doctor.id, name=doctor.name, specialty=doctor.specialty)


class StartBookingResponse(BaseModel):
    orderId: str
    paymentSessionId: Optional[str]
    paymentLink: str
    amount: float
    currency: str
    expiresAt: datetime
    doctor: DoctorSummary


class OrderAppointment(BaseModel):
    id: int
    trackingCode: Optional[str]
    status: str


class OrderStatusResponse(BaseModel):
    orderId: str
    status: str
    amount: float
    currency: str
    date: date
    timeSlot: str
    appointment: Optional[OrderAppointment] = None
    doctor: Optional[DoctorSummary] = None

    @classmethod
    def from_model(cls, intent: PaymentIntent) -> "OrderStatusResponse":
        appointment = intent.appointment
        return cls(
            orderId=intent.order_id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            date=intent.date,
            timeSlot=intent.time_slot,
            appointment=(
                OrderAppointment(
                    id=appointment.id,
                    trackingCode=appointment.tracking_code,
                    status=appointment.status,
                )
                if appointment
                else None
            ),
            doctor=DoctorSummary.from_model(intent.doctor) if intent.doctor else None,
        )


class FlaggedPaymentResponse(BaseModel):
    orderId: str
    status: str
    amount: float
    currency: str
    patientId: int
    doctorId: int
    date: date
    timeSlot: str
    paymentReferenceId: Optional[str] = None
    failureReason: Optional[str] = None

    @classmethod
    def from_model(cls, intent: PaymentIntent) -> "FlaggedPaymentResponse":
        return cls(
            orderId=intent.order_id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            patientId=intent.patient_id,
            doctorId=intent.doctor_id,
            date=intent.date,
            timeSlot=intent.time_slot,
            paymentReferenceId=intent.payment_reference_id,
            failureReason=intent.failure_reason,
        )


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    message: str
