from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# User roles
ROLE_PATIENT = "PATIENT"
ROLE_DOCTOR = "DOCTOR"
ROLE_ADMIN = "ADMIN"

# Appointment lifecycle
APPOINTMENT_PENDING = "PENDING"
APPOINTMENT_CONFIRMED = "CONFIRMED"
APPOINTMENT_COMPLETED = "COMPLETED"
APPOINTMENT_CANCELLED = "CANCELLED"
APPOINTMENT_STATUSES = (
    APPOINTMENT_PENDING,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_CANCELLED,
)

# Appointment payment status
PAYMENT_UNPAID = "UNPAID"
PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_REFUNDED = "REFUNDED"
PAYMENT_FAILED = "FAILED"

# PaymentIntent lifecycle
INTENT_PENDING = "PENDING"
INTENT_PAID = "PAID"
INTENT_FAILED = "FAILED"
INTENT_EXPIRED = "EXPIRED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default=ROLE_PATIENT, nullable=False)  # PATIENT, DOCTOR, ADMIN
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    doctor_profile = relationship("Doctor", back_populates="user", uselist=False)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True)
    name = Column(String(255), nullable=False)
    specialty = Column(String(100), nullable=False)
    consultation_fee = Column(Float, nullable=True)  # Falls back to DEFAULT_CONSULTATION_FEE
    # {"monday": {"start": "09:00", "end": "13:00", "available": true}, ...}
    availability = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="doctor_profile")
    appointments = relationship("Appointment", back_populates="doctor")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one live appointment per (doctor, day, slot); cancelled rows free the slot
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "time_slot",
            unique=True,
            postgresql_where=text("status != 'CANCELLED'"),
            sqlite_where=text("status != 'CANCELLED'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    tracking_code = Column(String(32), unique=True, index=True, nullable=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)  # "HH:MM"
    status = Column(String(20), default=APPOINTMENT_PENDING, nullable=False)
    notes = Column(Text, nullable=True)
    amount = Column(Float, default=0, nullable=False)
    payment_status = Column(String(20), default=PAYMENT_UNPAID, nullable=False)
    payment_provider = Column(String(50), nullable=True)
    payment_order_id = Column(String(100), unique=True, nullable=True)
    payment_reference_id = Column(String(255), nullable=True)
    payment_mode = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="appointments")
    patient = relationship("User", foreign_keys=[patient_id])


class PaymentIntent(Base):
    """One row per checkout attempt; never deleted, it is the payment audit trail"""

    __tablename__ = "payment_intents"
    __table_args__ = (
        # A live PENDING attempt holds its slot against other attempts
        Index(
            "uq_payment_intents_pending_slot",
            "doctor_id",
            "date",
            "time_slot",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(100), unique=True, index=True, nullable=False)
    payment_session_id = Column(String(255), nullable=True)
    payment_link = Column(String(500), nullable=True)
    status = Column(String(20), default=INTENT_PENDING, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)
    notes = Column(Text, nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    payment_reference_id = Column(String(255), nullable=True)
    payment_mode = Column(String(50), nullable=True)
    raw_webhook_payload = Column(JSON, nullable=True)
    failure_reason = Column(String(255), nullable=True)
    # Captured payment with no appointment issued; refund is handled by hand
    needs_manual_refund = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)  # Grace-period deadline for the slot hold
    # Every UPDATE is conditional on the version it read, so a writer holding
    # a stale PENDING copy cannot overwrite a state committed by another one
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    doctor = relationship("Doctor")
    patient = relationship("User", foreign_keys=[patient_id])
    appointment = relationship("Appointment")
