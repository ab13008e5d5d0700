"""Appointment repository - Database operations for appointments"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...config import TRACKING_CODE_PREFIX
from ...models import APPOINTMENT_CANCELLED, Appointment


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        """Get appointment by ID with doctor and patient loaded"""
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.doctor), joinedload(Appointment.patient))
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def get_by_tracking_code(db: Session, tracking_code: str) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.doctor), joinedload(Appointment.patient))
            .filter(Appointment.tracking_code == tracking_code.strip().upper())
            .first()
        )

    @staticmethod
    def get_by_order_id(db: Session, order_id: str) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.payment_order_id == order_id).first()

    @staticmethod
    def find_active_for_slot(
        db: Session, doctor_id: int, day: date, time_slot: str
    ) -> Optional[Appointment]:
        """The non-cancelled appointment holding this slot, if any"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date == day,
                Appointment.time_slot == time_slot,
                Appointment.status != APPOINTMENT_CANCELLED,
            )
            .first()
        )

    @staticmethod
    def taken_slot_labels(db: Session, doctor_id: int, day: date) -> set[str]:
        rows = (
            db.query(Appointment.time_slot)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date == day,
                Appointment.status != APPOINTMENT_CANCELLED,
            )
            .all()
        )
        return {row.time_slot for row in rows}

    @staticmethod
    def list_all(db: Session) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.doctor), joinedload(Appointment.patient))
            .order_by(Appointment.created_at.desc(), Appointment.id.desc())
            .all()
        )

    @staticmethod
    def list_for_doctor(db: Session, doctor_id: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient))
            .filter(Appointment.doctor_id == doctor_id)
            .order_by(Appointment.date.asc(), Appointment.time_slot.asc())
            .all()
        )

    @staticmethod
    def list_for_patient(db: Session, patient_id: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.doctor))
            .filter(Appointment.patient_id == patient_id)
            .order_by(Appointment.date.desc(), Appointment.time_slot.desc())
            .all()
        )

    @staticmethod
    def add_appointment(db: Session, **fields) -> Appointment:
        """
        Stage a new appointment and assign its tracking code.

        Does not commit: callers write appointments inside a guarded
        transaction. The code derives from the autoincrement key, so it is
        unique and increases with creation order.
        """
        appointment = Appointment(**fields)
        db.add(appointment)
        db.flush()
        appointment.tracking_code = f"{TRACKING_CODE_PREFIX}-{appointment.id:04d}"
        return appointment
