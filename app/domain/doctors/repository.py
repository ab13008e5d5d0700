"""Doctor directory - Database operations for doctor lookups"""

from typing import Optional

from sqlalchemy.orm import Session

from ...config import DEFAULT_CONSULTATION_FEE
from ...models import Doctor


class DoctorRepository:
    """Repository for doctor database operations"""

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        """Get doctor by ID"""
        return db.query(Doctor).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def get_active_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        """Get doctor by ID only if they accept bookings"""
        return db.query(Doctor).filter(Doctor.id == doctor_id, Doctor.is_active.is_(True)).first()

    @staticmethod
    def get_doctor_by_user_id(db: Session, user_id: int) -> Optional[Doctor]:
        """Get the doctor profile linked to a login"""
        return db.query(Doctor).filter(Doctor.user_id == user_id).first()

    @staticmethod
    def lock_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        """
        Row-lock the doctor for the rest of the transaction.

        Serialises slot check-and-act per doctor on backends with row locks.
        SQLite ignores FOR UPDATE; there the engine opens every transaction
        with BEGIN IMMEDIATE (see app.database), which serialises writers for
        the whole database.
        """
        return db.query(Doctor).filter(Doctor.id == doctor_id).with_for_update().first()

    @staticmethod
    def consultation_fee(doctor: Doctor) -> float:
        return float(doctor.consultation_fee or DEFAULT_CONSULTATION_FEE)
