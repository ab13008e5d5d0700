"""
Conflict guard - atomic check-and-act for a (doctor, date, slot) triple

The guard never commits. It runs inside the caller's transaction, after
row-locking the doctor, so the check and the caller's write land in one
atomic unit. The partial unique indexes on appointments and payment intents
back this up at the store level: if two writers slip past each other the
second commit fails with IntegrityError and is reported as a conflict.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import PAYMENT_PENDING_GRACE_MINUTES
from ...errors import (
    SLOT_ALREADY_BOOKED,
    SLOT_PAYMENT_IN_PROGRESS,
    ConflictError,
    conflict_message,
)
from ..doctors.repository import DoctorRepository
from ..payments import state_machine
from ..payments.repository import PaymentIntentRepository
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)


@dataclass
class ReservationDecision:
    accepted: bool
    reason: Optional[str] = None

    def raise_if_rejected(self) -> None:
        if not self.accepted:
            raise ConflictError(conflict_message(self.reason), reason=self.reason)


class ConflictGuard:
    """Decides whether a booking may take a slot"""

    def __init__(self, db: Session, grace_minutes: int = PAYMENT_PENDING_GRACE_MINUTES):
        self.db = db
        self.grace_minutes = grace_minutes

    def check(
        self,
        doctor_id: int,
        day: date,
        time_slot: str,
        now: datetime,
        respect_payment_holds: bool = True,
    ) -> ReservationDecision:
        """Read-only pre-check: no lock, no expiry. Used to fail fast before provider calls."""
        if AppointmentRepository.find_active_for_slot(self.db, doctor_id, day, time_slot):
            return ReservationDecision(False, SLOT_ALREADY_BOOKED)
        if respect_payment_holds:
            hold = PaymentIntentRepository.find_pending_for_slot(self.db, doctor_id, day, time_slot)
            if hold and not state_machine.is_stale(hold, now):
                return ReservationDecision(False, SLOT_PAYMENT_IN_PROGRESS)
        return ReservationDecision(True)

    def try_reserve(
        self,
        doctor_id: int,
        day: date,
        time_slot: str,
        requested_by: Optional[int],
        now: datetime,
        respect_payment_holds: bool = True,
        exclude_intent_id: Optional[int] = None,
    ) -> ReservationDecision:
        """
        Lock, check and (when a hold is stale) expire it, all in the open transaction.

        respect_payment_holds=False is used by staff bookings and by
        reconciliation, where only a live appointment can block the slot.
        """
        DoctorRepository.lock_doctor(self.db, doctor_id)

        existing = AppointmentRepository.find_active_for_slot(self.db, doctor_id, day, time_slot)
        if existing:
            logger.info(
                f"Slot {doctor_id}/{day}/{time_slot} rejected for {requested_by}: "
                f"held by appointment {existing.id}"
            )
            return ReservationDecision(False, SLOT_ALREADY_BOOKED)

        if not respect_payment_holds:
            return ReservationDecision(True)

        hold = PaymentIntentRepository.find_pending_for_slot(
            self.db, doctor_id, day, time_slot, exclude_intent_id=exclude_intent_id
        )
        if hold is None:
            return ReservationDecision(True)

        if not state_machine.is_stale(hold, now):
            logger.info(
                f"Slot {doctor_id}/{day}/{time_slot} rejected for {requested_by}: "
                f"payment {hold.order_id} in progress until {hold.expires_at.isoformat()}"
            )
            return ReservationDecision(False, SLOT_PAYMENT_IN_PROGRESS)

        state_machine.expire_stale(hold, now)
        # Release the pending-slot index entry before the caller inserts
        self.db.flush()
        logger.info(f"Expired stale payment {hold.order_id} to free slot {day} {time_slot}")
        return ReservationDecision(True)
