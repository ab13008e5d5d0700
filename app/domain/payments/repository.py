"""Payment intent repository - Database operations for checkout attempts"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import INTENT_PENDING, PaymentIntent


class PaymentIntentRepository:
    """Repository for payment intent database operations"""

    @staticmethod
    def get_by_order_id(db: Session, order_id: str) -> Optional[PaymentIntent]:
        return (
            db.query(PaymentIntent)
            .options(
                joinedload(PaymentIntent.doctor),
                joinedload(PaymentIntent.patient),
                joinedload(PaymentIntent.appointment),
            )
            .filter(PaymentIntent.order_id == order_id)
            .first()
        )

    @staticmethod
    def doctor_id_for_order(db: Session, order_id: str) -> Optional[int]:
        row = db.query(PaymentIntent.doctor_id).filter(PaymentIntent.order_id == order_id).first()
        return row.doctor_id if row else None

    @staticmethod
    def lock_by_order_id(db: Session, order_id: str) -> Optional[PaymentIntent]:
        """Load and row-lock the intent so concurrent replays of one order serialise"""
        return (
            db.query(PaymentIntent)
            .filter(PaymentIntent.order_id == order_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def find_pending_for_slot(
        db: Session,
        doctor_id: int,
        day: date,
        time_slot: str,
        exclude_intent_id: Optional[int] = None,
    ) -> Optional[PaymentIntent]:
        query = db.query(PaymentIntent).filter(
            PaymentIntent.doctor_id == doctor_id,
            PaymentIntent.date == day,
            PaymentIntent.time_slot == time_slot,
            PaymentIntent.status == INTENT_PENDING,
        )
        if exclude_intent_id is not None:
            query = query.filter(PaymentIntent.id != exclude_intent_id)
        return query.first()

    @staticmethod
    def held_slot_labels(db: Session, doctor_id: int, day: date, now) -> set[str]:
        """Slots held by a PENDING intent still inside its grace period"""
        rows = (
            db.query(PaymentIntent.time_slot)
            .filter(
                PaymentIntent.doctor_id == doctor_id,
                PaymentIntent.date == day,
                PaymentIntent.status == INTENT_PENDING,
                PaymentIntent.expires_at > now,
            )
            .all()
        )
        return {row.time_slot for row in rows}

    @staticmethod
    def add_intent(db: Session, intent: PaymentIntent) -> PaymentIntent:
        db.add(intent)
        db.flush()
        return intent

    @staticmethod
    def list_flagged_for_refund(db: Session) -> list[PaymentIntent]:
        return (
            db.query(PaymentIntent)
            .filter(PaymentIntent.needs_manual_refund.is_(True))
            .order_by(PaymentIntent.updated_at.desc())
            .all()
        )
