"""Payment service - Checkout start and order status"""

import logging
import secrets
import time
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...config import (
    DEFAULT_PATIENT_PHONE,
    ORDER_ID_PREFIX,
    PAYMENT_CURRENCY,
    PAYMENT_PENDING_GRACE_MINUTES,
    PAYMENT_RETURN_BASE_URL,
    PAYMENT_WEBHOOK_URL,
)
from ...errors import (
    SLOT_PAYMENT_IN_PROGRESS,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    conflict_message,
)
from ...models import ROLE_ADMIN, PaymentIntent, User
from ..booking.guard import ConflictGuard
from ..booking.service import ensure_bookable_slot
from ..doctors.repository import DoctorRepository
from . import state_machine
from .cashfree_service import CashfreeService, CheckoutCustomer
from .repository import PaymentIntentRepository
from .schemas import DoctorSummary, StartBookingRequest, StartBookingResponse

logger = logging.getLogger(__name__)


def generate_order_id() -> str:
    return f"{ORDER_ID_PREFIX}-{time.time_ns() // 1_000_000}-{secrets.token_hex(3).upper()}"


class PaymentService:
    """Service layer for patient checkout"""

    def __init__(
        self,
        db: Session,
        gateway: CashfreeService,
        grace_minutes: int = PAYMENT_PENDING_GRACE_MINUTES,
        clock: Callable[[], datetime] = datetime.utcnow,
        provider_timeout: Optional[float] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.grace_minutes = grace_minutes
        self.clock = clock
        # None leaves the gateway on its configured timeout
        self.provider_timeout = provider_timeout
        self.repo = PaymentIntentRepository()

    async def start_booking(self, data: StartBookingRequest, patient: User) -> StartBookingResponse:
        """
        Open a PENDING payment intent for a slot and return the checkout reference.

        The provider order is created before anything is written locally, so a
        provider failure leaves no local state. The guarded insert then re-checks
        the slot under lock; if that check loses, the provider order is never
        handed to the patient and lapses unpaid.
        """
        doctor = DoctorRepository.get_active_doctor(self.db, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found or not active")
        ensure_bookable_slot(doctor, data.date, data.timeSlot)

        guard = ConflictGuard(self.db, self.grace_minutes)
        guard.check(doctor.id, data.date, data.timeSlot, self.clock()).raise_if_rejected()

        doctor_summary = DoctorSummary.from_model(doctor)
        amount = DoctorRepository.consultation_fee(doctor)
        order_id = generate_order_id()
        customer = CheckoutCustomer(
            customer_id=str(patient.id),
            email=patient.email,
            phone=patient.phone or DEFAULT_PATIENT_PHONE,
            name=patient.name,
        )
        patient_id = patient.id
        # Don't hold a transaction open across the provider call. Rollback
        # expires loaded rows, so everything the call needs is read above.
        self.db.rollback()

        checkout = await self.gateway.create_order(
            order_id=order_id,
            amount=amount,
            currency=PAYMENT_CURRENCY,
            customer=customer,
            return_url=f"{PAYMENT_RETURN_BASE_URL}/payment-status?order_id={order_id}",
            notify_url=PAYMENT_WEBHOOK_URL,
            note=(
                f"Consultation with {doctor_summary.name} on "
                f"{data.date.strftime('%a %b %d %Y')} @ {data.timeSlot}"
            ),
            timeout=self.provider_timeout,
        )

        now = self.clock()
        try:
            decision = guard.try_reserve(
                doctor_summary.id, data.date, data.timeSlot, requested_by=patient_id, now=now
            )
            if not decision.accepted:
                self.db.rollback()
                logger.info(f"Order {order_id} abandoned: slot taken during checkout setup")
                decision.raise_if_rejected()

            intent = state_machine.open_intent(
                order_id=checkout.order_id,
                amount=amount,
                currency=PAYMENT_CURRENCY,
                patient_id=patient_id,
                doctor_id=doctor_summary.id,
                day=data.date,
                time_slot=data.timeSlot,
                grace_minutes=self.grace_minutes,
                now=now,
                notes=data.notes,
                payment_session_id=checkout.payment_session_id,
                payment_link=checkout.payment_link,
            )
            self.repo.add_intent(self.db, intent)
            self.db.commit()
        except (IntegrityError, StaleDataError) as e:
            # A unique index rejected the insert, or a stale hold we expired
            # was closed by another writer first
            self.db.rollback()
            logger.warning(f"Order {order_id} lost a concurrent race for {data.date} {data.timeSlot}: {e}")
            reason = guard.check(doctor_summary.id, data.date, data.timeSlot, now).reason
            reason = reason or SLOT_PAYMENT_IN_PROGRESS
            raise ConflictError(conflict_message(reason), reason=reason) from e

        logger.info(
            f"Payment intent {intent.order_id} opened by patient {patient_id} for doctor "
            f"{doctor_summary.id} on {data.date} {data.timeSlot} ({amount} {PAYMENT_CURRENCY})"
        )
        return StartBookingResponse(
            orderId=intent.order_id,
            paymentSessionId=intent.payment_session_id,
            paymentLink=intent.payment_link,
            amount=intent.amount,
            currency=intent.currency,
            expiresAt=intent.expires_at,
            doctor=doctor_summary,
        )

    def get_order_status(self, order_id: str, requester: User) -> PaymentIntent:
        intent = self.repo.get_by_order_id(self.db, order_id)
        if not intent:
            raise NotFoundError("Order not found")
        if requester.role != ROLE_ADMIN and intent.patient_id != requester.id:
            raise AuthorizationError("Not authorized to view this order")
        return intent

    def list_flagged_for_refund(self) -> list[PaymentIntent]:
        return self.repo.list_flagged_for_refund(self.db)
