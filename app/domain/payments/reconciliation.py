"""
Reconciliation engine - turns provider payment notifications into bookings

Each notification walks a fixed sequence of decisions:

1. Authenticate the raw body against the provider signature.
2. Find the intent by provider order id; unknown orders are acknowledged.
3. An intent already PAID is a replay: acknowledge, do nothing.
4. A non-success status moves a PENDING intent to FAILED or EXPIRED.
5. Re-check the slot under lock; a live appointment means the slot was lost
   after the patient paid, so the intent fails and is flagged for refund.
6. Otherwise create the CONFIRMED/PAID appointment, link it, commit, and only
   then send the confirmation email.

The step-3 check is the idempotency gate. The partial unique index on active
appointments, the unique provider order id on appointments and the version
counter on payment intents catch any replay that races past it; the losing
transaction is rolled back and the decision sequence rerun, where it lands on
step 3.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...email_service import NotificationDispatcher, appointment_booked_message, dispatch_safely
from ...errors import IntegrityViolation, SecurityError, ValidationError
from ...models import (
    APPOINTMENT_CONFIRMED,
    INTENT_PAID,
    PAYMENT_PAID,
    Appointment,
    PaymentIntent,
)
from ..booking.guard import ConflictGuard
from ..booking.repository import AppointmentRepository
from ..doctors.repository import DoctorRepository
from . import state_machine
from .cashfree_service import CashfreeService
from .repository import PaymentIntentRepository

logger = logging.getLogger(__name__)

PAYMENT_PROVIDER = "CASHFREE"
MAX_RECONCILE_ATTEMPTS = 3


class ReconciliationOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    ORDER_NOT_TRACKED = "order_not_tracked"
    PAYMENT_NOT_SUCCESSFUL = "payment_not_successful"
    SLOT_CONFLICT = "slot_conflict"
    INTENT_CLOSED = "intent_closed"


OUTCOME_MESSAGES = {
    ReconciliationOutcome.PROCESSED: "Payment confirmed and appointment booked",
    ReconciliationOutcome.DUPLICATE: "Already processed",
    ReconciliationOutcome.ORDER_NOT_TRACKED: "Order not tracked",
    ReconciliationOutcome.PAYMENT_NOT_SUCCESSFUL: "Payment not successful",
    ReconciliationOutcome.SLOT_CONFLICT: "Slot already taken",
    ReconciliationOutcome.INTENT_CLOSED: "Payment attempt already closed",
}


@dataclass
class ProviderNotification:
    order_id: Optional[str]
    payment_status: Optional[str]
    payment_reference_id: Optional[str]
    payment_mode: Optional[str]
    payload: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "ProviderNotification":
        data = payload.get("data") or {}
        order = data.get("order") or {}
        payment = data.get("payment") or {}
        reference = payment.get("cf_payment_id") or payment.get("bank_reference")
        return cls(
            order_id=order.get("order_id"),
            payment_status=payment.get("payment_status"),
            payment_reference_id=str(reference) if reference else None,
            payment_mode=_payment_mode(payment),
            payload=payload,
        )


def _payment_mode(payment: dict) -> Optional[str]:
    """Cashfree sends payment_method as {"upi": {...}}; older payloads send a string"""
    method = payment.get("payment_method")
    if isinstance(method, dict) and method:
        return next(iter(method))
    if isinstance(method, str) and method:
        return method
    return payment.get("payment_group")


@dataclass
class ProcessedResult:
    outcome: ReconciliationOutcome
    order_id: Optional[str] = None
    intent_status: Optional[str] = None
    appointment_id: Optional[int] = None
    currency: Optional[str] = None
    notified: bool = False

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome]


def parse_notification(raw_body: bytes) -> ProviderNotification:
    try:
        payload: Any = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Notification body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError("Notification body must be a JSON object")
    return ProviderNotification.from_payload(payload)


class ReconciliationEngine:
    """Applies provider notifications to payment intents exactly once"""

    def __init__(
        self,
        db: Session,
        gateway: CashfreeService,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.clock = clock

    async def handle_notification(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        timestamp: Optional[str] = None,
    ) -> ProcessedResult:
        """Verify, parse and reconcile a webhook delivery"""
        if not self.gateway.verify_notification_signature(raw_body, signature_header, timestamp):
            logger.error("Rejected payment notification: invalid signature")
            raise SecurityError("Invalid signature", reason="InvalidSignature")

        return await self.reconcile(parse_notification(raw_body))

    async def reconcile(self, notification: ProviderNotification) -> ProcessedResult:
        if not notification.order_id:
            logger.info("Payment notification without order id; ignoring")
            return ProcessedResult(ReconciliationOutcome.ORDER_NOT_TRACKED)

        for attempt in range(1, MAX_RECONCILE_ATTEMPTS + 1):
            try:
                result, appointment = self._apply(notification)
                break
            except (IntegrityError, StaleDataError) as e:
                self.db.rollback()
                if attempt == MAX_RECONCILE_ATTEMPTS:
                    raise
                logger.warning(
                    f"Concurrent reconciliation for {notification.order_id} "
                    f"(attempt {attempt}); re-evaluating: {e}"
                )

        if appointment is not None:
            # Committed above; email failures are logged and never undo the booking
            message = appointment_booked_message(appointment, result.currency)
            # End the read transaction so no lock is held while the email is sent
            self.db.rollback()
            result.notified = await dispatch_safely(self.dispatcher, *message)
        return result

    def _apply(self, notification: ProviderNotification) -> tuple[ProcessedResult, Optional[Appointment]]:
        """One pass of the decision sequence inside a single transaction"""
        order_id = notification.order_id
        doctor_id = PaymentIntentRepository.doctor_id_for_order(self.db, order_id)
        if doctor_id is None:
            self.db.rollback()
            logger.info(f"Payment notification for untracked order {order_id}")
            return ProcessedResult(ReconciliationOutcome.ORDER_NOT_TRACKED, order_id), None

        # Doctor before intent, matching the lock order of every other guarded write
        DoctorRepository.lock_doctor(self.db, doctor_id)
        intent = PaymentIntentRepository.lock_by_order_id(self.db, order_id)

        if intent.status == INTENT_PAID:
            self.db.rollback()
            logger.info(f"Duplicate success notification for {order_id}; already processed")
            return self._result(ReconciliationOutcome.DUPLICATE, intent), None

        if not state_machine.is_provider_success(notification.payment_status):
            return self._apply_failure(intent, notification), None

        if state_machine.is_terminal(intent.status):
            return self._flag_late_capture(intent, notification), None

        now = self.clock()
        decision = ConflictGuard(self.db).try_reserve(
            intent.doctor_id,
            intent.date,
            intent.time_slot,
            requested_by=intent.patient_id,
            now=now,
            respect_payment_holds=False,
        )
        if not decision.accepted:
            state_machine.mark_conflicted(
                intent,
                notification.payload,
                reason="Slot booked by another appointment before payment was confirmed",
            )
            self.db.commit()
            self._report_violation(
                IntegrityViolation(
                    f"Order {order_id} paid but slot {intent.date} {intent.time_slot} "
                    f"for doctor {intent.doctor_id} is taken; flagged for manual refund",
                    reason=decision.reason,
                )
            )
            return self._result(ReconciliationOutcome.SLOT_CONFLICT, intent), None

        appointment = AppointmentRepository.add_appointment(
            self.db,
            doctor_id=intent.doctor_id,
            patient_id=intent.patient_id,
            date=intent.date,
            time_slot=intent.time_slot,
            notes=intent.notes,
            status=APPOINTMENT_CONFIRMED,
            amount=intent.amount,
            payment_status=PAYMENT_PAID,
            payment_provider=PAYMENT_PROVIDER,
            payment_order_id=order_id,
            payment_reference_id=notification.payment_reference_id,
            payment_mode=notification.payment_mode,
        )
        state_machine.mark_paid(
            intent,
            appointment,
            notification.payload,
            payment_reference_id=notification.payment_reference_id,
            payment_mode=notification.payment_mode,
        )
        self.db.commit()
        logger.info(
            f"Order {order_id} reconciled: appointment {appointment.tracking_code} confirmed"
        )

        appointment = AppointmentRepository.get_appointment(self.db, appointment.id)
        return self._result(ReconciliationOutcome.PROCESSED, intent, appointment), appointment

    def _apply_failure(self, intent: PaymentIntent, notification: ProviderNotification) -> ProcessedResult:
        if state_machine.is_terminal(intent.status):
            self.db.rollback()
            logger.info(
                f"Ignoring {notification.payment_status} for {intent.order_id}: already {intent.status}"
            )
            return self._result(ReconciliationOutcome.INTENT_CLOSED, intent)

        state_machine.apply_provider_failure(intent, notification.payment_status, notification.payload)
        self.db.commit()
        return self._result(ReconciliationOutcome.PAYMENT_NOT_SUCCESSFUL, intent)

    def _flag_late_capture(self, intent: PaymentIntent, notification: ProviderNotification) -> ProcessedResult:
        """Money arrived for an attempt that was already closed; record it for refund"""
        if intent.needs_manual_refund:
            self.db.rollback()
            logger.info(f"Late capture for {intent.order_id} already flagged for refund")
            return self._result(ReconciliationOutcome.INTENT_CLOSED, intent)

        previous = intent.status
        intent.needs_manual_refund = True
        intent.failure_reason = f"Payment captured after attempt was {previous}"
        intent.payment_reference_id = notification.payment_reference_id
        intent.raw_webhook_payload = notification.payload
        self.db.commit()
        self._report_violation(
            IntegrityViolation(
                f"Order {intent.order_id} paid after closing as {previous}; flagged for manual refund"
            )
        )
        return self._result(ReconciliationOutcome.INTENT_CLOSED, intent)

    @staticmethod
    def _report_violation(violation: IntegrityViolation) -> None:
        logger.critical(f"Payment integrity violation: {violation.detail}")

    @staticmethod
    def _result(
        outcome: ReconciliationOutcome,
        intent: PaymentIntent,
        appointment: Optional[Appointment] = None,
    ) -> ProcessedResult:
        return ProcessedResult(
            outcome=outcome,
            order_id=intent.order_id,
            intent_status=intent.status,
            appointment_id=appointment.id if appointment else None,
            currency=intent.currency,
        )

