"""
Payment intent state machine

PENDING -> PAID | FAILED | EXPIRED. Terminal states absorb: once an intent
leaves PENDING nothing moves it again. Every transition goes through
`_transition`, which is the only place status is written.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from ...errors import BookingError
from ...models import (
    INTENT_EXPIRED,
    INTENT_FAILED,
    INTENT_PAID,
    INTENT_PENDING,
    Appointment,
    PaymentIntent,
)

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({INTENT_PAID, INTENT_FAILED, INTENT_EXPIRED})
ALLOWED_TRANSITIONS = {
    INTENT_PENDING: frozenset({INTENT_PAID, INTENT_FAILED, INTENT_EXPIRED}),
}

PROVIDER_SUCCESS = "SUCCESS"
# Provider statuses that are an explicit "no"; anything else unrecognised expires
PROVIDER_DECLINED = frozenset({"FAILED", "USER_DROPPED", "CANCELLED", "VOID"})

GRACE_EXPIRY_REASON = "Expired automatically after pending grace window"


class InvalidTransition(BookingError):
    status_code = 409


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def is_provider_success(provider_status: Optional[str]) -> bool:
    return (provider_status or "").upper() == PROVIDER_SUCCESS


def status_for_provider_outcome(provider_status: Optional[str]) -> str:
    """Map a non-success provider status onto FAILED or EXPIRED"""
    if (provider_status or "").upper() in PROVIDER_DECLINED:
        return INTENT_FAILED
    return INTENT_EXPIRED


def is_stale(intent: PaymentIntent, now: datetime) -> bool:
    """A PENDING intent past its grace deadline no longer holds its slot"""
    return intent.status == INTENT_PENDING and intent.expires_at <= now


def _transition(intent: PaymentIntent, target: str) -> None:
    allowed = ALLOWED_TRANSITIONS.get(intent.status, frozenset())
    if target not in allowed:
        raise InvalidTransition(
            f"Payment {intent.order_id} cannot move from {intent.status} to {target}"
        )
    logger.info(f"Payment intent {intent.order_id}: {intent.status} -> {target}")
    intent.status = target


def open_intent(
    *,
    order_id: str,
    amount: float,
    currency: str,
    patient_id: int,
    doctor_id: int,
    day: date,
    time_slot: str,
    grace_minutes: int,
    now: datetime,
    notes: Optional[str] = None,
    payment_session_id: Optional[str] = None,
    payment_link: Optional[str] = None,
) -> PaymentIntent:
    """Build a new PENDING intent with its grace-period deadline recorded"""
    return PaymentIntent(
        order_id=order_id,
        payment_session_id=payment_session_id,
        payment_link=payment_link,
        status=INTENT_PENDING,
        amount=amount,
        currency=currency,
        patient_id=patient_id,
        doctor_id=doctor_id,
        date=day,
        time_slot=time_slot,
        notes=notes,
        needs_manual_refund=False,
        created_at=now,
        expires_at=now + timedelta(minutes=grace_minutes),
    )


def expire_stale(intent: PaymentIntent, now: datetime, reason: str = GRACE_EXPIRY_REASON) -> None:
    """Provider-independent expiry, driven by contention on the slot"""
    _transition(intent, INTENT_EXPIRED)
    intent.failure_reason = reason
    intent.raw_webhook_payload = {"expiredAt": now.isoformat(), "reason": reason}


def apply_provider_failure(intent: PaymentIntent, provider_status: Optional[str], payload: dict) -> str:
    target = status_for_provider_outcome(provider_status)
    _transition(intent, target)
    intent.failure_reason = f"Provider reported payment status {provider_status or 'UNKNOWN'}"
    intent.raw_webhook_payload = payload
    return target


def mark_conflicted(intent: PaymentIntent, payload: dict, reason: str) -> None:
    """Payment captured but the slot went to someone else"""
    _transition(intent, INTENT_FAILED)
    intent.failure_reason = reason
    intent.needs_manual_refund = True
    intent.raw_webhook_payload = payload


def mark_paid(
    intent: PaymentIntent,
    appointment: Appointment,
    payload: dict,
    payment_reference_id: Optional[str] = None,
    payment_mode: Optional[str] = None,
) -> None:
    _transition(intent, INTENT_PAID)
    intent.appointment_id = appointment.id
    intent.payment_reference_id = payment_reference_id
    intent.payment_mode = payment_mode
    intent.raw_webhook_payload = payload
