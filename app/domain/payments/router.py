"""Payments router - checkout, order status and the provider webhook"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import require_roles
from ...database import get_db
from ...email_service import NotificationDispatcher, get_notification_dispatcher
from ...models import ROLE_ADMIN, ROLE_PATIENT, User
from .cashfree_service import CashfreeService, get_payment_gateway
from .reconciliation import ReconciliationEngine
from .schemas import (
    FlaggedPaymentResponse,
    OrderStatusResponse,
    StartBookingRequest,
    StartBookingResponse,
    WebhookAck,
)
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: CashfreeService = Depends(get_payment_gateway),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, gateway)


def get_reconciliation_engine(
    db: Session = Depends(get_db),
    gateway: CashfreeService = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReconciliationEngine:
    return ReconciliationEngine(db, gateway, dispatcher)


@router.post("/cashfree/order", response_model=StartBookingResponse, status_code=201)
async def create_cashfree_order(
    data: StartBookingRequest,
    current_user: User = Depends(require_roles(ROLE_PATIENT)),
    service: PaymentService = Depends(get_payment_service),
):
    """Hold a slot behind a PENDING payment and return the hosted checkout reference"""
    return await service.start_booking(data, current_user)


@router.get("/order/{order_id}", response_model=OrderStatusResponse)
async def get_order_status(
    order_id: str,
    current_user: User = Depends(require_roles(ROLE_PATIENT, ROLE_ADMIN)),
    service: PaymentService = Depends(get_payment_service),
):
    """Payment attempt status for its patient or an admin"""
    return OrderStatusResponse.from_model(service.get_order_status(order_id, current_user))


@router.get("/flagged", response_model=list[FlaggedPaymentResponse])
async def get_flagged_payments(
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    service: PaymentService = Depends(get_payment_service),
):
    """Captured payments with no appointment, awaiting manual refund"""
    return [FlaggedPaymentResponse.from_model(i) for i in service.list_flagged_for_refund()]


@router.post("/cashfree-webhook", response_model=WebhookAck)
async def cashfree_webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """
    Cashfree payment notification.

    Acknowledged with 200 for every business outcome so the provider stops
    retrying; only signature failures (401) and internal faults (500) are not.
    """
    # Raw bytes, never re-serialised: the signature covers them exactly
    raw_body = await request.body()
    result = await engine.handle_notification(
        raw_body,
        request.headers.get("x-webhook-signature"),
        request.headers.get("x-webhook-timestamp"),
    )
    logger.info(f"Cashfree webhook for {result.order_id}: {result.outcome.value}")
    return WebhookAck(outcome=result.outcome.value, message=result.message)
