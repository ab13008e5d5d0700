"""Tests for starting a paid booking."""
from datetime import timedelta

import pytest

from app.config import DEFAULT_CONSULTATION_FEE, PAYMENT_CURRENCY, PAYMENT_WEBHOOK_URL
from app.domain.payments import state_machine
from app.domain.payments.schemas import StartBookingRequest
from app.domain.payments.service import PaymentService, generate_order_id
from app.errors import (
    SLOT_ALREADY_BOOKED,
    SLOT_PAYMENT_IN_PROGRESS,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.models import (
    APPOINTMENT_CONFIRMED,
    INTENT_EXPIRED,
    INTENT_PENDING,
    Appointment,
    PaymentIntent,
)
from support import BOOKING_DAY


def booking_request(doctor, time_slot="10:00", notes=None):
    return StartBookingRequest(doctorId=doctor.id, date=BOOKING_DAY, timeSlot=time_slot, notes=notes)


@pytest.fixture
def service(db_session, gateway, clock):
    return PaymentService(db_session, gateway, grace_minutes=10, clock=clock)


class TestStartBooking:
    """Tests for PaymentService.start_booking."""

    @pytest.mark.asyncio
    async def test_opens_pending_intent(self, service, db_session, gateway, doctor, patient_a, clock):
        """Test a free slot yields a PENDING intent and a checkout reference."""
        response = await service.start_booking(booking_request(doctor, notes="Follow-up"), patient_a)

        intent = db_session.query(PaymentIntent).one()
        assert intent.status == INTENT_PENDING
        assert intent.order_id == response.orderId
        assert intent.patient_id == patient_a.id
        assert intent.notes == "Follow-up"
        assert response.amount == 700
        assert response.currency == PAYMENT_CURRENCY
        assert response.paymentSessionId == f"session_{response.orderId}"
        assert response.expiresAt == clock() + timedelta(minutes=10)
        assert response.doctor.name == "Dr. Rao"

        [order] = gateway.orders
        assert order["notify_url"] == PAYMENT_WEBHOOK_URL
        assert order["customer"].phone == "9876543210"
        assert response.orderId in order["return_url"]
        assert order["timeout"] is None

    @pytest.mark.asyncio
    async def test_session_is_idle_during_provider_call(self, service, db_session, gateway, doctor, patient_a):
        """Test no transaction is open while the provider order is created."""
        in_transaction = []
        gateway.before_return = lambda: in_transaction.append(db_session.in_transaction())

        await service.start_booking(booking_request(doctor), patient_a)

        assert in_transaction == [False]
        [order] = gateway.orders
        assert order["customer"].customer_id == str(patient_a.id)
        assert order["customer"].email == "asha@example.com"

    @pytest.mark.asyncio
    async def test_caller_timeout_reaches_provider(self, db_session, gateway, doctor, patient_a, clock):
        service = PaymentService(db_session, gateway, grace_minutes=10, clock=clock, provider_timeout=2.5)

        await service.start_booking(booking_request(doctor), patient_a)

        assert gateway.orders[0]["timeout"] == 2.5

    @pytest.mark.asyncio
    async def test_missing_fee_uses_default(self, service, no_fee_doctor, patient_a):
        response = await service.start_booking(booking_request(no_fee_doctor), patient_a)
        assert response.amount == DEFAULT_CONSULTATION_FEE

    @pytest.mark.asyncio
    async def test_live_hold_rejects_second_patient_before_provider_call(
        self, service, gateway, doctor, patient_a, patient_b
    ):
        await service.start_booking(booking_request(doctor), patient_a)

        with pytest.raises(ConflictError) as exc_info:
            await service.start_booking(booking_request(doctor), patient_b)

        assert exc_info.value.reason == SLOT_PAYMENT_IN_PROGRESS
        assert len(gateway.orders) == 1

    @pytest.mark.asyncio
    async def test_booked_slot_is_rejected(self, service, db_session, doctor, patient_a, patient_b):
        db_session.add(
            Appointment(
                doctor_id=doctor.id,
                patient_id=patient_b.id,
                date=BOOKING_DAY,
                time_slot="10:00",
                status=APPOINTMENT_CONFIRMED,
                amount=700,
            )
        )
        db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            await service.start_booking(booking_request(doctor), patient_a)

        assert exc_info.value.reason == SLOT_ALREADY_BOOKED

    @pytest.mark.asyncio
    async def test_stale_hold_is_released_after_grace(
        self, service, db_session, doctor, patient_a, patient_b, clock
    ):
        first = await service.start_booking(booking_request(doctor), patient_a)
        clock.advance(11)

        second = await service.start_booking(booking_request(doctor), patient_b)

        stale = db_session.query(PaymentIntent).filter_by(order_id=first.orderId).one()
        live = db_session.query(PaymentIntent).filter_by(order_id=second.orderId).one()
        assert stale.status == INTENT_EXPIRED
        assert stale.failure_reason == state_machine.GRACE_EXPIRY_REASON
        assert live.status == INTENT_PENDING

    @pytest.mark.asyncio
    async def test_inactive_doctor_is_not_found(self, service, inactive_doctor, patient_a):
        with pytest.raises(NotFoundError):
            await service.start_booking(booking_request(inactive_doctor), patient_a)

    @pytest.mark.asyncio
    async def test_off_grid_slot_is_invalid(self, service, gateway, doctor, patient_a):
        with pytest.raises(ValidationError):
            await service.start_booking(booking_request(doctor, time_slot="08:00"), patient_a)
        assert gateway.orders == []

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_no_state(self, service, db_session, gateway, doctor, patient_a):
        gateway.error = UpstreamError("Payment provider timed out")

        with pytest.raises(UpstreamError):
            await service.start_booking(booking_request(doctor), patient_a)

        assert db_session.query(PaymentIntent).count() == 0

    @pytest.mark.asyncio
    async def test_slot_booked_during_provider_call(
        self, service, db_session, gateway, doctor, patient_a, admin
    ):
        """Test the locked re-check catches a booking made mid-checkout."""

        def staff_books_slot():
            db_session.add(
                Appointment(
                    doctor_id=doctor.id,
                    patient_id=admin.id,
                    date=BOOKING_DAY,
                    time_slot="10:00",
                    status=APPOINTMENT_CONFIRMED,
                    amount=700,
                )
            )
            db_session.commit()

        gateway.before_return = staff_books_slot

        with pytest.raises(ConflictError) as exc_info:
            await service.start_booking(booking_request(doctor), patient_a)

        assert exc_info.value.reason == SLOT_ALREADY_BOOKED
        assert db_session.query(PaymentIntent).count() == 0

    @pytest.mark.asyncio
    async def test_hold_opened_during_provider_call(
        self, service, db_session, gateway, doctor, patient_a, patient_b, clock
    ):
        def other_patient_holds_slot():
            db_session.add(
                state_machine.open_intent(
                    order_id="NAMCF-1-RIVAL0",
                    amount=700,
                    currency="INR",
                    patient_id=patient_b.id,
                    doctor_id=doctor.id,
                    day=BOOKING_DAY,
                    time_slot="10:00",
                    grace_minutes=10,
                    now=clock(),
                )
            )
            db_session.commit()

        gateway.before_return = other_patient_holds_slot

        with pytest.raises(ConflictError) as exc_info:
            await service.start_booking(booking_request(doctor), patient_a)

        assert exc_info.value.reason == SLOT_PAYMENT_IN_PROGRESS
        assert db_session.query(PaymentIntent).count() == 1


class TestOrderStatus:
    """Tests for PaymentService.get_order_status."""

    @pytest.mark.asyncio
    async def test_owner_and_admin_can_read(self, service, doctor, patient_a, admin):
        response = await service.start_booking(booking_request(doctor), patient_a)

        assert service.get_order_status(response.orderId, patient_a).status == INTENT_PENDING
        assert service.get_order_status(response.orderId, admin).order_id == response.orderId

    @pytest.mark.asyncio
    async def test_other_patient_is_forbidden(self, service, doctor, patient_a, patient_b):
        response = await service.start_booking(booking_request(doctor), patient_a)

        with pytest.raises(AuthorizationError):
            service.get_order_status(response.orderId, patient_b)

    def test_unknown_order_is_not_found(self, service, patient_a):
        with pytest.raises(NotFoundError):
            service.get_order_status("NAMCF-0-000000", patient_a)


def test_order_ids_are_unique_and_prefixed():
    ids = {generate_order_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(order_id.startswith("NAMCF-") for order_id in ids)
