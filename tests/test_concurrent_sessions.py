"""Tests for payment writes racing across separate database sessions."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.database import Base, build_engine
from app.domain.booking.guard import ConflictGuard
from app.domain.booking.repository import AppointmentRepository
from app.domain.doctors.repository import DoctorRepository
from app.domain.payments import state_machine
from app.domain.payments.reconciliation import (
    ReconciliationEngine,
    ReconciliationOutcome,
    parse_notification,
)
from app.domain.payments.schemas import StartBookingRequest
from app.domain.payments.service import PaymentService
from app.errors import SLOT_ALREADY_BOOKED, ConflictError
from app.models import INTENT_PAID, ROLE_PATIENT, Appointment, Doctor, PaymentIntent, User
from support import BOOKING_DAY, FakeDispatcher, notification_body

ORDER_ID = "NAMCF-1709251200000-A1B2C3"


def _sessions_for(engine):
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def guarded_store(tmp_path):
    """File-backed store built the way the app builds it, with a short busy timeout."""
    engine = build_engine(f"sqlite:///{tmp_path / 'guarded.db'}", sqlite_busy_timeout=0.1)
    yield _sessions_for(engine)
    engine.dispose()


@pytest.fixture
def unserialised_store(tmp_path):
    """File-backed store on pysqlite's deferred transactions.

    Writers are not serialised here, so only the unique indexes and the
    intent version counter stand between two sessions.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'unserialised.db'}", connect_args={"check_same_thread": False}
    )
    yield _sessions_for(engine)
    engine.dispose()


def seed_pending_payment(Session, clock):
    """One doctor, two patients, and a PENDING 09:00 payment by the first patient."""
    with Session() as db:
        payer = User(name="Asha Verma", email="asha@example.com", role=ROLE_PATIENT)
        other = User(name="Bilal Khan", email="bilal@example.com", role=ROLE_PATIENT)
        doctor = Doctor(name="Dr. Rao", specialty="General Physician", consultation_fee=700, is_active=True)
        db.add_all([payer, other, doctor])
        db.flush()
        ids = {"payer": payer.id, "other": other.id, "doctor": doctor.id}
        db.add(
            state_machine.open_intent(
                order_id=ORDER_ID,
                amount=700,
                currency="INR",
                patient_id=payer.id,
                doctor_id=doctor.id,
                day=BOOKING_DAY,
                time_slot="09:00",
                grace_minutes=10,
                now=clock(),
            )
        )
        db.commit()
        return ids


def stored_state(Session):
    with Session() as db:
        intent = db.query(PaymentIntent).filter_by(order_id=ORDER_ID).one()
        return {
            "status": intent.status,
            "flagged": intent.needs_manual_refund,
            "appointment_id": intent.appointment_id,
            "appointments": db.query(Appointment).count(),
            "intents": db.query(PaymentIntent).count(),
        }


def success_notification():
    return parse_notification(notification_body(ORDER_ID))


class TestSerialisedWriters:
    """Tests for the SQLite engine taking the write lock at BEGIN."""

    def test_second_writer_waits_for_open_transaction(self, guarded_store, clock):
        ids = seed_pending_payment(guarded_store, clock)
        first, second, third = guarded_store(), guarded_store(), guarded_store()
        try:
            DoctorRepository.lock_doctor(first, ids["doctor"])

            with pytest.raises(OperationalError):
                DoctorRepository.lock_doctor(second, ids["doctor"])
            second.rollback()

            first.commit()
            assert DoctorRepository.lock_doctor(third, ids["doctor"]) is not None
            third.rollback()
        finally:
            for session in (first, second, third):
                session.close()

    @pytest.mark.asyncio
    async def test_redelivery_during_reconciliation_is_held_off(
        self, guarded_store, gateway, clock, monkeypatch
    ):
        """Test a second delivery cannot interleave and later resolves as a duplicate."""
        seed_pending_payment(guarded_store, clock)
        notification = success_notification()
        dispatcher = FakeDispatcher()
        first, second = guarded_store(), guarded_store()
        held_off = []
        try_reserve = ConflictGuard.try_reserve

        def redelivery_arrives(guard, *args, **kwargs):
            if guard.db is first and not held_off:
                try:
                    ReconciliationEngine(second, gateway, FakeDispatcher(), clock=clock)._apply(notification)
                except OperationalError:
                    second.rollback()
                    held_off.append(True)
            return try_reserve(guard, *args, **kwargs)

        monkeypatch.setattr(ConflictGuard, "try_reserve", redelivery_arrives)

        try:
            result = await ReconciliationEngine(first, gateway, dispatcher, clock=clock).reconcile(notification)
            # The first delivery has released the store; the retry now gets through
            replay = await ReconciliationEngine(second, gateway, dispatcher, clock=clock).reconcile(notification)
        finally:
            first.close()
            second.close()

        assert held_off == [True]
        assert result.outcome == ReconciliationOutcome.PROCESSED
        assert replay.outcome == ReconciliationOutcome.DUPLICATE
        assert len(dispatcher.sent) == 1
        assert stored_state(guarded_store) == {
            "status": INTENT_PAID,
            "flagged": False,
            "appointment_id": result.appointment_id,
            "appointments": 1,
            "intents": 1,
        }


class TestStoreLevelGuards:
    """Tests for racing sessions the lock does not serialise."""

    @pytest.mark.asyncio
    async def test_stale_pending_copy_cannot_overwrite_paid(
        self, unserialised_store, gateway, clock, monkeypatch
    ):
        """Test a delivery holding a PENDING read does not fail an intent another delivery paid."""
        seed_pending_payment(unserialised_store, clock)
        notification = success_notification()
        dispatcher = FakeDispatcher()
        first, second = unserialised_store(), unserialised_store()
        competing = []
        try_reserve = ConflictGuard.try_reserve

        def other_delivery_commits_first(guard, *args, **kwargs):
            if guard.db is first and not competing:
                result, _ = ReconciliationEngine(second, gateway, FakeDispatcher(), clock=clock)._apply(notification)
                competing.append(result)
                second.close()
            return try_reserve(guard, *args, **kwargs)

        monkeypatch.setattr(ConflictGuard, "try_reserve", other_delivery_commits_first)

        try:
            result = await ReconciliationEngine(first, gateway, dispatcher, clock=clock).reconcile(notification)
        finally:
            first.close()

        assert competing[0].outcome == ReconciliationOutcome.PROCESSED
        assert result.outcome == ReconciliationOutcome.DUPLICATE
        assert result.intent_status == INTENT_PAID
        assert dispatcher.sent == []
        assert stored_state(unserialised_store) == {
            "status": INTENT_PAID,
            "flagged": False,
            "appointment_id": competing[0].appointment_id,
            "appointments": 1,
            "intents": 1,
        }

    @pytest.mark.asyncio
    async def test_insert_losing_to_committed_appointment_is_rerun(
        self, unserialised_store, gateway, clock, monkeypatch
    ):
        """Test the unique index rejects the second insert and the rerun lands on the duplicate gate."""
        seed_pending_payment(unserialised_store, clock)
        notification = success_notification()
        dispatcher = FakeDispatcher()
        first, second = unserialised_store(), unserialised_store()
        competing = []
        add_appointment = AppointmentRepository.add_appointment

        def other_delivery_inserts_first(db, **fields):
            if db is first and not competing:
                result, _ = ReconciliationEngine(second, gateway, FakeDispatcher(), clock=clock)._apply(notification)
                competing.append(result)
                second.close()
            return add_appointment(db, **fields)

        monkeypatch.setattr(AppointmentRepository, "add_appointment", staticmethod(other_delivery_inserts_first))

        try:
            result = await ReconciliationEngine(first, gateway, dispatcher, clock=clock).reconcile(notification)
        finally:
            first.close()

        assert competing[0].outcome == ReconciliationOutcome.PROCESSED
        assert result.outcome == ReconciliationOutcome.DUPLICATE
        assert len(dispatcher.sent) <= 1
        assert stored_state(unserialised_store) == {
            "status": INTENT_PAID,
            "flagged": False,
            "appointment_id": competing[0].appointment_id,
            "appointments": 1,
            "intents": 1,
        }

    @pytest.mark.asyncio
    async def test_expiring_a_hold_that_was_just_paid_is_a_conflict(
        self, unserialised_store, gateway, clock, monkeypatch
    ):
        """Test a checkout expiring a stale hold cannot undo its late payment."""
        ids = seed_pending_payment(unserialised_store, clock)
        clock.advance(15)
        notification = success_notification()
        first, second = unserialised_store(), unserialised_store()
        competing = []
        expire_stale = state_machine.expire_stale

        def payment_lands_first(intent, now, *args, **kwargs):
            if not competing:
                result, _ = ReconciliationEngine(second, gateway, FakeDispatcher(), clock=clock)._apply(notification)
                competing.append(result)
                second.close()
            return expire_stale(intent, now, *args, **kwargs)

        monkeypatch.setattr(state_machine, "expire_stale", payment_lands_first)
        service = PaymentService(first, gateway, grace_minutes=10, clock=clock)
        request = StartBookingRequest(doctorId=ids["doctor"], date=BOOKING_DAY, timeSlot="09:00")

        try:
            with pytest.raises(ConflictError) as exc_info:
                await service.start_booking(request, first.get(User, ids["other"]))
        finally:
            first.close()

        assert competing[0].outcome == ReconciliationOutcome.PROCESSED
        assert exc_info.value.reason == SLOT_ALREADY_BOOKED
        assert stored_state(unserialised_store) == {
            "status": INTENT_PAID,
            "flagged": False,
            "appointment_id": competing[0].appointment_id,
            "appointments": 1,
            "intents": 1,
        }
