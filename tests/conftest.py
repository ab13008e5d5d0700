"""Pytest configuration and fixtures."""
import os
from datetime import datetime

# Settings are read at import time; pin them before anything imports app.*
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, Doctor, User
from support import FakeDispatcher, FakeGateway, FrozenClock


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 2, 28, 10, 0, 0))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


def _user(db, name, email, role, phone=None):
    user = User(name=name, email=email, role=role, phone=phone)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _doctor(db, **fields):
    doctor = Doctor(**fields)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def patient_a(db_session):
    return _user(db_session, "Asha Verma", "asha@example.com", ROLE_PATIENT, "9876543210")


@pytest.fixture
def patient_b(db_session):
    return _user(db_session, "Bilal Khan", "bilal@example.com", ROLE_PATIENT)


@pytest.fixture
def patient_c(db_session):
    return _user(db_session, "Chitra Das", "chitra@example.com", ROLE_PATIENT)


@pytest.fixture
def admin(db_session):
    return _user(db_session, "Front Desk", "admin@example.com", ROLE_ADMIN)


@pytest.fixture
def doctor_user(db_session):
    return _user(db_session, "Dr. Rao", "rao@example.com", ROLE_DOCTOR)


@pytest.fixture
def doctor(db_session, doctor_user):
    return _doctor(
        db_session,
        user_id=doctor_user.id,
        name="Dr. Rao",
        specialty="General Physician",
        consultation_fee=700,
        is_active=True,
    )


@pytest.fixture
def inactive_doctor(db_session):
    return _doctor(db_session, name="Dr. Sen", specialty="ENT", consultation_fee=400, is_active=False)


@pytest.fixture
def no_fee_doctor(db_session):
    return _doctor(db_session, name="Dr. Iyer", specialty="Pediatrics", consultation_fee=None, is_active=True)
