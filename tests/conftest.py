import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from deskbot.database import init_db
from deskbot.services.client_directory import ClientRecord, InMemoryClientDirectory
from deskbot.services.fsm_engine import FSMEngine
from deskbot.services.session_store import Session

KNOWN_CUIT = "20123456786"
OTHER_CUIT = "20111222224"
PHONE = "5491112345678"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def directory():
    return InMemoryClientDirectory(
        [
            ClientRecord(
                cuit=KNOWN_CUIT,
                name="María López",
                fee_debt=Decimal("15000"),
                monotributo_amount=Decimal("32500.50"),
                debt=None,
            ),
            ClientRecord(cuit=OTHER_CUIT, name="Sin Deuda SRL", fee_debt=None, monotributo_amount=None, debt=None),
        ]
    )


@pytest.fixture
def engine(directory):
    return FSMEngine(directory, ack_cooldown_seconds=12, operator_allowlist=["5490000000000"])


@pytest.fixture
def fsm_session():
    return Session(id=PHONE)
