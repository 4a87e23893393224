"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite://")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio
from datetime import datetime, date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from init import create_db_engine, init_tables
from models import Base, Investment
from compensation_system.config.tiers import TierId
from compensation_system.events.event_bus import eventBus
from compensation_system.services.participant_service import ParticipantRegistry
from compensation_system.services.payment import PaymentOutcome
from compensation_system.utils.time_machine import timeMachine

START_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables."""
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_tables(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def frozen_time():
    """Pin virtual time and isolate event handlers per test."""
    timeMachine.setTime(START_TIME, "tests")
    eventBus.clear()
    yield timeMachine
    eventBus.clear()
    timeMachine.resetToRealTime()


@pytest.fixture
def registry(session):
    return ParticipantRegistry(session)


@pytest.fixture
def make_participant(registry):
    """Async factory enrolling a participant with the given tier."""

    async def factory(upline=None, tier=TierId.ASSOCIATE, **kwargs):
        uplineID = upline.participantID if upline is not None else None
        return await registry.enroll(uplineID=uplineID, tierId=tier, **kwargs)

    return factory


@pytest.fixture
def make_chain(make_participant):
    """Async factory building a referral chain top-down; returns the list top first."""

    async def factory(tiers):
        chain = []
        upline = None
        for tier in tiers:
            upline = await make_participant(upline=upline, tier=tier)
            chain.append(upline)
        return chain

    return factory


@pytest.fixture
def add_investment(session):
    def factory(participant, amount, tier=TierId.ASSOCIATE, investmentDate=date(2024, 1, 1),
                currentValue=None, lockInEndDate=None, status="active"):
        investment = Investment(
            participantID=participant.participantID,
            amount=Decimal(str(amount)),
            currentValue=Decimal(str(currentValue)) if currentValue is not None else None,
            tierId=int(tier),
            investmentDate=investmentDate,
            lockInEndDate=lockInEndDate,
            status=status
        )
        session.add(investment)
        session.commit()
        return investment

    return factory


class FakePaymentExecutor:
    """Records calls; declines, raises or stalls for configured participants."""

    def __init__(self, decline=(), explode=(), stall=()):
        self.decline = set(decline)
        self.explode = set(explode)
        self.stall = set(stall)
        self.calls = []

    async def execute(self, kind, recordID, participantID, amount):
        self.calls.append((kind, recordID, participantID, amount))
        if participantID in self.stall:
            await asyncio.sleep(1)
        if participantID in self.explode:
            raise ConnectionError("gateway unreachable")
        if participantID in self.decline:
            return PaymentOutcome(success=False, reason="Insufficient treasury funds")
        return PaymentOutcome(success=True, reference=f"{kind}-{recordID}")


@pytest.fixture
def executor():
    return FakePaymentExecutor()
