"""
Tests for the participant registry.

Covers:
- Enrollment placement and virtual enrollment time
- Investment recording and running totals
"""

from datetime import date
from decimal import Decimal

import pytest

from models import Investment
from compensation_system.config.tiers import TierId
from compensation_system.errors import CompensationError
from compensation_system.events.event_bus import eventBus, CompensationEvents
from tests.conftest import START_TIME


class TestEnroll:
    """Placement."""

    @pytest.mark.asyncio
    async def test_child_placed_under_upline(self, make_participant):
        root = await make_participant()
        child = await make_participant(upline=root)

        assert root.depth == 0
        assert child.depth == 1
        assert child.path == f"/{root.participantID}/"
        assert child.enrolledAt == START_TIME


class TestRecordInvestment:
    """Investments and totalInvested."""

    @pytest.mark.asyncio
    async def test_total_invested_accumulates(self, session, registry, make_participant):
        member = await make_participant()

        first = await registry.recordInvestment(member.participantID, "1000")
        await registry.recordInvestment(member.participantID, Decimal("250.50"), investmentDate=date(2024, 1, 20))

        session.refresh(member)
        assert member.totalInvested == Decimal("1250.50")
        assert first.investmentDate == date(2024, 1, 1)
        assert first.status == "active"
        assert session.query(Investment).count() == 2

    @pytest.mark.asyncio
    async def test_uses_tier_held_now(self, registry, make_participant, frozen_time):
        member = await make_participant()
        frozen_time.advanceTime(days=1)
        await registry.assignTier(member.participantID, TierId.MANAGER)

        investment = await registry.recordInvestment(member.participantID, "500")

        assert investment.tierId == int(TierId.MANAGER)
        assert investment.investmentDate == date(2024, 1, 2)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_rejects_non_positive_amount(self, session, registry, make_participant, amount):
        member = await make_participant()

        with pytest.raises(CompensationError):
            await registry.recordInvestment(member.participantID, amount)

        session.refresh(member)
        assert member.totalInvested == Decimal("0")
        assert session.query(Investment).count() == 0

    @pytest.mark.asyncio
    async def test_event_emitted(self, registry, make_participant):
        received = []
        eventBus.subscribe(CompensationEvents.INVESTMENT_RECORDED, lambda data: received.append(data))
        member = await make_participant()

        investment = await registry.recordInvestment(member.participantID, "75")

        assert received == [{
            "participantID": member.participantID,
            "investmentID": investment.investmentID,
            "amount": "75"
        }]
