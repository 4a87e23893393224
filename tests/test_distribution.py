"""
Tests for profit distribution.

Covers:
- Tier multiplier split and pool conservation
- Community allocation with voting bonus
- Period validation
- Share processing, partial failure, cancellation and re-runs
"""

from datetime import date
from decimal import Decimal

import pytest

from models import (
    CommunityProject, Investment, ProfitDistribution, ProfitShare, ProjectContribution, ProjectVote
)
from compensation_system.config.tiers import TierId
from compensation_system.errors import AlreadyProcessedError, InvalidPeriodError, InvalidStateError
from compensation_system.services.distribution_service import DistributionPeriod, DistributionService
from tests.conftest import FakePaymentExecutor

MARCH = DistributionPeriod("monthly", date(2024, 3, 1), date(2024, 3, 31))


@pytest.fixture
def distributions(session):
    return DistributionService(session)


def shares_of(session, distribution):
    return session.query(ProfitShare).filter_by(
        distributionID=distribution.distributionID
    ).order_by(ProfitShare.shareID).all()


def total_final(shares):
    return sum((s.finalAmount for s in shares), Decimal("0"))


class TestCreateDistribution:
    """Calculation."""

    @pytest.mark.asyncio
    async def test_top_tier_share_uses_multiplier(self, session, distributions, make_participant, add_investment):
        """Pool 100,000 with 20% community: a 10% holder of the 1.20 tier gets tier_pool * 1.20 * 0.10."""
        executives = [await make_participant(tier=TierId.EXECUTIVE) for _ in range(2)]
        associate = await make_participant()
        add_investment(executives[0], "1000", tier=TierId.EXECUTIVE)
        add_investment(executives[1], "9000", tier=TierId.EXECUTIVE)
        add_investment(associate, "10000", tier=TierId.ASSOCIATE)

        distribution = await distributions.createDistribution(Decimal("100000"), MARCH, Decimal("20"))

        assert distribution.communityPool == Decimal("20000")
        assert distribution.investmentPool == Decimal("80000")

        # Base tier pools scaled so that multiplied shares fill the 80,000
        weighted = Decimal("10000") * Decimal("1.20") + Decimal("10000") * Decimal("1.00")
        executivePool = Decimal("80000") * Decimal("10000") / weighted

        shares = shares_of(session, distribution)
        small = next(s for s in shares if s.participantID == executives[0].participantID)
        expected = executivePool * Decimal("1.20") * Decimal("0.10")

        assert abs(small.finalAmount - expected) <= Decimal("0.01")
        assert small.multiplier == Decimal("1.20")
        assert small.baseAmount + small.tierBonusAmount == small.finalAmount
        assert Decimal(distribution.notes["tierPools"][str(int(TierId.EXECUTIVE))]) == executivePool.quantize(Decimal("0.01"), rounding="ROUND_DOWN")

        # No community contributors: the community pool is not paid out
        assert total_final(shares) + distribution.roundingRemainder == Decimal("100000")
        assert distribution.roundingRemainder >= Decimal("20000")

    @pytest.mark.asyncio
    async def test_every_cent_accounted(self, session, distributions, make_participant, add_investment):
        members = [await make_participant() for _ in range(3)]
        for member in members:
            add_investment(member, "1")

        distribution = await distributions.createDistribution(Decimal("1000.00"), MARCH)
        shares = shares_of(session, distribution)

        assert sorted(s.finalAmount for s in shares) == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
        # Largest remainder tie goes to the first line
        assert shares[0].finalAmount == Decimal("333.34")
        assert distribution.roundingRemainder == Decimal("0")
        assert distribution.totalCalculated == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_community_voting_bonus(self, session, distributions, make_participant):
        voter = await make_participant()
        silent = await make_participant()
        project = CommunityProject(projectName="Solar farm", status="active")
        closed = CommunityProject(projectName="Old mill", status="closed")
        session.add_all([project, closed])
        session.flush()
        session.add_all([
            ProjectContribution(projectID=project.projectID, participantID=voter.participantID, amount=Decimal("100")),
            ProjectContribution(projectID=project.projectID, participantID=silent.participantID, amount=Decimal("100")),
            ProjectContribution(projectID=closed.projectID, participantID=silent.participantID, amount=Decimal("500")),
            ProjectVote(projectID=project.projectID, participantID=voter.participantID, voteType="approve"),
            ProjectVote(projectID=closed.projectID, participantID=silent.participantID, voteType="approve"),
        ])
        session.commit()

        distribution = await distributions.createDistribution(Decimal("1000"), MARCH, Decimal("20"))
        shares = shares_of(session, distribution)

        assert len(shares) == 2
        voterShare = next(s for s in shares if s.participantID == voter.participantID)
        silentShare = next(s for s in shares if s.participantID == silent.participantID)

        assert voterShare.source == "community"
        assert voterShare.votingBonusAmount > 0
        # A vote on a closed project earns nothing on an active one
        assert silentShare.votingBonusAmount == 0
        assert voterShare.finalAmount > silentShare.finalAmount
        assert total_final(shares) == Decimal("200")
        for share in shares:
            assert share.baseAmount + share.tierBonusAmount + share.votingBonusAmount == share.finalAmount

        # Investment pool has no recipients
        assert distribution.roundingRemainder == Decimal("800")

    @pytest.mark.asyncio
    async def test_investments_marked(self, session, distributions, make_participant, add_investment):
        member = await make_participant()
        included = add_investment(member, "500", investmentDate=date(2024, 3, 31))
        later = add_investment(member, "500", investmentDate=date(2024, 4, 1))
        withdrawn = add_investment(member, "500", status="withdrawn")

        await distributions.createDistribution(Decimal("100"), MARCH)

        flags = {
            i.investmentID: i.participatedInDistribution
            for i in session.query(Investment).all()
        }
        assert flags[included.investmentID] is True
        assert flags[later.investmentID] is False
        assert flags[withdrawn.investmentID] is False

    @pytest.mark.asyncio
    async def test_period_distributed_once(self, session, distributions, make_participant, add_investment):
        member = await make_participant()
        add_investment(member, "1000")
        await distributions.createDistribution(Decimal("100"), MARCH)

        with pytest.raises(AlreadyProcessedError):
            await distributions.createDistribution(Decimal("100"), MARCH)

        assert session.query(ProfitDistribution).count() == 1
        assert session.query(ProfitShare).count() == 1

        quarter = DistributionPeriod("quarterly", date(2024, 1, 1), date(2024, 3, 31))
        await distributions.createDistribution(Decimal("100"), quarter)
        assert session.query(ProfitDistribution).count() == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pool, period, pct", [
        (Decimal("100"), DistributionPeriod("weekly", date(2024, 3, 1), date(2024, 3, 7)), Decimal("0")),
        (Decimal("100"), DistributionPeriod("monthly", date(2024, 3, 31), date(2024, 3, 1)), Decimal("0")),
        (Decimal("0"), MARCH, Decimal("0")),
        (Decimal("100"), MARCH, Decimal("101")),
        (Decimal("100"), MARCH, Decimal("-1")),
    ])
    async def test_invalid_period_persists_nothing(self, session, distributions, pool, period, pct):
        with pytest.raises(InvalidPeriodError):
            await distributions.createDistribution(pool, period, pct)

        assert session.query(ProfitDistribution).count() == 0


class TestProcessDistribution:
    """Payouts."""

    async def _approved(self, distributions, make_participant, add_investment, count=3):
        members = [await make_participant() for _ in range(count)]
        for member in members:
            add_investment(member, "1000")
        distribution = await distributions.createDistribution(Decimal("300"), MARCH)
        await distributions.approve(distribution.distributionID)
        return distribution, members

    @pytest.mark.asyncio
    async def test_requires_approval(self, distributions, executor, make_participant, add_investment):
        member = await make_participant()
        add_investment(member, "1000")
        distribution = await distributions.createDistribution(Decimal("300"), MARCH)

        with pytest.raises(InvalidStateError):
            await distributions.processDistribution(distribution.distributionID, executor)

        await distributions.approve(distribution.distributionID)
        with pytest.raises(InvalidStateError):
            await distributions.approve(distribution.distributionID)

    @pytest.mark.asyncio
    async def test_all_paid(self, session, distributions, executor, make_participant, add_investment):
        distribution, members = await self._approved(distributions, make_participant, add_investment)

        result = await distributions.processDistribution(distribution.distributionID, executor)

        assert result.paid == 3
        assert result.totalAmount == Decimal("300")
        session.refresh(distribution)
        assert distribution.status == "paid"
        assert distribution.totalDistributed == Decimal("300")
        session.refresh(members[0])
        assert members[0].balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_partial_failure(self, session, registry, distributions, make_participant, add_investment):
        distribution, members = await self._approved(distributions, make_participant, add_investment)
        await registry.setBlocked(members[0].participantID, True)
        executor = FakePaymentExecutor(decline=[members[1].participantID])

        result = await distributions.processDistribution(distribution.distributionID, executor)

        assert result.paid == 1
        assert result.failed == 2
        assert {f["reason"] for f in result.failures} == {"Participant is blocked", "Insufficient treasury funds"}
        session.refresh(distribution)
        assert distribution.status == "partially_failed"
        assert distribution.totalDistributed == Decimal("100")

    @pytest.mark.asyncio
    async def test_cancel_and_resume(self, session, distributions, make_participant, add_investment):
        distribution, members = await self._approved(distributions, make_participant, add_investment)
        executor = FakePaymentExecutor()

        first = await distributions.processDistribution(
            distribution.distributionID, executor, shouldStop=lambda: len(executor.calls) >= 1
        )
        assert first.aborted is True
        assert first.paid == 1
        session.refresh(distribution)
        assert distribution.status == "approved"
        assert distribution.totalDistributed == Decimal("100")

        second = await distributions.processDistribution(distribution.distributionID, executor)
        assert second.paid == 2
        # Already paid share is not sent again
        assert len(executor.calls) == 3
        assert len({call[1] for call in executor.calls}) == 3
        session.refresh(distribution)
        assert distribution.status == "paid"
        assert distribution.totalDistributed == Decimal("300")

    @pytest.mark.asyncio
    async def test_reconcile_and_history(self, session, distributions, executor, make_participant, add_investment):
        distribution, members = await self._approved(distributions, make_participant, add_investment)
        await distributions.processDistribution(distribution.distributionID, executor)

        distribution.totalDistributed = Decimal("1")
        session.commit()

        report = await distributions.reconcile(distribution.distributionID)
        assert report["consistent"] is False
        assert report["after"]["totalDistributed"] == Decimal("300")

        history = await distributions.getParticipantHistory(members[0].participantID)
        assert len(history) == 1
        assert history[0]["status"] == "paid"
        assert history[0]["finalAmount"] == Decimal("100")
