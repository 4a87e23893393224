# compensation_system/services/distribution_service.py
"""
Profit distribution service - periodic pool split over investors and
community project contributors.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
import logging

from models import (
    ProfitDistribution, ProfitShare, Investment, CommunityProject, ProjectContribution, ProjectVote
)
from config import PERIOD_TYPES, VOTING_BONUS_RATE
from compensation_system.config.tiers import getCatalog
from compensation_system.errors import (
    AlreadyProcessedError, DistributionNotFound, InvalidPeriodError, InvalidStateError, PaymentFailedError
)
from compensation_system.events.event_bus import eventBus, CompensationEvents
from compensation_system.services.participant_service import ParticipantRegistry
from compensation_system.services.payment import PaymentExecutor, executePayment
from compensation_system.utils.allocation import allocateByWeight, toMoney
from compensation_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass
class DistributionPeriod:
    periodType: str  # monthly, quarterly, annual
    start: date
    end: date


@dataclass
class DistributionResult:
    paid: int = 0
    failed: int = 0
    totalAmount: Decimal = Decimal("0")
    failures: List[Dict] = field(default_factory=list)
    aborted: bool = False


@dataclass
class _Line:
    participantID: int
    source: str
    weight: Decimal
    multiplier: Decimal
    tierId: Optional[int] = None
    investmentID: Optional[int] = None
    projectID: Optional[int] = None
    voted: bool = False


class DistributionService:
    """Service for calculating, approving and paying profit distributions."""

    def __init__(self, session: Session, votingBonusRate: Decimal = VOTING_BONUS_RATE):
        self.session = session
        self.registry = ParticipantRegistry(session)
        self.votingBonusRate = votingBonusRate

    def _validate(self, pool: Decimal, period: DistributionPeriod, communityAllocationPct: Decimal):
        if period.periodType not in PERIOD_TYPES:
            raise InvalidPeriodError(f"Unknown period type '{period.periodType}'")
        if period.start is None or period.end is None or period.start > period.end:
            raise InvalidPeriodError(f"Period start {period.start} is after end {period.end}")
        if pool <= 0:
            raise InvalidPeriodError(f"Pool must be positive, got {pool}")
        if communityAllocationPct < 0 or communityAllocationPct > 100:
            raise InvalidPeriodError(f"Community allocation {communityAllocationPct}% outside 0..100")

    async def createDistribution(
            self,
            pool,
            period: DistributionPeriod,
            communityAllocationPct=Decimal("0")
    ) -> ProfitDistribution:
        """
        Calculate a distribution and persist it with one share per line.
        Nothing is persisted when the period or pool is invalid.
        """
        pool = Decimal(str(pool))
        communityAllocationPct = Decimal(str(communityAllocationPct))
        self._validate(pool, period, communityAllocationPct)

        existing = self._findForPeriod(period)
        if existing:
            logger.warning(
                f"Distribution for {period.periodType} {period.start}..{period.end} "
                f"already exists (id {existing.distributionID})"
            )
            raise AlreadyProcessedError(
                f"Period {period.periodType} {period.start}..{period.end} already has distribution "
                f"{existing.distributionID}"
            )

        catalog = getCatalog()

        communityPool = toMoney(pool * communityAllocationPct / 100)
        investmentPool = pool - communityPool

        investmentLines = self._investmentLines(period, catalog)
        communityLines = self._communityLines(period, catalog)

        # Multipliers are folded into the weights so that multiplied shares
        # add up to the sub-pool
        investmentAmounts, investmentRemainder = allocateByWeight(
            investmentPool, [line.weight * line.multiplier for line in investmentLines]
        )
        communityAmounts, communityRemainder = allocateByWeight(
            communityPool, [line.weight * self._communityFactor(line) for line in communityLines]
        )

        distribution = ProfitDistribution(
            periodType=period.periodType,
            periodStart=period.start,
            periodEnd=period.end,
            totalPool=pool,
            communityAllocationPct=communityAllocationPct,
            communityPool=communityPool,
            investmentPool=investmentPool,
            roundingRemainder=investmentRemainder + communityRemainder,
            status="calculated",
            notes=self._buildNotes(catalog, investmentPool, investmentLines, communityPool, communityLines)
        )
        try:
            with self.session.begin_nested():
                self.session.add(distribution)
                self.session.flush()
        except IntegrityError:
            logger.warning(f"Distribution for {period.periodType} {period.start}..{period.end} created concurrently")
            raise AlreadyProcessedError(
                f"Period {period.periodType} {period.start}..{period.end} already has a distribution"
            )

        totalCalculated = ZERO
        for line, amount in zip(investmentLines, investmentAmounts):
            self.session.add(self._buildShare(distribution, line, amount))
            totalCalculated += amount
        for line, amount in zip(communityLines, communityAmounts):
            self.session.add(self._buildShare(distribution, line, amount))
            totalCalculated += amount

        distribution.totalCalculated = totalCalculated

        investmentIDs = [line.investmentID for line in investmentLines]
        if investmentIDs:
            self.session.query(Investment).filter(
                Investment.investmentID.in_(investmentIDs)
            ).update({Investment.participatedInDistribution: True}, synchronize_session=False)

        self.session.commit()
        self.session.refresh(distribution)

        logger.info(
            f"Distribution {distribution.distributionID} calculated for {period.periodType} "
            f"{period.start}..{period.end}: pool={pool}, investment lines={len(investmentLines)}, "
            f"community lines={len(communityLines)}, remainder={distribution.roundingRemainder}"
        )

        await eventBus.emit(CompensationEvents.DISTRIBUTION_CREATED, {
            "distributionID": distribution.distributionID,
            "totalPool": str(pool),
            "shares": len(investmentLines) + len(communityLines)
        })

        return distribution

    def _findForPeriod(self, period: DistributionPeriod) -> Optional[ProfitDistribution]:
        return self.session.query(ProfitDistribution).filter_by(
            periodType=period.periodType,
            periodStart=period.start,
            periodEnd=period.end
        ).first()

    def _communityFactor(self, line: _Line) -> Decimal:
        return line.multiplier + (self.votingBonusRate if line.voted else ZERO)

    def _investmentLines(self, period: DistributionPeriod, catalog) -> List[_Line]:
        investments = self.session.query(Investment).filter(
            Investment.status == "active",
            Investment.investmentDate <= period.end
        ).order_by(Investment.investmentID).all()

        lines = []
        for investment in investments:
            multiplier = catalog.multiplier(investment.tierId) if investment.tierId in catalog else ONE
            lines.append(_Line(
                participantID=investment.participantID,
                source="investment",
                weight=Decimal(str(investment.amount)),
                multiplier=multiplier,
                tierId=investment.tierId,
                investmentID=investment.investmentID
            ))
        return lines

    def _communityLines(self, period: DistributionPeriod, catalog) -> List[_Line]:
        rows = self.session.query(
            ProjectContribution.projectID,
            ProjectContribution.participantID,
            func.sum(ProjectContribution.amount)
        ).join(
            CommunityProject, ProjectContribution.projectID == CommunityProject.projectID
        ).filter(
            CommunityProject.status == "active",
            ProjectContribution.status == "confirmed"
        ).group_by(
            ProjectContribution.projectID, ProjectContribution.participantID
        ).order_by(
            ProjectContribution.projectID, ProjectContribution.participantID
        ).all()

        periodClose = datetime.combine(period.end + timedelta(days=1), time.min)
        projectIDs = {projectID for projectID, _, _ in rows}
        voters = {
            (vote.projectID, vote.participantID)
            for vote in self.session.query(ProjectVote).filter(ProjectVote.projectID.in_(projectIDs)).all()
        } if projectIDs else set()

        lines = []
        for projectID, participantID, amount in rows:
            if amount is None or amount <= 0:
                continue
            tier = self.registry.getTierDefinitionAt(participantID, periodClose, inclusive=False)
            tierId = int(tier.tierId) if tier else None
            multiplier = catalog.multiplier(tierId) if tierId in catalog else ONE
            lines.append(_Line(
                participantID=participantID,
                source="community",
                weight=Decimal(str(amount)),
                multiplier=multiplier,
                tierId=tierId,
                projectID=projectID,
                voted=(projectID, participantID) in voters
            ))
        return lines

    def _buildShare(self, distribution: ProfitDistribution, line: _Line, amount: Decimal) -> ProfitShare:
        votingBonus = ZERO
        if line.source == "community":
            baseAmount = toMoney(amount / self._communityFactor(line))
            if line.voted:
                votingBonus = toMoney(baseAmount * self.votingBonusRate)
        else:
            baseAmount = toMoney(amount / line.multiplier)

        return ProfitShare(
            distributionID=distribution.distributionID,
            participantID=line.participantID,
            source=line.source,
            investmentID=line.investmentID,
            projectID=line.projectID,
            tierId=line.tierId,
            weight=line.weight,
            multiplier=line.multiplier,
            baseAmount=baseAmount,
            tierBonusAmount=amount - baseAmount - votingBonus,
            votingBonusAmount=votingBonus,
            finalAmount=amount,
            status="calculated"
        )

    def _buildNotes(self, catalog, investmentPool, investmentLines, communityPool, communityLines) -> Dict:
        tierTotals: Dict[str, Decimal] = {}
        for line in investmentLines:
            key = str(line.tierId)
            tierTotals[key] = tierTotals.get(key, ZERO) + line.weight

        weighted = sum((line.weight * line.multiplier for line in investmentLines), ZERO)
        factor = investmentPool / weighted if weighted > 0 else ZERO

        communityWeighted = sum((line.weight * self._communityFactor(line) for line in communityLines), ZERO)
        communityFactor = communityPool / communityWeighted if communityWeighted > 0 else ZERO

        return {
            "catalogVersion": catalog.version,
            "tierInvestmentTotals": {key: str(total) for key, total in tierTotals.items()},
            "tierPools": {key: str(toMoney(total * factor)) for key, total in tierTotals.items()},
            "normalisationFactor": str(factor),
            "communityNormalisationFactor": str(communityFactor),
            "votingBonusRate": str(self.votingBonusRate)
        }

    def _getDistribution(self, distributionID: int) -> ProfitDistribution:
        distribution = self.session.query(ProfitDistribution).filter_by(
            distributionID=distributionID
        ).first()
        if not distribution:
            raise DistributionNotFound(distributionID)
        return distribution

    async def approve(self, distributionID: int) -> ProfitDistribution:
        distribution = self._getDistribution(distributionID)

        if distribution.status != "calculated":
            raise InvalidStateError(
                f"Distribution {distributionID} is {distribution.status}, only calculated can be approved"
            )

        distribution.status = "approved"
        distribution.approvedAt = timeMachine.now
        self.session.commit()

        logger.info(f"Distribution {distributionID} approved")

        await eventBus.emit(CompensationEvents.DISTRIBUTION_APPROVED, {"distributionID": distributionID})
        return distribution

    async def processDistribution(
            self,
            distributionID: int,
            paymentExecutor: PaymentExecutor,
            shouldStop: Optional[Callable[[], bool]] = None
    ) -> DistributionResult:
        """
        Pay calculated shares one by one. Paid and failed shares are skipped
        on re-runs; `shouldStop` is checked before each share.
        """
        distribution = self._getDistribution(distributionID)

        if distribution.status not in ("approved", "partially_failed"):
            raise InvalidStateError(
                f"Distribution {distributionID} is {distribution.status}, approve it before processing"
            )

        result = DistributionResult()
        shares = self.session.query(ProfitShare).filter_by(
            distributionID=distributionID,
            status="calculated"
        ).order_by(ProfitShare.shareID).all()

        for share in shares:
            if shouldStop and shouldStop():
                result.aborted = True
                logger.warning(f"Distribution {distributionID} stopped before share {share.shareID}")
                break

            with self.session.begin_nested():
                paid = await self._payShare(share, paymentExecutor)
            self.session.commit()

            if paid:
                result.paid += 1
                result.totalAmount += share.finalAmount
            else:
                result.failed += 1
                result.failures.append({
                    "id": share.shareID,
                    "participantID": share.participantID,
                    "reason": share.failureReason
                })

        self._recomputeTotals(distribution)

        remaining = self.session.query(func.count(ProfitShare.shareID)).filter_by(
            distributionID=distributionID,
            status="calculated"
        ).scalar()

        if not remaining:
            failedCount = self.session.query(func.count(ProfitShare.shareID)).filter_by(
                distributionID=distributionID,
                status="failed"
            ).scalar()
            distribution.status = "partially_failed" if failedCount else "paid"
            distribution.processedAt = timeMachine.now

        self.session.commit()

        logger.info(
            f"Distribution {distributionID} processed: paid={result.paid}, failed={result.failed}, "
            f"amount={result.totalAmount}, aborted={result.aborted}, status={distribution.status}"
        )

        await eventBus.emit(CompensationEvents.DISTRIBUTION_PROCESSED, {
            "distributionID": distributionID,
            "paid": result.paid,
            "failed": result.failed,
            "status": distribution.status
        })

        return result

    async def _payShare(self, share: ProfitShare, paymentExecutor: PaymentExecutor) -> bool:
        participant = share.participant

        if participant.isBlocked:
            share.status = "failed"
            share.failureReason = "Participant is blocked"
            logger.warning(f"Share {share.shareID} not paid: participant {participant.participantID} blocked")
            return False

        try:
            outcome = await executePayment(
                paymentExecutor, "profit_share", share.shareID, participant.participantID, share.finalAmount
            )
        except PaymentFailedError as e:
            share.status = "failed"
            share.failureReason = e.reason
            return False

        share.status = "paid"
        share.paidAt = timeMachine.now
        share.paymentReference = outcome.reference

        participant.balance = (participant.balance or ZERO) + share.finalAmount
        participant.totalEarnings = (participant.totalEarnings or ZERO) + share.finalAmount

        logger.info(f"Share {share.shareID} paid: {share.finalAmount} to participant {participant.participantID}")
        return True

    def _sumShares(self, distributionID: int, status: Optional[str] = None) -> Decimal:
        query = self.session.query(func.sum(ProfitShare.finalAmount)).filter(
            ProfitShare.distributionID == distributionID
        )
        if status is not None:
            query = query.filter(ProfitShare.status == status)
        value = query.scalar()
        return Decimal(str(value)) if value is not None else ZERO

    def _recomputeTotals(self, distribution: ProfitDistribution):
        distribution.totalDistributed = self._sumShares(distribution.distributionID, "paid")

    async def reconcile(self, distributionID: int) -> Dict:
        """Recompute calculated and distributed totals from the share rows."""
        distribution = self._getDistribution(distributionID)

        before = {
            "totalCalculated": distribution.totalCalculated,
            "totalDistributed": distribution.totalDistributed
        }

        distribution.totalCalculated = self._sumShares(distributionID)
        self._recomputeTotals(distribution)
        self.session.commit()

        after = {
            "totalCalculated": distribution.totalCalculated,
            "totalDistributed": distribution.totalDistributed
        }

        if before != after:
            logger.warning(f"Distribution {distributionID} totals corrected: {before} -> {after}")

        return {
            "distributionID": distributionID,
            "before": before,
            "after": after,
            "consistent": before == after
        }

    async def getParticipantHistory(self, participantID: int) -> List[Dict]:
        self.registry.get(participantID)

        shares = self.session.query(ProfitShare).filter_by(
            participantID=participantID
        ).order_by(ProfitShare.shareID.desc()).all()

        return [
            {
                "distributionID": share.distributionID,
                "periodType": share.distribution.periodType,
                "periodStart": share.distribution.periodStart.isoformat(),
                "periodEnd": share.distribution.periodEnd.isoformat(),
                "source": share.source,
                "baseAmount": share.baseAmount,
                "tierBonusAmount": share.tierBonusAmount,
                "votingBonusAmount": share.votingBonusAmount,
                "finalAmount": share.finalAmount,
                "status": share.status
            }
            for share in shares
        ]
