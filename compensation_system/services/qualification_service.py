# compensation_system/services/qualification_service.py
"""
Tier qualification service - monthly qualification, streaks and permanent status.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func, select
import logging

from models import Participant, TierAssignment, TierQualificationRecord
from compensation_system.config.tiers import TierId, getCatalog
from compensation_system.errors import InvalidStateError
from compensation_system.events.event_bus import eventBus, CompensationEvents
from compensation_system.services.participant_service import ParticipantRegistry
from compensation_system.services.volume_service import ActivityAggregator, VolumeActivityAggregator
from compensation_system.utils.periods import previousMonth, nextMonthStart, monthRange, parseMonth
from compensation_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class QualificationService:
    """Service for tracking tier qualification month by month."""

    def __init__(self, session: Session, aggregator: Optional[ActivityAggregator] = None):
        self.session = session
        self.registry = ParticipantRegistry(session)
        self.aggregator = aggregator or VolumeActivityAggregator(session)

    async def evaluate(self, participantID: int, month: str) -> TierQualificationRecord:
        """
        Evaluate one participant for `month` against the tier held at month end.
        Re-running a month updates the same record.
        """
        parseMonth(month)
        self.registry.get(participantID)

        assignment = self.registry.getTierAt(participantID, nextMonthStart(month), inclusive=False)
        if not assignment:
            raise InvalidStateError(f"Participant {participantID} holds no tier in {month}")

        tier = getCatalog(assignment.catalogVersion).get(assignment.tierId)
        snapshot = await self.aggregator.getSnapshot(participantID, month)

        previous = self._getRecord(participantID, tier.tierId, previousMonth(month))
        # Permanent status survives months without a record
        earlierPermanent = self._getEarlierPermanent(participantID, tier.tierId, month)
        record = self._getRecord(participantID, tier.tierId, month)
        wasPermanent = bool(record and record.permanentStatus)

        if not record:
            record = TierQualificationRecord(
                participantID=participantID,
                tierId=int(tier.tierId),
                month=month
            )
            self.session.add(record)

        teamVolume = Decimal(str(snapshot.teamVolume))
        qualifies = (
                snapshot.activeReferrals >= tier.requiredActiveReferrals
                and teamVolume >= tier.requiredTeamVolume
        )

        if qualifies:
            streak = (previous.consecutiveMonths if previous else 0) + 1
        else:
            streak = 0

        previousPermanent = earlierPermanent is not None
        permanent = previousPermanent or wasPermanent or streak >= tier.consecutiveMonthsRequired

        record.teamVolume = teamVolume
        record.activeReferrals = snapshot.activeReferrals
        record.requiredTeamVolume = tier.requiredTeamVolume
        record.requiredActiveReferrals = tier.requiredActiveReferrals
        record.consecutiveMonthsRequired = tier.consecutiveMonthsRequired
        record.qualifies = qualifies
        record.consecutiveMonths = streak
        record.permanentStatus = permanent

        newlyPermanent = permanent and not record.permanentAchievedAt
        if newlyPermanent:
            if earlierPermanent is not None and earlierPermanent.permanentAchievedAt:
                record.permanentAchievedAt = earlierPermanent.permanentAchievedAt
            else:
                record.permanentAchievedAt = timeMachine.now

        self.session.commit()

        logger.info(
            f"Participant {participantID} {tier.name} {month}: qualifies={qualifies}, "
            f"streak={streak}/{tier.consecutiveMonthsRequired}, permanent={permanent}"
        )

        await eventBus.emit(CompensationEvents.QUALIFICATION_EVALUATED, {
            "participantID": participantID,
            "tierId": int(tier.tierId),
            "month": month,
            "qualifies": qualifies,
            "consecutiveMonths": streak
        })

        if permanent and not previousPermanent and not wasPermanent:
            logger.info(f"Participant {participantID} achieved permanent {tier.name} status in {month}")
            await eventBus.emit(CompensationEvents.PERMANENT_STATUS_ACHIEVED, {
                "participantID": participantID,
                "tierId": int(tier.tierId),
                "month": month
            })

        return record

    def _getRecord(self, participantID: int, tierId, month: str) -> Optional[TierQualificationRecord]:
        return self.session.query(TierQualificationRecord).filter_by(
            participantID=participantID,
            tierId=int(tierId),
            month=month
        ).first()

    def _getEarlierPermanent(self, participantID: int, tierId, month: str) -> Optional[TierQualificationRecord]:
        return self.session.query(TierQualificationRecord).filter(
            TierQualificationRecord.participantID == participantID,
            TierQualificationRecord.tierId == int(tierId),
            TierQualificationRecord.month < month,
            TierQualificationRecord.permanentStatus == True
        ).order_by(TierQualificationRecord.month.desc()).first()

    async def processMonth(self, month: str) -> Dict:
        """Evaluate every non-blocked participant holding a tier in `month`."""
        results = {
            "month": month,
            "evaluated": 0,
            "qualified": 0,
            "permanent": 0,
            "errors": []
        }

        cutoff = nextMonthStart(month)
        participantIDs = [
            row[0] for row in self.session.query(Participant.participantID).filter(
                Participant.status != "blocked",
                Participant.participantID.in_(
                    select(TierAssignment.participantID).where(
                        TierAssignment.effectiveFrom < cutoff
                    )
                )
            ).order_by(Participant.participantID).all()
        ]

        for participantID in participantIDs:
            try:
                record = await self.evaluate(participantID, month)
                results["evaluated"] += 1
                if record.qualifies:
                    results["qualified"] += 1
                if record.permanentStatus:
                    results["permanent"] += 1
            except Exception as e:
                self.session.rollback()
                logger.error(f"Error evaluating participant {participantID} for {month}: {e}")
                results["errors"].append({"participantID": participantID, "reason": str(e)})

        logger.info(
            f"Qualification for {month} complete: evaluated={results['evaluated']}, "
            f"qualified={results['qualified']}, errors={len(results['errors'])}"
        )

        return results

    async def backfill(self, months: int, endMonth: Optional[str] = None) -> List[Dict]:
        """Re-run the last `months` months oldest first so streaks build in order."""
        endMonth = endMonth or timeMachine.currentMonth
        return [await self.processMonth(month) for month in monthRange(endMonth, months)]

    async def getHistory(self, participantID: int, months: int = 12) -> List[Dict]:
        records = self.session.query(TierQualificationRecord).filter_by(
            participantID=participantID
        ).order_by(
            TierQualificationRecord.month.desc(),
            TierQualificationRecord.tierId.desc()
        ).limit(months).all()

        return [
            {
                "month": record.month,
                "tierId": record.tierId,
                "tier": TierId(record.tierId).name,
                "teamVolume": record.teamVolume,
                "activeReferrals": record.activeReferrals,
                "qualifies": record.qualifies,
                "consecutiveMonths": record.consecutiveMonths,
                "permanentStatus": record.permanentStatus
            }
            for record in records
        ]

    async def getTierStats(self, tierId, month: str) -> Dict:
        base = self.session.query(TierQualificationRecord).filter_by(
            tierId=int(tierId),
            month=month
        )

        total = base.count()
        qualified = base.filter(TierQualificationRecord.qualifies == True).count()
        permanent = base.filter(TierQualificationRecord.permanentStatus == True).count()
        averageVolume = self.session.query(func.avg(TierQualificationRecord.teamVolume)).filter_by(
            tierId=int(tierId),
            month=month
        ).scalar()

        return {
            "tierId": int(tierId),
            "month": month,
            "participants": total,
            "qualified": qualified,
            "permanent": permanent,
            "qualificationRate": round(qualified * 100 / total, 2) if total else 0,
            "averageTeamVolume": Decimal(str(averageVolume)) if averageVolume is not None else Decimal("0")
        }

    async def getParticipantsAtRisk(self, tierId, month: str, graceMonths: int = 2) -> List[Dict]:
        """
        Non-permanent participants who missed qualification in `month` and
        have missed no more than `graceMonths` months in a row.
        """
        records = self.session.query(TierQualificationRecord).filter_by(
            tierId=int(tierId),
            month=month,
            qualifies=False,
            permanentStatus=False
        ).order_by(TierQualificationRecord.participantID).all()

        atRisk = []
        for record in records:
            missed = 0
            checkMonth = month
            while missed <= graceMonths:
                current = self._getRecord(record.participantID, tierId, checkMonth)
                if not current or current.qualifies:
                    break
                missed += 1
                checkMonth = previousMonth(checkMonth)

            if missed <= graceMonths:
                atRisk.append({
                    "participantID": record.participantID,
                    "missedMonths": missed,
                    "teamVolume": record.teamVolume,
                    "requiredTeamVolume": record.requiredTeamVolume,
                    "activeReferrals": record.activeReferrals,
                    "requiredActiveReferrals": record.requiredActiveReferrals
                })

        return atRisk
