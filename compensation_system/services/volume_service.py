# compensation_system/services/volume_service.py
"""
Activity aggregation for tier qualification - team volume and active referrals.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from sqlalchemy.orm import Session
from sqlalchemy import func, or_, and_, exists
import logging

from models import Participant, Investment
from compensation_system.errors import ParticipantNotFound
from compensation_system.utils.periods import parseMonth, addMonths, nextMonthStart

logger = logging.getLogger(__name__)


@dataclass
class ActivitySnapshot:
    teamVolume: Decimal
    activeReferrals: int


class ActivityAggregator(Protocol):
    async def getSnapshot(self, participantID: int, month: str) -> ActivitySnapshot:
        ...


class VolumeActivityAggregator:
    """Computes monthly activity from investments in the participant's network."""

    def __init__(self, session: Session):
        self.session = session

    async def getSnapshot(self, participantID: int, month: str) -> ActivitySnapshot:
        participant = self.session.query(Participant).filter_by(
            participantID=participantID
        ).first()
        if not participant:
            raise ParticipantNotFound(participantID)

        snapshot = ActivitySnapshot(
            teamVolume=await self.getTeamVolume(participant, month),
            activeReferrals=await self.countActiveReferrals(participant, month)
        )

        logger.debug(
            f"Activity for participant {participantID} in {month}: "
            f"volume={snapshot.teamVolume}, activeReferrals={snapshot.activeReferrals}"
        )
        return snapshot

    async def getTeamVolume(self, participant: Participant, month: str) -> Decimal:
        """Investments made during the month by the participant and the whole downline."""
        start = parseMonth(month)
        end = addMonths(start, 1)

        total = self.session.query(func.sum(Investment.amount)).join(
            Participant, Investment.participantID == Participant.participantID
        ).filter(
            or_(
                Participant.participantID == participant.participantID,
                Participant.path.like(f"{participant.childPath}%")
            ),
            Investment.investmentDate >= start,
            Investment.investmentDate < end,
            Investment.status != "cancelled"
        ).scalar()

        return Decimal(str(total)) if total is not None else Decimal("0")

    async def countActiveReferrals(self, participant: Participant, month: str) -> int:
        """
        Direct referrals enrolled by the end of the month that are not blocked
        and hold a subscription or an active investment made by the month end.
        Subscription and block flags carry no history and are read as they are now.
        """
        cutoff = nextMonthStart(month)
        hasActiveInvestment = exists().where(and_(
            Investment.participantID == Participant.participantID,
            Investment.status == "active",
            Investment.investmentDate < cutoff.date()
        ))

        count = self.session.query(func.count(Participant.participantID)).filter(
            Participant.uplineID == participant.participantID,
            Participant.enrolledAt < cutoff,
            Participant.status == "active",
            or_(Participant.hasActiveSubscription == True, hasActiveInvestment)
        ).scalar()

        return count or 0
