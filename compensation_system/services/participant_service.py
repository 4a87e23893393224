# compensation_system/services/participant_service.py
"""
Participant registry - enrollment, tier assignments and network lookups.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

from models import Participant, TierAssignment, Investment
from compensation_system.config.tiers import TierId, TierDefinition, getCatalog
from compensation_system.errors import CompensationError, InvalidStateError, ParticipantNotFound
from compensation_system.events.event_bus import eventBus, CompensationEvents
from compensation_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """Service for participant records and their tier history."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, participantID: int) -> Participant:
        participant = self.session.query(Participant).filter_by(
            participantID=participantID
        ).first()

        if not participant:
            raise ParticipantNotFound(participantID)

        return participant

    async def enroll(
            self,
            uplineID: Optional[int] = None,
            name: Optional[str] = None,
            email: Optional[str] = None,
            tierId: TierId = TierId.ASSOCIATE,
            effectiveFrom: Optional[datetime] = None,
            hasActiveSubscription: bool = False
    ) -> Participant:
        """
        Create a participant under `uplineID`.
        Depth and path are derived from the upline once and never change.
        """
        enrolledAt = effectiveFrom or timeMachine.now
        participant = Participant(
            name=name,
            email=email,
            enrolledAt=enrolledAt,
            hasActiveSubscription=hasActiveSubscription
        )

        if uplineID is not None:
            upline = self.get(uplineID)
            participant.uplineID = upline.participantID
            participant.depth = upline.depth + 1
            participant.path = upline.childPath
        else:
            participant.depth = 0
            participant.path = "/"

        self.session.add(participant)
        self.session.flush()

        self._addAssignment(participant.participantID, tierId, enrolledAt, "enrollment")
        self.session.commit()

        logger.info(
            f"Participant {participant.participantID} enrolled under {uplineID} "
            f"at depth {participant.depth} with tier {TierId(tierId).name}"
        )

        await eventBus.emit(CompensationEvents.PARTICIPANT_ENROLLED, {
            "participantID": participant.participantID,
            "uplineID": uplineID,
            "tierId": int(tierId)
        })

        return participant

    async def assignTier(
            self,
            participantID: int,
            tierId: TierId,
            effectiveFrom: Optional[datetime] = None,
            reason: str = "assigned",
            catalogVersion: Optional[int] = None
    ) -> TierAssignment:
        """Append a tier assignment. Earlier assignments are kept."""
        self.get(participantID)

        assignment = self._addAssignment(participantID, tierId, effectiveFrom, reason, catalogVersion)
        self.session.commit()

        logger.info(
            f"Participant {participantID} assigned tier {TierId(tierId).name} "
            f"from {assignment.effectiveFrom} ({reason})"
        )

        await eventBus.emit(CompensationEvents.TIER_ASSIGNED, {
            "participantID": participantID,
            "tierId": int(tierId),
            "effectiveFrom": assignment.effectiveFrom.isoformat(),
            "reason": reason
        })

        return assignment

    def _addAssignment(self, participantID, tierId, effectiveFrom, reason, catalogVersion=None) -> TierAssignment:
        catalog = getCatalog(catalogVersion)
        catalog.get(tierId)

        assignment = TierAssignment(
            participantID=participantID,
            tierId=int(tierId),
            catalogVersion=catalog.version,
            effectiveFrom=effectiveFrom or timeMachine.now,
            reason=reason
        )
        self.session.add(assignment)
        self.session.flush()
        return assignment

    def getTierAt(self, participantID: int, at: datetime, inclusive: bool = True) -> Optional[TierAssignment]:
        """
        Latest assignment effective at `at`.
        With inclusive=False assignments starting exactly at `at` are ignored.
        """
        query = self.session.query(TierAssignment).filter(
            TierAssignment.participantID == participantID
        )
        if inclusive:
            query = query.filter(TierAssignment.effectiveFrom <= at)
        else:
            query = query.filter(TierAssignment.effectiveFrom < at)

        return query.order_by(
            TierAssignment.effectiveFrom.desc(),
            TierAssignment.assignmentID.desc()
        ).first()

    def getTierDefinitionAt(self, participantID: int, at: datetime, inclusive: bool = True) -> Optional[TierDefinition]:
        assignment = self.getTierAt(participantID, at, inclusive)
        if not assignment:
            return None
        return getCatalog(assignment.catalogVersion).get(assignment.tierId)

    def getAncestors(self, participant: Participant, maxLevels: Optional[int] = None) -> List[Participant]:
        """Uplines nearest first, read from the materialized path."""
        ids = participant.ancestorIDs
        if maxLevels is not None:
            ids = ids[:maxLevels]
        if not ids:
            return []

        byId = {
            p.participantID: p
            for p in self.session.query(Participant).filter(Participant.participantID.in_(ids)).all()
        }
        return [byId[pid] for pid in ids if pid in byId]

    def getDescendantIDs(self, participant: Participant) -> List[int]:
        rows = self.session.query(Participant.participantID).filter(
            Participant.path.like(f"{participant.childPath}%")
        ).order_by(Participant.participantID).all()
        return [row[0] for row in rows]

    def getDirectReferrals(self, participantID: int) -> List[Participant]:
        return self.session.query(Participant).filter_by(
            uplineID=participantID
        ).order_by(Participant.participantID).all()

    def getActiveInvestments(self, participantID: Optional[int] = None) -> List[Investment]:
        query = self.session.query(Investment).filter(Investment.status == "active")
        if participantID is not None:
            query = query.filter(Investment.participantID == participantID)
        return query.order_by(Investment.investmentID).all()

    async def recordInvestment(
            self,
            participantID: int,
            amount,
            investmentDate: Optional[date] = None,
            currentValue=None,
            lockInEndDate: Optional[date] = None
    ) -> Investment:
        """Record an investment at the tier held now and add it to totalInvested."""
        participant = self.get(participantID)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise CompensationError(f"Investment amount must be positive, got {amount}")

        assignment = self.getTierAt(participantID, timeMachine.now)
        if not assignment:
            raise InvalidStateError(f"Participant {participantID} holds no tier")

        investment = Investment(
            participantID=participantID,
            amount=amount,
            currentValue=Decimal(str(currentValue)) if currentValue is not None else None,
            tierId=assignment.tierId,
            investmentDate=investmentDate or timeMachine.today,
            lockInEndDate=lockInEndDate,
            status="active"
        )
        self.session.add(investment)
        participant.totalInvested = (participant.totalInvested or Decimal("0")) + amount
        self.session.commit()

        logger.info(
            f"Participant {participantID} invested {amount} on {investment.investmentDate} "
            f"(tier {TierId(assignment.tierId).name}), total {participant.totalInvested}"
        )

        await eventBus.emit(CompensationEvents.INVESTMENT_RECORDED, {
            "participantID": participantID,
            "investmentID": investment.investmentID,
            "amount": str(amount)
        })

        return investment

    async def setSubscription(self, participantID: int, active: bool) -> Participant:
        participant = self.get(participantID)
        participant.hasActiveSubscription = active
        self.session.commit()
        logger.info(f"Participant {participantID} subscription active={active}")
        return participant

    async def setBlocked(self, participantID: int, blocked: bool) -> Participant:
        participant = self.get(participantID)
        participant.status = "blocked" if blocked else "active"
        self.session.commit()
        logger.info(f"Participant {participantID} status -> {participant.status}")
        return participant
