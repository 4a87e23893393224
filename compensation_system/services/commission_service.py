# compensation_system/services/commission_service.py
"""
Commission calculation service - multi-level referral commissions and payouts.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
import logging

from models import CommissionRecord, Participant
from config import MAX_COMMISSION_LEVELS
from compensation_system.config.tiers import EVENT_RATE_TABLES, RateTable, getCatalog
from compensation_system.errors import (
    AlreadyProcessedError, CompensationError, InvalidStateError, PaymentFailedError
)
from compensation_system.events.event_bus import eventBus, CompensationEvents
from compensation_system.services.participant_service import ParticipantRegistry
from compensation_system.services.payment import PaymentExecutor, executePayment
from compensation_system.utils.allocation import toMoney
from compensation_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass
class MonetaryEvent:
    payerID: int
    amount: Decimal
    eventType: str  # registration, investment, subscription, package_purchase
    eventID: str
    occurredAt: Optional[datetime] = None


@dataclass
class BatchResult:
    processed: int = 0
    paid: int = 0
    failed: int = 0
    totalPaid: Decimal = Decimal("0")
    failures: List[Dict] = field(default_factory=list)


class CommissionService:
    """Service for calculating and paying referral commissions."""

    def __init__(self, session: Session):
        self.session = session
        self.registry = ParticipantRegistry(session)

    async def distribute(self, event: MonetaryEvent) -> List[CommissionRecord]:
        """
        Create pending commissions for every eligible ancestor of the payer.
        Repeating an event returns the records created the first time.
        """
        rateTable = EVENT_RATE_TABLES.get(event.eventType)
        if rateTable is None:
            raise CompensationError(f"Unknown event type '{event.eventType}'")

        baseAmount = Decimal(str(event.amount))
        if baseAmount <= 0:
            raise CompensationError(f"Event {event.eventID} has non-positive amount {baseAmount}")

        payer = self.registry.get(event.payerID)
        occurredAt = event.occurredAt or timeMachine.now

        existing = self._getEventRecords(event.payerID, event.eventID)
        if existing:
            logger.warning(f"Event {event.eventID} of payer {event.payerID} already processed")
            return existing

        records = []
        ancestors = self.registry.getAncestors(payer, MAX_COMMISSION_LEVELS)

        # Skipped levels still use up depth
        for level, ancestor in enumerate(ancestors, start=1):
            assignment = self.registry.getTierAt(ancestor.participantID, occurredAt)
            if not assignment:
                logger.info(f"Level {level}: participant {ancestor.participantID} has no tier, skipped")
                continue

            tier = getCatalog(assignment.catalogVersion).get(assignment.tierId)
            rate = tier.rateFor(rateTable, level)
            if rate is None:
                logger.info(
                    f"Level {level}: participant {ancestor.participantID} ({tier.name}) "
                    f"not eligible for {rateTable.value} level {level}, skipped"
                )
                continue

            amount = toMoney(baseAmount * rate / 100)
            if amount <= 0:
                continue

            records.append(CommissionRecord(
                payerID=payer.participantID,
                beneficiaryID=ancestor.participantID,
                eventID=event.eventID,
                eventType=event.eventType,
                level=level,
                baseAmount=baseAmount,
                percentage=rate,
                amount=amount,
                tierId=assignment.tierId,
                catalogVersion=assignment.catalogVersion,
                status="pending"
            ))

        try:
            with self.session.begin_nested():
                self.session.add_all(records)
                self.session.flush()
        except IntegrityError:
            logger.warning(f"Event {event.eventID} of payer {event.payerID} recorded concurrently")
            return self._getEventRecords(event.payerID, event.eventID)

        self.session.commit()

        total = sum((r.amount for r in records), Decimal("0"))
        logger.info(
            f"Event {event.eventID} ({event.eventType}, {baseAmount}) of payer {payer.participantID}: "
            f"{len(records)} commissions, total {total}"
        )

        if records:
            await eventBus.emit(CompensationEvents.COMMISSIONS_CREATED, {
                "eventID": event.eventID,
                "payerID": payer.participantID,
                "commissions": [r.commissionID for r in records],
                "total": str(total)
            })

        return records

    def _getEventRecords(self, payerID: int, eventID: str) -> List[CommissionRecord]:
        return self.session.query(CommissionRecord).filter_by(
            payerID=payerID,
            eventID=eventID
        ).order_by(CommissionRecord.level).all()

    async def processPending(self, paymentExecutor: PaymentExecutor, eventID: Optional[str] = None) -> BatchResult:
        """Pay every pending commission; one failure never stops the batch."""
        query = self.session.query(CommissionRecord).filter(CommissionRecord.status == "pending")
        if eventID is not None:
            query = query.filter(CommissionRecord.eventID == eventID)

        pending = query.order_by(CommissionRecord.commissionID).all()
        result = BatchResult()

        for record in pending:
            result.processed += 1

            with self.session.begin_nested():
                paid = await self._payRecord(record, paymentExecutor)
            self.session.commit()

            if paid:
                result.paid += 1
                result.totalPaid += record.amount
            else:
                result.failed += 1
                result.failures.append({
                    "id": record.commissionID,
                    "participantID": record.beneficiaryID,
                    "reason": record.failureReason
                })

        logger.info(
            f"Commission batch complete: processed={result.processed}, "
            f"paid={result.paid}, failed={result.failed}, total={result.totalPaid}"
        )

        return result

    def _eligibilityFailure(self, record: CommissionRecord, beneficiary: Participant) -> Optional[str]:
        if beneficiary.isBlocked:
            return "Beneficiary is blocked"
        if EVENT_RATE_TABLES.get(record.eventType) == RateTable.RECURRING and not beneficiary.hasActiveSubscription:
            return "Beneficiary has no active subscription"
        return None

    async def _payRecord(self, record: CommissionRecord, paymentExecutor: PaymentExecutor) -> bool:
        beneficiary = record.beneficiary

        reason = self._eligibilityFailure(record, beneficiary)
        if reason:
            record.status = "failed"
            record.failureReason = reason
            logger.warning(f"Commission {record.commissionID} to {beneficiary.participantID} not paid: {reason}")
            await eventBus.emit(CompensationEvents.COMMISSION_FAILED, {
                "commissionID": record.commissionID,
                "reason": reason
            })
            return False

        try:
            outcome = await executePayment(
                paymentExecutor, "commission", record.commissionID,
                beneficiary.participantID, record.amount
            )
        except PaymentFailedError as e:
            record.status = "failed"
            record.failureReason = e.reason
            await eventBus.emit(CompensationEvents.COMMISSION_FAILED, {
                "commissionID": record.commissionID,
                "reason": e.reason
            })
            return False

        record.status = "paid"
        record.paidAt = timeMachine.now
        record.paymentReference = outcome.reference

        beneficiary.balance = (beneficiary.balance or Decimal("0")) + record.amount
        beneficiary.totalEarnings = (beneficiary.totalEarnings or Decimal("0")) + record.amount

        logger.info(
            f"Commission {record.commissionID} paid: {record.amount} to {beneficiary.participantID} "
            f"(level {record.level})"
        )

        await eventBus.emit(CompensationEvents.COMMISSION_PAID, {
            "commissionID": record.commissionID,
            "beneficiaryID": beneficiary.participantID,
            "amount": str(record.amount)
        })

        return True

    async def reverse(self, commissionID: int, reason: str) -> CommissionRecord:
        """
        Claw back a paid commission with a compensating negative record.
        The original record is left untouched.
        """
        original = self.session.query(CommissionRecord).filter_by(commissionID=commissionID).first()
        if not original:
            raise CompensationError(f"Commission {commissionID} not found")

        if original.reversalOfID is not None:
            raise InvalidStateError(f"Commission {commissionID} is itself a reversal")

        if original.status != "paid":
            raise InvalidStateError(f"Commission {commissionID} is {original.status}, only paid commissions can be reversed")

        if self.session.query(CommissionRecord).filter_by(reversalOfID=commissionID).first():
            raise AlreadyProcessedError(f"Commission {commissionID} already reversed")

        reversal = CommissionRecord(
            payerID=original.payerID,
            beneficiaryID=original.beneficiaryID,
            eventID=f"{original.eventID}:reversal",
            eventType=original.eventType,
            level=original.level,
            baseAmount=original.baseAmount,
            percentage=original.percentage,
            amount=-original.amount,
            tierId=original.tierId,
            catalogVersion=original.catalogVersion,
            status="paid",
            paidAt=timeMachine.now,
            failureReason=reason,
            reversalOfID=original.commissionID
        )

        try:
            with self.session.begin_nested():
                self.session.add(reversal)
                self.session.flush()
        except IntegrityError:
            raise AlreadyProcessedError(f"Commission {commissionID} already reversed")

        beneficiary = original.beneficiary
        beneficiary.balance = (beneficiary.balance or Decimal("0")) - original.amount
        beneficiary.totalEarnings = (beneficiary.totalEarnings or Decimal("0")) - original.amount

        self.session.commit()

        logger.info(f"Commission {commissionID} reversed ({reason}): -{original.amount} from {beneficiary.participantID}")

        await eventBus.emit(CompensationEvents.COMMISSION_REVERSED, {
            "commissionID": commissionID,
            "reversalID": reversal.commissionID,
            "amount": str(reversal.amount),
            "reason": reason
        })

        return reversal

    async def getEarningsSummary(self, participantID: int) -> Dict:
        self.registry.get(participantID)

        def total(status: str) -> Decimal:
            value = self.session.query(func.sum(CommissionRecord.amount)).filter(
                CommissionRecord.beneficiaryID == participantID,
                CommissionRecord.status == status
            ).scalar()
            return Decimal(str(value)) if value is not None else Decimal("0")

        byLevel = {
            level: Decimal(str(amount))
            for level, amount in self.session.query(
                CommissionRecord.level, func.sum(CommissionRecord.amount)
            ).filter(
                CommissionRecord.beneficiaryID == participantID,
                CommissionRecord.status == "paid"
            ).group_by(CommissionRecord.level).order_by(CommissionRecord.level).all()
        }

        failedCount = self.session.query(func.count(CommissionRecord.commissionID)).filter(
            CommissionRecord.beneficiaryID == participantID,
            CommissionRecord.status == "failed"
        ).scalar() or 0

        return {
            "participantID": participantID,
            "totalPaid": total("paid"),
            "totalPending": total("pending"),
            "failedCount": failedCount,
            "byLevel": byLevel
        }
