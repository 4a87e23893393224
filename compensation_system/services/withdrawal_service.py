# compensation_system/services/withdrawal_service.py
"""
Withdrawal service - lock-in status, graduated early-withdrawal penalties
and withdrawal quotes.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import Investment
from config import LOCK_IN_MONTHS, PARTIAL_WITHDRAWAL_PROFIT_SHARE
from compensation_system.config.tiers import TierCatalog, getCatalog
from compensation_system.services.participant_service import ParticipantRegistry
from compensation_system.utils.allocation import toMoney
from compensation_system.utils.periods import addMonths, wholeMonthsBetween
from compensation_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# (minimum whole months remaining, profit penalty %, capital penalty %)
PENALTY_BANDS = (
    (9, Decimal("100"), Decimal("12")),
    (6, Decimal("50"), Decimal("6")),
    (1, Decimal("30"), Decimal("3")),
)

WITHDRAWAL_TYPES = ("full", "partial", "profits_only", "capital", "emergency")


@dataclass
class PenaltyQuote:
    investmentID: Optional[int]
    lockInEndDate: date
    isWithinLockIn: bool
    monthsRemaining: int
    baseProfitPenaltyRate: Decimal
    baseCapitalPenaltyRate: Decimal
    penaltyReduction: Decimal
    profitPenaltyRate: Decimal  # Percent after tier reduction
    capitalPenaltyRate: Decimal
    principal: Decimal
    profit: Decimal
    profitPenaltyAmount: Decimal
    capitalPenaltyAmount: Decimal
    penaltyAmount: Decimal


def lockInEnd(investment: Investment) -> date:
    if investment.lockInEndDate:
        return investment.lockInEndDate
    return addMonths(investment.investmentDate, LOCK_IN_MONTHS)


def baseRates(monthsRemaining: int):
    for minimumMonths, profitRate, capitalRate in PENALTY_BANDS:
        if monthsRemaining >= minimumMonths:
            return profitRate, capitalRate
    return ZERO, ZERO


class WithdrawalService:
    """Service for withdrawal penalties and quotes."""

    def __init__(self, session: Session, catalog: Optional[TierCatalog] = None):
        self.session = session
        self.registry = ParticipantRegistry(session)
        self.catalog = catalog

    def _reduction(self, tierId) -> Decimal:
        catalog = self.catalog or getCatalog()
        if tierId is None or tierId not in catalog:
            return ZERO
        return catalog.get(tierId).withdrawalPenaltyReduction

    def penalty(self, investment: Investment, asOfDate: Optional[date] = None) -> PenaltyQuote:
        """Penalty for withdrawing the whole investment on `asOfDate`."""
        asOfDate = asOfDate or timeMachine.today
        endDate = lockInEnd(investment)
        monthsRemaining = wholeMonthsBetween(asOfDate, endDate)

        baseProfitRate, baseCapitalRate = baseRates(monthsRemaining)
        reduction = self._reduction(investment.tierId)
        profitRate = baseProfitRate * (1 - reduction)
        capitalRate = baseCapitalRate * (1 - reduction)

        principal = Decimal(str(investment.amount))
        profit = Decimal(str(investment.profit))

        profitPenalty = toMoney(profit * profitRate / 100)
        capitalPenalty = toMoney(principal * capitalRate / 100)

        return PenaltyQuote(
            investmentID=investment.investmentID,
            lockInEndDate=endDate,
            isWithinLockIn=asOfDate < endDate,
            monthsRemaining=monthsRemaining,
            baseProfitPenaltyRate=baseProfitRate,
            baseCapitalPenaltyRate=baseCapitalRate,
            penaltyReduction=reduction,
            profitPenaltyRate=profitRate,
            capitalPenaltyRate=capitalRate,
            principal=principal,
            profit=profit,
            profitPenaltyAmount=profitPenalty,
            capitalPenaltyAmount=capitalPenalty,
            penaltyAmount=profitPenalty + capitalPenalty
        )

    async def quoteWithdrawal(
            self,
            participantID: int,
            amount,
            withdrawalType: str = "full",
            asOfDate: Optional[date] = None
    ) -> Dict:
        """
        Validate a withdrawal request across the participant's active investments.
        Regular withdrawals inside lock-in are rejected, emergency ones carry penalties.
        """
        self.registry.get(participantID)
        amount = Decimal(str(amount))
        asOfDate = asOfDate or timeMachine.today

        if withdrawalType not in WITHDRAWAL_TYPES:
            return {"valid": False, "reason": "invalid_withdrawal_type",
                    "penaltyAmount": ZERO, "netAmount": ZERO}

        investments = self.registry.getActiveInvestments(participantID)
        if not investments:
            return {"valid": False, "reason": "no_active_investments",
                    "penaltyAmount": ZERO, "netAmount": ZERO}

        totalPrincipal = ZERO
        totalValue = ZERO
        totalPenalty = ZERO
        violations = []

        for investment in investments:
            principal = Decimal(str(investment.amount))
            totalPrincipal += principal
            totalValue += principal + Decimal(str(investment.profit))

            quote = self.penalty(investment, asOfDate)
            if quote.isWithinLockIn:
                # Never more than the investment is worth
                investmentPenalty = min(quote.penaltyAmount, principal + quote.profit)
                totalPenalty += investmentPenalty
                violations.append({
                    "investmentID": investment.investmentID,
                    "lockInEndDate": quote.lockInEndDate,
                    "monthsRemaining": quote.monthsRemaining,
                    "penaltyAmount": investmentPenalty
                })

        totalProfit = totalValue - totalPrincipal

        if amount > totalValue:
            return {"valid": False, "reason": "insufficient_balance", "availableBalance": totalValue,
                    "penaltyAmount": ZERO, "netAmount": ZERO}

        typeError = self._validateType(withdrawalType, amount, totalPrincipal, totalProfit)
        if typeError:
            return typeError

        if not violations:
            logger.info(f"Withdrawal {withdrawalType} of {amount} for participant {participantID}: no penalty")
            return {"valid": True, "reason": "withdrawal_allowed", "withdrawalType": withdrawalType,
                    "penaltyAmount": ZERO, "netAmount": amount, "lockInViolations": []}

        if withdrawalType == "emergency":
            netAmount = max(ZERO, amount - totalPenalty)
            logger.info(
                f"Emergency withdrawal of {amount} for participant {participantID}: "
                f"penalty {totalPenalty}, net {netAmount}"
            )
            return {"valid": True, "reason": "emergency_withdrawal_with_penalties",
                    "withdrawalType": withdrawalType, "penaltyAmount": totalPenalty,
                    "netAmount": netAmount, "lockInViolations": violations, "requiresApproval": True}

        logger.info(f"Withdrawal {withdrawalType} for participant {participantID} rejected: lock-in period")
        return {"valid": False, "reason": "lock_in_period_violation", "withdrawalType": withdrawalType,
                "penaltyAmount": totalPenalty, "netAmount": ZERO, "lockInViolations": violations,
                "earliestWithdrawalDate": min(v["lockInEndDate"] for v in violations)}

    def _validateType(self, withdrawalType: str, amount: Decimal, totalPrincipal: Decimal,
                      totalProfit: Decimal) -> Optional[Dict]:
        if withdrawalType == "partial":
            maxAllowed = toMoney(totalProfit * PARTIAL_WITHDRAWAL_PROFIT_SHARE)
            if amount > maxAllowed:
                return {"valid": False, "reason": "partial_withdrawal_limit_exceeded",
                        "maxAllowed": maxAllowed, "penaltyAmount": ZERO, "netAmount": ZERO}
        elif withdrawalType == "profits_only":
            if amount > totalProfit:
                return {"valid": False, "reason": "insufficient_profits",
                        "availableProfits": totalProfit, "penaltyAmount": ZERO, "netAmount": ZERO}
        elif withdrawalType == "capital":
            if amount > totalPrincipal:
                return {"valid": False, "reason": "insufficient_capital",
                        "availableCapital": totalPrincipal, "penaltyAmount": ZERO, "netAmount": ZERO}
        return None
