# compensation_system/services/payment.py
"""
Payment executor interface used by commission and distribution processing.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol
import asyncio
import logging
import uuid

from config import PAYMENT_TIMEOUT_SECONDS
from compensation_system.errors import PaymentFailedError

logger = logging.getLogger(__name__)


@dataclass
class PaymentOutcome:
    success: bool
    reason: Optional[str] = None
    reference: Optional[str] = None


class PaymentExecutor(Protocol):
    async def execute(self, kind: str, recordID: int, participantID: int, amount: Decimal) -> PaymentOutcome:
        ...


async def executePayment(
        executor: PaymentExecutor,
        kind: str,
        recordID: int,
        participantID: int,
        amount: Decimal,
        timeout: Optional[float] = None
) -> PaymentOutcome:
    """
    Call the executor once, bounded by a timeout.
    Raises PaymentFailedError on decline, timeout or executor error.
    """
    timeout = PAYMENT_TIMEOUT_SECONDS if timeout is None else timeout

    try:
        outcome = await asyncio.wait_for(
            executor.execute(kind, recordID, participantID, amount),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.error(f"Payment {kind}#{recordID} to participant {participantID} timed out after {timeout}s")
        raise PaymentFailedError(f"Payment timed out after {timeout}s")
    except PaymentFailedError:
        raise
    except Exception as e:
        logger.error(f"Payment {kind}#{recordID} to participant {participantID} raised: {e}")
        raise PaymentFailedError(f"Payment error: {e}")

    if not outcome.success:
        logger.warning(f"Payment {kind}#{recordID} to participant {participantID} declined: {outcome.reason}")
        raise PaymentFailedError(outcome.reason or "Payment declined")

    return outcome


class LoggingPaymentExecutor:
    """Executor for batch runs without a gateway: logs and approves every payment."""

    async def execute(self, kind: str, recordID: int, participantID: int, amount: Decimal) -> PaymentOutcome:
        reference = f"{kind}-{recordID}-{uuid.uuid4().hex[:8]}"
        logger.info(f"Payment {reference}: {amount} to participant {participantID}")
        return PaymentOutcome(success=True, reference=reference)
