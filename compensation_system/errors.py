# compensation_system/errors.py
"""
Exception hierarchy of the compensation engine.
"""


class CompensationError(Exception):
    """Base class for all compensation errors."""


class CapacityExhaustedError(CompensationError):
    """No open matrix slot found within the search bound."""


class PaymentFailedError(CompensationError):
    """Payment executor declined, timed out or raised."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AlreadyProcessedError(CompensationError):
    """A uniqueness key collided - the work was already done."""


class InvalidPeriodError(CompensationError):
    """Distribution period or pool parameters are malformed."""


class ParticipantNotFound(CompensationError):
    def __init__(self, participantID):
        super().__init__(f"Participant {participantID} not found")
        self.participantID = participantID


class DistributionNotFound(CompensationError):
    def __init__(self, distributionID):
        super().__init__(f"Distribution {distributionID} not found")
        self.distributionID = distributionID


class InvalidStateError(CompensationError):
    """Illegal status transition."""
