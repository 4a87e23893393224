# compensation_system/__init__.py
"""
Compensation system - matrix placement, referral commissions, tier
qualification, profit distribution and withdrawal penalties.
"""

# Services
from compensation_system.services.participant_service import ParticipantRegistry
from compensation_system.services.matrix_service import MatrixService, Placement
from compensation_system.services.commission_service import CommissionService, MonetaryEvent, BatchResult
from compensation_system.services.volume_service import VolumeActivityAggregator, ActivitySnapshot
from compensation_system.services.qualification_service import QualificationService
from compensation_system.services.distribution_service import (
    DistributionService, DistributionPeriod, DistributionResult
)
from compensation_system.services.withdrawal_service import WithdrawalService, PenaltyQuote
from compensation_system.services.payment import PaymentOutcome, LoggingPaymentExecutor

# Configuration
from compensation_system.config.tiers import TierId, RateTable, TierCatalog, getCatalog

# Utilities
from compensation_system.utils.time_machine import timeMachine

# Events
from compensation_system.events.event_bus import eventBus, CompensationEvents

__all__ = [
    # Services
    'ParticipantRegistry',
    'MatrixService',
    'Placement',
    'CommissionService',
    'MonetaryEvent',
    'BatchResult',
    'VolumeActivityAggregator',
    'ActivitySnapshot',
    'QualificationService',
    'DistributionService',
    'DistributionPeriod',
    'DistributionResult',
    'WithdrawalService',
    'PenaltyQuote',
    'PaymentOutcome',
    'LoggingPaymentExecutor',

    # Config
    'TierId',
    'RateTable',
    'TierCatalog',
    'getCatalog',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'CompensationEvents',
]
