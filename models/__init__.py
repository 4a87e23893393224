# models/__init__.py
"""
Database models of the compensation engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Network
from models.participant import Participant
from models.tier_assignment import TierAssignment
from models.matrix import MatrixNode

# Money
from models.investment import Investment
from models.commission import CommissionRecord
from models.distribution import ProfitDistribution, ProfitShare

# Qualification
from models.qualification import TierQualificationRecord

# Community projects
from models.project import CommunityProject, ProjectContribution, ProjectVote

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Network
    'Participant',
    'TierAssignment',
    'MatrixNode',

    # Money
    'Investment',
    'CommissionRecord',
    'ProfitDistribution',
    'ProfitShare',

    # Qualification
    'TierQualificationRecord',

    # Community
    'CommunityProject',
    'ProjectContribution',
    'ProjectVote',
]
