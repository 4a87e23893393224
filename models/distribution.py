# models/distribution.py
"""
ProfitDistribution and ProfitShare models - periodic profit pool and its line items.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Date, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class ProfitDistribution(Base, AuditMixin):
    __tablename__ = 'profit_distributions'

    distributionID = Column(Integer, primary_key=True, autoincrement=True)

    # Period
    periodType = Column(String, nullable=False)  # monthly, quarterly, annual
    periodStart = Column(Date, nullable=False)
    periodEnd = Column(Date, nullable=False)

    # Pool
    totalPool = Column(DECIMAL(15, 2), nullable=False)
    communityAllocationPct = Column(DECIMAL(5, 2), default=0)
    communityPool = Column(DECIMAL(15, 2), default=0)
    investmentPool = Column(DECIMAL(15, 2), default=0)

    # Totals
    totalCalculated = Column(DECIMAL(15, 2), default=0)
    totalDistributed = Column(DECIMAL(15, 2), default=0)  # Recomputed from paid shares
    roundingRemainder = Column(DECIMAL(15, 4), default=0)

    # Status
    status = Column(String, default='calculated')  # calculated, approved, paid, partially_failed
    approvedAt = Column(DateTime, nullable=True)
    processedAt = Column(DateTime, nullable=True)

    notes = Column(JSON, nullable=True)  # Tier pools, normalisation factors

    # One distribution per period
    __table_args__ = (
        UniqueConstraint('periodType', 'periodStart', 'periodEnd', name='_distribution_period_uc'),
    )

    shares = relationship('ProfitShare', back_populates='distribution', order_by='ProfitShare.shareID')

    def __repr__(self):
        return f"<ProfitDistribution(id={self.distributionID}, pool={self.totalPool}, status={self.status})>"


class ProfitShare(Base, AuditMixin):
    __tablename__ = 'profit_shares'

    shareID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    distributionID = Column(Integer, ForeignKey('profit_distributions.distributionID'), nullable=False, index=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)

    # Source line
    source = Column(String, nullable=False)  # investment, community
    investmentID = Column(Integer, ForeignKey('investments.investmentID'), nullable=True)
    projectID = Column(Integer, ForeignKey('community_projects.projectID'), nullable=True)
    tierId = Column(Integer, nullable=True)

    # Calculation
    weight = Column(DECIMAL(15, 2), nullable=False)  # Invested or contributed amount
    multiplier = Column(DECIMAL(6, 4), default=1)
    baseAmount = Column(DECIMAL(15, 2), default=0)
    tierBonusAmount = Column(DECIMAL(15, 2), default=0)
    votingBonusAmount = Column(DECIMAL(15, 2), default=0)
    finalAmount = Column(DECIMAL(15, 2), nullable=False)

    # Status
    status = Column(String, default='calculated')  # calculated, paid, failed
    failureReason = Column(Text, nullable=True)
    paymentReference = Column(String, nullable=True)
    paidAt = Column(DateTime, nullable=True)

    distribution = relationship('ProfitDistribution', back_populates='shares')
    participant = relationship('Participant', backref='profitShares')

    def __repr__(self):
        return f"<ProfitShare(id={self.shareID}, participant={self.participantID}, amount={self.finalAmount})>"
