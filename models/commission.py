# models/commission.py
"""
CommissionRecord model - every attempted referral commission, paid or not.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class CommissionRecord(Base, AuditMixin):
    __tablename__ = 'commission_records'

    # Primary key
    commissionID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    payerID = Column(Integer, ForeignKey('participants.participantID'), nullable=False)  # Whose event generated it
    beneficiaryID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)

    # Source event
    eventID = Column(String, nullable=False)
    eventType = Column(String, nullable=False)  # registration, investment, subscription, package_purchase

    # Commission details
    level = Column(Integer, nullable=False)  # Ancestor distance 1..7
    baseAmount = Column(DECIMAL(14, 2), nullable=False)
    percentage = Column(DECIMAL(6, 3), nullable=False)  # 15.000 for 15%
    amount = Column(DECIMAL(14, 2), nullable=False)  # Immutable once created
    tierId = Column(Integer, nullable=True)
    catalogVersion = Column(Integer, nullable=True)

    # Status
    status = Column(String, default="pending", index=True)  # pending, paid, failed
    failureReason = Column(Text, nullable=True)
    paymentReference = Column(String, nullable=True)
    paidAt = Column(DateTime, nullable=True)

    # Compensating record for an earlier commission
    reversalOfID = Column(Integer, ForeignKey('commission_records.commissionID'), nullable=True)

    __table_args__ = (
        UniqueConstraint('payerID', 'eventID', 'level', name='_commission_payer_event_level_uc'),
    )

    # Relationships
    payer = relationship('Participant', foreign_keys=[payerID], backref='commissionsGenerated')
    beneficiary = relationship('Participant', foreign_keys=[beneficiaryID], backref='commissionsReceived')
    reversalOf = relationship('CommissionRecord', remote_side=[commissionID])

    def __repr__(self):
        return f"<CommissionRecord(commissionID={self.commissionID}, beneficiary={self.beneficiaryID}, amount={self.amount})>"
