# models/investment.py
from sqlalchemy import Column, Integer, String, DECIMAL, Date, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Investment(Base, AuditMixin):
    __tablename__ = 'investments'

    # Primary key
    investmentID = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign keys
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)

    # Investment details
    amount = Column(DECIMAL(14, 2), nullable=False)
    currentValue = Column(DECIMAL(14, 2), nullable=True)  # Principal plus accrued profit
    tierId = Column(Integer, nullable=False)  # Tier at time of investment
    investmentDate = Column(Date, nullable=False)
    lockInEndDate = Column(Date, nullable=True)  # Explicit override of the default lock-in

    status = Column(String, default="active", index=True)  # active, withdrawn
    participatedInDistribution = Column(Boolean, default=False)

    # Relationships
    participant = relationship('Participant', backref='investments')

    @property
    def profit(self):
        if self.currentValue is None:
            return 0
        return max(self.currentValue - self.amount, 0)

    def __repr__(self):
        return f"<Investment(investmentID={self.investmentID}, participant={self.participantID}, amount={self.amount})>"
