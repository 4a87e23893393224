# models/tier_assignment.py
"""
TierAssignment model - append-only history of participant tiers.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class TierAssignment(Base, AuditMixin):
    __tablename__ = 'tier_assignments'

    assignmentID = Column(Integer, primary_key=True, autoincrement=True)

    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)
    tierId = Column(Integer, nullable=False)  # TierId rank
    catalogVersion = Column(Integer, nullable=False)
    effectiveFrom = Column(DateTime, nullable=False, index=True)

    reason = Column(String, nullable=True)  # enrollment, upgrade, assigned

    participant = relationship('Participant', backref='tierAssignments')

    def __repr__(self):
        return f"<TierAssignment(participant={self.participantID}, tier={self.tierId}, from={self.effectiveFrom})>"
