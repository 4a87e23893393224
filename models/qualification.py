# models/qualification.py
"""
TierQualificationRecord model - monthly tier qualification snapshot.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class TierQualificationRecord(Base, AuditMixin):
    __tablename__ = 'tier_qualifications'

    qualificationID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False)
    tierId = Column(Integer, nullable=False)

    # Period
    month = Column(String, nullable=False)  # "2024-01" format

    # Metrics supplied by the activity aggregator
    teamVolume = Column(DECIMAL(14, 2), default=0)
    activeReferrals = Column(Integer, default=0)

    # Thresholds at evaluation time
    requiredTeamVolume = Column(DECIMAL(14, 2), default=0)
    requiredActiveReferrals = Column(Integer, default=0)
    consecutiveMonthsRequired = Column(Integer, default=1)

    # Outcome
    qualifies = Column(Boolean, default=False)
    consecutiveMonths = Column(Integer, default=0)
    permanentStatus = Column(Boolean, default=False)  # Never cleared once set
    permanentAchievedAt = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('participantID', 'tierId', 'month', name='_qualification_participant_tier_month_uc'),
    )

    participant = relationship('Participant', backref='tierQualifications')

    def __repr__(self):
        return (f"<TierQualificationRecord(participant={self.participantID}, tier={self.tierId}, "
                f"month={self.month}, streak={self.consecutiveMonths})>")
