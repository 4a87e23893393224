# models/participant.py
"""
Participant model - central entity of the compensation network.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Participant(Base, AuditMixin):
    __tablename__ = 'participants'

    # Primary identification
    participantID = Column(Integer, primary_key=True, autoincrement=True)
    uplineID = Column(Integer, ForeignKey('participants.participantID'), nullable=True, index=True)  # Sponsor with referral credit
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)

    # Network position (immutable after enrollment)
    depth = Column(Integer, default=0, nullable=False)
    path = Column(String, default="/", nullable=False, index=True)  # "/1/5/" - ancestor ids, root first
    enrolledAt = Column(DateTime, nullable=True, index=True)  # Virtual time of enrollment

    # System fields
    status = Column(String, default="active")  # active, blocked
    hasActiveSubscription = Column(Boolean, default=False)

    # Balances
    totalInvested = Column(DECIMAL(14, 2), default=0)  # Maintained by recordInvestment
    totalEarnings = Column(DECIMAL(14, 2), default=0)
    balance = Column(DECIMAL(14, 2), default=0)

    notes = Column(Text, nullable=True)

    upline = relationship('Participant', remote_side=[participantID], backref='directReferrals')

    @property
    def isBlocked(self) -> bool:
        return self.status == "blocked"

    @property
    def ancestorIDs(self):
        """Ancestor ids nearest first."""
        ids = [int(part) for part in (self.path or "/").strip("/").split("/") if part]
        ids.reverse()
        return ids

    @property
    def childPath(self) -> str:
        """Path prefix shared by every descendant."""
        return f"{self.path}{self.participantID}/"

    def __repr__(self):
        return f"<Participant(participantID={self.participantID}, upline={self.uplineID}, depth={self.depth})>"
