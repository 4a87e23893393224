# models/matrix.py
"""
MatrixNode model - one placement per participant in the 3-wide matrix.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, backref
from datetime import datetime, timezone
from models.base import Base


class MatrixNode(Base):
    __tablename__ = 'matrix_nodes'

    nodeID = Column(Integer, primary_key=True, autoincrement=True)
    placedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, unique=True)
    parentID = Column(Integer, ForeignKey('participants.participantID'), nullable=True, index=True)  # Structural parent
    sponsorID = Column(Integer, ForeignKey('participants.participantID'), nullable=True)  # Receives enrollment credit

    slotIndex = Column(Integer, nullable=False, default=0)  # 1..3 left to right, 0 for roots
    depth = Column(Integer, nullable=False, default=0)  # Depth in the forest
    placementLevel = Column(Integer, nullable=False, default=0)  # Distance below the requested sponsor
    placementType = Column(String, nullable=False, default="direct")  # root, direct, spillover

    isActive = Column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint('parentID', 'slotIndex', name='_matrix_parent_slot_uc'),
    )

    participant = relationship('Participant', foreign_keys=[participantID], backref=backref('matrixNode', uselist=False))

    def __repr__(self):
        return f"<MatrixNode(participant={self.participantID}, parent={self.parentID}, slot={self.slotIndex})>"
