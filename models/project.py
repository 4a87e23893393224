# models/project.py
"""
Community project models - contributions and governance votes.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class CommunityProject(Base, AuditMixin):
    __tablename__ = 'community_projects'

    projectID = Column(Integer, primary_key=True, autoincrement=True)

    projectName = Column(String, nullable=False)
    status = Column(String, default="active")  # active, voting, closed

    contributions = relationship('ProjectContribution', back_populates='project')
    votes = relationship('ProjectVote', back_populates='project')


class ProjectContribution(Base, AuditMixin):
    __tablename__ = 'project_contributions'

    contributionID = Column(Integer, primary_key=True, autoincrement=True)
    projectID = Column(Integer, ForeignKey('community_projects.projectID'), nullable=False, index=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False)

    amount = Column(DECIMAL(14, 2), nullable=False)
    status = Column(String, default="confirmed")  # confirmed, refunded

    project = relationship('CommunityProject', back_populates='contributions')
    participant = relationship('Participant', backref='projectContributions')


class ProjectVote(Base, AuditMixin):
    __tablename__ = 'project_votes'

    voteID = Column(Integer, primary_key=True, autoincrement=True)
    projectID = Column(Integer, ForeignKey('community_projects.projectID'), nullable=False)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False)

    voteType = Column(String, nullable=False)  # approve, reject, abstain

    # One governance vote per participant per project
    __table_args__ = (
        UniqueConstraint('projectID', 'participantID', name='_project_vote_uc'),
    )

    project = relationship('CommunityProject', back_populates='votes')
