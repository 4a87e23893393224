# compensation_system/services/matrix_service.py
"""
Matrix placement service - 3-wide forced matrix with spillover.
"""
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from models import MatrixNode, Participant
from config import MATRIX_WIDTH, MATRIX_SEARCH_LIMIT, PLACEMENT_RETRIES, MATRIX_REPORT_LEVELS
from compensation_system.errors import (
    AlreadyProcessedError, CapacityExhaustedError, CompensationError, ParticipantNotFound
)
from compensation_system.events.event_bus import eventBus, CompensationEvents

logger = logging.getLogger(__name__)


@dataclass
class Placement:
    participantID: int
    actualSponsorID: Optional[int]  # Structural parent, None for roots
    requestedSponsorID: Optional[int]
    level: int  # Distance below the requested sponsor
    slotIndex: int
    placementType: str


class MatrixService:
    """Service for placing participants into the matrix."""

    def __init__(
            self,
            session: Session,
            width: int = MATRIX_WIDTH,
            searchLimit: int = MATRIX_SEARCH_LIMIT,
            retries: int = PLACEMENT_RETRIES
    ):
        self.session = session
        self.width = width
        self.searchLimit = searchLimit
        self.retries = retries

    async def place(self, newParticipantID: int, requestedSponsorID: Optional[int] = None) -> Placement:
        """
        Place a participant under the requested sponsor.
        Direct slot if the sponsor has room, otherwise the shallowest leftmost
        open slot in the sponsor's downline (breadth-first).
        """
        if not self.session.query(Participant).filter_by(participantID=newParticipantID).first():
            raise ParticipantNotFound(newParticipantID)

        sponsorNode = None
        if requestedSponsorID is not None:
            sponsorNode = self._getNode(requestedSponsorID)
            if not sponsorNode:
                logger.error(f"Sponsor {requestedSponsorID} has no matrix position")
                raise ParticipantNotFound(requestedSponsorID)

        for attempt in range(1, self.retries + 1):
            if self._getNode(newParticipantID):
                logger.warning(f"Participant {newParticipantID} already placed in matrix")
                raise AlreadyProcessedError(f"Participant {newParticipantID} already placed")

            if sponsorNode is None:
                node = MatrixNode(
                    participantID=newParticipantID,
                    parentID=None,
                    sponsorID=None,
                    slotIndex=0,
                    depth=0,
                    placementLevel=0,
                    placementType="root"
                )
            else:
                parentNode, level, slotIndex = self._findOpenSlot(sponsorNode)
                node = MatrixNode(
                    participantID=newParticipantID,
                    parentID=parentNode.participantID,
                    sponsorID=requestedSponsorID,
                    slotIndex=slotIndex,
                    depth=parentNode.depth + 1,
                    placementLevel=level,
                    placementType="direct" if level == 1 else "spillover"
                )

            try:
                with self.session.begin_nested():
                    self.session.add(node)
                    self.session.flush()
            except IntegrityError:
                logger.warning(
                    f"Placement collision for participant {newParticipantID} "
                    f"(attempt {attempt}/{self.retries}), searching again"
                )
                continue

            self.session.commit()

            placement = Placement(
                participantID=newParticipantID,
                actualSponsorID=node.parentID,
                requestedSponsorID=requestedSponsorID,
                level=node.placementLevel,
                slotIndex=node.slotIndex,
                placementType=node.placementType
            )

            logger.info(
                f"Participant {newParticipantID} placed under {node.parentID} "
                f"slot {node.slotIndex} ({node.placementType}, level {node.placementLevel})"
            )

            await eventBus.emit(CompensationEvents.PARTICIPANT_PLACED, {
                "participantID": newParticipantID,
                "parentID": node.parentID,
                "sponsorID": requestedSponsorID,
                "slotIndex": node.slotIndex,
                "placementType": node.placementType
            })

            return placement

        raise CompensationError(
            f"Could not place participant {newParticipantID} after {self.retries} attempts"
        )

    def _getNode(self, participantID: int) -> Optional[MatrixNode]:
        return self.session.query(MatrixNode).filter_by(participantID=participantID).first()

    def _getChildren(self, participantID: int) -> List[MatrixNode]:
        return self.session.query(MatrixNode).filter_by(
            parentID=participantID
        ).order_by(MatrixNode.slotIndex).all()

    def _findOpenSlot(self, sponsorNode: MatrixNode) -> Tuple[MatrixNode, int, int]:
        """Breadth-first search for (parent node, level below sponsor, slot)."""
        queue = deque([(sponsorNode, 0)])
        visited = 0

        while queue:
            node, distance = queue.popleft()
            visited += 1
            if visited > self.searchLimit:
                logger.error(
                    f"No open slot under {sponsorNode.participantID} within {self.searchLimit} nodes"
                )
                raise CapacityExhaustedError(
                    f"Search bound of {self.searchLimit} nodes reached under sponsor {sponsorNode.participantID}"
                )

            children = self._getChildren(node.participantID)
            if len(children) < self.width:
                used = {child.slotIndex for child in children}
                slotIndex = next(s for s in range(1, self.width + 1) if s not in used)
                return node, distance + 1, slotIndex

            for child in children:
                queue.append((child, distance + 1))

        raise CapacityExhaustedError(f"No open slot under sponsor {sponsorNode.participantID}")

    async def getStructure(self, participantID: int, maxLevel: int = MATRIX_REPORT_LEVELS) -> Dict:
        """Nested view of the downline up to `maxLevel` levels."""
        node = self._getNode(participantID)
        if not node:
            raise ParticipantNotFound(participantID)

        def build(current: MatrixNode, level: int) -> Dict:
            entry = {
                "participantID": current.participantID,
                "slotIndex": current.slotIndex,
                "level": level,
                "placementType": current.placementType,
                "children": []
            }
            if level < maxLevel:
                entry["children"] = [build(child, level + 1) for child in self._getChildren(current.participantID)]
            return entry

        return build(node, 0)

    async def getStatistics(self, participantID: int, maxLevel: int = MATRIX_REPORT_LEVELS) -> Dict:
        """Downline counts per level, capacity and fill ratio."""
        node = self._getNode(participantID)
        if not node:
            raise ParticipantNotFound(participantID)

        levels = {}
        spilloverReceived = 0
        frontier = [node]

        for level in range(1, maxLevel + 1):
            nextFrontier = []
            for current in frontier:
                nextFrontier.extend(self._getChildren(current.participantID))
            levels[level] = len(nextFrontier)
            spilloverReceived += sum(
                1 for child in nextFrontier
                if child.placementType == "spillover" and child.sponsorID != participantID
            )
            frontier = nextFrontier

        capacity = sum(self.width ** level for level in range(1, maxLevel + 1))
        totalDownline = sum(levels.values())

        return {
            "participantID": participantID,
            "levels": levels,
            "totalDownline": totalDownline,
            "capacity": capacity,
            "availablePositions": capacity - totalDownline,
            "completionPercent": round(totalDownline * 100 / capacity, 2) if capacity else 0,
            "spilloverReceived": spilloverReceived
        }

    async def getSpilloverBeneficiaries(self, participantID: int, maxLevels: int = MATRIX_REPORT_LEVELS) -> List[int]:
        """Structural ancestors above a spillover placement, nearest first."""
        node = self._getNode(participantID)
        if not node:
            raise ParticipantNotFound(participantID)

        if node.placementType != "spillover":
            return []

        beneficiaries = []
        current = node
        while current.parentID is not None and len(beneficiaries) < maxLevels:
            beneficiaries.append(current.parentID)
            current = self._getNode(current.parentID)
            if not current:
                break

        return beneficiaries
