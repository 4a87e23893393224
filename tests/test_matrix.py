"""
Tests for matrix placement.

Covers:
- Root, direct and spillover placement
- Breadth-first, left-to-right slot order
- Search bound and duplicate placement
- Structure and statistics reports
"""

import pytest
from sqlalchemy import func

from models import MatrixNode
from compensation_system.errors import AlreadyProcessedError, CapacityExhaustedError, ParticipantNotFound
from compensation_system.services.matrix_service import MatrixService


@pytest.fixture
def matrix(session):
    return MatrixService(session)


class TestPlacement:
    """Placement rules."""

    @pytest.mark.asyncio
    async def test_root_placement(self, matrix, make_participant):
        """Participant without sponsor becomes a root."""
        root = await make_participant()

        placement = await matrix.place(root.participantID)

        assert placement.actualSponsorID is None
        assert placement.level == 0
        assert placement.slotIndex == 0
        assert placement.placementType == "root"

    @pytest.mark.asyncio
    async def test_direct_slots_fill_left_to_right(self, matrix, make_participant):
        """First three referrals take slots 1, 2, 3 under the sponsor."""
        sponsor = await make_participant()
        await matrix.place(sponsor.participantID)

        slots = []
        for _ in range(3):
            child = await make_participant(upline=sponsor)
            placement = await matrix.place(child.participantID, sponsor.participantID)
            assert placement.actualSponsorID == sponsor.participantID
            assert placement.level == 1
            assert placement.placementType == "direct"
            slots.append(placement.slotIndex)

        assert slots == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_spillover_to_first_open_grandchild_slot(self, session, matrix, make_participant):
        """Full sponsor and full first child: newcomer lands under child #2, slot 1."""
        sponsor = await make_participant()
        await matrix.place(sponsor.participantID)

        children = []
        for _ in range(3):
            child = await make_participant(upline=sponsor)
            await matrix.place(child.participantID, sponsor.participantID)
            children.append(child)

        for _ in range(3):
            grandchild = await make_participant(upline=children[0])
            await matrix.place(grandchild.participantID, children[0].participantID)

        newcomer = await make_participant(upline=sponsor)
        placement = await matrix.place(newcomer.participantID, sponsor.participantID)

        assert placement.actualSponsorID == children[1].participantID
        assert placement.slotIndex == 1
        assert placement.level == 2
        assert placement.placementType == "spillover"

        node = session.query(MatrixNode).filter_by(participantID=newcomer.participantID).one()
        assert node.sponsorID == sponsor.participantID
        assert node.depth == 2

    @pytest.mark.asyncio
    async def test_placement_is_breadth_first_and_never_overfills(self, session, matrix, make_participant):
        """Thirteen placements under one sponsor fill level 1 then level 2 in order."""
        sponsor = await make_participant()
        await matrix.place(sponsor.participantID)

        placements = []
        for _ in range(13):
            member = await make_participant(upline=sponsor)
            placements.append(await matrix.place(member.participantID, sponsor.participantID))

        levelOne = [p.participantID for p in placements[:3]]
        assert all(p.actualSponsorID == sponsor.participantID for p in placements[:3])

        # Next nine go three under each level-1 node, in slot order
        expectedParents = [levelOne[0]] * 3 + [levelOne[1]] * 3 + [levelOne[2]] * 3
        assert [p.actualSponsorID for p in placements[3:12]] == expectedParents
        assert [p.slotIndex for p in placements[3:12]] == [1, 2, 3] * 3

        # Thirteenth starts level 3 under the first grandchild
        assert placements[12].actualSponsorID == placements[3].participantID
        assert placements[12].level == 3

        counts = session.query(MatrixNode.parentID, func.count(MatrixNode.nodeID)).filter(
            MatrixNode.parentID.isnot(None)
        ).group_by(MatrixNode.parentID).all()
        assert all(count <= 3 for _, count in counts)

    @pytest.mark.asyncio
    async def test_search_bound_raises_capacity_exhausted(self, session, make_participant):
        """A full sponsor with a search bound of one node cannot place."""
        matrix = MatrixService(session, searchLimit=1)
        sponsor = await make_participant()
        await matrix.place(sponsor.participantID)
        for _ in range(3):
            child = await make_participant(upline=sponsor)
            await matrix.place(child.participantID, sponsor.participantID)

        newcomer = await make_participant(upline=sponsor)
        with pytest.raises(CapacityExhaustedError):
            await matrix.place(newcomer.participantID, sponsor.participantID)

        assert session.query(MatrixNode).filter_by(participantID=newcomer.participantID).first() is None

    @pytest.mark.asyncio
    async def test_second_placement_is_rejected(self, matrix, make_participant):
        """A participant is placed only once."""
        root = await make_participant()
        await matrix.place(root.participantID)

        with pytest.raises(AlreadyProcessedError):
            await matrix.place(root.participantID)

    @pytest.mark.asyncio
    async def test_unplaced_sponsor(self, matrix, make_participant):
        """Sponsor without a matrix position is reported."""
        sponsor = await make_participant()
        member = await make_participant(upline=sponsor)

        with pytest.raises(ParticipantNotFound):
            await matrix.place(member.participantID, sponsor.participantID)


class TestReports:
    """Structure and statistics."""

    @pytest.mark.asyncio
    async def test_statistics(self, matrix, make_participant):
        """Capacity of three levels is 39 positions."""
        sponsor = await make_participant()
        await matrix.place(sponsor.participantID)
        for _ in range(5):
            member = await make_participant(upline=sponsor)
            await matrix.place(member.participantID, sponsor.participantID)

        stats = await matrix.getStatistics(sponsor.participantID)

        assert stats["capacity"] == 39
        assert stats["levels"] == {1: 3, 2: 2, 3: 0}
        assert stats["totalDownline"] == 5
        assert stats["availablePositions"] == 34
        assert stats["completionPercent"] == round(5 * 100 / 39, 2)

    @pytest.mark.asyncio
    async def test_structure_and_spillover_beneficiaries(self, matrix, make_participant):
        """Spillover node lists its structural ancestors nearest first."""
        sponsor = await make_participant()
        await matrix.place(sponsor.participantID)
        members = []
        for _ in range(4):
            member = await make_participant(upline=sponsor)
            await matrix.place(member.participantID, sponsor.participantID)
            members.append(member)

        structure = await matrix.getStructure(sponsor.participantID)
        assert [child["participantID"] for child in structure["children"]] == [
            m.participantID for m in members[:3]
        ]
        assert structure["children"][0]["children"][0]["participantID"] == members[3].participantID

        beneficiaries = await matrix.getSpilloverBeneficiaries(members[3].participantID)
        assert beneficiaries == [members[0].participantID, sponsor.participantID]

        assert await matrix.getSpilloverBeneficiaries(members[0].participantID) == []

        firstChildStats = await matrix.getStatistics(members[0].participantID)
        assert firstChildStats["spilloverReceived"] == 1
