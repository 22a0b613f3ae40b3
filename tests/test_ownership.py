"""
Tests for OwnershipPropagator

Run with: python -m pytest tests/test_ownership.py -v
"""

import pytest

from reshard.cluster.topology import TopologyView
from reshard.errors import ConnectivityError
from reshard.migration.ownership import OwnershipPropagator, PropagationReport
from reshard.protocol.commands import CommandType
from tests.conftest import DEST, DEST_ID, OTHER, OTHER_ID, SOURCE, SOURCE_ID, FakeCluster


async def _masters(cluster: FakeCluster):
    view = TopologyView(cluster)
    await view.discover(SOURCE)
    return view.masters()


@pytest.mark.asyncio
class TestAnnounceOwnership:
    """Test announce_ownership()."""

    async def test_every_master_updated(self, cluster: FakeCluster):
        """All masters, source and destination included, learn the new owner."""
        masters = await _masters(cluster)
        report = await OwnershipPropagator(cluster).announce_ownership(masters, 100, DEST_ID, SOURCE_ID)

        assert report.ok
        assert set(report.succeeded) == {SOURCE_ID, DEST_ID, OTHER_ID}
        for node in cluster.masters():
            assert node.owners[100] == DEST_ID

    async def test_replicas_not_addressed(self, cluster: FakeCluster):
        """Only masters receive the command."""
        masters = await _masters(cluster)
        await OwnershipPropagator(cluster).announce_ownership(masters, 100, DEST_ID, SOURCE_ID)
        addresses = {addr for addr, _ in cluster.calls_of(CommandType.SET_SLOT_OWNER)}
        assert addresses == {SOURCE, DEST, OTHER}

    async def test_destination_first_then_source(self, cluster: FakeCluster):
        """Destination settles before the source clears its migrating flag."""
        masters = await _masters(cluster)
        await OwnershipPropagator(cluster).announce_ownership(masters, 100, DEST_ID, SOURCE_ID)
        order = [addr for addr, _ in cluster.calls_of(CommandType.SET_SLOT_OWNER)]
        assert order == [DEST, SOURCE, OTHER]

    async def test_unreachable_master_does_not_block_others(self, cluster: FakeCluster):
        """One unreachable master: mixed outcomes, the rest updated."""
        masters = await _masters(cluster)
        cluster.unreachable.add(OTHER)

        report = await OwnershipPropagator(cluster).announce_ownership(masters, 100, DEST_ID, SOURCE_ID)

        assert not report.ok
        assert set(report.succeeded) == {SOURCE_ID, DEST_ID}
        assert isinstance(report.failed[OTHER_ID], ConnectivityError)
        assert cluster.node(SOURCE).owners[100] == DEST_ID
        assert cluster.node(DEST).owners[100] == DEST_ID
        assert cluster.node(OTHER).owners[100] == SOURCE_ID

    async def test_first_master_failing_still_tries_rest(self, cluster: FakeCluster):
        """Failure on the first master addressed does not stop the loop."""
        masters = await _masters(cluster)
        cluster.fail(DEST, CommandType.SET_SLOT_OWNER)

        report = await OwnershipPropagator(cluster).announce_ownership(masters, 100, DEST_ID, SOURCE_ID)

        assert not report.accepted_by(DEST_ID)
        assert report.accepted_by(SOURCE_ID)
        assert report.accepted_by(OTHER_ID)

    async def test_no_masters(self, cluster: FakeCluster):
        """An empty master set is a no-op success."""
        report = await OwnershipPropagator(cluster).announce_ownership(set(), 100, DEST_ID)
        assert report.ok
        assert report.outcomes == {}
        assert cluster.calls == []


class TestPropagationReport:
    """Test PropagationReport accessors."""

    def test_accessors(self):
        error = ConnectivityError(OTHER, "down")
        report = PropagationReport(slot=1, owner_id=DEST_ID, outcomes={DEST_ID: None, OTHER_ID: error})
        assert report.succeeded == [DEST_ID]
        assert report.failed == {OTHER_ID: error}
        assert report.accepted_by(DEST_ID)
        assert not report.accepted_by(OTHER_ID)
        assert not report.accepted_by(SOURCE_ID)
