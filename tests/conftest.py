"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.

Most tests run against FakeCluster: an in-memory stand-in for a set of
cluster nodes that implements the NodeClient interface
(async execute(address, command)). It keeps per-node slot ownership,
importing/migrating flags and keys, enforces the same preconditions a real
node does, records every command sent, and supports fault injection.
"""

from typing import Dict, List, Optional, Set, Tuple

import pytest

from reshard.cluster.nodes import Address
from reshard.errors import CommandError, ConnectivityError
from reshard.migration.orchestrator import MigrationConfig, MigrationOrchestrator
from reshard.cluster.slots import CLUSTER_SLOTS, HashSlotRange
from reshard.protocol.commands import Command, CommandType, MoveResult
from reshard.protocol.parser import ProtocolParser


SOURCE = Address('127.0.0.1', 7000)
DEST = Address('127.0.0.1', 7001)
OTHER = Address('127.0.0.1', 7002)
REPLICA = Address('127.0.0.1', 7003)

SOURCE_ID = 'a' * 40
DEST_ID = 'b' * 40
OTHER_ID = 'c' * 40
REPLICA_ID = 'd' * 40


# ============================================================================
# Fake cluster
# ============================================================================

class FakeNode:
    """One node of the fake cluster and its own view of the cluster."""

    def __init__(self, node_id: str, address: Address, master_id: Optional[str] = None):
        self.id = node_id
        self.address = address
        self.master_id = master_id
        self.known: Set[str] = {node_id}
        self.owners: Dict[int, str] = {}
        self.importing: Dict[int, str] = {}
        self.migrating: Dict[int, str] = {}
        self.keys: Dict[int, List[bytes]] = {}
        self.count_override: Dict[int, int] = {}

    @property
    def is_master(self) -> bool:
        return self.master_id is None

    def owns(self, slot: int) -> bool:
        return self.owners.get(slot) == self.id


class FakeCluster:
    """
    In-memory cluster implementing execute(address, command).

    Attributes:
        nodes: address -> FakeNode
        calls: every (address, command) received, in order
        unreachable: addresses that fail with ConnectivityError
    """

    def __init__(self):
        self.nodes: Dict[Address, FakeNode] = {}
        self.calls: List[Tuple[Address, Command]] = []
        self.unreachable: Set[Address] = set()
        self._faults: List[dict] = []

    # -- setup -------------------------------------------------------------

    def add_node(self, node_id: str, address: Address, master_id: Optional[str] = None) -> FakeNode:
        node = FakeNode(node_id, address, master_id)
        self.nodes[address] = node
        return node

    def assign(self, node_id: str, start: int, end: int) -> None:
        """Record slots start..end as owned by node_id in every node's view."""
        for node in self.nodes.values():
            for slot in range(start, end + 1):
                node.owners[slot] = node_id

    def join_all(self) -> None:
        """Make every node know every other node."""
        ids = {node.id for node in self.nodes.values()}
        for node in self.nodes.values():
            node.known |= ids

    def put_keys(self, address: Address, slot: int, *keys: str) -> None:
        self.nodes[address].keys.setdefault(slot, []).extend(k.encode() for k in keys)

    def fail(
            self,
            address: Address,
            command_type: CommandType,
            error: type = CommandError,
            slot: Optional[int] = None,
            key: Optional[str] = None,
            message: str = "injected failure",
            times: int = 1,
    ) -> None:
        """Make the next matching command(s) fail with error."""
        self._faults.append({
            'address': address,
            'type': command_type,
            'error': error,
            'slot': slot,
            'key': key.encode() if key is not None else None,
            'message': message,
            'times': times,
        })

    # -- inspection --------------------------------------------------------

    def node(self, address: Address) -> FakeNode:
        return self.nodes[address]

    def calls_of(self, *types: CommandType) -> List[Tuple[Address, Command]]:
        return [(addr, cmd) for addr, cmd in self.calls if cmd.type in types]

    def slot_calls(self, slot: int) -> List[Tuple[Address, CommandType]]:
        """Commands that name slot, in order, as (address, type)."""
        return [(addr, cmd.type) for addr, cmd in self.calls if cmd.slot == slot]

    def masters(self) -> List[FakeNode]:
        return [node for node in self.nodes.values() if node.is_master]

    # -- NodeClient interface ----------------------------------------------

    async def execute(self, address: Address, command: Command):
        self.calls.append((address, command))
        self._check_faults(address, command)

        if address in self.unreachable or address not in self.nodes:
            raise ConnectivityError(address, "Connection refused")

        node = self.nodes[address]
        handler = getattr(self, f"_do_{command.type.name.lower()}")
        return handler(node, command)

    def _check_faults(self, address: Address, command: Command) -> None:
        for fault in self._faults:
            if fault['times'] <= 0:
                continue
            if fault['address'] != address or fault['type'] is not command.type:
                continue
            if fault['slot'] is not None and fault['slot'] != command.slot:
                continue
            if fault['key'] is not None and fault['key'] != command.key:
                continue
            fault['times'] -= 1
            raise fault['error'](address, fault['message'])

    def _do_list_nodes(self, node: FakeNode, command: Command) -> list:
        return ProtocolParser().parse_nodes(self.render_nodes(node))

    def render_nodes(self, viewer: FakeNode) -> str:
        """CLUSTER NODES text as viewer would report it."""
        by_id = {n.id: n for n in self.nodes.values()}
        lines = []
        for node_id in sorted(viewer.known):
            node = by_id[node_id]
            flags = ['myself'] if node is viewer else []
            flags.append('master' if node.is_master else 'slave')
            parts = [
                node.id,
                f"{node.address.host}:{node.address.port}@{node.address.port + 10000}",
                ','.join(flags),
                node.master_id or '-',
                '0', '0', '1', 'connected',
            ]
            if node.is_master:
                parts.extend(_ranges([s for s, owner in sorted(viewer.owners.items()) if owner == node.id]))
            if node is viewer:
                parts.extend(f"[{s}->-{peer}]" for s, peer in sorted(node.migrating.items()))
                parts.extend(f"[{s}-<-{peer}]" for s, peer in sorted(node.importing.items()))
            lines.append(' '.join(parts))
        return '\n'.join(lines) + '\n'

    def _do_set_slot_importing(self, node: FakeNode, command: Command):
        if node.owns(command.slot):
            raise CommandError(node.address, f"ERR I'm already the owner of hash slot {command.slot}")
        if command.node_id not in node.known:
            raise CommandError(node.address, f"ERR I don't know about node {command.node_id}")
        node.importing[command.slot] = command.node_id
        return True

    def _do_set_slot_migrating(self, node: FakeNode, command: Command):
        if not node.owns(command.slot):
            raise CommandError(node.address, f"ERR I'm not the owner of hash slot {command.slot}")
        if command.node_id not in node.known:
            raise CommandError(node.address, f"ERR I don't know about node {command.node_id}")
        node.migrating[command.slot] = command.node_id
        return True

    def _do_set_slot_owner(self, node: FakeNode, command: Command):
        if command.node_id not in node.known:
            raise CommandError(node.address, f"ERR Unknown node {command.node_id}")
        if node.owns(command.slot) and command.node_id != node.id and node.keys.get(command.slot):
            raise CommandError(
                node.address,
                f"ERR Can't assign hashslot {command.slot} to a different node while I still hold keys",
            )
        node.owners[command.slot] = command.node_id
        node.importing.pop(command.slot, None)
        node.migrating.pop(command.slot, None)
        return True

    def _do_clear_slot_state(self, node: FakeNode, command: Command):
        node.importing.pop(command.slot, None)
        node.migrating.pop(command.slot, None)
        return True

    def _do_count_keys_in_slot(self, node: FakeNode, command: Command) -> int:
        if command.slot in node.count_override:
            return node.count_override[command.slot]
        return len(node.keys.get(command.slot, []))

    def _do_list_keys_in_slot(self, node: FakeNode, command: Command) -> List[bytes]:
        return list(node.keys.get(command.slot, [])[:command.limit])

    def _do_move_key(self, node: FakeNode, command: Command) -> MoveResult:
        dest = self.nodes.get(command.peer)
        if dest is None or command.peer in self.unreachable:
            raise ConnectivityError(node.address, "IOERR error or timeout connecting to the client")
        for slot, keys in node.keys.items():
            if command.key in keys:
                keys.remove(command.key)
                dest.keys.setdefault(slot, []).append(command.key)
                return MoveResult.MOVED
        return MoveResult.NOKEY

    def _do_meet(self, node: FakeNode, command: Command):
        peer = self.nodes.get(command.peer)
        if peer is None:
            raise CommandError(node.address, "ERR Invalid node address specified")
        merged = node.known | peer.known
        node.known = set(merged)
        peer.known = set(merged)
        return True


def _ranges(slots: List[int]) -> List[str]:
    """Compress sorted slots to CLUSTER NODES slot entries."""
    entries = []
    start = prev = None
    for slot in slots:
        if start is None:
            start = prev = slot
        elif slot == prev + 1:
            prev = slot
        else:
            entries.append(str(start) if start == prev else f"{start}-{prev}")
            start = prev = slot
    if start is not None:
        entries.append(str(start) if start == prev else f"{start}-{prev}")
    return entries


# ============================================================================
# Cluster Fixtures
# ============================================================================

@pytest.fixture
def cluster() -> FakeCluster:
    """
    Three masters and one replica, all aware of each other.

    SOURCE owns 0-5460, DEST owns 5461-10922, OTHER owns 10923-16383.
    REPLICA replicates SOURCE.
    """
    fake = FakeCluster()
    fake.add_node(SOURCE_ID, SOURCE)
    fake.add_node(DEST_ID, DEST)
    fake.add_node(OTHER_ID, OTHER)
    fake.add_node(REPLICA_ID, REPLICA, master_id=SOURCE_ID)
    fake.join_all()
    fake.assign(SOURCE_ID, 0, 5460)
    fake.assign(DEST_ID, 5461, 10922)
    fake.assign(OTHER_ID, 10923, CLUSTER_SLOTS - 1)
    return fake


@pytest.fixture
def lonely_cluster() -> FakeCluster:
    """SOURCE owns every slot; DEST is a fresh empty master nobody knows yet."""
    fake = FakeCluster()
    fake.add_node(SOURCE_ID, SOURCE)
    fake.add_node(DEST_ID, DEST)
    fake.assign(SOURCE_ID, 0, CLUSTER_SLOTS - 1)
    return fake


@pytest.fixture
def make_orchestrator():
    """
    Factory fixture building an orchestrator over a fake cluster.

    Usage:
        orchestrator = make_orchestrator(cluster, 100, 102)
    """
    def factory(fake: FakeCluster, start: int, end: int, **options) -> MigrationOrchestrator:
        config = MigrationConfig(
            source=SOURCE,
            destination=DEST,
            slots=HashSlotRange(start, end),
            timeout_ms=options.pop('timeout_ms', 2000),
            rollback_on_abort=options.pop('rollback_on_abort', True),
        )
        options.setdefault('meet_timeout', 0.05)
        options.setdefault('meet_poll_interval', 0.01)
        return MigrationOrchestrator(fake, config, **options)
    return factory


@pytest.fixture
def parser() -> ProtocolParser:
    """Create a ProtocolParser instance."""
    return ProtocolParser(db=0)


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as end-to-end migration scenarios"
    )
