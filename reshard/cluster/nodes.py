"""
Cluster node records.

Nodes are never constructed from local configuration: every ClusterNode is
parsed from what the cluster itself reports (CLUSTER NODES).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple


class Address(NamedTuple):
    host: str
    port: int

    @classmethod
    def parse(cls, text: str) -> "Address":
        """Parse "host:port"."""
        host, sep, port = text.rpartition(':')
        if not sep or not host:
            raise ValueError(f"Invalid address: {text!r}")
        return cls(host, int(port))

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class NodeRole(Enum):
    """Role of a node in the cluster."""
    MASTER = "master"
    REPLICA = "replica"


class SlotMigrationState(Enum):
    """Per-node state of one slot."""
    STABLE = "stable"
    IMPORTING = "importing"
    MIGRATING = "migrating"


@dataclass(frozen=True)
class NodeSlotState:
    """
    State of one slot on one node.

    Attributes:
        node_id: Node holding the flag
        slot: The slot
        state: STABLE, IMPORTING or MIGRATING
        peer_id: Source id when IMPORTING, destination id when MIGRATING
    """
    node_id: str
    slot: int
    state: SlotMigrationState = SlotMigrationState.STABLE
    peer_id: Optional[str] = None

    @property
    def is_stable(self) -> bool:
        return self.state is SlotMigrationState.STABLE

    def __str__(self) -> str:
        if self.is_stable:
            return f"{self.node_id[:8]}:{self.slot} stable"
        return f"{self.node_id[:8]}:{self.slot} {self.state.value} ({self.peer_id[:8]})"


@dataclass(frozen=True)
class ClusterNode:
    """
    A cluster member as seen by one node.

    Identity is the node id; every other field is metadata and takes no part
    in equality or hashing.

    Attributes:
        id: Opaque node id (40 hex characters on a real cluster)
        address: Client address (host, port)
        role: MASTER or REPLICA
        flags: Raw flags (myself, master, slave, fail?, ...)
        master_id: Id of the master this node replicates, if a replica
        slots: Owned slot ranges as inclusive (start, end) pairs
        importing: Open slots this node imports, slot -> source id
        migrating: Open slots this node migrates, slot -> destination id
    """
    id: str
    address: Address = field(compare=False)
    role: NodeRole = field(compare=False)
    flags: Tuple[str, ...] = field(default=(), compare=False)
    master_id: Optional[str] = field(default=None, compare=False)
    slots: Tuple[Tuple[int, int], ...] = field(default=(), compare=False)
    importing: Dict[int, str] = field(default_factory=dict, compare=False)
    migrating: Dict[int, str] = field(default_factory=dict, compare=False)

    @property
    def is_master(self) -> bool:
        return self.role is NodeRole.MASTER

    @property
    def is_myself(self) -> bool:
        return 'myself' in self.flags

    @property
    def is_failing(self) -> bool:
        return 'fail' in self.flags or 'fail?' in self.flags

    def owns(self, slot: int) -> bool:
        """Check if this node owns the given slot."""
        return any(start <= slot <= end for start, end in self.slots)

    def slot_state(self, slot: int) -> NodeSlotState:
        """
        The importing/migrating flag this node reported for slot.

        Open slots are only listed in a node's own entry, so this is
        meaningful for nodes resolved from their own CLUSTER NODES output.
        """
        if slot in self.migrating:
            return NodeSlotState(self.id, slot, SlotMigrationState.MIGRATING, self.migrating[slot])
        if slot in self.importing:
            return NodeSlotState(self.id, slot, SlotMigrationState.IMPORTING, self.importing[slot])
        return NodeSlotState(self.id, slot)

    def __repr__(self) -> str:
        return f"ClusterNode(id={self.id[:8]}, address={self.address}, role={self.role.value})"
