"""
Node Command Definitions

This module defines the administrative and data commands the resharding
tool sends to cluster nodes, independent of their wire encoding.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from ..cluster.nodes import Address


class CommandType(Enum):
    """Enumeration of supported node commands."""
    LIST_NODES = auto()
    SET_SLOT_IMPORTING = auto()
    SET_SLOT_MIGRATING = auto()
    SET_SLOT_OWNER = auto()
    CLEAR_SLOT_STATE = auto()
    COUNT_KEYS_IN_SLOT = auto()
    LIST_KEYS_IN_SLOT = auto()
    MOVE_KEY = auto()
    MEET = auto()


class MoveResult(Enum):
    """Reply of a MOVE_KEY command."""
    MOVED = "OK"
    NOKEY = "NOKEY"


@dataclass(frozen=True)
class Command:
    """
    Represents one command addressed to a node.

    Attributes:
        type: The type of command
        slot: Hash slot for slot commands
        node_id: Peer or owner node id for SET_SLOT_* commands
        key: Key name for MOVE_KEY
        limit: Maximum number of keys for LIST_KEYS_IN_SLOT
        peer: Destination address for MOVE_KEY, peer address for MEET
        timeout_ms: Transfer timeout for MOVE_KEY
    """
    type: CommandType
    slot: Optional[int] = None
    node_id: Optional[str] = None
    key: Optional[bytes] = None
    limit: int = 0
    peer: Optional[Address] = None
    timeout_ms: int = 0

    @classmethod
    def list_nodes(cls) -> "Command":
        return cls(type=CommandType.LIST_NODES)

    @classmethod
    def set_slot_importing(cls, slot: int, source_id: str) -> "Command":
        """Mark slot importing on the receiving node, crediting the current owner."""
        return cls(type=CommandType.SET_SLOT_IMPORTING, slot=slot, node_id=source_id)

    @classmethod
    def set_slot_migrating(cls, slot: int, dest_id: str) -> "Command":
        """Mark slot migrating on the owning node, crediting the new owner."""
        return cls(type=CommandType.SET_SLOT_MIGRATING, slot=slot, node_id=dest_id)

    @classmethod
    def set_slot_owner(cls, slot: int, node_id: str) -> "Command":
        return cls(type=CommandType.SET_SLOT_OWNER, slot=slot, node_id=node_id)

    @classmethod
    def clear_slot_state(cls, slot: int) -> "Command":
        return cls(type=CommandType.CLEAR_SLOT_STATE, slot=slot)

    @classmethod
    def count_keys_in_slot(cls, slot: int) -> "Command":
        return cls(type=CommandType.COUNT_KEYS_IN_SLOT, slot=slot)

    @classmethod
    def list_keys_in_slot(cls, slot: int, limit: int) -> "Command":
        return cls(type=CommandType.LIST_KEYS_IN_SLOT, slot=slot, limit=limit)

    @classmethod
    def move_key(cls, dest: Address, key: bytes, timeout_ms: int) -> "Command":
        """Atomically move one key from the addressed node to dest."""
        return cls(type=CommandType.MOVE_KEY, peer=dest, key=key, timeout_ms=timeout_ms)

    @classmethod
    def meet(cls, peer: Address) -> "Command":
        return cls(type=CommandType.MEET, peer=peer)

    @property
    def is_valid(self) -> bool:
        """Check if the command carries the arguments its type needs."""
        if self.type == CommandType.LIST_NODES:
            return True
        if self.type == CommandType.MEET:
            return self.peer is not None
        if self.type == CommandType.MOVE_KEY:
            return self.peer is not None and bool(self.key) and self.timeout_ms >= 0
        if self.slot is None:
            return False
        if self.type in (
                CommandType.SET_SLOT_IMPORTING,
                CommandType.SET_SLOT_MIGRATING,
                CommandType.SET_SLOT_OWNER,
        ):
            return bool(self.node_id)
        if self.type == CommandType.LIST_KEYS_IN_SLOT:
            return self.limit > 0
        return True
