"""
Protocol Parser Module

This module maps node commands to Redis Cluster argument vectors and parses
the replies back into typed values.

Command encoding:
    LIST_NODES                  -> CLUSTER NODES
    SET_SLOT_IMPORTING          -> CLUSTER SETSLOT <slot> IMPORTING <source-id>
    SET_SLOT_MIGRATING          -> CLUSTER SETSLOT <slot> MIGRATING <dest-id>
    SET_SLOT_OWNER              -> CLUSTER SETSLOT <slot> NODE <owner-id>
    CLEAR_SLOT_STATE            -> CLUSTER SETSLOT <slot> STABLE
    COUNT_KEYS_IN_SLOT          -> CLUSTER COUNTKEYSINSLOT <slot>
    LIST_KEYS_IN_SLOT           -> CLUSTER GETKEYSINSLOT <slot> <limit>
    MOVE_KEY                    -> MIGRATE <host> <port> <key> <db> <timeout-ms>
    MEET                        -> CLUSTER MEET <host> <port>
"""

import logging
from typing import Any, List, Optional, Tuple, Union

from ..cluster.nodes import Address, ClusterNode, NodeRole
from ..config.settings import settings
from .commands import Command, CommandType, MoveResult

logger = logging.getLogger(__name__)


class ProtocolParser:
    """
    Parser for Redis Cluster administrative commands and replies.

    CLUSTER NODES line format:
        <id> <ip:port@cport[,hostname]> <flags> <master> <ping-sent>
        <pong-recv> <config-epoch> <link-state> <slot> <slot> ... <slot>

    Slot entries are either a single slot ("42"), a range ("0-5460") or an
    open slot: "[93->-<id>]" (migrating to id) or "[93-<-<id>]" (importing
    from id).
    """

    def __init__(self, db: Optional[int] = None):
        """Initialize the parser with the MIGRATE target database from settings."""
        self.db = db if db is not None else settings.MIGRATE_DB

    def format_command(self, command: Command) -> Tuple[Any, ...]:
        """
        Format a command as a Redis argument vector.

        Args:
            command: The command to format

        Returns:
            Tuple of arguments, ready for execute_command(*args)

        Raises:
            ValueError: If the command lacks required arguments
        """
        if not command.is_valid:
            raise ValueError(f"Invalid command: {command}")

        if command.type == CommandType.LIST_NODES:
            return ("CLUSTER", "NODES")
        elif command.type == CommandType.SET_SLOT_IMPORTING:
            return ("CLUSTER", "SETSLOT", command.slot, "IMPORTING", command.node_id)
        elif command.type == CommandType.SET_SLOT_MIGRATING:
            return ("CLUSTER", "SETSLOT", command.slot, "MIGRATING", command.node_id)
        elif command.type == CommandType.SET_SLOT_OWNER:
            return ("CLUSTER", "SETSLOT", command.slot, "NODE", command.node_id)
        elif command.type == CommandType.CLEAR_SLOT_STATE:
            return ("CLUSTER", "SETSLOT", command.slot, "STABLE")
        elif command.type == CommandType.COUNT_KEYS_IN_SLOT:
            return ("CLUSTER", "COUNTKEYSINSLOT", command.slot)
        elif command.type == CommandType.LIST_KEYS_IN_SLOT:
            return ("CLUSTER", "GETKEYSINSLOT", command.slot, command.limit)
        elif command.type == CommandType.MOVE_KEY:
            return (
                "MIGRATE",
                command.peer.host,
                command.peer.port,
                command.key,
                self.db,
                command.timeout_ms,
            )
        else:
            return ("CLUSTER", "MEET", command.peer.host, command.peer.port)

    def describe(self, command: Command) -> str:
        """Render a command the way it would be typed at a CLI, for logging."""
        parts = []
        for arg in self.format_command(command):
            if isinstance(arg, bytes):
                arg = arg.decode('utf-8', errors='backslashreplace')
            parts.append(str(arg))
        return " ".join(parts)

    def parse_reply(self, command: Command, raw: Any) -> Any:
        """
        Parse a raw reply into the value its command type promises.

        Returns:
            LIST_NODES          -> list of ClusterNode
            COUNT_KEYS_IN_SLOT  -> int
            LIST_KEYS_IN_SLOT   -> list of bytes key names
            MOVE_KEY            -> MoveResult
            anything else       -> True
        """
        if command.type == CommandType.LIST_NODES:
            return self.parse_nodes(_text(raw))
        if command.type == CommandType.COUNT_KEYS_IN_SLOT:
            return int(raw)
        if command.type == CommandType.LIST_KEYS_IN_SLOT:
            return [key if isinstance(key, bytes) else str(key).encode('utf-8') for key in raw or []]
        if command.type == CommandType.MOVE_KEY:
            if _text(raw).upper() == MoveResult.NOKEY.value:
                return MoveResult.NOKEY
            return MoveResult.MOVED
        return True

    def parse_nodes(self, text: str) -> List[ClusterNode]:
        """
        Parse CLUSTER NODES output.

        Args:
            text: Raw CLUSTER NODES reply

        Returns:
            List of ClusterNode in reply order. Malformed lines are skipped.
        """
        nodes = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            node = self._parse_node_line(line)
            if node is not None:
                nodes.append(node)
        return nodes

    def _parse_node_line(self, line: str) -> Optional[ClusterNode]:
        parts = line.split()
        if len(parts) < 8:
            logger.debug(f"Skipping malformed CLUSTER NODES line: {line!r}")
            return None

        node_id, addr_field, flags_field, master_field = parts[:4]
        flags = tuple(flag for flag in flags_field.split(',') if flag and flag != 'noflags')

        try:
            address = self._parse_address(addr_field)
        except ValueError:
            logger.debug(f"Skipping CLUSTER NODES line with bad address: {line!r}")
            return None

        if 'master' in flags:
            role = NodeRole.MASTER
        else:
            role = NodeRole.REPLICA

        slots = []
        importing = {}
        migrating = {}
        for entry in parts[8:]:
            if entry.startswith('['):
                slot, direction, peer_id = self._parse_open_slot(entry)
                if direction == '>':
                    migrating[slot] = peer_id
                else:
                    importing[slot] = peer_id
            elif '-' in entry:
                start, end = entry.split('-', 1)
                slots.append((int(start), int(end)))
            else:
                slots.append((int(entry), int(entry)))

        return ClusterNode(
            id=node_id,
            address=address,
            role=role,
            flags=flags,
            master_id=None if master_field == '-' else master_field,
            slots=tuple(slots),
            importing=importing,
            migrating=migrating,
        )

    def _parse_address(self, field: str) -> Address:
        """Parse "ip:port@cport[,hostname]"; nodes without an address get ('', 0)."""
        addr = field.split(',', 1)[0].split('@', 1)[0]
        host, _, port = addr.rpartition(':')
        return Address(host, int(port) if port else 0)

    def _parse_open_slot(self, entry: str) -> Tuple[int, str, str]:
        """Parse "[slot->-id]" or "[slot-<-id]" into (slot, '>' or '<', id)."""
        body = entry.strip('[]')
        if '->-' in body:
            slot, peer_id = body.split('->-', 1)
            return int(slot), '>', peer_id
        slot, peer_id = body.split('-<-', 1)
        return int(slot), '<', peer_id


def _text(raw: Union[str, bytes, None]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode('utf-8')
    return str(raw)
