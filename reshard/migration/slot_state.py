"""
Slot State Module

Drives the two-sided IMPORTING/MIGRATING handshake for one slot.

The cluster-wide view of a slot in flight is a pair of independent per-node
flags: MIGRATING on the source, IMPORTING on the destination. Each is
modelled as its own NodeSlotState record, correlated by slot and peer id.

Ordering precondition (not enforced here): begin_import on the destination
must complete before begin_migrate on the source. The reverse order opens a
window where the source redirects clients to a destination that does not
yet accept the slot.
"""

import logging

from ..cluster.nodes import ClusterNode, NodeSlotState, SlotMigrationState
from ..protocol.commands import Command

logger = logging.getLogger(__name__)


__all__ = ['NodeSlotState', 'SlotMigrationState', 'SlotStateController']


class SlotStateController:
    """Issues the slot-state commands of a migration."""

    def __init__(self, client):
        """
        Args:
            client: Object with an async execute(address, command) method
        """
        self.client = client

    async def begin_import(self, dest: ClusterNode, slot: int, source_id: str) -> NodeSlotState:
        """
        Mark slot importing on the destination, crediting source_id as owner.

        Raises:
            CommandError: Destination rejected the command
            ConnectivityError: Destination unreachable
        """
        await self.client.execute(dest.address, Command.set_slot_importing(slot, source_id))
        logger.debug(f"Slot {slot} importing on {dest.address} from {source_id}")
        return NodeSlotState(dest.id, slot, SlotMigrationState.IMPORTING, source_id)

    async def begin_migrate(self, source: ClusterNode, slot: int, dest_id: str) -> NodeSlotState:
        """
        Mark slot migrating on the source, crediting dest_id as new owner.

        Raises:
            CommandError: Source rejected the command
            ConnectivityError: Source unreachable
        """
        await self.client.execute(source.address, Command.set_slot_migrating(slot, dest_id))
        logger.debug(f"Slot {slot} migrating on {source.address} to {dest_id}")
        return NodeSlotState(source.id, slot, SlotMigrationState.MIGRATING, dest_id)

    async def clear_stable(self, node: ClusterNode, slot: int) -> NodeSlotState:
        """
        Clear any importing/migrating flag a node holds for slot.

        Only the node's local flag is cleared. Keys already moved stay where
        they are and slot ownership is not changed.

        Raises:
            CommandError: Node rejected the command
            ConnectivityError: Node unreachable
        """
        await self.client.execute(node.address, Command.clear_slot_state(slot))
        logger.info(f"Slot {slot} cleared to stable on {node.address}")
        return NodeSlotState(node.id, slot)
