"""
Key Migration Module

Transfers every key resident in one slot from the source node to the
destination node, one atomic MIGRATE per key.

Known inconsistency window: keys are enumerated once, bounded by the count
observed just before. Keys written into the slot after the enumeration are
not part of this pass. Nothing here re-enumerates to close that window.
"""

import logging
from typing import Callable, Optional

from ..cluster.nodes import ClusterNode
from ..config.settings import settings
from ..errors import CommandError, ConnectivityError, PartialMigrationError
from ..protocol.commands import Command, MoveResult

logger = logging.getLogger(__name__)


class KeyMigrator:
    """
    Moves the keys of a slot.

    Usage:
        migrator = KeyMigrator(client)
        moved = await migrator.migrate_slot(source, dest, 100)
    """

    def __init__(self, client):
        """
        Args:
            client: Object with an async execute(address, command) method
        """
        self.client = client

    async def migrate_slot(
            self,
            source: ClusterNode,
            dest: ClusterNode,
            slot: int,
            timeout_ms: int = None,
            progress: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        Move all keys of slot from source to dest.

        Args:
            source: Node currently holding the keys (slot MIGRATING)
            dest: Node receiving the keys (slot IMPORTING)
            slot: The slot to drain
            timeout_ms: Per-key MIGRATE timeout (default from settings)
            progress: Called as progress(keys_moved, keys_total) after each key

        Returns:
            Number of keys moved. 0 for an empty slot, in which case no move
            command is issued.

        Raises:
            PartialMigrationError: A key move failed; carries moved/remaining
                counts and the underlying error as cause
            ConnectivityError, CommandError: Counting or enumerating keys
                failed (nothing was moved)
        """
        if timeout_ms is None:
            timeout_ms = settings.MIGRATE_TIMEOUT_MS

        key_count = await self.client.execute(source.address, Command.count_keys_in_slot(slot))
        if key_count == 0:
            logger.debug(f"No keys found in slot {slot}")
            return 0

        keys = await self.client.execute(source.address, Command.list_keys_in_slot(slot, key_count))
        if len(keys) != key_count:
            logger.warning(
                f"Slot {slot}: counted {key_count} keys but enumerated {len(keys)} "
                f"(concurrent writes); moving the enumerated keys only"
            )

        keys_total = len(keys)
        keys_moved = 0
        for key in keys:
            try:
                result = await self.client.execute(
                    source.address,
                    Command.move_key(dest.address, key, timeout_ms),
                )
            except (ConnectivityError, CommandError) as e:
                remaining = keys_total - keys_moved
                logger.error(
                    f"Slot {slot}: moving {key!r} to {dest.address} failed after "
                    f"{keys_moved}/{keys_total} keys: {e}"
                )
                raise PartialMigrationError(slot, keys_moved, remaining, e) from e

            if result is MoveResult.NOKEY:
                logger.debug(f"Key {key!r} already gone from {source.address}")
            keys_moved += 1
            if progress is not None:
                progress(keys_moved, keys_total)

        logger.debug(f"Migrated {keys_moved} keys of slot {slot} to {dest.address}")
        return keys_moved
