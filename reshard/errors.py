"""
Error types raised while talking to cluster nodes and moving slots.

Every failure that crosses a component boundary is one of these; transport
library exceptions are translated by the NodeClient and never leak out.
"""

from typing import Optional


class ReshardError(Exception):
    """Base class for all resharding errors."""


class ConnectivityError(ReshardError):
    """A node could not be reached, or a round trip timed out."""

    def __init__(self, address, message: str):
        self.address = address
        self.message = message
        super().__init__(f"{address}: {message}")


class CommandError(ReshardError):
    """A node rejected a command (error reply)."""

    def __init__(self, address, message: str):
        self.address = address
        self.message = message
        super().__init__(f"{address}: {message}")


class NotFoundError(ReshardError):
    """An expected node id or address is not part of the topology."""


class PartialMigrationError(ReshardError):
    """
    Some keys of a slot were moved, some were not.

    Attributes:
        slot: The slot being migrated
        keys_moved: Keys confirmed moved before the failure
        keys_remaining: Enumerated keys not moved
        cause: The ConnectivityError or CommandError that stopped the transfer
    """

    def __init__(
            self,
            slot: int,
            keys_moved: int,
            keys_remaining: int,
            cause: Optional[Exception] = None,
    ):
        self.slot = slot
        self.keys_moved = keys_moved
        self.keys_remaining = keys_remaining
        self.cause = cause
        super().__init__(
            f"slot {slot}: moved {keys_moved} keys, {keys_remaining} remaining ({cause})"
        )
