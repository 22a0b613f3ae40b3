"""
Ownership Propagation Module

Broadcasts the final slot -> node assignment to every master so client
redirects converge on the new owner.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..cluster.nodes import ClusterNode
from ..errors import CommandError, ConnectivityError, ReshardError
from ..protocol.commands import Command

logger = logging.getLogger(__name__)


@dataclass
class PropagationReport:
    """
    Per-master outcome of an ownership announcement.

    Attributes:
        slot: The slot announced
        owner_id: The new owner
        outcomes: node id -> None on success, the error otherwise
    """
    slot: int
    owner_id: str
    outcomes: Dict[str, Optional[ReshardError]] = field(default_factory=dict)

    @property
    def succeeded(self) -> List[str]:
        return [node_id for node_id, error in self.outcomes.items() if error is None]

    @property
    def failed(self) -> Dict[str, ReshardError]:
        return {node_id: error for node_id, error in self.outcomes.items() if error is not None}

    @property
    def ok(self) -> bool:
        """True when every master accepted (vacuously true for no masters)."""
        return not self.failed

    def accepted_by(self, node_id: str) -> bool:
        return node_id in self.outcomes and self.outcomes[node_id] is None


class OwnershipPropagator:
    """Sends SET_SLOT_OWNER to a set of masters, collecting per-node results."""

    def __init__(self, client):
        """
        Args:
            client: Object with an async execute(address, command) method
        """
        self.client = client

    async def announce_ownership(
            self,
            masters: Iterable[ClusterNode],
            slot: int,
            dest_id: str,
            source_id: Optional[str] = None,
    ) -> PropagationReport:
        """
        Assign slot to dest_id on every master.

        Each master is addressed independently: a failure is recorded and
        the next master is still tried. The destination is addressed first
        and the source (when source_id is given) second, so the importing
        side settles before the migrating side clears its flag.

        Args:
            masters: Masters to inform, source and destination included
            slot: The slot
            dest_id: The new owner
            source_id: The previous owner, if known

        Returns:
            PropagationReport; empty (and ok) when masters is empty
        """
        report = PropagationReport(slot=slot, owner_id=dest_id)

        for master in self._ordered(masters, dest_id, source_id):
            try:
                await self.client.execute(master.address, Command.set_slot_owner(slot, dest_id))
            except (ConnectivityError, CommandError) as e:
                logger.warning(f"Master {master.address} did not accept slot {slot} -> {dest_id}: {e}")
                report.outcomes[master.id] = e
            else:
                report.outcomes[master.id] = None

        if not report.outcomes:
            logger.info(f"No masters to inform about slot {slot}")
        return report

    @staticmethod
    def _ordered(masters: Iterable[ClusterNode], dest_id: str, source_id: Optional[str]) -> List[ClusterNode]:
        def rank(node: ClusterNode):
            if node.id == dest_id:
                return (0, "")
            if node.id == source_id:
                return (1, "")
            return (2, str(node.address))
        return sorted(set(masters), key=rank)
