"""
Cluster Topology Module

Read-only snapshot of cluster membership as reported by a node's
CLUSTER NODES output.

The snapshot may be stale by the time later commands run: nodes can join,
leave or change address between discover() and the next command. Callers
tolerate id lookups racing with membership changes; nothing here refreshes
automatically.
"""

import logging
from typing import Dict, List, Optional, Set

from ..errors import NotFoundError
from ..protocol.commands import Command
from .nodes import Address, ClusterNode

logger = logging.getLogger(__name__)


class TopologyView:
    """
    Snapshot of cluster membership built from NodeClient queries.

    Usage:
        view = TopologyView(client)
        nodes = await view.discover(Address('10.0.0.1', 7000))
        dest_id = await view.resolve_id(Address('10.0.0.2', 7000))
    """

    def __init__(self, client):
        """
        Initialize the topology view.

        Args:
            client: Object with an async execute(address, command) method
        """
        self.client = client
        self._nodes: Dict[str, ClusterNode] = {}

    async def discover(self, entrypoint: Address) -> Set[ClusterNode]:
        """
        Query a node for the cluster membership it knows about.

        Args:
            entrypoint: Address of any reachable cluster node

        Returns:
            Set of ClusterNode (the entrypoint's view)

        Raises:
            ConnectivityError: If the entrypoint is unreachable
        """
        nodes = await self._list_nodes(entrypoint)
        self._nodes = {node.id: node for node in nodes}
        logger.debug(f"Discovered {len(nodes)} nodes via {entrypoint}")
        return set(nodes)

    async def resolve(self, address: Address) -> ClusterNode:
        """
        Find the entry of the node listening on address, as that node reports it.

        The node at the address is asked directly. Its own entry is matched
        by address first; when the node advertises a different address than
        the one used to reach it (e.g. localhost vs. 127.0.0.1) its "myself"
        entry is used instead.

        Raises:
            ConnectivityError: If the node is unreachable
            NotFoundError: If the node reports no matching entry
        """
        nodes = await self._list_nodes(address)
        for node in nodes:
            if node.address == address:
                return node
        for node in nodes:
            if node.is_myself:
                return node
        raise NotFoundError(f"no node with address {address} in its own topology")

    async def resolve_id(self, address: Address) -> str:
        """
        Map an address to the current id of the node listening on it.

        Raises:
            ConnectivityError: If the node is unreachable
            NotFoundError: If the node reports no matching entry
        """
        node = await self.resolve(address)
        return node.id

    async def _list_nodes(self, address: Address) -> List[ClusterNode]:
        return await self.client.execute(address, Command.list_nodes())

    @property
    def nodes(self) -> Set[ClusterNode]:
        """All nodes of the last snapshot."""
        return set(self._nodes.values())

    def masters(self) -> Set[ClusterNode]:
        """
        Master nodes of the last snapshot.

        Failing masters are included; nodes still in handshake or without an
        address are not, since they cannot be addressed.
        """
        return {
            node for node in self._nodes.values()
            if node.is_master and not ({"handshake", "noaddr"} & set(node.flags))
        }

    def get(self, node_id: str) -> ClusterNode:
        """Look up a node by id in the last snapshot."""
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFoundError(f"node {node_id} not in topology") from None

    def find(self, address: Address) -> ClusterNode:
        """Look up a node by address in the last snapshot."""
        for node in self._nodes.values():
            if node.address == address:
                return node
        raise NotFoundError(f"no node with address {address} in topology")

    def owner_of(self, slot: int) -> Optional[str]:
        """Id of the master owning a slot in the last snapshot, if any."""
        for node in self._nodes.values():
            if node.is_master and node.owns(slot):
                return node.id
        return None
