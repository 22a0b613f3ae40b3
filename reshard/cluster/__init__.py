"""
Cluster module for the resharding tool.

This module provides the cluster model:
- Hash slots and the key-to-slot function
- Node records parsed from the cluster
- Topology snapshots (reshard.cluster.topology)
"""

from .nodes import Address, ClusterNode, NodeRole, NodeSlotState, SlotMigrationState
from .slots import CLUSTER_SLOTS, MAX_SLOT, HashSlotRange, key_slot

__all__ = [
    'Address',
    'ClusterNode',
    'NodeRole',
    'NodeSlotState',
    'SlotMigrationState',
    'CLUSTER_SLOTS',
    'MAX_SLOT',
    'HashSlotRange',
    'key_slot',
]
