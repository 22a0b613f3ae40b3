"""
Reshard: live slot migration for Redis Cluster

Moves ownership of a contiguous range of hash slots from a source node to a
destination node while the cluster keeps serving traffic.
"""

from .cluster.nodes import Address
from .migration.orchestrator import migrate

__version__ = "1.0.0"

__all__ = ["Address", "migrate", "__version__"]
