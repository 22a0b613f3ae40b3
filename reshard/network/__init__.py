"""Network module: node-to-node command transport."""

from .client import CommandPolicy, NodeClient

__all__ = ["CommandPolicy", "NodeClient"]
