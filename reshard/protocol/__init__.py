"""Protocol module for the resharding tool."""

from .commands import Command, CommandType, MoveResult
from .parser import ProtocolParser

__all__ = [
    "Command",
    "CommandType",
    "MoveResult",
    "ProtocolParser",
]
