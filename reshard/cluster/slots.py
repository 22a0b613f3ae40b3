"""
Hash Slot Module

Defines the cluster key space: 16384 hash slots, the key-to-slot function,
and the inclusive slot range a migration run works on.

Key-to-slot mapping is redis-py's: CRC16 (XMODEM) of the key modulo 16384,
hashing only the first non-empty "{...}" hash tag when there is one.
"""

from dataclasses import dataclass
from typing import Iterator, Union

from redis.crc import key_slot as _redis_key_slot

from ..config.settings import settings


# Cluster Constants
CLUSTER_SLOTS = 16384
MAX_SLOT = CLUSTER_SLOTS - 1


def key_slot(key: Union[str, bytes]) -> int:
    """
    Calculate which hash slot owns a given key.

    Uses the same function as the cluster nodes so the result matches
    CLUSTER KEYSLOT on every node.

    Args:
        key: The key to hash (str keys are UTF-8 encoded)

    Returns:
        Slot number in [0, MAX_SLOT]
    """
    if isinstance(key, str):
        key = key.encode('utf-8')
    return _redis_key_slot(key, CLUSTER_SLOTS)


@dataclass(frozen=True)
class HashSlotRange:
    """
    Inclusive range of hash slots.

    Attributes:
        start: First slot of the range
        end: Last slot of the range (inclusive)
    """
    start: int
    end: int

    def __post_init__(self):
        """Validate bounds after initialization."""
        if not (0 <= self.start <= self.end <= settings.MAX_SLOT):
            raise ValueError(
                f"Invalid slot range {self.start}-{self.end}: "
                f"must satisfy 0 <= start <= end <= {settings.MAX_SLOT}"
            )

    @classmethod
    def parse(cls, text: str) -> "HashSlotRange":
        """Parse "start-end" or a single slot number."""
        start, sep, end = text.strip().partition('-')
        try:
            first = int(start)
            last = int(end) if sep else first
        except ValueError as e:
            raise ValueError(f"Invalid slot range: {text!r}") from e
        return cls(first, last)

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return self.end - self.start + 1

    def __contains__(self, slot: object) -> bool:
        return isinstance(slot, int) and self.start <= slot <= self.end

    def __str__(self) -> str:
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"
