"""
Node Client Module

Sends one command at a time to a specific cluster node and returns the
parsed reply, or raises ConnectivityError / CommandError.

One redis.asyncio connection is kept per node address and reused for the
whole run. The library's own retry layer is disabled: how often a command
is attempted is decided by an explicit CommandPolicy (a single attempt by
default).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..cluster.nodes import Address
from ..config.settings import settings
from ..errors import CommandError, ConnectivityError
from ..protocol.commands import Command
from ..protocol.parser import ProtocolParser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandPolicy:
    """
    How many times a command is attempted.

    Only ConnectivityError is ever retried; a node that answered with an
    error reply is not asked again.

    Attributes:
        attempts: Total attempts per command (1 = no retry)
        backoff: Seconds to wait between attempts
    """
    attempts: int = 1
    backoff: float = 0.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.backoff < 0:
            raise ValueError(f"backoff must be >= 0, got {self.backoff}")

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Check if a failed attempt (1-based) should be followed by another."""
        return isinstance(error, ConnectivityError) and attempt < self.attempts


class NodeClient:
    """
    Issues commands to cluster nodes.

    Usage:
        async with NodeClient() as client:
            nodes = await client.execute(Address('127.0.0.1', 7000), Command.list_nodes())

    Attributes:
        policy: Retry policy applied to every command
        parser: ProtocolParser used to encode commands and decode replies
    """

    def __init__(
            self,
            policy: CommandPolicy = None,
            password: Optional[str] = None,
            command_timeout: float = None,
            connect_timeout: float = None,
            parser: ProtocolParser = None,
    ):
        """
        Initialize the client.

        Args:
            policy: Retry policy (default: settings.COMMAND_ATTEMPTS attempts)
            password: AUTH password for every node (default from settings)
            command_timeout: Read timeout in seconds (default from settings)
            connect_timeout: Connect timeout in seconds (default from settings)
            parser: ProtocolParser instance (creates new one if not provided)
        """
        self.policy = policy if policy is not None else CommandPolicy(attempts=settings.COMMAND_ATTEMPTS)
        self.password = password if password is not None else settings.PASSWORD
        self.command_timeout = command_timeout if command_timeout is not None else settings.COMMAND_TIMEOUT
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT
        self.parser = parser if parser is not None else ProtocolParser()

        self._connections: Dict[Address, aioredis.Redis] = {}

    async def execute(self, address: Address, command: Command) -> Any:
        """
        Send a command to the node at address and wait for the reply.

        Args:
            address: Node address
            command: Command to send

        Returns:
            Parsed reply (see ProtocolParser.parse_reply)

        Raises:
            ConnectivityError: Node unreachable or round trip timed out
            CommandError: Node rejected the command
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._execute_once(address, command)
            except (ConnectivityError, CommandError) as e:
                if not self.policy.should_retry(e, attempt):
                    raise
                logger.warning(
                    f"Attempt {attempt}/{self.policy.attempts} of "
                    f"{command.type.name} on {address} failed: {e.message}"
                )
                await self._drop_connection(address)
                if self.policy.backoff:
                    await asyncio.sleep(self.policy.backoff)

    async def _execute_once(self, address: Address, command: Command) -> Any:
        args = self.parser.format_command(command)
        logger.debug(f"{address} <- {self.parser.describe(command)}")

        try:
            raw = await self._connection(address).execute_command(*args)
        except ResponseError as e:
            message = str(e)
            # MIGRATE reports a source->destination transfer failure as IOERR
            if message.startswith("IOERR"):
                raise ConnectivityError(address, message) from e
            raise CommandError(address, message) from e
        except (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError) as e:
            await self._drop_connection(address)
            raise ConnectivityError(address, str(e) or type(e).__name__) from e
        except RedisError as e:
            raise CommandError(address, str(e)) from e

        try:
            return self.parser.parse_reply(command, raw)
        except (ValueError, TypeError) as e:
            raise CommandError(address, f"unexpected reply to {command.type.name}: {raw!r}") from e

    def _connection(self, address: Address) -> aioredis.Redis:
        """Get or lazily create the connection for an address."""
        conn = self._connections.get(address)
        if conn is None:
            conn = aioredis.Redis(
                host=address.host,
                port=address.port,
                password=self.password,
                socket_timeout=self.command_timeout,
                socket_connect_timeout=self.connect_timeout,
                retry=Retry(NoBackoff(), 0),
                decode_responses=False,
            )
            self._connections[address] = conn
        return conn

    async def _drop_connection(self, address: Address) -> None:
        conn = self._connections.pop(address, None)
        if conn is not None:
            try:
                await conn.aclose()
            except (RedisError, OSError) as e:
                logger.debug(f"Error closing connection to {address}: {e}")

    async def close(self) -> None:
        """Close every open node connection."""
        for address in list(self._connections):
            await self._drop_connection(address)

    async def __aenter__(self) -> "NodeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
