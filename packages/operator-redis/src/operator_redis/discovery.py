"""Sentinel-based master discovery.

When a sentinel is configured, replicas ask it for the current master of a
named group instead of trusting REDIS_MASTER_HOST/REDIS_MASTER_PORT_NUMBER.
"""

import asyncio
import logging
from dataclasses import dataclass

import redis.asyncio as redis

from operator_redis.client import ClientFactory
from operator_redis.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)


@dataclass
class SentinelDiscovery:
    """
    Queries a sentinel for the active master of a group.

    Attributes:
        host: Sentinel host.
        port: Sentinel port.
        connect: Client factory used to reach the sentinel.
    """

    host: str
    port: int
    connect: ClientFactory

    async def master_address(self, group: str) -> tuple[str, int] | None:
        """
        Ask the sentinel for the current master of group.

        Returns:
            (host, port) of the master, or None if the sentinel does not know
            the group.

        Raises:
            TransientNetworkError: If the sentinel cannot be queried.
        """
        try:
            async with self.connect(self.host, self.port) as client:
                reply = await client.execute_command("SENTINEL", "get-master-addr-by-name", group)
        except (redis.RedisError, OSError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"sentinel {self.host}:{self.port} query failed: {e}") from e

        if not reply or len(reply) < 2:
            logger.warning("Sentinel %s:%s has no master for group %r", self.host, self.port, group)
            return None
        host, port = reply[0], reply[1]
        logger.info("Sentinel reports master of %r at %s:%s", group, host, port)
        return str(host), int(port)
