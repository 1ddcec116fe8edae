"""
Peer address resolution with a bounded retry budget.

Containers in a fresh deployment often start before their DNS records
exist, so lookups are retried at a constant interval until an address comes
back or the budget runs out. getaddrinfo(AF_UNSPEC) returns both A and AAAA
records; the first one wins.
"""

import asyncio
import logging
import socket
from typing import Awaitable, Callable

from operator_redis.exceptions import BootstrapInterrupted, ResolutionTimeout
from operator_redis.retry import RetryPolicy
from operator_redis.types import NodeDescriptor, ResolvedSocket, strip_brackets

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Awaitable[str | None]]


async def system_lookup(host: str) -> str | None:
    """
    Return the first IPv4/IPv6 address for host, or None on a miss.

    Uses the event loop's getaddrinfo so the lookup does not block.
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        logger.debug("Lookup of %s failed: %s", host, e)
        return None
    for _family, _type, _proto, _canon, sockaddr in infos:
        if sockaddr and sockaddr[0]:
            return str(sockaddr[0])
    return None


class PeerResolver:
    """
    Resolves node descriptors to ip:port sockets.

    Attributes:
        policy: Default retry budget used when resolve() is not given one.
        lookup: Coroutine returning an address or None (injectable for tests).
        shutdown: Optional event that aborts waiting between attempts.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        lookup: Lookup | None = None,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy(attempts=20, interval_s=2.0)
        self.lookup = lookup or system_lookup
        self.shutdown = shutdown

    async def resolve_host(self, host: str, policy: RetryPolicy | None = None) -> str:
        """
        Resolve a host to a bracket-free IP address.

        IP literals come back as-is without a lookup.

        Raises:
            ResolutionTimeout: When every attempt missed.
            BootstrapInterrupted: When shutdown is requested while waiting.
        """
        host = strip_brackets(host)
        if _is_ip_literal(host):
            return host

        policy = policy or self.policy
        for attempt in policy.attempt_numbers():
            address = await self.lookup(host)
            if address:
                return strip_brackets(address)
            logger.debug("No address for %s yet (attempt %d/%d)", host, attempt, policy.attempts)
            if attempt < policy.attempts and await policy.wait(self.shutdown):
                raise BootstrapInterrupted("ResolvingAddresses")
        raise ResolutionTimeout(host, policy.attempts)

    async def resolve(
        self,
        descriptor: NodeDescriptor,
        retries: int | None = None,
        backoff: float | None = None,
    ) -> ResolvedSocket:
        """
        Resolve a descriptor to a socket.

        Args:
            descriptor: Peer to resolve.
            retries: Attempt budget (defaults to the resolver policy).
            backoff: Seconds between attempts (defaults to the resolver policy).

        Raises:
            ResolutionTimeout: When the budget is exhausted.
        """
        policy = self.policy
        if retries is not None or backoff is not None:
            policy = RetryPolicy(
                attempts=retries if retries is not None else self.policy.attempts,
                interval_s=backoff if backoff is not None else self.policy.interval_s,
            )
        ip = await self.resolve_host(descriptor.host, policy)
        return ResolvedSocket(ip=ip, port=descriptor.port)

    async def resolve_all(self, descriptors: list[NodeDescriptor]) -> list[ResolvedSocket]:
        """
        Resolve every descriptor concurrently, preserving order.

        Raises:
            ResolutionTimeout: For the first descriptor that failed.
        """
        tasks = [asyncio.ensure_future(self.resolve(d)) for d in descriptors]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise


def _is_ip_literal(host: str) -> bool:
    for family in (socket.AF_INET, socket.AF_INET6):
        try:
            socket.inet_pton(family, host)
            return True
        except (OSError, ValueError):
            continue
    return False
