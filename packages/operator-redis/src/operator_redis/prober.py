"""
Two-phase node readiness probing.

A node is ready only when both phases pass, in order:

1. TCP connect to host:port, retried within a bounded budget. This fails
   fast without opening a protocol client against a closed port.
2. PING over RESP, which must answer exactly PONG. An open port that does
   not answer PONG (loading dataset, auth error, wrong service) is not ready.

wait() repeats the two phases until the node is ready or the timeout runs
out. wait_all() probes many nodes concurrently under a semaphore, so N slow
peers cost about one timeout rather than N.
"""

import asyncio
import logging
import time

import redis.asyncio as redis

from operator_redis.client import ClientFactory
from operator_redis.exceptions import BootstrapInterrupted
from operator_redis.retry import RetryPolicy, pause
from operator_redis.types import NodeDescriptor, Readiness, ReadinessResult

logger = logging.getLogger(__name__)


class NodeProber:
    """
    Readiness prober for Redis nodes.

    Attributes:
        connect: Client factory for the PING phase.
        tcp_policy: Retry budget for the TCP phase of each round.
        poll_interval_s: Pause between rounds.
        connect_timeout_s: Timeout for a single TCP connect.
        concurrency: Maximum simultaneous probes in wait_all().
        shutdown: Optional event that aborts waiting.
    """

    def __init__(
        self,
        connect: ClientFactory,
        tcp_policy: RetryPolicy | None = None,
        poll_interval_s: float = 0.3,
        connect_timeout_s: float = 1.0,
        concurrency: int = 8,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        self.connect = connect
        self.tcp_policy = tcp_policy or RetryPolicy(attempts=24, interval_s=1.0)
        self.poll_interval_s = poll_interval_s
        self.connect_timeout_s = connect_timeout_s
        self.concurrency = concurrency
        self.shutdown = shutdown

    async def tcp_probe(self, host: str, port: int) -> bool:
        """Single TCP connect attempt."""
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.connect_timeout_s,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def wait_for_port(
        self, host: str, port: int, policy: RetryPolicy | None = None, deadline: float | None = None
    ) -> bool:
        """
        TCP phase: retry connecting until success or the budget runs out.

        Raises:
            BootstrapInterrupted: When shutdown is requested while waiting.
        """
        policy = policy or self.tcp_policy
        for attempt in policy.attempt_numbers():
            if await self.tcp_probe(host, port):
                return True
            if attempt == policy.attempts or (deadline is not None and time.monotonic() >= deadline):
                break
            if await policy.wait(self.shutdown):
                raise BootstrapInterrupted("ValidatingPeers")
        return False

    async def ping(self, host: str, port: int) -> tuple[bool, str]:
        """
        Liveness phase: PING must return exactly PONG.

        Returns:
            (ok, reason) where reason describes a failure.
        """
        try:
            async with self.connect(host, port) as client:
                reply = await client.execute_command("PING")
        except (redis.RedisError, OSError, asyncio.TimeoutError) as e:
            return False, f"PING failed: {e}"
        # redis-py maps PONG to True for PING
        if reply is True or reply == "PONG":
            return True, ""
        return False, f"unexpected PING reply: {reply!r}"

    async def probe(self, node: NodeDescriptor, deadline: float | None = None) -> tuple[bool, str]:
        """One round of both phases."""
        if not await self.wait_for_port(node.host, node.port, deadline=deadline):
            return False, f"not connectable at {node.host}:{node.port}"
        return await self.ping(node.host, node.port)

    async def wait(self, node: NodeDescriptor, timeout: float, deadline: float | None = None) -> ReadinessResult:
        """
        Wait until node passes both phases or timeout elapses.

        A shared monotonic deadline, when given, takes precedence over timeout.

        Returns:
            ReadinessResult with READY or TIMED_OUT and the last failure.

        Raises:
            BootstrapInterrupted: When shutdown is requested while waiting.
        """
        start = time.monotonic()
        if deadline is None:
            deadline = start + timeout
        reason = "not probed"
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                ok, reason = await asyncio.wait_for(self.probe(node, deadline), timeout=remaining)
            except asyncio.TimeoutError:
                reason = f"no answer within {timeout:.0f}s"
                break
            if ok:
                logger.debug("Node %s is up (PONG)", node)
                return ReadinessResult(node, Readiness.READY, "", time.monotonic() - start)
            logger.debug("Node %s not ready yet: %s", node, reason)
            if time.monotonic() + self.poll_interval_s >= deadline:
                break
            if await pause(self.poll_interval_s, self.shutdown):
                raise BootstrapInterrupted("ValidatingPeers")
        return ReadinessResult(node, Readiness.TIMED_OUT, reason, time.monotonic() - start)

    async def wait_all(self, nodes: list[NodeDescriptor], timeout: float) -> list[ReadinessResult]:
        """
        Wait for every node concurrently, at most `concurrency` at a time.

        All nodes share one deadline; a node still queued for a probe slot
        when it passes is reported TIMED_OUT.

        Returns:
            One result per node, in input order.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        start = time.monotonic()
        deadline = start + timeout

        async def _bounded(node: NodeDescriptor) -> ReadinessResult:
            try:
                await asyncio.wait_for(semaphore.acquire(), timeout=max(deadline - time.monotonic(), 0))
            except asyncio.TimeoutError:
                return ReadinessResult(
                    node, Readiness.TIMED_OUT, "no probe slot before the deadline", time.monotonic() - start
                )
            try:
                return await self.wait(node, timeout, deadline=deadline)
            finally:
                semaphore.release()

        tasks = [asyncio.ensure_future(_bounded(node)) for node in nodes]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
