"""Container health check: PING, then optionally cluster_state:ok.

HC_CLUSTER_CHECK=auto checks the cluster whenever cluster mode is enabled,
which it is by default. A standalone node that leaves REDIS_CLUSTER_ENABLED
unset therefore also gets the cluster check; set HC_CLUSTER_CHECK=off there.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import redis.asyncio as redis

from operator_redis.client import ClientFactory, fetch_cluster_info, is_converged

logger = logging.getLogger(__name__)


class ClusterCheckMode(str, Enum):
    AUTO = "auto"
    ON = "on"
    OFF = "off"

    def enabled(self, cluster_enabled: bool) -> bool:
        if self is ClusterCheckMode.AUTO:
            return cluster_enabled
        return self is ClusterCheckMode.ON


@dataclass
class HealthResult:
    healthy: bool
    reason: str = ""


async def check_health(
    connect: ClientFactory,
    host: str,
    port: int,
    mode: ClusterCheckMode = ClusterCheckMode.AUTO,
    cluster_enabled: bool = True,
    retries: int = 1,
    retry_interval_s: float = 0.5,
) -> HealthResult:
    """
    Check that the node answers PONG and, if requested, that the cluster is ok.

    Args:
        connect: Client factory (its timeout bounds each round-trip).
        host: Node host.
        port: Node data port.
        mode: Cluster check mode.
        cluster_enabled: Whether cluster mode is configured (used by AUTO).
        retries: PING attempts before giving up.
        retry_interval_s: Pause between PING attempts.

    Returns:
        HealthResult; reason names the failed check.
    """
    reason = ""
    for attempt in range(1, max(retries, 1) + 1):
        try:
            async with connect(host, port) as client:
                reply = await client.execute_command("PING")
                if reply is not True and reply != "PONG":
                    return HealthResult(False, f"Unexpected PING response: {reply!r}")
                if not mode.enabled(cluster_enabled):
                    return HealthResult(True)
                try:
                    info = await fetch_cluster_info(client)
                except redis.RedisError as e:
                    return HealthResult(False, f"cluster info failed: {e}")
                if not is_converged(info):
                    return HealthResult(False, "cluster_state not OK")
                return HealthResult(True)
        except (redis.RedisError, OSError, asyncio.TimeoutError) as e:
            reason = f"PING failed: {e}"
            logger.debug("Health attempt %d against %s:%s failed: %s", attempt, host, port, e)
        if attempt < retries:
            await asyncio.sleep(retry_interval_s)
    return HealthResult(False, reason)
