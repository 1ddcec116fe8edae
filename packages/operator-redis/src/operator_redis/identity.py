"""
Node identity recovery across IP churn.

Redis Cluster records each peer by IP in nodes.conf. When containers are
rescheduled their IPs change and the stored topology points nowhere. The
IdentityRemapper keeps a host -> IP map (nodes.json) next to nodes.conf and,
before redis-server starts, rewrites every IP that changed since the last
run.

The rewrite is a single regex pass driven by the whole old -> new mapping,
so swapping two IPs in one run cannot cascade, and only address fields
(" <ip>:<port>") are touched, so 10.0.0.1 never matches inside 10.0.0.11.
"""

import asyncio
import json
import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from operator_redis.conf import atomic_write
from operator_redis.exceptions import BootstrapInterrupted, ConfigFileError, TransientNetworkError
from operator_redis.resolver import PeerResolver
from operator_redis.retry import RetryPolicy
from operator_redis.types import NodeDescriptor

logger = logging.getLogger(__name__)


class IdentityMap(BaseModel):
    """
    Persisted map of configured node descriptor -> last known IP.

    Entries are updated in place and never removed automatically.
    """

    entries: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "IdentityMap":
        """
        Read the map from path.

        Raises:
            ConfigFileError: If the file exists but cannot be read or parsed.
        """
        try:
            return cls.model_validate_json(path.read_text())
        except (OSError, PydanticValidationError, json.JSONDecodeError) as e:
            raise ConfigFileError(path, str(e)) from e

    def save(self, path: Path) -> None:
        atomic_write(path, self.model_dump_json(indent=2) + "\n")


def rewrite_addresses(text: str, changes: dict[str, str]) -> str:
    """
    Replace old IPs with new ones in nodes.conf address fields.

    Args:
        text: nodes.conf contents.
        changes: old IP -> new IP.

    Returns:
        The rewritten text. Lines without a matching address are untouched.

    Example:
        >>> rewrite_addresses("id 10.0.0.1:6379@16379 master", {"10.0.0.1": "10.0.0.9"})
        'id 10.0.0.9:6379@16379 master'
    """
    if not changes:
        return text
    # Longest first so a shorter address is never preferred over a longer one
    alternatives = "|".join(re.escape(old) for old in sorted(changes, key=len, reverse=True))
    pattern = re.compile(rf"(?<= )(?:{alternatives})(?=:\d+(?:[@,\s]|$))", re.MULTILINE)
    return pattern.sub(lambda m: changes[m.group(0)], text)


class IdentityRemapper:
    """
    Maintains nodes.json and rewrites nodes.conf when peer IPs change.

    Attributes:
        nodes_conf: Path to the cluster state file redis-server writes.
        map_file: Path to the persisted IdentityMap.
        resolver: Resolves peers (DNS may lag container start).
        policy: Lookup budget per peer.
    """

    def __init__(
        self,
        nodes_conf: Path,
        map_file: Path,
        resolver: PeerResolver,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.nodes_conf = nodes_conf
        self.map_file = map_file
        self.resolver = resolver
        self.policy = policy or RetryPolicy(attempts=20, interval_s=5.0)

    async def refresh(self, nodes: list[NodeDescriptor]) -> dict[str, str]:
        """
        Record or apply the current peer addresses.

        On the first run (no map or no nodes.conf yet) every peer must
        resolve and the map is written. On later runs peers that fail to
        resolve keep their old entry, and nodes.conf is rewritten for every
        IP that changed.

        Args:
            nodes: Peers as configured.

        Returns:
            old IP -> new IP for every address rewritten (empty on first run).

        Raises:
            ResolutionTimeout: On the first run, when a peer does not resolve.
            ConfigFileError: If nodes.conf or the map cannot be read or written.
        """
        if not self.map_file.exists() or not self.nodes_conf.exists():
            await self._initialize(nodes)
            return {}

        identity = IdentityMap.load(self.map_file)
        resolved = await self._resolve_each(nodes)

        changes: dict[str, str] = {}
        for node in nodes:
            new_ip = resolved.get(node.raw)
            if new_ip is None:
                continue
            old_ip = identity.entries.get(node.raw)
            if old_ip and old_ip != new_ip:
                logger.info("Changing old IP %s -> %s for node %s", old_ip, new_ip, node)
                changes[old_ip] = new_ip
            identity.entries[node.raw] = new_ip

        if changes:
            try:
                text = self.nodes_conf.read_text()
            except OSError as e:
                raise ConfigFileError(self.nodes_conf, str(e)) from e
            atomic_write(self.nodes_conf, rewrite_addresses(text, changes))
        identity.save(self.map_file)
        return changes

    async def _initialize(self, nodes: list[NodeDescriptor]) -> None:
        logger.info("Persisting initial host -> IP map to %s", self.map_file)
        identity = IdentityMap()
        for node in nodes:
            socket = await self.resolver.resolve(node, self.policy.attempts, self.policy.interval_s)
            identity.entries[node.raw] = socket.ip
        self.map_file.parent.mkdir(parents=True, exist_ok=True)
        identity.save(self.map_file)

    async def _resolve_each(self, nodes: list[NodeDescriptor]) -> dict[str, str]:
        """Resolve peers concurrently; failures are logged and left out."""
        results = await asyncio.gather(
            *(self.resolver.resolve(n, self.policy.attempts, self.policy.interval_s) for n in nodes),
            return_exceptions=True,
        )
        resolved: dict[str, str] = {}
        for node, result in zip(nodes, results):
            if isinstance(result, BootstrapInterrupted):
                raise result
            if isinstance(result, TransientNetworkError):
                logger.warning("DNS lookup failed for %s; keeping its previous address", node.host)
                continue
            if isinstance(result, BaseException):
                raise result
            resolved[node.raw] = result.ip
        return resolved
