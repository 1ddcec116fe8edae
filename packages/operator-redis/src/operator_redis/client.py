"""RESP admin connections to Redis nodes.

Builds redis.asyncio clients carrying the node's password and TLS material so
that readiness probes, discovery and convergence checks all speak to peers the
same way redis-cli does.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import redis.asyncio as redis

from operator_redis.config import RedisSettings

# Token CLUSTER INFO reports once every slot is served
CLUSTER_OK_TOKEN = "cluster_state:ok"
CLUSTER_SLOTS = 16384


def _read_ca_dir(ca_dir: str) -> str:
    """Concatenate PEM certificates from a CA directory."""
    chunks = []
    for path in sorted(Path(ca_dir).iterdir()):
        if path.is_file() and path.suffix in {".pem", ".crt", ".0"}:
            chunks.append(path.read_text())
    return "\n".join(chunks)


@dataclass
class ConnectionFactory:
    """
    Creates redis.asyncio clients for arbitrary host:port targets.

    Attributes:
        password: AUTH password, or empty for none.
        username: ACL user to AUTH as, or empty for the default user.
        tls: Whether to connect with TLS.
        cert_file: Client certificate for mutual TLS.
        key_file: Client private key for mutual TLS.
        ca_file: CA bundle used to verify the server.
        ca_dir: CA directory, used when ca_file is empty.
        timeout_s: Connect and socket timeout.

    Example:
        factory = ConnectionFactory.from_settings(settings)
        async with factory("redis-1", 6379) as client:
            await client.ping()
    """

    password: str = ""
    username: str = ""
    tls: bool = False
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    ca_dir: str = ""
    timeout_s: float = 2.0

    @classmethod
    def from_settings(cls, settings: RedisSettings, timeout_s: float = 2.0) -> "ConnectionFactory":
        return cls(
            password=settings.password,
            username=settings.acl_username,
            tls=settings.tls_enabled,
            cert_file=settings.tls_cert_file,
            key_file=settings.tls_key_file,
            ca_file=settings.tls_ca_file,
            ca_dir=settings.tls_ca_dir,
            timeout_s=timeout_s,
        )

    def __call__(self, host: str, port: int) -> redis.Redis:
        kwargs: dict[str, Any] = {
            "host": host,
            "port": port,
            "password": self.password or None,
            "username": self.username or None,
            "socket_timeout": self.timeout_s,
            "socket_connect_timeout": self.timeout_s,
            "decode_responses": True,
        }
        if self.tls:
            kwargs["ssl"] = True
            kwargs["ssl_certfile"] = self.cert_file or None
            kwargs["ssl_keyfile"] = self.key_file or None
            if self.ca_file:
                kwargs["ssl_ca_certs"] = self.ca_file
            elif self.ca_dir:
                kwargs["ssl_ca_data"] = _read_ca_dir(self.ca_dir)
        return redis.Redis(**kwargs)


ClientFactory = Callable[[str, int], redis.Redis]


def is_converged(cluster_info: Any) -> bool:
    """
    Evaluate the convergence predicate on a CLUSTER INFO reply.

    Accepts either the raw text reply or the dict redis-py parses it into.
    Requires cluster_state:ok and, when reported, all 16384 slots assigned.
    """
    if isinstance(cluster_info, dict):
        fields = {str(k): str(v) for k, v in cluster_info.items()}
    else:
        fields = {}
        for line in str(cluster_info or "").splitlines():
            name, sep, value = line.strip().partition(":")
            if sep:
                fields[name] = value
    if fields.get("cluster_state") != "ok":
        return False
    assigned = fields.get("cluster_slots_assigned")
    return assigned is None or assigned == str(CLUSTER_SLOTS)


async def fetch_cluster_info(client: redis.Redis) -> Any:
    """Run CLUSTER INFO and return the reply untouched."""
    return await client.execute_command("CLUSTER", "INFO")
