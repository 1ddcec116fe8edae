"""
Shared data types for Redis cluster bootstrap.

These are internal types passed between the resolver, prober, orchestrator
and identity remapper. All types use @dataclass; Pydantic models are
reserved for settings and persisted files.
"""

import re
from dataclasses import dataclass
from enum import Enum

# Separators accepted in REDIS_NODES: "r1:6379,r2:6379;r3 r4"
_NODE_SEPARATORS = re.compile(r"[,;\s]+")


def strip_brackets(address: str) -> str:
    """Strip IPv6 literal brackets: "[2001:db8::1]" -> "2001:db8::1"."""
    if address.startswith("[") and address.endswith("]"):
        return address[1:-1]
    return address


@dataclass(frozen=True)
class NodeDescriptor:
    """
    A peer as configured, parsed from a "host[:port]" token.

    Attributes:
        raw: The token exactly as configured (identity map key).
        host: Host name or IP, without IPv6 brackets.
        port: Data port (TLS port when TLS is enabled).
    """

    raw: str
    host: str
    port: int

    @classmethod
    def parse(cls, token: str, default_port: int) -> "NodeDescriptor":
        """
        Parse "host", "host:port", "[v6]" or "[v6]:port".

        A bare IPv6 literal without brackets is taken as a host with the
        default port.

        Raises:
            ValueError: If the token is empty or the port is not a number.
        """
        raw = token.strip()
        if not raw:
            raise ValueError("Empty node descriptor")

        if raw.startswith("["):
            host, sep, rest = raw[1:].partition("]")
            if not sep:
                raise ValueError(f"Unterminated IPv6 literal in node descriptor: {raw}")
            port_text = rest[1:] if rest.startswith(":") else ""
        elif raw.count(":") == 1:
            host, port_text = raw.split(":")
        else:
            host, port_text = raw, ""

        if not port_text:
            return cls(raw=raw, host=host, port=default_port)
        if not port_text.isdigit():
            raise ValueError(f"Invalid port in node descriptor: {raw}")
        return cls(raw=raw, host=host, port=int(port_text))

    def __str__(self) -> str:
        return self.raw


def parse_node_list(value: str, default_port: int) -> list[NodeDescriptor]:
    """
    Split a REDIS_NODES value into descriptors, dropping empties and duplicates.

    Order of first appearance is preserved.
    """
    nodes: list[NodeDescriptor] = []
    seen: set[str] = set()
    for token in _NODE_SEPARATORS.split(value or ""):
        if not token or token in seen:
            continue
        seen.add(token)
        nodes.append(NodeDescriptor.parse(token, default_port))
    return nodes


@dataclass(frozen=True)
class ResolvedSocket:
    """
    A peer address after DNS resolution.

    Attributes:
        ip: IPv4 or IPv6 address, never bracketed.
        port: Data port.
    """

    ip: str
    port: int

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


class Readiness(Enum):
    """Outcome of a readiness wait."""

    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass
class ReadinessResult:
    """
    Readiness of a single node.

    Attributes:
        node: The probed descriptor.
        readiness: READY or TIMED_OUT.
        reason: Last failure observed (empty when ready).
        elapsed_s: Seconds spent waiting.
    """

    node: NodeDescriptor
    readiness: Readiness
    reason: str = ""
    elapsed_s: float = 0.0

    @property
    def ready(self) -> bool:
        return self.readiness is Readiness.READY


@dataclass
class CommandResult:
    """
    Captured result of a redis-cli invocation.

    Attributes:
        returncode: Process exit status.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
    """

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0
