"""
Exception classes for configuration and cluster bootstrap failures.

Each exception stores its context (which peer, key or file) in attributes
and renders an operator-readable message naming it:

- ValidationError: one or more settings are invalid (fatal at startup)
- ConfigFileError: redis.conf / nodes.conf / nodes.json unreadable or unwritable
- TransientNetworkError: DNS miss or refused connection, retried locally
- ResolutionTimeout: DNS retry budget exhausted for a host
- PeerNotReady: a peer never passed the readiness probe
- BootstrapFailure: cluster bootstrap reached the FAILED state
- BootstrapInterrupted: shutdown requested while waiting
"""

from pathlib import Path


class ValidationError(Exception):
    """
    Raised when settings validation fails.

    Collects every problem before raising so the operator sees the
    complete list in one run.

    Attributes:
        errors: List of human-readable error messages
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(str(self))

    def __str__(self) -> str:
        return "Invalid configuration: " + "; ".join(self.errors)


class ConfigFileError(Exception):
    """
    Raised when a configuration or identity file cannot be read or written.

    Attributes:
        path: The file that failed
        reason: Underlying OS error text
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot update {path}: {reason}")


class TransientNetworkError(Exception):
    """Base class for network failures that are retried within a budget."""


class ResolutionTimeout(TransientNetworkError):
    """
    Raised when a host did not resolve within the retry budget.

    Attributes:
        host: Host name that failed to resolve
        attempts: Number of lookups made
    """

    def __init__(self, host: str, attempts: int) -> None:
        self.host = host
        self.attempts = attempts
        super().__init__(f"DNS lookup failed for {host} after {attempts} attempt(s)")


class PeerNotReady(TransientNetworkError):
    """
    Raised when a peer never became ready.

    Attributes:
        peer: The peer descriptor as configured (e.g. "redis-2:6379")
        reason: Last observed failure
    """

    def __init__(self, peer: str, reason: str) -> None:
        self.peer = peer
        self.reason = reason
        super().__init__(f"Node {peer} is not ready: {reason}")


class BootstrapFailure(Exception):
    """
    Raised when cluster bootstrap cannot complete.

    The supervising process must stop redis-server and exit non-zero.

    Attributes:
        reason: What failed, naming the peer or step involved
        state: Name of the orchestrator state where the failure happened
    """

    def __init__(self, reason: str, state: str = "") -> None:
        self.reason = reason
        self.state = state
        prefix = f"[{state}] " if state else ""
        super().__init__(f"{prefix}{reason}")


class BootstrapInterrupted(BootstrapFailure):
    """Raised when a shutdown signal arrives while waiting on the cluster."""

    def __init__(self, state: str = "") -> None:
        super().__init__("shutdown requested", state)
