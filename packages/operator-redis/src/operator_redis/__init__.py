"""
Operator Redis

Bootstraps and maintains a Redis Cluster node from REDIS_* environment
settings. This package provides:

- RedisConf: idempotent line-level editing of redis.conf
- ConfigSynthesizer: maps settings onto redis.conf
- PeerResolver / NodeProber: DNS and readiness waits with bounded budgets
- ClusterBootstrap: one-shot cluster formation and convergence polling
- IdentityRemapper: nodes.conf address rewrite across IP churn
- CLI infrastructure: Typer-based command structure
"""

__version__ = "0.1.0"

from operator_redis.conf import RedisConf
from operator_redis.config import RedisSettings, load_settings, parse_flag
from operator_redis.exceptions import (
    BootstrapFailure,
    BootstrapInterrupted,
    ConfigFileError,
    PeerNotReady,
    ResolutionTimeout,
    TransientNetworkError,
    ValidationError,
)
from operator_redis.identity import IdentityMap, IdentityRemapper
from operator_redis.orchestrator import BootstrapOutcome, BootstrapState, ClusterBootstrap
from operator_redis.prober import NodeProber
from operator_redis.resolver import PeerResolver
from operator_redis.synthesizer import ConfigSynthesizer
from operator_redis.types import NodeDescriptor, Readiness, ReadinessResult, ResolvedSocket

__all__ = [
    "__version__",
    "BootstrapFailure",
    "BootstrapInterrupted",
    "BootstrapOutcome",
    "BootstrapState",
    "ClusterBootstrap",
    "ConfigFileError",
    "ConfigSynthesizer",
    "IdentityMap",
    "IdentityRemapper",
    "NodeDescriptor",
    "NodeProber",
    "PeerNotReady",
    "PeerResolver",
    "Readiness",
    "ReadinessResult",
    "RedisConf",
    "RedisSettings",
    "ResolutionTimeout",
    "ResolvedSocket",
    "TransientNetworkError",
    "ValidationError",
    "load_settings",
    "parse_flag",
]
