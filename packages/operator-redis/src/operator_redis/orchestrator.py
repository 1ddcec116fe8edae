"""
Cluster bootstrap state machine.

    IDLE -> VALIDATING_PEERS -> RESOLVING_ADDRESSES -> FORMING
         -> POLLING_CONVERGENCE -> CONVERGED | FAILED

Only the initiator (REDIS_CLUSTER_CREATOR=yes) walks the states; every other
node ends in SKIPPED immediately and just serves traffic. Formation
runs at most once per ClusterBootstrap instance, and a cluster that already
reports cluster_state:ok is never formed again. A non-zero exit from
`redis-cli --cluster create` is only a warning: it usually means the cluster
already exists, and the convergence poll decides.

Example:
    bootstrap = ClusterBootstrap.from_settings(settings, shutdown=shutdown)
    outcome = await bootstrap.run()   # raises BootstrapFailure on FAILED
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import redis.asyncio as redis

from operator_redis.client import ClientFactory, ConnectionFactory, fetch_cluster_info, is_converged
from operator_redis.config import RedisSettings
from operator_redis.exceptions import BootstrapFailure, BootstrapInterrupted, PeerNotReady, TransientNetworkError
from operator_redis.prober import NodeProber
from operator_redis.redis_cli import RedisCli
from operator_redis.resolver import PeerResolver
from operator_redis.retry import RetryPolicy, pause
from operator_redis.types import NodeDescriptor, ResolvedSocket

logger = logging.getLogger(__name__)


class BootstrapState(Enum):
    IDLE = "Idle"
    VALIDATING_PEERS = "ValidatingPeers"
    RESOLVING_ADDRESSES = "ResolvingAddresses"
    FORMING = "Forming"
    POLLING_CONVERGENCE = "PollingConvergence"
    CONVERGED = "Converged"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass
class BootstrapOutcome:
    """
    Result of a bootstrap run.

    Attributes:
        state: Terminal state (CONVERGED, FAILED or SKIPPED for non-initiators).
        formed: Whether this run issued the formation command.
        sockets: Resolved peer sockets, self first.
        reason: Failure reason, empty on success.
        elapsed_s: Wall time of the run.
    """

    state: BootstrapState
    formed: bool = False
    sockets: list[ResolvedSocket] = field(default_factory=list)
    reason: str = ""
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state in (BootstrapState.CONVERGED, BootstrapState.SKIPPED)


class ClusterBootstrap:
    """
    Drives one node through cluster bootstrap.

    Attributes:
        nodes: Self first, then every distinct peer.
        initiator: Whether this node forms the cluster.
        replicas: Replicas per master passed to the formation command.
        prober: Readiness prober for ValidatingPeers.
        resolver: Resolver for ResolvingAddresses.
        cli: redis-cli wrapper used for formation.
        connect: Client factory used for CLUSTER INFO.
        readiness_timeout_s: Budget for every peer to become ready.
        convergence_timeout_s: Budget for cluster_state:ok after formation.
        resolve_delay_s: Sleep before the first DNS query.
        dns_policy: Per-peer lookup budget.
        poll_interval_s: Pause between CLUSTER INFO polls.
        shutdown: Optional event that aborts any wait.
    """

    def __init__(
        self,
        nodes: list[NodeDescriptor],
        initiator: bool,
        replicas: int,
        prober: NodeProber,
        resolver: PeerResolver,
        cli: RedisCli,
        connect: ClientFactory,
        readiness_timeout_s: float = 90.0,
        convergence_timeout_s: float = 90.0,
        resolve_delay_s: float = 0.0,
        dns_policy: RetryPolicy | None = None,
        poll_interval_s: float = 1.0,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        if not nodes:
            raise ValueError("At least one node (self) is required")
        self.nodes = nodes
        self.initiator = initiator
        self.replicas = replicas
        self.prober = prober
        self.resolver = resolver
        self.cli = cli
        self.connect = connect
        self.readiness_timeout_s = readiness_timeout_s
        self.convergence_timeout_s = convergence_timeout_s
        self.resolve_delay_s = resolve_delay_s
        self.dns_policy = dns_policy or RetryPolicy(attempts=1, interval_s=1.0)
        self.poll_interval_s = poll_interval_s
        self.shutdown = shutdown

        self.state = BootstrapState.IDLE
        self.formation_calls = 0
        self._outcome: BootstrapOutcome | None = None
        self._failure: BootstrapFailure | None = None

    @classmethod
    def from_settings(
        cls,
        settings: RedisSettings,
        shutdown: asyncio.Event | None = None,
        nodes: list[NodeDescriptor] | None = None,
    ) -> "ClusterBootstrap":
        """Wire a bootstrap from settings with real probes, DNS and redis-cli."""
        connect = ConnectionFactory.from_settings(settings)
        prober = NodeProber(
            connect,
            tcp_policy=RetryPolicy(settings.tcp_probe_retries, settings.tcp_probe_sleep_s),
            concurrency=settings.probe_concurrency,
            shutdown=shutdown,
        )
        resolver = PeerResolver(shutdown=shutdown)
        return cls(
            nodes=nodes if nodes is not None else settings.cluster_nodes(),
            initiator=settings.cluster_creator,
            replicas=settings.cluster_replicas,
            prober=prober,
            resolver=resolver,
            cli=RedisCli.from_settings(settings),
            connect=connect,
            readiness_timeout_s=settings.readiness_timeout_s,
            convergence_timeout_s=settings.convergence_timeout_s,
            resolve_delay_s=settings.cluster_sleep_before_dns_lookup,
            dns_policy=RetryPolicy(settings.cluster_dns_lookup_retries, settings.cluster_dns_lookup_sleep),
            shutdown=shutdown,
        )

    @property
    def outcome(self) -> BootstrapOutcome | None:
        return self._outcome

    def _enter(self, state: BootstrapState) -> None:
        logger.debug("Bootstrap state %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self) -> BootstrapOutcome:
        """
        Run the state machine once.

        Calling run() again after it finished returns the stored outcome (or
        re-raises the stored failure) without touching any peer.

        Returns:
            BootstrapOutcome with state CONVERGED or SKIPPED.

        Raises:
            BootstrapFailure: When the run ends in FAILED.
            BootstrapInterrupted: When shutdown was requested mid-run.
        """
        if self._failure is not None:
            raise self._failure
        if self._outcome is not None:
            return self._outcome

        if not self.initiator:
            logger.info("This node is not the cluster creator; skipping cluster creation")
            self._enter(BootstrapState.SKIPPED)
            self._outcome = BootstrapOutcome(BootstrapState.SKIPPED)
            return self._outcome

        start = time.monotonic()
        try:
            outcome = await self._run_initiator()
        except BootstrapFailure as e:
            self._fail(e, start)
            raise
        except TransientNetworkError as e:
            failure = BootstrapFailure(str(e), self.state.value)
            self._fail(failure, start)
            raise failure from e
        outcome.elapsed_s = time.monotonic() - start
        self._outcome = outcome
        return outcome

    def _fail(self, failure: BootstrapFailure, start: float) -> None:
        if not failure.state:
            failure.state = self.state.value
        logger.error("Cluster bootstrap failed in %s: %s", self.state.value, failure.reason)
        self._enter(BootstrapState.FAILED)
        self._failure = failure
        self._outcome = BootstrapOutcome(
            BootstrapState.FAILED,
            formed=self.formation_calls > 0,
            reason=failure.reason,
            elapsed_s=time.monotonic() - start,
        )

    async def _run_initiator(self) -> BootstrapOutcome:
        me = self.nodes[0]
        if await self._local_converged(me):
            logger.info("Cluster is already active according to the local node; skipping creation")
            self._enter(BootstrapState.CONVERGED)
            return BootstrapOutcome(BootstrapState.CONVERGED)

        if len(self.nodes) < 3:
            logger.warning("Only %d node(s) in the list; typically too few for production", len(self.nodes))

        self._enter(BootstrapState.VALIDATING_PEERS)
        await self._validate_peers()

        self._enter(BootstrapState.RESOLVING_ADDRESSES)
        sockets = await self._resolve_peers()

        self._enter(BootstrapState.FORMING)
        await self._form(sockets)

        self._enter(BootstrapState.POLLING_CONVERGENCE)
        await self._poll_convergence(sockets[0])

        self._enter(BootstrapState.CONVERGED)
        logger.info("Cluster reached state OK")
        return BootstrapOutcome(BootstrapState.CONVERGED, formed=True, sockets=sockets)

    async def _local_converged(self, me: NodeDescriptor) -> bool:
        try:
            async with self.connect(me.host, me.port) as client:
                return is_converged(await fetch_cluster_info(client))
        except (redis.RedisError, OSError, asyncio.TimeoutError) as e:
            logger.debug("Pre-check CLUSTER INFO on %s failed: %s", me, e)
            return False

    async def _validate_peers(self) -> None:
        logger.info("Waiting for all nodes to become ready: %s", ", ".join(str(n) for n in self.nodes))
        results = await self.prober.wait_all(self.nodes, self.readiness_timeout_s)
        for result in results:
            if not result.ready:
                error = PeerNotReady(str(result.node), result.reason)
                raise BootstrapFailure(
                    f"{error} (within {self.readiness_timeout_s:.0f}s); cannot create cluster",
                    BootstrapState.VALIDATING_PEERS.value,
                )
        logger.info("All %d nodes respond with PONG", len(results))

    async def _resolve_peers(self) -> list[ResolvedSocket]:
        if self.resolve_delay_s > 0:
            logger.info("Waiting %ss before querying node IP addresses", self.resolve_delay_s)
            if await pause(self.resolve_delay_s, self.shutdown):
                raise BootstrapInterrupted(BootstrapState.RESOLVING_ADDRESSES.value)
        tasks = [
            asyncio.ensure_future(self.resolver.resolve(n, self.dns_policy.attempts, self.dns_policy.interval_s))
            for n in self.nodes
        ]
        try:
            sockets = list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        logger.debug("Cluster sockets: %s", " ".join(str(s) for s in sockets))
        return sockets

    async def _form(self, sockets: list[ResolvedSocket]) -> None:
        if self.formation_calls:
            logger.info("Formation already issued by this process; not repeating it")
            return
        self.formation_calls += 1
        logger.info(
            "Creating cluster: %s --cluster-replicas %d",
            " ".join(str(s) for s in sockets),
            self.replicas,
        )
        result = await self.cli.create_cluster(sockets, self.replicas)
        if not result.success:
            logger.warning(
                "Cluster create returned %d; the cluster may already exist, checking convergence: %s",
                result.returncode,
                result.stderr or result.stdout,
            )
        elif await self.cli.check_cluster(sockets[0]):
            logger.info("All slots covered")

    async def _poll_convergence(self, target: ResolvedSocket) -> None:
        logger.info("Waiting for cluster_state:ok after creation")
        deadline = time.monotonic() + self.convergence_timeout_s
        last_error = "cluster_state is not ok"
        while True:
            try:
                async with self.connect(target.ip, target.port) as client:
                    if is_converged(await fetch_cluster_info(client)):
                        return
            except (redis.RedisError, OSError, asyncio.TimeoutError) as e:
                last_error = f"CLUSTER INFO failed: {e}"
                logger.debug("Convergence poll against %s failed: %s", target, e)
            if time.monotonic() + self.poll_interval_s >= deadline:
                break
            if await pause(self.poll_interval_s, self.shutdown):
                raise BootstrapInterrupted(BootstrapState.POLLING_CONVERGENCE.value)
        raise BootstrapFailure(
            f"cluster did not converge within {self.convergence_timeout_s:.0f}s ({last_error}); "
            "check bus connectivity and announced addresses",
            BootstrapState.POLLING_CONVERGENCE.value,
        )
