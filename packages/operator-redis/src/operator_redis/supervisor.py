"""
Node setup and redis-server supervision.

setup() prepares a node before the server starts:
    validate settings -> remap node identities (dynamic IPs) -> synthesize redis.conf

Supervisor.run() then:
- spawns `redis-server <conf> --daemonize no --logfile "" <extra flags>`
- waits for the local node to answer PONG
- runs the cluster bootstrap when this node is the creator
- forwards SIGTERM/SIGINT to the server
- stops the server (SIGTERM, then SIGKILL) and exits 1 on any bootstrap failure

Pattern: SIGTERM -> wait -> SIGKILL, always awaiting proc.wait() to avoid zombies.
"""

import asyncio
import functools
import logging
import signal

from operator_redis.client import ConnectionFactory
from operator_redis.conf import RedisConf
from operator_redis.config import RedisSettings
from operator_redis.discovery import SentinelDiscovery
from operator_redis.exceptions import BootstrapFailure, ConfigFileError
from operator_redis.identity import IdentityRemapper
from operator_redis.orchestrator import BootstrapOutcome, ClusterBootstrap
from operator_redis.prober import NodeProber
from operator_redis.resolver import PeerResolver
from operator_redis.retry import RetryPolicy
from operator_redis.synthesizer import ConfigSynthesizer
from operator_redis.types import NodeDescriptor
from operator_redis.validation import validate

logger = logging.getLogger(__name__)

# Local readiness budget after spawning redis-server
LOCAL_READY_TIMEOUT_S = 90.0


async def remap_identities(settings: RedisSettings, shutdown: asyncio.Event | None = None) -> dict[str, str]:
    """Refresh nodes.json and rewrite nodes.conf for peers whose IP changed."""
    remapper = IdentityRemapper(
        nodes_conf=settings.cluster_nodes_file,
        map_file=settings.identity_map_file,
        resolver=PeerResolver(shutdown=shutdown),
        policy=RetryPolicy(settings.dns_retries, settings.dns_retry_sleep_s),
    )
    return await remapper.refresh(settings.peer_nodes())


def build_synthesizer(settings: RedisSettings, shutdown: asyncio.Event | None = None) -> ConfigSynthesizer:
    connect = ConnectionFactory.from_settings(settings)
    discovery = None
    if settings.sentinel_host:
        discovery = SentinelDiscovery(settings.sentinel_host, settings.sentinel_port_number, connect)
    return ConfigSynthesizer(
        settings,
        resolver=PeerResolver(RetryPolicy(settings.dns_retries, settings.dns_retry_sleep_s), shutdown=shutdown),
        prober=NodeProber(
            connect,
            tcp_policy=RetryPolicy(settings.tcp_probe_retries, settings.tcp_probe_sleep_s),
            shutdown=shutdown,
        ),
        discovery=discovery,
    )


async def setup(settings: RedisSettings, shutdown: asyncio.Event | None = None) -> RedisConf:
    """
    Validate settings, remap identities and write redis.conf.

    Returns:
        The synthesized configuration.

    Raises:
        ValidationError: If the settings are invalid (nothing is written).
        ConfigFileError: If a file cannot be written.
        ResolutionTimeout: If a peer does not resolve on the first remap.
        BootstrapFailure: If a replica cannot reach its master.
        TransientNetworkError: If the configured sentinel cannot be queried.
    """
    validate(settings)
    for directory in (settings.data_dir, settings.tmp_dir, settings.conf_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigFileError(directory, f"cannot create directory: {e}") from e

    if settings.cluster_enabled and settings.cluster_dynamic_ips:
        changes = await remap_identities(settings, shutdown)
        if changes:
            logger.info("Updated %d address(es) in %s", len(changes), settings.cluster_nodes_file)

    conf = await build_synthesizer(settings, shutdown).synthesize()
    logger.info("Setup completed")
    return conf


def server_command(settings: RedisSettings) -> list[str]:
    """redis-server command line: foreground, logging to stderr, plus extra flags."""
    command = [settings.server_path, str(settings.conf_file), "--daemonize", "no", "--logfile", ""]
    command += settings.extra_flags.split()
    return command


class Supervisor:
    """
    Runs redis-server as a child and drives cluster bootstrap around it.

    Attributes:
        settings: Node settings.
        shutdown: Set when SIGTERM/SIGINT arrives.
        process: The redis-server child, once spawned.
        bootstrap_outcome: Result of the cluster bootstrap, when it ran.

    Example:
        supervisor = Supervisor(settings)
        exit_code = await supervisor.run()
    """

    def __init__(self, settings: RedisSettings, terminate_timeout_s: float = 10.0) -> None:
        self.settings = settings
        self.terminate_timeout_s = terminate_timeout_s
        self.shutdown = asyncio.Event()
        self.process: asyncio.subprocess.Process | None = None
        self.bootstrap_outcome: BootstrapOutcome | None = None

    async def run(self, skip_setup: bool = False) -> int:
        """
        Set up, start and supervise redis-server.

        Returns:
            The server's exit code, or 1 when readiness or bootstrap failed.
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))
        try:
            if not skip_setup:
                await setup(self.settings, self.shutdown)
            return await self._supervise()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    async def _supervise(self) -> int:
        self.process = await self.spawn()
        if not await self.wait_local_ready():
            logger.error("redis-server did not become ready within %.0f seconds", LOCAL_READY_TIMEOUT_S)
            await self.terminate()
            return 1
        logger.info("Local node is ready (PING -> PONG)")

        if self.settings.cluster_enabled and self.settings.cluster_creator:
            logger.info("This node is the cluster creator")
            try:
                self.bootstrap_outcome = await ClusterBootstrap.from_settings(self.settings, self.shutdown).run()
            except BootstrapFailure as e:
                logger.error("Cluster creation/verification failed, stopping redis-server: %s", e)
                await self.terminate()
                return 1
            except Exception:
                logger.exception("Cluster bootstrap crashed, stopping redis-server")
                await self.terminate()
                return 1
        elif self.settings.cluster_enabled:
            logger.info("This node is not a cluster creator; skipping cluster creation")

        returncode = await self.process.wait()
        logger.info("redis-server exited with code %d", returncode)
        return returncode

    async def spawn(self) -> asyncio.subprocess.Process:
        """Start redis-server in the foreground with inherited stdio."""
        command = server_command(self.settings)
        logger.debug("redis-server command line: %s", " ".join(command))
        proc = await asyncio.create_subprocess_exec(*command, stdin=asyncio.subprocess.DEVNULL)
        logger.info("redis-server started (PID=%d)", proc.pid)
        return proc

    async def wait_local_ready(self) -> bool:
        """Wait for PONG on the local data port, giving up early if the server exits."""
        assert self.process is not None
        prober = NodeProber(ConnectionFactory.from_settings(self.settings), shutdown=self.shutdown)
        local = NodeDescriptor(
            raw=f"127.0.0.1:{self.settings.data_port}", host="127.0.0.1", port=self.settings.data_port
        )
        logger.info("Waiting for local node %s to become ready", local)

        ready = asyncio.ensure_future(prober.wait(local, LOCAL_READY_TIMEOUT_S))
        exited = asyncio.ensure_future(self.process.wait())
        try:
            done, _pending = await asyncio.wait({ready, exited}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()
            exited.cancel()
            await asyncio.gather(ready, exited, return_exceptions=True)
        if ready in done and not ready.cancelled() and ready.exception() is None:
            return ready.result().ready
        if exited in done:
            logger.error("redis-server exited with code %s before becoming ready", self.process.returncode)
        return False

    async def terminate(self) -> None:
        """SIGTERM, wait, then SIGKILL; always reaps the child."""
        proc = self.process
        if proc is None or proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.terminate_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("redis-server ignored SIGTERM for %.0fs; sending SIGKILL", self.terminate_timeout_s)
            proc.kill()
            await proc.wait()

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down", sig.name)
        self.shutdown.set()
        if self.process is not None and self.process.returncode is None:
            self.process.send_signal(sig)
