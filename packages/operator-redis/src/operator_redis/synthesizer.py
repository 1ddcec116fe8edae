"""
redis.conf synthesis from RedisSettings.

ConfigSynthesizer loads redis.conf once, applies every policy in a fixed
order and saves once. Running it again with the same settings produces the
same file: scalar directives are replaced in place, save rules are cleared
before being re-emitted, rename-command lines are only added when missing,
and the include line is always moved to the end so user overrides win.

Order:
    mounted override -> auth -> network -> persistence -> TLS -> threads
    -> credentials -> cluster -> replication -> disabled commands -> include
"""

import logging
import shutil
import socket

from operator_redis.conf import RedisConf
from operator_redis.config import DEFAULT_PORT, RedisSettings
from operator_redis.discovery import SentinelDiscovery
from operator_redis.exceptions import BootstrapFailure, ConfigFileError
from operator_redis.prober import NodeProber
from operator_redis.resolver import PeerResolver
from operator_redis.types import strip_brackets

logger = logging.getLogger(__name__)


def machine_ip() -> str:
    """Best-effort primary address of this host (used for dynamic IPs)."""
    hostname = socket.gethostname()
    try:
        return socket.gethostbyname(hostname)
    except OSError:
        return "127.0.0.1"


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


class ConfigSynthesizer:
    """
    Applies RedisSettings to redis.conf.

    Attributes:
        settings: Immutable node settings.
        resolver: Resolves the master host for replicas.
        prober: Confirms the master port is reachable before replicaof.
        discovery: Optional sentinel used to locate the master.
    """

    def __init__(
        self,
        settings: RedisSettings,
        resolver: PeerResolver | None = None,
        prober: NodeProber | None = None,
        discovery: SentinelDiscovery | None = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self.prober = prober
        self.discovery = discovery

    async def synthesize(self) -> RedisConf:
        """
        Load, apply all policies and save redis.conf.

        Returns:
            The saved RedisConf.

        Raises:
            ConfigFileError: If redis.conf cannot be read or written.
            BootstrapFailure: If a replica cannot reach its master.
        """
        s = self.settings
        mounted = s.mounted_conf_dir / "redis.conf"
        if mounted.exists():
            logger.info("Using mounted configuration %s", mounted)
            try:
                s.conf_file.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(mounted, s.conf_file)
            except OSError as e:
                raise ConfigFileError(s.conf_file, str(e)) from e
            return RedisConf.load(s.conf_file)

        self.seed_default()
        conf = RedisConf.load(s.conf_file)
        self.apply_defaults(conf)
        self.apply_cluster(conf)
        if s.replication_mode:
            await self.apply_replication(conf)
        self.apply_disabled_commands(conf)
        self.apply_include(conf)
        conf.save()
        logger.info("Wrote %s (%d lines)", s.conf_file, len(conf.lines))
        return conf

    def seed_default(self) -> None:
        """Copy the image default redis.conf into place if none exists yet."""
        s = self.settings
        seed = s.default_conf_dir / "redis.conf"
        if s.conf_file.exists() or not seed.exists():
            return
        logger.debug("Seeding %s from %s", s.conf_file, seed)
        try:
            s.conf_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(seed, s.conf_file)
        except OSError as e:
            raise ConfigFileError(s.conf_file, str(e)) from e

    def apply_defaults(self, conf: RedisConf) -> None:
        """Auth relaxation, networking, persistence, TLS, threads and credentials."""
        s = self.settings

        if s.allow_empty_password:
            logger.warning("ALLOW_EMPTY_PASSWORD is set; never use this in production")
            conf.set("protected-mode", "no")
        if s.allow_remote_connections:
            conf.set("bind", "0.0.0.0 ::")

        conf.set("port", str(s.port_number))
        conf.set("dir", str(s.data_dir))
        conf.set("pidfile", str(s.pid_file))
        # Runtime passes --daemonize no; logs go to stdout
        conf.set("daemonize", "yes")
        conf.set("logfile", "")

        conf.set("appendonly", _yes_no(s.aof_enabled))
        if s.aof_enabled:
            conf.set("appendfsync", "everysec")

        conf.unset("save")
        rules = s.save_rules
        if rules:
            for interval, changes in rules:
                conf.set("save", f"{interval} {changes}")
        elif s.rdb_policy_disabled:
            conf.set("save", "")

        if s.tls_enabled:
            self.apply_tls(conf)

        if s.io_threads is not None:
            conf.set("io-threads", str(s.io_threads))
        if s.io_threads_do_reads is not None:
            conf.set("io-threads-do-reads", _yes_no(s.io_threads_do_reads))

        if s.password:
            conf.set("requirepass", s.password)
            conf.set("masterauth", s.password)
        else:
            conf.unset("requirepass")
        if s.aclfile:
            conf.set("aclfile", s.aclfile)

    def apply_tls(self, conf: RedisConf) -> None:
        s = self.settings
        if s.port_number == DEFAULT_PORT and s.tls_port_number == DEFAULT_PORT:
            # Both on the default port: TLS only
            conf.set("port", "0")
        conf.set("tls-port", str(s.tls_port_number))
        conf.set("tls-cert-file", s.tls_cert_file)
        conf.set("tls-key-file", s.tls_key_file)
        if s.tls_ca_file:
            conf.set("tls-ca-cert-file", s.tls_ca_file)
        else:
            conf.set("tls-ca-cert-dir", s.tls_ca_dir)
        if s.tls_key_file_pass:
            conf.set("tls-key-file-pass", s.tls_key_file_pass)
        if s.tls_dh_params_file:
            conf.set("tls-dh-params-file", s.tls_dh_params_file)
        conf.set("tls-auth-clients", _yes_no(s.tls_auth_clients))

    def apply_cluster(self, conf: RedisConf) -> None:
        """Cluster mode, announce addresses and TLS interconnect."""
        s = self.settings
        if not s.cluster_enabled:
            conf.set("cluster-enabled", "no")
            return

        conf.set("cluster-enabled", "yes")
        conf.set("cluster-config-file", str(s.cluster_nodes_file))
        conf.set("cluster-node-timeout", str(s.cluster_node_timeout_ms))

        announce_ip = machine_ip() if s.cluster_dynamic_ips else s.cluster_announce_ip
        conf.set("cluster-announce-ip", strip_brackets(announce_ip))
        if s.cluster_announce_hostname:
            conf.set("cluster-announce-hostname", s.cluster_announce_hostname)
        conf.set("cluster-preferred-endpoint-type", s.cluster_preferred_endpoint_type)
        if s.cluster_announce_port is not None:
            conf.set("cluster-announce-port", str(s.cluster_announce_port))
        if s.cluster_announce_bus_port is not None:
            conf.set("cluster-announce-bus-port", str(s.cluster_announce_bus_port))

        if s.tls_enabled:
            conf.set("tls-cluster", "yes")
            conf.set("tls-replication", "yes")

    async def apply_replication(self, conf: RedisConf) -> None:
        """
        Announce address and, for replicas, masterauth + replicaof.

        Raises:
            BootstrapFailure: If the master never accepts TCP connections.
        """
        s = self.settings
        logger.info("Configuring replication mode %s", s.replication_mode)
        conf.set("replica-announce-ip", strip_brackets(s.replica_ip or machine_ip()))
        if s.tls_enabled:
            conf.set("tls-replication", "yes")
        conf.set("replica-announce-port", str(s.replica_port or s.data_port))

        if s.replication_mode != "replica":
            return

        master_host, master_port = s.master_host, s.master_port_number
        if self.discovery is not None:
            found = await self.discovery.master_address(s.sentinel_master_name)
            if found is not None:
                master_host, master_port = found

        master_ip = strip_brackets(master_host)
        if self.resolver is not None:
            master_ip = await self.resolver.resolve_host(master_host)

        if self.prober is not None and not await self.prober.wait_for_port(master_ip, master_port):
            raise BootstrapFailure(f"master {master_host}:{master_port} is not connectable", "Replication")

        if s.master_password:
            conf.set("masterauth", s.master_password)
        conf.set("replicaof", f"{master_ip} {master_port}")

    def apply_disabled_commands(self, conf: RedisConf) -> None:
        for command in self.settings.disabled_commands:
            if conf.has_line("rename-command", f'{command} ""'):
                logger.debug("%s is already disabled", command)
                continue
            conf.append("rename-command", f'{command} ""')

    def apply_include(self, conf: RedisConf) -> None:
        """Move the overrides include to the end of the file."""
        overrides = self.settings.overrides_file
        if not overrides.is_file():
            return
        conf.unset("include")
        conf.append("include", str(overrides))
