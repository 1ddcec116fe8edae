"""
Environment-based settings for the Redis cluster node.

RedisSettings is an immutable snapshot of every REDIS_* variable, built once
at process start and passed explicitly to each component. Variables keep the
names used by the container images (REDIS_PASSWORD, REDIS_NODES,
ALLOW_EMPTY_PASSWORD, ...).

Loading rules:
- ``<VAR>_FILE`` (Docker secrets) wins over ``<VAR>`` when the file is readable.
- An empty variable means "not set": the field default applies.
- Every boolean goes through parse_flag(), which rejects unknown tokens
  instead of treating them as false.

Example:
    REDIS_PASSWORD_FILE=/run/secrets/redis REDIS_NODES="r1,r2,r3" operator-redis setup
"""

import logging
import os
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BeforeValidator, Field, field_validator, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from operator_redis.types import NodeDescriptor, parse_node_list

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6379

_TRUE_TOKENS = {"yes", "true", "on", "1"}
_FALSE_TOKENS = {"no", "false", "off", "0"}


def parse_flag(value: Any) -> bool | None:
    """
    Parse a yes/no style token.

    Returns:
        True for yes/true/on/1, False for no/false/off/0 (case-insensitive),
        None when the value is None or blank.

    Raises:
        ValueError: On any other token.
    """
    if value is None or isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if not token:
        return None
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise ValueError(f"Unrecognized boolean value {value!r} (expected yes/no, true/false, on/off, 1/0)")


def _flag(value: Any) -> bool:
    result = parse_flag(value)
    if result is None:
        raise ValueError("Boolean value is empty")
    return result


Flag = Annotated[bool, BeforeValidator(_flag)]


class SecretFileSource(PydanticBaseSettingsSource):
    """
    Settings source reading ``<ENV_NAME>_FILE`` secret files.

    For REDIS_PASSWORD this reads the path in REDIS_PASSWORD_FILE. Unreadable
    files are skipped with a warning so the plain variable can still apply.
    """

    def _env_names(self, field: FieldInfo, field_name: str) -> list[str]:
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            return [str(choice).upper() for choice in alias.choices if str(choice).isupper()]
        prefix = self.config.get("env_prefix", "")
        return [f"{prefix}{field_name}".upper()]

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        for env_name in self._env_names(field, field_name):
            path = os.environ.get(f"{env_name}_FILE")
            if not path:
                continue
            try:
                return Path(path).read_text().rstrip("\r\n"), env_name, False
            except OSError as e:
                logger.warning("Skipping %s: %s is not readable (%s)", env_name, path, e)
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, _, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[field_name] = value
        return data


class RedisSettings(BaseSettings):
    """
    Redis node configuration.

    All settings can be overridden via environment variables with the
    REDIS_ prefix, e.g. REDIS_PORT_NUMBER=6380 or REDIS_CLUSTER_CREATOR=yes.
    Path fields left unset are derived from base_dir.
    """

    # Layout
    base_dir: Path = Path("/app")
    conf_dir: Path
    conf_file: Path
    default_conf_dir: Path
    mounted_conf_dir: Path
    data_dir: Path
    tmp_dir: Path
    pid_file: Path
    overrides_file: Path
    cluster_nodes_file: Path
    cli_path: str = "redis-cli"
    server_path: str = "redis-server"

    # Networking
    host: str
    port_number: int = Field(
        DEFAULT_PORT,
        validation_alias=AliasChoices("REDIS_PORT_NUMBER", "REDIS_PORT"),
    )
    allow_remote_connections: Flag = True
    extra_flags: str = ""

    # Authentication
    allow_empty_password: Flag = Field(
        False, validation_alias=AliasChoices("ALLOW_EMPTY_PASSWORD")
    )
    password: str = ""
    master_password: str = ""
    acl_username: str = ""
    aclfile: str = ""
    disable_commands: str = ""

    # Persistence
    aof_enabled: Flag = True
    rdb_policy: str = ""
    rdb_policy_disabled: Flag = False

    # Replication
    replication_mode: Literal["master", "replica"] | None = None
    master_host: str = ""
    master_port_number: int = DEFAULT_PORT
    replica_ip: str = ""
    replica_port: int | None = None
    sentinel_host: str = ""
    sentinel_port_number: int = 26379
    sentinel_master_name: str = "mymaster"

    # Performance
    io_threads: int | None = None
    io_threads_do_reads: Flag | None = None

    # TLS
    tls_enabled: Flag = False
    tls_port_number: int = Field(
        DEFAULT_PORT,
        validation_alias=AliasChoices("REDIS_TLS_PORT_NUMBER", "REDIS_TLS_PORT"),
    )
    tls_cert_file: str = ""
    tls_key_file: str = ""
    tls_key_file_pass: str = ""
    tls_ca_file: str = ""
    tls_ca_dir: str = ""
    tls_dh_params_file: str = ""
    tls_auth_clients: Flag = True

    # Cluster
    cluster_enabled: Flag = True
    cluster_creator: Flag = False
    cluster_replicas: int = Field(1, ge=0)
    cluster_node_timeout_ms: int = 5000
    cluster_dynamic_ips: Flag = True
    cluster_announce_ip: str = ""
    cluster_announce_port: int | None = None
    cluster_announce_bus_port: int | None = None
    cluster_announce_hostname: str = ""
    cluster_preferred_endpoint_type: Literal["ip", "hostname", "unknown-endpoint"] = "ip"
    nodes: str = ""

    # DNS and readiness budgets
    dns_retries: int = Field(120, ge=1)
    dns_retry_sleep_s: float = Field(5.0, ge=0)
    cluster_sleep_before_dns_lookup: int = Field(0, ge=0)
    cluster_dns_lookup_retries: int = Field(1, ge=1)
    cluster_dns_lookup_sleep: float = Field(1.0, ge=0)
    tcp_probe_retries: int = Field(24, ge=1)
    tcp_probe_sleep_s: float = Field(1.0, ge=0)
    readiness_timeout_s: float = Field(90.0, gt=0)
    convergence_timeout_s: float = Field(90.0, gt=0)
    probe_concurrency: int = Field(8, ge=1)

    debug: Flag = False

    model_config = {
        "env_prefix": "REDIS_",
        "frozen": True,
        "extra": "ignore",
        "populate_by_name": True,
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, SecretFileSource(settings_cls), env_settings)

    @model_validator(mode="before")
    @classmethod
    def _derive_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if not (isinstance(v, str) and v.strip() == "")}

        base = Path(data.get("base_dir") or "/app")
        data.setdefault("conf_dir", base / "etc")
        data.setdefault("conf_file", Path(data["conf_dir"]) / "redis.conf")
        data.setdefault("default_conf_dir", base / "etc.default")
        data.setdefault("mounted_conf_dir", base / "mounted-etc")
        data.setdefault("data_dir", base / "data")
        data.setdefault("tmp_dir", base / "run")
        data.setdefault("pid_file", Path(data["tmp_dir"]) / "redis.pid")
        data.setdefault("overrides_file", Path(data["mounted_conf_dir"]) / "overrides.conf")
        data.setdefault("cluster_nodes_file", Path(data["data_dir"]) / "nodes.conf")
        data.setdefault("host", os.environ.get("HOSTNAME") or "127.0.0.1")
        return data

    @field_validator("replication_mode", mode="before")
    @classmethod
    def _normalize_replication_mode(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() == "slave":
            return "replica"
        return value

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    @property
    def data_port(self) -> int:
        """Port clients and peers connect to: TLS port when TLS is on."""
        return self.tls_port_number if self.tls_enabled else self.port_number

    @property
    def identity_map_file(self) -> Path:
        return self.data_dir / "nodes.json"

    @property
    def disabled_commands(self) -> list[str]:
        return [c for c in self.disable_commands.replace(",", " ").split() if c]

    @property
    def save_rules(self) -> list[tuple[int, int]]:
        """
        Parse rdb_policy "900#1 300#10" into [(900, 1), (300, 10)].

        Raises:
            ValueError: On a malformed rule.
        """
        rules = []
        for rule in self.rdb_policy.split():
            interval, sep, changes = rule.partition("#")
            if not sep or not interval.isdigit() or not changes.isdigit():
                raise ValueError(f"Invalid RDB policy rule {rule!r} (expected <seconds>#<changes>)")
            rules.append((int(interval), int(changes)))
        return rules

    def self_node(self) -> NodeDescriptor:
        """This node as a descriptor, using the advertised host."""
        return NodeDescriptor(raw=f"{self.host}:{self.data_port}", host=self.host, port=self.data_port)

    def peer_nodes(self) -> list[NodeDescriptor]:
        """Configured REDIS_NODES as descriptors."""
        return parse_node_list(self.nodes, self.data_port)

    def cluster_nodes(self) -> list[NodeDescriptor]:
        """Self first, then every distinct peer."""
        me = self.self_node()
        nodes = [me]
        for node in self.peer_nodes():
            if (node.host, node.port) != (me.host, me.port):
                nodes.append(node)
        return nodes


def load_settings(**overrides: Any) -> RedisSettings:
    """
    Build settings from the environment.

    Args:
        **overrides: Field values taking precedence over the environment
            (used by CLI options and tests).

    Raises:
        pydantic.ValidationError: On malformed values.
    """
    return RedisSettings(**overrides)
