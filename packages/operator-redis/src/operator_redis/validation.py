"""Settings validation run before anything is written or spawned.

Every problem is collected so a misconfigured container reports all of them
at once instead of failing on the first.
"""

import logging
from pathlib import Path

from operator_redis.config import DEFAULT_PORT, RedisSettings
from operator_redis.exceptions import ValidationError
from operator_redis.types import parse_node_list

logger = logging.getLogger(__name__)


def _port_error(name: str, port: int | None, allow_zero: bool = False) -> str | None:
    if port is None:
        return None
    low = 0 if allow_zero else 1
    if not low <= port <= 65535:
        return f"An invalid port was specified in {name}: {port} (expected {low}-65535)"
    return None


def collect_errors(settings: RedisSettings) -> list[str]:
    """
    Check settings and return every problem found.

    Args:
        settings: Settings to check.

    Returns:
        Human-readable error messages, empty when the settings are usable.
    """
    s = settings
    errors: list[str] = []

    if not s.password and not s.allow_empty_password:
        errors.append(
            "REDIS_PASSWORD is empty. Set ALLOW_EMPTY_PASSWORD=yes to allow an empty password "
            "(recommended only for development)"
        )

    for name, port, allow_zero in (
        ("REDIS_PORT_NUMBER", s.port_number, s.tls_enabled),
        ("REDIS_TLS_PORT_NUMBER", s.tls_port_number, False),
        ("REDIS_MASTER_PORT_NUMBER", s.master_port_number, False),
        ("REDIS_CLUSTER_ANNOUNCE_PORT", s.cluster_announce_port, False),
        ("REDIS_CLUSTER_ANNOUNCE_BUS_PORT", s.cluster_announce_bus_port, False),
    ):
        error = _port_error(name, port, allow_zero)
        if error:
            errors.append(error)

    if s.replication_mode == "replica":
        if not s.master_host and not s.sentinel_host:
            errors.append("REDIS_MASTER_HOST is required when REDIS_REPLICATION_MODE=replica")
        if not s.master_password and not s.allow_empty_password:
            errors.append("REDIS_MASTER_PASSWORD is required for replicas unless ALLOW_EMPTY_PASSWORD=yes")

    try:
        s.save_rules
    except ValueError as e:
        errors.append(str(e))

    if s.tls_enabled:
        errors.extend(_tls_errors(s))

    if s.cluster_enabled:
        errors.extend(_cluster_errors(s))

    return errors


def _tls_errors(s: RedisSettings) -> list[str]:
    errors: list[str] = []
    if s.port_number == s.tls_port_number and s.port_number != DEFAULT_PORT:
        errors.append(
            f"REDIS_PORT_NUMBER and REDIS_TLS_PORT_NUMBER are equal ({s.port_number}). "
            "Change one, or disable non-TLS by setting REDIS_PORT_NUMBER=0"
        )
    for env_name, value in (
        ("REDIS_TLS_CERT_FILE", s.tls_cert_file),
        ("REDIS_TLS_KEY_FILE", s.tls_key_file),
    ):
        if not value:
            errors.append(f"You must provide {env_name} when TLS is enabled")
        elif not Path(value).is_file():
            errors.append(f"{env_name}: {value} does not exist")

    if not s.tls_ca_file and not s.tls_ca_dir:
        errors.append("You must provide REDIS_TLS_CA_FILE or REDIS_TLS_CA_DIR when TLS is enabled")
    elif s.tls_ca_file and not Path(s.tls_ca_file).is_file():
        errors.append(f"REDIS_TLS_CA_FILE: {s.tls_ca_file} does not exist")
    elif not s.tls_ca_file and not Path(s.tls_ca_dir).is_dir():
        errors.append(f"REDIS_TLS_CA_DIR: {s.tls_ca_dir} does not exist")

    if s.tls_dh_params_file and not Path(s.tls_dh_params_file).is_file():
        errors.append(f"REDIS_TLS_DH_PARAMS_FILE: {s.tls_dh_params_file} does not exist")
    return errors


def _cluster_errors(s: RedisSettings) -> list[str]:
    errors: list[str] = []
    if not s.nodes:
        errors.append("REDIS_NODES is required in cluster mode (comma/semicolon-separated host[:port] entries)")
    else:
        try:
            parse_node_list(s.nodes, s.data_port)
        except ValueError as e:
            errors.append(f"REDIS_NODES: {e}")

    if not s.cluster_dynamic_ips and not s.cluster_announce_ip:
        errors.append("REDIS_CLUSTER_ANNOUNCE_IP is required when REDIS_CLUSTER_DYNAMIC_IPS=no")
    return errors


def validate(settings: RedisSettings) -> None:
    """
    Validate settings.

    Raises:
        ValidationError: Listing every problem found.
    """
    errors = collect_errors(settings)
    if errors:
        for error in errors:
            logger.error(error)
        raise ValidationError(errors)
    logger.debug("Settings are valid")
