"""Tests for settings validation."""

import pytest

from operator_redis.exceptions import ValidationError
from operator_redis.validation import collect_errors, validate


@pytest.fixture
def tls_files(tmp_path):
    paths = {}
    for name in ("cert", "key", "ca"):
        path = tmp_path / f"{name}.pem"
        path.write_text("---")
        paths[name] = str(path)
    return paths


class TestValidation:
    """Tests for collect_errors and validate."""

    def test_valid_settings(self, make_settings):
        assert collect_errors(make_settings()) == []
        validate(make_settings())

    def test_empty_password_rejected(self, make_settings):
        errors = collect_errors(make_settings(password=""))
        assert any("REDIS_PASSWORD is empty" in e for e in errors)

    def test_empty_password_allowed(self, make_settings):
        assert collect_errors(make_settings(password="", allow_empty_password=True)) == []

    def test_collects_every_error(self, make_settings):
        settings = make_settings(password="", nodes="", cluster_dynamic_ips=False, rdb_policy="bad")

        with pytest.raises(ValidationError) as exc:
            validate(settings)

        assert len(exc.value.errors) == 4
        assert str(exc.value).startswith("Invalid configuration: ")

    def test_replica_needs_master(self, make_settings):
        errors = collect_errors(make_settings(replication_mode="replica"))
        assert "REDIS_MASTER_HOST is required when REDIS_REPLICATION_MODE=replica" in errors
        assert any("REDIS_MASTER_PASSWORD" in e for e in errors)

    def test_replica_with_sentinel(self, make_settings):
        settings = make_settings(replication_mode="replica", sentinel_host="sentinel", master_password="m")
        assert collect_errors(settings) == []

    def test_invalid_port(self, make_settings):
        errors = collect_errors(make_settings(master_port_number=70000))
        assert any("REDIS_MASTER_PORT_NUMBER" in e for e in errors)

    def test_cluster_without_nodes(self, make_settings):
        errors = collect_errors(make_settings(nodes=""))
        assert any("REDIS_NODES is required" in e for e in errors)

    def test_malformed_node(self, make_settings):
        errors = collect_errors(make_settings(nodes="redis-1:abc"))
        assert any(e.startswith("REDIS_NODES:") for e in errors)

    def test_standalone_needs_no_nodes(self, make_settings):
        assert collect_errors(make_settings(nodes="", cluster_enabled=False)) == []

    def test_static_ips_need_announce_ip(self, make_settings):
        errors = collect_errors(make_settings(cluster_dynamic_ips=False))
        assert errors == ["REDIS_CLUSTER_ANNOUNCE_IP is required when REDIS_CLUSTER_DYNAMIC_IPS=no"]


class TestTlsValidation:
    """Tests for TLS material checks."""

    def test_valid_tls(self, make_settings, tls_files):
        settings = make_settings(
            tls_enabled=True,
            tls_cert_file=tls_files["cert"],
            tls_key_file=tls_files["key"],
            tls_ca_file=tls_files["ca"],
        )
        assert collect_errors(settings) == []

    def test_missing_material(self, make_settings):
        errors = collect_errors(make_settings(tls_enabled=True))
        assert "You must provide REDIS_TLS_CERT_FILE when TLS is enabled" in errors
        assert "You must provide REDIS_TLS_KEY_FILE when TLS is enabled" in errors
        assert any("REDIS_TLS_CA_FILE or REDIS_TLS_CA_DIR" in e for e in errors)

    def test_nonexistent_files(self, make_settings, tmp_path):
        settings = make_settings(
            tls_enabled=True,
            tls_cert_file=str(tmp_path / "nope.pem"),
            tls_key_file=str(tmp_path / "nope.key"),
            tls_ca_dir=str(tmp_path / "nope"),
        )
        errors = collect_errors(settings)
        assert len(errors) == 3
        assert all("does not exist" in e for e in errors)

    def test_equal_non_default_ports(self, make_settings, tls_files):
        settings = make_settings(
            tls_enabled=True,
            port_number=7000,
            tls_port_number=7000,
            tls_cert_file=tls_files["cert"],
            tls_key_file=tls_files["key"],
            tls_ca_file=tls_files["ca"],
        )
        errors = collect_errors(settings)
        assert len(errors) == 1
        assert "are equal (7000)" in errors[0]

    def test_plaintext_disabled_with_port_zero(self, make_settings, tls_files):
        settings = make_settings(
            tls_enabled=True,
            port_number=0,
            tls_port_number=6380,
            tls_cert_file=tls_files["cert"],
            tls_key_file=tls_files["key"],
            tls_ca_file=tls_files["ca"],
        )
        assert collect_errors(settings) == []
