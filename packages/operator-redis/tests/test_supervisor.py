"""Tests for node setup and redis-server supervision."""

import asyncio
import json
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from operator_redis.conf import RedisConf
from operator_redis.exceptions import BootstrapFailure, ConfigFileError, ValidationError
from operator_redis.orchestrator import BootstrapOutcome, BootstrapState
from operator_redis.supervisor import Supervisor, server_command, setup


class _FakeProcess:
    """Child process stand-in whose wait() blocks until it is signalled."""

    def __init__(self, ignores_sigterm=False):
        self.pid = 4242
        self.returncode = None
        self.ignores_sigterm = ignores_sigterm
        self.signals = []
        self._exited = asyncio.Event()

    def _exit(self, code):
        self.returncode = code
        self._exited.set()

    def terminate(self):
        self.signals.append("SIGTERM")
        if not self.ignores_sigterm:
            self._exit(0)

    def kill(self):
        self.signals.append("SIGKILL")
        self._exit(-9)

    def send_signal(self, sig):
        self.signals.append(sig.name)
        self._exit(0)

    async def wait(self):
        await self._exited.wait()
        return self.returncode


class TestSetup:
    """Tests for setup()."""

    @pytest.mark.asyncio
    async def test_writes_conf_and_identity_map(self, make_settings):
        settings = make_settings(nodes="10.0.0.1,10.0.0.2,10.0.0.3")

        conf = await setup(settings)

        assert settings.conf_file.exists()
        assert RedisConf.load(settings.conf_file).get("cluster-enabled") == "yes"
        assert conf.get("requirepass") == "s3cret"
        stored = json.loads(settings.identity_map_file.read_text())
        assert stored["entries"] == {"10.0.0.1": "10.0.0.1", "10.0.0.2": "10.0.0.2", "10.0.0.3": "10.0.0.3"}

    @pytest.mark.asyncio
    async def test_invalid_settings_write_nothing(self, make_settings):
        settings = make_settings(password="")

        with pytest.raises(ValidationError):
            await setup(settings)

        assert not settings.conf_file.exists()

    @pytest.mark.asyncio
    async def test_uncreatable_directory_is_config_file_error(self, make_settings, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        settings = make_settings(data_dir=blocker / "data")

        with pytest.raises(ConfigFileError) as exc:
            await setup(settings)

        assert exc.value.path == blocker / "data"

    @pytest.mark.asyncio
    async def test_static_ips_skip_remap(self, make_settings):
        settings = make_settings(cluster_dynamic_ips=False, cluster_announce_ip="10.0.0.7")

        conf = await setup(settings)

        assert conf.get("cluster-announce-ip") == "10.0.0.7"
        assert not settings.identity_map_file.exists()


class TestServerCommand:
    """Tests for the redis-server command line."""

    def test_foreground_and_extra_flags(self, make_settings):
        settings = make_settings(extra_flags="--maxmemory 1gb --loglevel verbose")
        assert server_command(settings) == [
            "redis-server",
            str(settings.conf_file),
            "--daemonize",
            "no",
            "--logfile",
            "",
            "--maxmemory",
            "1gb",
            "--loglevel",
            "verbose",
        ]


class TestSupervisor:
    """Tests for Supervisor.run."""

    @pytest.mark.asyncio
    async def test_bootstrap_failure_stops_server(self, make_settings):
        supervisor = Supervisor(make_settings(cluster_creator=True), terminate_timeout_s=0.1)
        proc = _FakeProcess()
        bootstrap = MagicMock()
        bootstrap.run = AsyncMock(side_effect=BootstrapFailure("node redis-2:6379 is not ready", "ValidatingPeers"))

        with (
            patch.object(Supervisor, "spawn", AsyncMock(return_value=proc)),
            patch.object(Supervisor, "wait_local_ready", AsyncMock(return_value=True)),
            patch("operator_redis.supervisor.ClusterBootstrap.from_settings", return_value=bootstrap),
        ):
            code = await supervisor.run(skip_setup=True)

        assert code == 1
        assert proc.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_unexpected_bootstrap_error_stops_server(self, make_settings):
        supervisor = Supervisor(make_settings(cluster_creator=True), terminate_timeout_s=0.1)
        proc = _FakeProcess()
        bootstrap = MagicMock()
        bootstrap.run = AsyncMock(side_effect=FileNotFoundError("redis-cli"))

        with (
            patch.object(Supervisor, "spawn", AsyncMock(return_value=proc)),
            patch.object(Supervisor, "wait_local_ready", AsyncMock(return_value=True)),
            patch("operator_redis.supervisor.ClusterBootstrap.from_settings", return_value=bootstrap),
        ):
            code = await supervisor.run(skip_setup=True)

        assert code == 1
        assert proc.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_sigkill_when_sigterm_ignored(self, make_settings):
        supervisor = Supervisor(make_settings(), terminate_timeout_s=0.05)
        supervisor.process = _FakeProcess(ignores_sigterm=True)

        await supervisor.terminate()

        assert supervisor.process.signals == ["SIGTERM", "SIGKILL"]
        assert supervisor.process.returncode == -9

    @pytest.mark.asyncio
    async def test_local_readiness_timeout_exits_1(self, make_settings):
        supervisor = Supervisor(make_settings(), terminate_timeout_s=0.1)
        proc = _FakeProcess()

        with (
            patch.object(Supervisor, "spawn", AsyncMock(return_value=proc)),
            patch.object(Supervisor, "wait_local_ready", AsyncMock(return_value=False)),
        ):
            code = await supervisor.run(skip_setup=True)

        assert code == 1
        assert proc.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_successful_bootstrap_waits_for_server(self, make_settings):
        supervisor = Supervisor(make_settings(cluster_creator=True))
        proc = _FakeProcess()
        bootstrap = MagicMock()
        bootstrap.run = AsyncMock(return_value=BootstrapOutcome(BootstrapState.CONVERGED, formed=True))
        asyncio.get_running_loop().call_later(0.05, proc._exit, 0)

        with (
            patch.object(Supervisor, "spawn", AsyncMock(return_value=proc)),
            patch.object(Supervisor, "wait_local_ready", AsyncMock(return_value=True)),
            patch("operator_redis.supervisor.ClusterBootstrap.from_settings", return_value=bootstrap),
        ):
            code = await supervisor.run(skip_setup=True)

        assert code == 0
        assert supervisor.bootstrap_outcome.state is BootstrapState.CONVERGED
        assert proc.signals == []

    @pytest.mark.asyncio
    async def test_non_creator_does_not_bootstrap(self, make_settings):
        supervisor = Supervisor(make_settings(cluster_creator=False))
        proc = _FakeProcess()
        asyncio.get_running_loop().call_later(0.05, proc._exit, 3)

        with (
            patch.object(Supervisor, "spawn", AsyncMock(return_value=proc)),
            patch.object(Supervisor, "wait_local_ready", AsyncMock(return_value=True)),
            patch("operator_redis.supervisor.ClusterBootstrap.from_settings") as from_settings,
        ):
            code = await supervisor.run(skip_setup=True)

        assert code == 3
        from_settings.assert_not_called()

    @pytest.mark.asyncio
    async def test_server_exit_before_ready(self, make_settings):
        supervisor = Supervisor(make_settings())
        supervisor.process = _FakeProcess()
        supervisor.process._exit(1)

        assert await supervisor.wait_local_ready() is False

    @pytest.mark.asyncio
    async def test_signal_is_forwarded(self, make_settings):
        supervisor = Supervisor(make_settings())
        supervisor.process = _FakeProcess()

        supervisor._handle_signal(signal.SIGTERM)

        assert supervisor.shutdown.is_set()
        assert supervisor.process.signals == ["SIGTERM"]
