"""redis-cli wrapper for one-shot cluster administration commands.

Runs redis-cli via asyncio.create_subprocess_exec with array arguments (never
a shell). The password travels in REDISCLI_AUTH rather than on the command
line, so logged command lines never carry it.
"""

import asyncio
import logging
import os

from operator_redis.config import RedisSettings
from operator_redis.exceptions import BootstrapFailure
from operator_redis.types import CommandResult, ResolvedSocket

logger = logging.getLogger(__name__)

SLOTS_COVERED_TOKEN = "All 16384 slots covered"


class RedisCli:
    """
    Executor for redis-cli --cluster commands.

    Attributes:
        binary: redis-cli executable name or path.
        password: Password exported as REDISCLI_AUTH, or empty.
        username: ACL user passed as --user, or empty.
        tls_args: TLS flags appended to every invocation.
    """

    def __init__(
        self,
        binary: str = "redis-cli",
        password: str = "",
        tls_args: list[str] | None = None,
        username: str = "",
    ):
        self.binary = binary
        self.password = password
        self.username = username
        self.tls_args = list(tls_args or [])

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisCli":
        tls_args: list[str] = []
        if settings.tls_enabled:
            tls_args.append("--tls")
            if settings.tls_cert_file:
                tls_args += ["--cert", settings.tls_cert_file]
            if settings.tls_key_file:
                tls_args += ["--key", settings.tls_key_file]
            if settings.tls_ca_file:
                tls_args += ["--cacert", settings.tls_ca_file]
            elif settings.tls_ca_dir:
                tls_args += ["--cacertdir", settings.tls_ca_dir]
        return cls(
            binary=settings.cli_path,
            password=settings.password,
            tls_args=tls_args,
            username=settings.acl_username,
        )

    async def run(self, *args: str) -> CommandResult:
        """
        Run redis-cli with the given arguments, stdin closed.

        Returns:
            CommandResult with exit status and decoded output.

        Raises:
            BootstrapFailure: If the redis-cli binary cannot be started.
        """
        command = [self.binary, *self.tls_args]
        if self.username:
            command += ["--user", self.username]
        command += args
        env = os.environ.copy()
        if self.password:
            env["REDISCLI_AUTH"] = self.password

        logger.debug("Running %s", " ".join(command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise BootstrapFailure(f"cannot run {self.binary}: {e}") from e
        stdout, stderr = await proc.communicate()
        return CommandResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )

    async def create_cluster(self, sockets: list[ResolvedSocket], replicas: int) -> CommandResult:
        """
        Form a cluster from the given sockets, non-interactively.

        A non-zero result may just mean the cluster already exists; callers
        decide by checking convergence afterwards.
        """
        args = ["--cluster", "create", *(str(s) for s in sockets)]
        args += ["--cluster-replicas", str(replicas), "--cluster-yes"]
        return await self.run(*args)

    async def check_cluster(self, socket: ResolvedSocket) -> bool:
        """Run --cluster check against socket and look for full slot coverage."""
        result = await self.run("--cluster", "check", str(socket))
        if not result.success:
            logger.debug("cluster check against %s failed: %s", socket, result.stderr or result.stdout)
            return False
        return SLOTS_COVERED_TOKEN in result.stdout
