"""Shared fixtures for operator-redis tests."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from operator_redis.config import RedisSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the host environment from leaking into settings."""
    for name in list(os.environ):
        if name.startswith(("REDIS_", "HC_")) or name in ("ALLOW_EMPTY_PASSWORD", "HOSTNAME"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_settings(tmp_path: Path):
    """Build RedisSettings rooted in tmp_path."""

    def _make(**overrides) -> RedisSettings:
        values = {
            "base_dir": tmp_path,
            "host": "redis-1",
            "password": "s3cret",
            "nodes": "redis-1,redis-2,redis-3",
        }
        values.update(overrides)
        return RedisSettings(**values)

    return _make


def fake_client(**replies) -> MagicMock:
    """
    Redis client mock usable as `async with connect(host, port) as client`.

    Keyword arguments map a command name (e.g. PING, CLUSTER) to the value
    execute_command returns for it; an Exception instance is raised instead.
    """
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)

    async def _execute(*args):
        reply = replies.get(args[0])
        if isinstance(reply, BaseException):
            raise reply
        return reply

    client.execute_command = AsyncMock(side_effect=_execute)
    return client


def fake_connect(client: MagicMock) -> MagicMock:
    """Client factory returning the same mock client for every target."""
    return MagicMock(return_value=client)
