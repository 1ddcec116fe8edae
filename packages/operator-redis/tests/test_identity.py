"""Tests for nodes.conf identity remapping."""

import json
from unittest.mock import AsyncMock

import pytest

from operator_redis.exceptions import ConfigFileError, ResolutionTimeout
from operator_redis.identity import IdentityMap, IdentityRemapper, rewrite_addresses
from operator_redis.resolver import PeerResolver
from operator_redis.retry import RetryPolicy
from operator_redis.types import NodeDescriptor

NODES_CONF = """\
e7d1eecce10fd6bb5eb35b9f99a514335d9ba9ca 10.0.0.1:6379@16379 myself,master - 0 0 1 connected 0-5460
67ed2db8d677e59ec4a4cefb06858cf2a1a89fa1 10.0.0.2:6379@16379 master - 0 1426238316232 2 connected 5461-10922
292f8b365bb7edb5e285caf0b7e6ddc7265d2f4f 10.0.0.11:6379@16379 master - 0 1426238318243 3 connected 10923-16383
vars currentEpoch 3 lastVoteEpoch 0
"""


def _remapper(tmp_path, addresses):
    """Remapper whose lookups answer from the addresses dict (None = DNS miss)."""
    lookup = AsyncMock(side_effect=lambda host: addresses.get(host))
    resolver = PeerResolver(RetryPolicy(1, 0), lookup=lookup)
    return IdentityRemapper(
        nodes_conf=tmp_path / "nodes.conf",
        map_file=tmp_path / "nodes.json",
        resolver=resolver,
        policy=RetryPolicy(1, 0),
    )


def _nodes(*names):
    return [NodeDescriptor.parse(n, 6379) for n in names]


class TestRewriteAddresses:
    """Tests for the scoped single-pass rewrite."""

    def test_replaces_address_field(self):
        text = rewrite_addresses(NODES_CONF, {"10.0.0.2": "10.0.0.20"})
        assert " 10.0.0.20:6379@16379 " in text
        assert " 10.0.0.2:" not in text

    def test_never_matches_prefix(self):
        text = rewrite_addresses(NODES_CONF, {"10.0.0.1": "10.0.0.99"})
        assert " 10.0.0.99:6379@16379 myself" in text
        assert " 10.0.0.11:6379@16379 " in text

    def test_swap_does_not_cascade(self):
        text = rewrite_addresses(NODES_CONF, {"10.0.0.1": "10.0.0.2", "10.0.0.2": "10.0.0.1"})
        lines = text.splitlines()
        assert " 10.0.0.2:6379@16379 myself" in lines[0]
        assert " 10.0.0.1:6379@16379 master" in lines[1]

    def test_ipv6_address(self):
        text = "id fd00::1:6379@16379 master\n"
        assert rewrite_addresses(text, {"fd00::1": "fd00::2"}) == "id fd00::2:6379@16379 master\n"

    def test_no_changes(self):
        assert rewrite_addresses(NODES_CONF, {}) == NODES_CONF

    def test_other_lines_untouched(self):
        text = rewrite_addresses(NODES_CONF, {"10.0.0.1": "10.0.0.9"})
        assert text.splitlines()[3] == "vars currentEpoch 3 lastVoteEpoch 0"


class TestRemapper:
    """Tests for first and later runs."""

    @pytest.mark.asyncio
    async def test_first_run_writes_map(self, tmp_path):
        remapper = _remapper(tmp_path, {"a": "10.0.0.1", "b": "10.0.0.2"})

        changes = await remapper.refresh(_nodes("a", "b:7000"))

        assert changes == {}
        stored = json.loads((tmp_path / "nodes.json").read_text())
        assert stored == {"entries": {"a": "10.0.0.1", "b:7000": "10.0.0.2"}}

    @pytest.mark.asyncio
    async def test_first_run_requires_every_peer(self, tmp_path):
        remapper = _remapper(tmp_path, {"a": "10.0.0.1"})
        with pytest.raises(ResolutionTimeout):
            await remapper.refresh(_nodes("a", "ghost"))
        assert not (tmp_path / "nodes.json").exists()

    @pytest.mark.asyncio
    async def test_later_run_rewrites_changed_ips(self, tmp_path):
        (tmp_path / "nodes.conf").write_text(NODES_CONF)
        IdentityMap(entries={"a": "10.0.0.1", "b": "10.0.0.2", "c": "10.0.0.11"}).save(tmp_path / "nodes.json")
        remapper = _remapper(tmp_path, {"a": "10.0.0.1", "b": "10.0.0.22", "c": "10.0.0.11"})

        changes = await remapper.refresh(_nodes("a", "b", "c"))

        assert changes == {"10.0.0.2": "10.0.0.22"}
        text = (tmp_path / "nodes.conf").read_text()
        assert " 10.0.0.22:6379@16379 master" in text
        assert IdentityMap.load(tmp_path / "nodes.json").entries["b"] == "10.0.0.22"

    @pytest.mark.asyncio
    async def test_unchanged_ips_leave_file_alone(self, tmp_path):
        (tmp_path / "nodes.conf").write_text(NODES_CONF)
        IdentityMap(entries={"a": "10.0.0.1"}).save(tmp_path / "nodes.json")
        remapper = _remapper(tmp_path, {"a": "10.0.0.1"})

        assert await remapper.refresh(_nodes("a")) == {}
        assert (tmp_path / "nodes.conf").read_text() == NODES_CONF

    @pytest.mark.asyncio
    async def test_dns_miss_keeps_old_entry(self, tmp_path, caplog):
        (tmp_path / "nodes.conf").write_text(NODES_CONF)
        IdentityMap(entries={"a": "10.0.0.1", "b": "10.0.0.2"}).save(tmp_path / "nodes.json")
        remapper = _remapper(tmp_path, {"a": "10.0.0.5"})

        changes = await remapper.refresh(_nodes("a", "b"))

        assert changes == {"10.0.0.1": "10.0.0.5"}
        entries = IdentityMap.load(tmp_path / "nodes.json").entries
        assert entries == {"a": "10.0.0.5", "b": "10.0.0.2"}
        assert "DNS lookup failed for b" in caplog.text

    @pytest.mark.asyncio
    async def test_new_peer_is_added(self, tmp_path):
        (tmp_path / "nodes.conf").write_text(NODES_CONF)
        IdentityMap(entries={"a": "10.0.0.1"}).save(tmp_path / "nodes.json")
        remapper = _remapper(tmp_path, {"a": "10.0.0.1", "d": "10.0.0.4"})

        await remapper.refresh(_nodes("a", "d"))

        assert IdentityMap.load(tmp_path / "nodes.json").entries["d"] == "10.0.0.4"

    @pytest.mark.asyncio
    async def test_corrupt_map_raises(self, tmp_path):
        (tmp_path / "nodes.conf").write_text(NODES_CONF)
        (tmp_path / "nodes.json").write_text("{not json")
        remapper = _remapper(tmp_path, {"a": "10.0.0.1"})

        with pytest.raises(ConfigFileError):
            await remapper.refresh(_nodes("a"))
