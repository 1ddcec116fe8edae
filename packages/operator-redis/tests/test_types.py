"""Tests for node descriptor parsing."""

import pytest

from operator_redis.types import NodeDescriptor, ResolvedSocket, parse_node_list, strip_brackets


class TestNodeDescriptor:
    """Tests for NodeDescriptor.parse."""

    def test_host_only_uses_default_port(self):
        node = NodeDescriptor.parse("redis-1", 6379)
        assert (node.host, node.port, node.raw) == ("redis-1", 6379, "redis-1")

    def test_host_and_port(self):
        node = NodeDescriptor.parse("redis-1:7000", 6379)
        assert (node.host, node.port) == ("redis-1", 7000)

    def test_bracketed_ipv6_with_port(self):
        node = NodeDescriptor.parse("[2001:db8::1]:7000", 6379)
        assert (node.host, node.port) == ("2001:db8::1", 7000)

    def test_bracketed_ipv6_without_port(self):
        node = NodeDescriptor.parse("[2001:db8::1]", 6379)
        assert (node.host, node.port) == ("2001:db8::1", 6379)

    def test_bare_ipv6_is_host(self):
        node = NodeDescriptor.parse("2001:db8::1", 6380)
        assert (node.host, node.port) == ("2001:db8::1", 6380)

    def test_raw_is_kept_verbatim(self):
        assert str(NodeDescriptor.parse(" redis-1:7000 ", 6379)) == "redis-1:7000"

    @pytest.mark.parametrize("token", ["", "  ", "redis:abc", "[::1"])
    def test_invalid(self, token):
        with pytest.raises(ValueError):
            NodeDescriptor.parse(token, 6379)


class TestParseNodeList:
    """Tests for REDIS_NODES splitting."""

    def test_mixed_separators(self):
        nodes = parse_node_list("a:1, b:2;c:3  d:4", 6379)
        assert [n.raw for n in nodes] == ["a:1", "b:2", "c:3", "d:4"]

    def test_drops_duplicates_and_empties(self):
        nodes = parse_node_list(",a,,a;b;", 6379)
        assert [n.raw for n in nodes] == ["a", "b"]

    def test_empty_value(self):
        assert parse_node_list("", 6379) == []


class TestSockets:
    """Tests for resolved sockets and bracket handling."""

    def test_strip_brackets(self):
        assert strip_brackets("[::1]") == "::1"
        assert strip_brackets("10.0.0.1") == "10.0.0.1"

    def test_socket_rendering(self):
        assert str(ResolvedSocket("10.0.0.1", 6379)) == "10.0.0.1:6379"
        assert str(ResolvedSocket("2001:db8::1", 6379)) == "2001:db8::1:6379"
