"""Tests for muttr.storage.connection."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from muttr.core.config import MuttrSettings
from muttr.core.exceptions import NetworkJoinError, NotConnectedError
from muttr.storage.connection import ConnectionConfig, StorageConnection
from muttr.storage.dht import InMemoryDHT, in_memory_network


@pytest.fixture
def port_mapper():
    mapper = MagicMock()
    mapper.map_port = AsyncMock(return_value=None)
    mapper.external_ip = AsyncMock(return_value="203.0.113.7")
    return mapper


def _recording_factory():
    joined: list[tuple[str, int, list]] = []

    async def join(address, port, seeds):
        joined.append((address, port, seeds))
        return InMemoryDHT(address=address, port=port)

    return join, joined


class TestConnectionConfig:
    def test_defaults(self):
        config = ConnectionConfig()
        assert config.address == "0.0.0.0"
        assert config.port == 44678
        assert config.forward_port is False
        assert config.seeds == []

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("MUTTR_DHT_PORT", "45001")
        monkeypatch.setenv("MUTTR_DHT_SEEDS", "seed.example:44678")
        monkeypatch.setenv("MUTTR_DHT_FORWARD_PORT", "1")

        config = ConnectionConfig.from_settings(MuttrSettings())
        assert config.port == 45001
        assert config.seeds == [("seed.example", 44678)]
        assert config.forward_port is True


class TestOpen:
    @pytest.mark.asyncio
    async def test_open_without_forwarding(self, port_mapper):
        join, joined = _recording_factory()
        connection = StorageConnection(
            join,
            ConnectionConfig(address="10.0.0.5", seeds=[("seed", 1)]),
            port_mapper=port_mapper,
        )

        assert await connection.open() == "10.0.0.5"
        assert joined == [("10.0.0.5", 44678, [("seed", 1)])]
        port_mapper.map_port.assert_not_called()
        assert connection.is_open

    @pytest.mark.asyncio
    async def test_forwarded_address(self, port_mapper):
        join, joined = _recording_factory()
        connection = StorageConnection(join, ConnectionConfig(forward_port=True), port_mapper=port_mapper)

        assert await connection.open() == "203.0.113.7"
        port_mapper.map_port.assert_awaited_once_with(44678)
        assert joined[0][0] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_mapping_failure_degrades(self, port_mapper):
        port_mapper.map_port.side_effect = OSError("no gateway")
        join, joined = _recording_factory()
        connection = StorageConnection(join, ConnectionConfig(address="10.0.0.5", forward_port=True), port_mapper=port_mapper)

        assert await connection.open() == "10.0.0.5"
        assert joined[0][0] == "10.0.0.5"

    @pytest.mark.asyncio
    async def test_external_ip_failure_degrades(self, port_mapper):
        port_mapper.external_ip.side_effect = RuntimeError("no ip")
        join, _ = _recording_factory()
        connection = StorageConnection(join, ConnectionConfig(address="10.0.0.5", forward_port=True), port_mapper=port_mapper)

        assert await connection.open() == "10.0.0.5"

    @pytest.mark.asyncio
    async def test_forwarding_without_mapper(self):
        join, _ = _recording_factory()
        connection = StorageConnection(join, ConnectionConfig(address="10.0.0.5", forward_port=True))
        assert await connection.open() == "10.0.0.5"

    @pytest.mark.asyncio
    async def test_join_failure_is_fatal(self):
        async def join(address, port, seeds):
            raise ConnectionRefusedError("seed unreachable")

        connection = StorageConnection(join, ConnectionConfig())
        with pytest.raises(NetworkJoinError, match="seed unreachable"):
            await connection.open()
        assert not connection.is_open

    @pytest.mark.asyncio
    async def test_join_timeout(self):
        async def join(address, port, seeds):
            await asyncio.sleep(10)

        connection = StorageConnection(join, ConnectionConfig(join_timeout=0.01))
        with pytest.raises(NetworkJoinError, match="timed out"):
            await connection.open()

    @pytest.mark.asyncio
    async def test_open_twice_joins_once(self):
        join, joined = _recording_factory()
        connection = StorageConnection(join, ConnectionConfig())
        await connection.open()
        await connection.open()
        assert len(joined) == 1


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_not_connected(self, encrypted_message):
        connection = StorageConnection(in_memory_network(), ConnectionConfig())
        key, value = encrypted_message
        with pytest.raises(NotConnectedError):
            await connection.put(key, value)

    @pytest.mark.asyncio
    async def test_nodes_share_store(self, encrypted_message):
        network = in_memory_network()
        writer = StorageConnection(network, ConnectionConfig())
        reader = StorageConnection(network, ConnectionConfig())
        await writer.open()
        await reader.open()

        key, value = encrypted_message
        await writer.put(key, value)
        assert await reader.get(key) == value

    @pytest.mark.asyncio
    async def test_close_leaves_network(self, counting_network):
        connection = StorageConnection(counting_network, ConnectionConfig())
        await connection.open()
        node = counting_network.nodes[0]

        await connection.close()
        assert node.closed
        assert not connection.is_open
        with pytest.raises(NotConnectedError):
            connection.gate
