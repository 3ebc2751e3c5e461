# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Connection to the DHT.

Opening a connection is a two-step acquisition:

1. Optionally map the DHT port on the local gateway. Any mapping failure
   degrades to the configured (unmapped) address; it is never fatal.
2. Join the network through the configured factory. A join failure is
   fatal for this connect attempt and raises :class:`NetworkJoinError`.

Once open, reads and writes go through a :class:`StorageGate`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..core.config import MuttrSettings, get_config
from ..core.exceptions import NetworkJoinError, NotConnectedError
from .dht import DHTNetwork, NetworkFactory
from .gate import StorageGate

logger = logging.getLogger(__name__)


@dataclass
class ConnectionConfig:
    """Storage connection settings.

    Attributes:
        address: Local address to bind and advertise when no mapping is made
        port: DHT port
        forward_port: Attempt to map ``port`` on the gateway first
        seeds: ``(host, port)`` contacts used to join the network
        join_timeout: Deadline for the join, in seconds
        request_timeout: Deadline for each get/put, in seconds
    """

    address: str = "0.0.0.0"
    port: int = 44678
    forward_port: bool = False
    seeds: list[tuple[str, int]] = field(default_factory=list)
    join_timeout: float = 30.0
    request_timeout: float = 15.0

    @classmethod
    def from_settings(cls, settings: MuttrSettings | None = None) -> ConnectionConfig:
        settings = settings or get_config()
        return cls(
            address=settings.dht_address,
            port=settings.dht_port,
            forward_port=settings.dht_forward_port,
            seeds=settings.seed_list,
            join_timeout=settings.dht_join_timeout,
            request_timeout=settings.dht_request_timeout,
        )


class PortMapper(Protocol):
    """Gateway port mapping (UPnP or similar)."""

    async def map_port(self, port: int) -> None: ...

    async def external_ip(self) -> str: ...


class StorageConnection:
    """A DHT connection whose reads and writes are gated.

    Args:
        config: Connection settings. Defaults to ``ConnectionConfig.from_settings()``.
        network_factory: Joins the DHT and returns the node handle.
        port_mapper: Used only when ``config.forward_port`` is set.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        network_factory: NetworkFactory,
        config: ConnectionConfig | None = None,
        port_mapper: PortMapper | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or ConnectionConfig.from_settings()
        self._network_factory = network_factory
        self._port_mapper = port_mapper
        self._log = logger or logging.getLogger(__name__)
        self._network: DHTNetwork | None = None
        self._gate: StorageGate | None = None
        self.address: str | None = None

    @property
    def is_open(self) -> bool:
        return self._gate is not None

    @property
    def gate(self) -> StorageGate:
        if self._gate is None:
            raise NotConnectedError()
        return self._gate

    async def open(self) -> str:
        """Map the port if configured, then join the network.

        Returns:
            The address the node joined with.

        Raises:
            NetworkJoinError: If the join fails or times out.
        """
        if self._gate is not None:
            return self.address or self.config.address

        address = await self._forward_port()
        network = await self._join_network(address)

        self._network = network
        self._gate = StorageGate(network, timeout=self.config.request_timeout, logger=self._log)
        self.address = address
        self._log.info("Connected to DHT as %s:%d", address, self.config.port)
        return address

    async def get(self, key: str) -> str:
        return await self.gate.get(key)

    async def put(self, key: str, value: str) -> bool:
        return await self.gate.put(key, value)

    async def close(self) -> None:
        network, self._network, self._gate = self._network, None, None
        if network is not None:
            await network.close()
            self._log.info("Left DHT")

    async def _forward_port(self) -> str:
        if not self.config.forward_port:
            return self.config.address
        if self._port_mapper is None:
            self._log.warning("Port forwarding requested but no port mapper is available")
            return self.config.address

        try:
            await asyncio.wait_for(self._port_mapper.map_port(self.config.port), timeout=self.config.join_timeout)
            ip = await asyncio.wait_for(self._port_mapper.external_ip(), timeout=self.config.join_timeout)
        except Exception as e:
            self._log.warning("Port mapping failed, using %s: %s", self.config.address, e)
            return self.config.address
        return ip

    async def _join_network(self, address: str) -> DHTNetwork:
        try:
            return await asyncio.wait_for(
                self._network_factory(address, self.config.port, list(self.config.seeds)),
                timeout=self.config.join_timeout,
            )
        except asyncio.TimeoutError as e:
            self._log.error("DHT join timed out after %ss", self.config.join_timeout)
            raise NetworkJoinError(f"DHT join timed out after {self.config.join_timeout}s") from e
        except NetworkJoinError:
            raise
        except Exception as e:
            self._log.error("DHT join failed: %s", e)
            raise NetworkJoinError(f"Failed to join DHT: {e}") from e
