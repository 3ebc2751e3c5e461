# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""DHT handle contract.

The routing layer of the distributed store lives outside this package. A
joined node is anything that satisfies :class:`DHTNetwork`; a
:data:`NetworkFactory` joins one. :class:`InMemoryDHT` keeps values in a
dict that several nodes can share, which is enough to run two sessions
against each other in one process.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from ..core.exceptions import MessageNotFoundError

logger = logging.getLogger(__name__)


class DHTNetwork(Protocol):
    """A joined DHT node. Keys are lowercase hex SHA-1, values are hex text."""

    async def get(self, key: str) -> str: ...

    async def put(self, key: str, value: str) -> bool: ...

    async def close(self) -> None: ...


NetworkFactory = Callable[[str, int, list[tuple[str, int]]], Awaitable[DHTNetwork]]


class InMemoryDHT:
    """Process-local :class:`DHTNetwork`.

    Args:
        store: Backing dict. Pass the same dict to several nodes to have
            them see each other's values.
        address: Address the node reports as its contact.
        port: Port the node reports as its contact.
    """

    def __init__(self, store: dict[str, str] | None = None, address: str = "127.0.0.1", port: int = 0) -> None:
        self._store = store if store is not None else {}
        self.address = address
        self.port = port
        self.closed = False

    async def get(self, key: str) -> str:
        try:
            return self._store[key]
        except KeyError:
            raise MessageNotFoundError(key) from None

    async def put(self, key: str, value: str) -> bool:
        self._store[key] = value
        return True

    async def close(self) -> None:
        self.closed = True

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store


def in_memory_network(store: dict[str, str] | None = None) -> NetworkFactory:
    """Build a :data:`NetworkFactory` whose nodes share ``store``."""
    shared = store if store is not None else {}

    async def join(address: str, port: int, seeds: list[tuple[str, int]]) -> DHTNetwork:
        logger.debug("Joining in-memory DHT as %s:%d (%d seeds)", address, port, len(seeds))
        return InMemoryDHT(shared, address=address, port=port)

    return join
