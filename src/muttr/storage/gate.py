# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Storage gate: every DHT read and write passes through here.

Two invariants hold for anything that enters or leaves the store:

1. The key is the lowercase hex SHA-1 of the value.
2. The value parses as an encrypted envelope with at least one recipient.

A failing ``put`` never reaches the network. A failing ``get`` returns the
validation error instead of the value, so a storage peer cannot hand back
something that does not match its own key, or plaintext.
"""

from __future__ import annotations

import asyncio
import binascii
import logging

from ..core.exceptions import KeyMismatchError, StorageError, TransportError
from ..identity.envelope import read_encrypted
from ..userid import sha1_hex
from .dht import DHTNetwork


def validate_message_key(key: str, value: str) -> None:
    """Raise KeyMismatchError unless ``key == sha1(value)``."""
    expected = sha1_hex(value)
    if key != expected:
        raise KeyMismatchError(key, expected)


def validate_message_body(value: str) -> None:
    """Raise UnencryptedMessageError unless ``value`` is an encrypted envelope."""
    read_encrypted(value)


def validate_message(key: str, value: str) -> None:
    validate_message_key(key, value)
    validate_message_body(value)


def _to_wire(value: str) -> str:
    return value.encode("utf-8").hex()


def _from_wire(key: str, value: str) -> str:
    try:
        return bytes.fromhex(value).decode("utf-8")
    except (ValueError, TypeError, UnicodeDecodeError, binascii.Error) as e:
        raise StorageError(f"Stored value for {key} is not hex-encoded text", {"key": key}) from e


class StorageGate:
    """Content-addressing and confidentiality checks around a DHT handle.

    Args:
        network: Joined DHT node.
        timeout: Deadline in seconds for each ``get``/``put``; ``None``
            disables it.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        network: DHTNetwork,
        timeout: float | None = 15.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._network = network
        self._timeout = timeout
        self._log = logger or logging.getLogger(__name__)

    @property
    def network(self) -> DHTNetwork:
        return self._network

    async def put(self, key: str, value: str) -> bool:
        """Store ``value`` under ``key``.

        Returns:
            The DHT's acknowledgement, unchanged.

        Raises:
            KeyMismatchError: ``key`` is not the SHA-1 of ``value``.
            UnencryptedMessageError: ``value`` is not an encrypted envelope.
            TransportError: The DHT did not answer before the deadline.
        """
        validate_message(key, value)
        ack = await self._with_deadline(self._network.put(key, _to_wire(value)), "put", key)
        self._log.debug("Stored message %s", key)
        return ack

    async def get(self, key: str) -> str:
        """Fetch the value stored under ``key`` and re-check both invariants."""
        raw = await self._with_deadline(self._network.get(key), "get", key)
        value = _from_wire(key, raw)
        try:
            validate_message(key, value)
        except Exception:
            self._log.warning("Rejected stored value for %s", key)
            raise
        return value

    async def _with_deadline(self, operation, name: str, key: str):
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"DHT {name} timed out after {self._timeout}s for key {key}") from e
