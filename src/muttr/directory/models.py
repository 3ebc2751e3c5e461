# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Directory data types: tokens, aliases, inbox notifications and the
results the session hands back to callers."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import ResponseParseError, TokenError


def now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# TOKENS
# =============================================================================


@dataclass
class Token:
    """A one-time bearer credential scoped to one method and resource.

    Attributes:
        method: HTTP method the token authorizes (upper case)
        resource: Resource path the token authorizes, e.g. ``/inboxes``
        value: Opaque token string issued by the pod
        issued_at: Issue time in milliseconds since the epoch
        consumed: Set once the token has been spent
    """

    method: str
    resource: str
    value: str = field(repr=False)
    issued_at: int = field(default_factory=now_ms)
    consumed: bool = False

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    @classmethod
    def from_dict(cls, data: dict[str, Any], method: str, resource: str) -> Token:
        """Build a token from a ``POST /tokens`` response body."""
        if not isinstance(data, dict):
            raise ResponseParseError("Token response must be an object", body=str(data))
        value = data.get("token", data.get("value"))
        if not isinstance(value, str) or not value:
            raise ResponseParseError("Token response has no token value", body=str(data))

        issued_at = data.get("issuedAt", data.get("issued_at"))
        return cls(
            method=str(data.get("method", method)),
            resource=str(data.get("resource", resource)),
            value=value,
            issued_at=int(issued_at) if isinstance(issued_at, (int, float)) else now_ms(),
        )

    def consume(self, method: str, resource: str) -> str:
        """Spend the token on ``method resource`` and return its value.

        Raises:
            TokenError: If the token was already spent or is scoped to a
                different method or resource.
        """
        if self.consumed:
            raise TokenError(f"Token for {self.method} {self.resource} was already used")
        if (self.method, self.resource) != (method.upper(), resource):
            raise TokenError(
                f"Token is scoped to {self.method} {self.resource}, not {method.upper()} {resource}"
            )
        self.consumed = True
        return self.value


# =============================================================================
# ALIASES
# =============================================================================


@dataclass(frozen=True)
class Alias:
    """A human-readable name bound to a user ID at a pod."""

    alias: str
    pod_host: str
    public_key: str | None = field(default=None, repr=False)

    @property
    def user_id(self) -> str:
        return f"{self.alias}@{self.pod_host}"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str, pod_host: str) -> Alias:
        if isinstance(data, str):
            return cls(alias=data, pod_host=pod_host)
        if not isinstance(data, dict) or not isinstance(data.get("alias"), str):
            raise ResponseParseError("Alias entry has no alias", body=str(data))
        return cls(alias=data["alias"], pod_host=pod_host, public_key=data.get("publicKey"))


# =============================================================================
# INBOX
# =============================================================================


@dataclass(frozen=True)
class InboxNotification:
    """Wire-level pointer to a message stored in the DHT.

    Serialized as ``{"key", "from", "timestamp"}``.
    """

    key: str
    sender: str
    timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "from": self.sender, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Any) -> InboxNotification:
        if not isinstance(data, dict):
            raise ResponseParseError("Notification must be an object", body=str(data))
        key = data.get("key")
        sender = data.get("from")
        if not isinstance(key, str) or not isinstance(sender, str):
            raise ResponseParseError("Notification requires string 'key' and 'from'", body=str(data))
        timestamp = data.get("timestamp")
        if timestamp is not None and not isinstance(timestamp, (int, float)):
            raise ResponseParseError("Notification timestamp must be a number", body=str(data))
        return cls(key=key, sender=sender, timestamp=int(timestamp) if timestamp is not None else None)


@dataclass(frozen=True)
class MessageDescriptor:
    """What ``send`` returns: where the message is and who was told about it."""

    key: str
    recipient: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "recipient": self.recipient, "timestamp": self.timestamp}


@dataclass(frozen=True)
class ReceivedMessage:
    """A notification together with its decrypted text.

    ``text`` is the decrypted payload (still cleartext-signed by the sender)
    and is never part of :meth:`to_dict`.
    """

    notification: InboxNotification
    text: str = field(repr=False)

    @property
    def key(self) -> str:
        return self.notification.key

    @property
    def sender(self) -> str:
        return self.notification.sender

    def to_dict(self) -> dict[str, Any]:
        return self.notification.to_dict()


@dataclass
class Playback:
    """Queued notifications plus the continuation that purges them.

    Purging is never automatic; call :meth:`purge` once the notifications
    have been durably processed.
    """

    notifications: list[InboxNotification]
    _purge: Callable[[], Awaitable[Any]] = field(repr=False)
    purged: bool = False

    async def purge(self) -> Any:
        result = await self._purge()
        self.purged = True
        return result

    def __len__(self) -> int:
        return len(self.notifications)

    def __iter__(self):
        return iter(self.notifications)
