# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Typed session events and the channel that carries them to the caller.

Components never inherit an emitter; they are handed an ``EventSink``
(any callable accepting an event) and the session owns one
``EventChannel`` that callers drain with ``async for``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from ..directory.models import InboxNotification, ReceivedMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 1000


@dataclass(frozen=True)
class ReadyEvent:
    """The session finished connecting and registering."""

    user_id: str
    address: str


@dataclass(frozen=True)
class MessageEvent:
    """A realtime notification was fetched and decrypted."""

    message: ReceivedMessage


@dataclass(frozen=True)
class ErrorEvent:
    """A failure that did not come back through a caller's ``await``.

    ``fatal`` is True only when the session moved to the ``Error`` state.
    """

    error: Exception
    notification: InboxNotification | None = None
    fatal: bool = False


@dataclass(frozen=True)
class NotificationReceived:
    """Raw push frame decoded into a notification (subscription level)."""

    notification: InboxNotification


@dataclass(frozen=True)
class FrameError:
    """A push frame could not be decoded (subscription level)."""

    error: Exception
    raw: str | None = field(default=None, repr=False)


SessionEvent = Union[ReadyEvent, MessageEvent, ErrorEvent]
SubscriptionEvent = Union[NotificationReceived, FrameError]
EventSink = Callable[[SubscriptionEvent], None]


class ChannelClosed(Exception):  # noqa: N818
    """Raised when publishing to a closed channel."""


_CLOSED = object()


class EventChannel:
    """Single-consumer channel of session events.

    Holds at most ``maxsize`` undelivered events. When a caller stops
    draining it, publishing a new event discards the oldest one and counts
    it in :attr:`dropped`, so an idle consumer cannot grow memory without
    limit. ``maxsize`` of 0 removes the bound.
    """

    def __init__(self, maxsize: int = DEFAULT_MAX_EVENTS) -> None:
        # The queue itself is unbounded so close() can always add its sentinel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._maxsize = maxsize
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: SessionEvent) -> None:
        if self._closed:
            raise ChannelClosed("event channel is closed")
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % self._maxsize == 0:
                logger.warning("Event channel full, %d undelivered events dropped", self.dropped)
        self._queue.put_nowait(event)

    async def receive(self) -> SessionEvent:
        """Wait for the next event.

        Raises:
            ChannelClosed: The channel was closed and fully drained.
        """
        if self._closed and self._queue.empty():
            raise ChannelClosed("event channel is closed")
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed("event channel is closed")
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[SessionEvent]:
        while True:
            try:
                yield await self.receive()
            except ChannelClosed:
                return
