# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Realtime inbox subscription over a WebSocket.

The first client frame is the hex-encoded, signed empty-payload
authenticator. Every server frame after that is a JSON inbox notification.
Frames are handed to an event sink as :class:`NotificationReceived` or, when
a frame does not decode, :class:`FrameError`; a bad frame never closes the
subscription. A connection that ends without :meth:`InboxSubscription.close`
being called is reported as a :class:`FrameError` carrying a
:class:`TransportError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp
from aiohttp import WSMsgType

from ..core.events import EventSink, FrameError, NotificationReceived
from ..core.exceptions import ResponseParseError, TransportError
from .auth import RequestAuthenticator
from .models import InboxNotification

logger = logging.getLogger(__name__)


def parse_frame(data: str) -> InboxNotification:
    """Decode one push frame.

    Raises:
        ResponseParseError: If the frame is not a JSON notification.
    """
    try:
        payload: Any = json.loads(data)
    except (json.JSONDecodeError, TypeError) as e:
        raise ResponseParseError("Malformed push frame", body=data if isinstance(data, str) else None) from e
    return InboxNotification.from_dict(payload)


class InboxSubscription:
    """A persistent push connection to the identity's own pod.

    Args:
        url: WebSocket URL of the pod, e.g. ``wss://pod.example``
        authenticator: Signs the handshake frame
        sink: Receives every decoded notification or frame error
        session: aiohttp session used for the connection
        heartbeat: WebSocket ping interval in seconds
        connect_timeout: Deadline for the connect and handshake
    """

    def __init__(
        self,
        url: str,
        authenticator: RequestAuthenticator,
        sink: EventSink,
        session: aiohttp.ClientSession,
        heartbeat: float | None = 30.0,
        connect_timeout: float = 20.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.url = url
        self._authenticator = authenticator
        self._sink = sink
        self._session = session
        self._heartbeat = heartbeat
        self._connect_timeout = connect_timeout
        self._log = logger or logging.getLogger(__name__)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def handshake_frame(self) -> str:
        signed = self._authenticator.build_payload(self.url, {}, allow_empty=True)
        return signed.encode("utf-8").hex()

    async def start(self) -> None:
        """Connect, send the handshake and start the receive loop.

        Raises:
            TransportError: If the connection cannot be established in time.
        """
        if self._task is not None:
            self._log.warning("Inbox subscription already running")
            return
        self._closing = False

        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, heartbeat=self._heartbeat),
                timeout=self._connect_timeout,
            )
            await self._ws.send_str(self.handshake_frame())
        except asyncio.TimeoutError as e:
            await self._close_ws()
            raise TransportError(f"Timed out connecting to {self.url}", url=self.url) from e
        except aiohttp.ClientError as e:
            await self._close_ws()
            raise TransportError(f"Failed to connect to {self.url}: {e}", url=self.url) from e

        self._log.info("Subscribed to inbox at %s", self.url)
        self._task = asyncio.create_task(self._receive_loop())

    async def _receive_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return

        error: TransportError | None = None
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.handle_frame(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    self.handle_frame(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == WSMsgType.ERROR:
                    error = TransportError(f"Inbox subscription failed: {ws.exception()}", url=self.url)
                    break
        except aiohttp.ClientError as e:
            error = TransportError(f"Inbox subscription lost: {e}", url=self.url)
        finally:
            self._log.debug("Inbox receive loop ended for %s", self.url)

        # Any end not caused by close() means realtime delivery has stopped
        if self._closing:
            return
        if error is None:
            error = TransportError("Inbox subscription closed by pod", url=self.url)
        self._log.warning("%s: %s", error.message, self.url)
        self._sink(FrameError(error))

    def handle_frame(self, data: str) -> None:
        try:
            notification = parse_frame(data)
        except ResponseParseError as e:
            self._log.warning("Dropping malformed push frame: %s", e.message)
            self._sink(FrameError(e, raw=data))
            return
        self._log.debug("Notification for message %s from %s", notification.key, notification.sender)
        self._sink(NotificationReceived(notification))

    async def close(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        await self._close_ws()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
