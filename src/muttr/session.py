# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Message session: the send / receive / playback state machine.

States::

    CREATED -> CONNECTING -> REGISTERING -> READY
    READY -> {SENDING, RECEIVING, PLAYING_BACK} -> READY
    any -> ERROR (terminal)        any -> CLOSED (terminal)

Connecting and registering happen in :meth:`MessageSession.start`; a
failure there moves the session to ERROR and a new session must be
created. Failures of a single send, playback or open do not: the error is
raised to the caller and the session returns to READY.

Realtime notifications are handled in their own tasks, independently of
any foreground operation, and never change the session state. Each one
that fails produces an :class:`ErrorEvent` and nothing else.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .core.config import MuttrSettings, get_config
from .core.events import (
    ErrorEvent,
    EventChannel,
    FrameError,
    MessageEvent,
    NotificationReceived,
    ReadyEvent,
    SessionEvent,
    SubscriptionEvent,
)
from .core.exceptions import SessionStateError
from .core.logging import pipeline_context
from .directory.client import INBOXES, DirectoryClient, DirectoryConfig
from .directory.models import InboxNotification, MessageDescriptor, Playback, ReceivedMessage, now_ms
from .identity import Identity
from .storage.connection import ConnectionConfig, PortMapper, StorageConnection
from .storage.dht import NetworkFactory
from .userid import get_alias_from_user_id, sha1_hex, validate_user_id

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    REGISTERING = "registering"
    READY = "ready"
    SENDING = "sending"
    RECEIVING = "receiving"
    PLAYING_BACK = "playing_back"
    ERROR = "error"
    CLOSED = "closed"


@dataclass
class SessionConfig:
    """Session settings.

    Attributes:
        alias: Alias created at registration. Defaults to the alias part
            of the identity's user ID.
        realtime: Open the push subscription once the session is ready.
    """

    alias: str | None = None
    realtime: bool = True

    @classmethod
    def from_settings(cls, settings: MuttrSettings | None = None) -> SessionConfig:
        settings = settings or get_config()
        return cls(realtime=settings.realtime)


class MessageSession:
    """Sends and receives messages for one identity.

    Args:
        identity: The identity the session acts as. Not shared with other sessions.
        storage: DHT connection (opened by :meth:`start`).
        directory: Pod client. Defaults to a client built from settings.
        config: Session settings. Defaults to ``SessionConfig.from_settings()``.
        logger: Logger to use instead of the module logger.

    Example:
        >>> session = MessageSession(identity, StorageConnection(factory))
        >>> await session.start()
        >>> descriptor = await session.send("bob@pod.example", "hi bob")
        >>> async for event in session.events():
        ...     handle(event)
    """

    def __init__(
        self,
        identity: Identity,
        storage: StorageConnection,
        directory: DirectoryClient | None = None,
        config: SessionConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.identity = identity
        self.storage = storage
        self._log = logger or logging.getLogger(__name__)
        self.directory = directory or DirectoryClient(identity, logger=self._log)
        self.config = config or SessionConfig.from_settings()
        self._state = SessionState.CREATED
        self._channel = EventChannel()
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    @classmethod
    async def open(
        cls,
        identity: Identity,
        network_factory: NetworkFactory,
        port_mapper: PortMapper | None = None,
        settings: MuttrSettings | None = None,
    ) -> MessageSession:
        """Build a session from settings and start it."""
        settings = settings or get_config()
        session = cls(
            identity,
            StorageConnection(network_factory, ConnectionConfig.from_settings(settings), port_mapper=port_mapper),
            DirectoryClient(identity, DirectoryConfig.from_settings(settings)),
            SessionConfig.from_settings(settings),
        )
        await session.start()
        return session

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    def events(self) -> EventChannel:
        """The session's event channel; iterate it with ``async for``."""
        return self._channel

    def _publish(self, event: SessionEvent) -> None:
        if not self._channel.closed:
            self._channel.publish(event)

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            self._log.debug("Session %s: %s -> %s", self.user_id, self._state.value, state.value)
            self._state = state

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to the DHT, register the identity and create its alias.

        Raises:
            SessionStateError: If the session was already started.
            Any connection or registration error, after moving to ERROR.
        """
        if self._state != SessionState.CREATED:
            raise SessionStateError("Session was already started", state=self._state.value)

        try:
            self._set_state(SessionState.CONNECTING)
            address = await self.storage.open()

            self._set_state(SessionState.REGISTERING)
            await self.directory.register_identity()
            await self.directory.create_alias(self.config.alias or get_alias_from_user_id(self.user_id))
        except Exception as e:
            self._log.error("Session for %s failed to start: %s", self.user_id, e)
            self._set_state(SessionState.ERROR)
            self._publish(ErrorEvent(e, fatal=True))
            raise

        if self.config.realtime:
            try:
                await self.directory.subscribe(self._on_subscription_event)
            except Exception as e:
                # Playback still works without push
                self._log.warning("Realtime subscription unavailable for %s: %s", self.user_id, e)
                self._publish(ErrorEvent(e))

        self._set_state(SessionState.READY)
        self._log.info("Session ready for %s", self.user_id)
        self._publish(ReadyEvent(self.user_id, address))

    async def close(self) -> None:
        """Stop notification handling and release the pod and DHT connections."""
        if self._state == SessionState.CLOSED:
            return
        self._set_state(SessionState.CLOSED)

        pending, self._pending = self._pending, set()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.directory.close()
        finally:
            await self.storage.close()
            self._channel.close()

    async def __aenter__(self) -> MessageSession:
        if self._state == SessionState.CREATED:
            await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _require_ready(self) -> None:
        if self._state in (SessionState.ERROR, SessionState.CLOSED):
            raise SessionStateError(
                f"Session is {self._state.value}; create a new session",
                state=self._state.value,
            )
        if self._state in (SessionState.CREATED, SessionState.CONNECTING, SessionState.REGISTERING):
            raise SessionStateError("Session is not ready", state=self._state.value)

    # -------------------------------------------------------------------------
    # SEND
    # -------------------------------------------------------------------------

    async def send(self, recipient: str, message: str) -> MessageDescriptor:
        """Sign, encrypt, store and announce ``message`` to ``recipient``.

        Steps run strictly in order and stop at the first failure, which is
        raised unchanged. A failure after the message was stored leaves an
        unreferenced ciphertext in the DHT.
        """
        validate_user_id(recipient)
        self._require_ready()

        async with self._lock:
            self._require_ready()
            self._set_state(SessionState.SENDING)
            try:
                with pipeline_context("send"):
                    signed = self.identity.sign(message)
                    recipient_key = await self.directory.get_public_key_for_user_id(recipient)
                    ciphertext = self.identity.encrypt([recipient_key, self.identity.public_key_armored], signed)
                    key = await self._store(ciphertext)
                    await self.directory.send_message_key(recipient, key)
                    self._log.info("Sent message %s to %s", key, recipient)
            finally:
                self._resume()

        return MessageDescriptor(key=key, recipient=recipient, timestamp=now_ms())

    async def send_to_many(self, recipients: list[str], message: str) -> list[MessageDescriptor]:
        """Send one ciphertext readable by every recipient.

        Recipient keys are resolved concurrently and joined before
        encryption. The message is stored once and each recipient's pod is
        notified in turn.
        """
        if not recipients:
            raise ValueError("At least one recipient is required")
        for recipient in recipients:
            validate_user_id(recipient)
        self._require_ready()

        async with self._lock:
            self._require_ready()
            self._set_state(SessionState.SENDING)
            try:
                with pipeline_context("send"):
                    signed = self.identity.sign(message)
                    keys = await self.directory.get_public_keys(recipients)
                    ciphertext = self.identity.encrypt([*keys, self.identity.public_key_armored], signed)
                    key = await self._store(ciphertext)
                    descriptors = []
                    for recipient in recipients:
                        await self.directory.send_message_key(recipient, key)
                        descriptors.append(MessageDescriptor(key=key, recipient=recipient, timestamp=now_ms()))
                    self._log.info("Sent message %s to %d recipients", key, len(recipients))
            finally:
                self._resume()

        return descriptors

    async def _store(self, ciphertext: str) -> str:
        key = sha1_hex(ciphertext)
        await self.storage.put(key, ciphertext)
        return key

    def _resume(self) -> None:
        if self._state in (SessionState.SENDING, SessionState.RECEIVING, SessionState.PLAYING_BACK):
            self._set_state(SessionState.READY)

    # -------------------------------------------------------------------------
    # RECEIVE
    # -------------------------------------------------------------------------

    async def _open(self, notification: InboxNotification) -> ReceivedMessage:
        ciphertext = await self.storage.get(notification.key)
        text = self.identity.decrypt(ciphertext)
        return ReceivedMessage(notification=notification, text=text)

    async def open_message(self, notification: InboxNotification) -> ReceivedMessage:
        """Fetch and decrypt the message a notification points at."""
        self._require_ready()
        async with self._lock:
            self._require_ready()
            self._set_state(SessionState.RECEIVING)
            try:
                return await self._open(notification)
            finally:
                self._resume()

    async def verify_message(self, received: ReceivedMessage) -> str:
        """Check the sender's signature on a received message and return its text."""
        self._require_ready()
        sender_key = await self.directory.get_public_key_for_user_id(received.sender)
        return self.identity.verify(sender_key, received.text)

    def _on_subscription_event(self, event: SubscriptionEvent) -> None:
        if self._state == SessionState.CLOSED:
            return
        if isinstance(event, NotificationReceived):
            task = asyncio.create_task(self._handle_notification(event.notification))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        elif isinstance(event, FrameError):
            self._publish(ErrorEvent(event.error))

    async def _handle_notification(self, notification: InboxNotification) -> None:
        with pipeline_context("recv"):
            try:
                received = await self._open(notification)
            except Exception as e:
                self._log.warning("Failed to open message %s from %s: %s", notification.key, notification.sender, e)
                self._publish(ErrorEvent(e, notification=notification))
                return
            self._log.debug("Received message %s from %s", notification.key, notification.sender)
            self._publish(MessageEvent(received))

    # -------------------------------------------------------------------------
    # PLAYBACK
    # -------------------------------------------------------------------------

    async def playback(self) -> Playback:
        """Fetch the notifications queued on the own pod.

        Uses a token scoped to ``GET /inboxes``. The returned
        :class:`Playback` carries a ``purge`` continuation that obtains its
        own ``DELETE /inboxes`` token; nothing is purged unless it is called.
        """
        self._require_ready()
        async with self._lock:
            self._require_ready()
            self._set_state(SessionState.PLAYING_BACK)
            try:
                token = await self.directory.create_token("GET", INBOXES)
                notifications = await self.directory.get_inboxes(token)
            finally:
                self._resume()

        self._log.info("Played back %d queued notification(s)", len(notifications))
        return Playback(notifications=notifications, _purge=self._purge)

    async def _purge(self):
        self._require_ready()
        async with self._lock:
            self._require_ready()
            self._set_state(SessionState.PLAYING_BACK)
            try:
                token = await self.directory.create_token("DELETE", INBOXES)
                result = await self.directory.purge_inboxes(token)
            finally:
                self._resume()
        self._log.info("Purged inbox for %s", self.user_id)
        return result
