# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Async client for the pod (directory server) REST API.

Every URL is built from the pod host resolved out of the target user ID.
Signed operations send the cleartext-signed, form-encoded payload from
:class:`RequestAuthenticator` as the request body.

Response handling:

- 200 with JSON body: the parsed body is returned.
- Non-200 with a JSON ``{"error": ...}`` body: :class:`PodAPIError` carrying
  the pod's stated error (:class:`PodAuthRejectedError` for 401/403).
- A body that is not JSON where JSON was expected: :class:`ResponseParseError`.
- Connection, DNS and timeout failures: :class:`TransportError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..core.config import MuttrSettings, get_config
from ..core.events import EventSink
from ..core.exceptions import (
    PodAPIError,
    PodAuthRejectedError,
    ResponseParseError,
    TransportError,
)
from ..core.logging import RequestLogger
from ..identity import Identity
from ..storage.gate import validate_message
from ..userid import get_alias_from_user_id, get_pod_host_from_user_id, sha1_hex
from .auth import RequestAuthenticator
from .models import Alias, InboxNotification, Token
from .subscription import InboxSubscription

logger = logging.getLogger(__name__)

INBOXES = "/inboxes"


@dataclass
class DirectoryConfig:
    """Pod client settings.

    Attributes:
        scheme: URL scheme for pod requests (``https`` in production)
        timeout: Total deadline for one HTTP request, in seconds
        heartbeat: WebSocket ping interval for the inbox subscription
    """

    scheme: str = "https"
    timeout: float = 20.0
    heartbeat: float | None = 30.0

    @property
    def ws_scheme(self) -> str:
        return "wss" if self.scheme == "https" else "ws"

    @classmethod
    def from_settings(cls, settings: MuttrSettings | None = None) -> DirectoryConfig:
        settings = settings or get_config()
        return cls(
            scheme=settings.pod_scheme,
            timeout=settings.http_timeout,
            heartbeat=settings.ws_heartbeat,
        )


class DirectoryClient:
    """Pod API client for one identity.

    Args:
        identity: The identity requests are made as.
        config: Client settings. Defaults to ``DirectoryConfig.from_settings()``.
        http: An existing aiohttp session. When omitted the client creates
            one on first use and closes it in :meth:`close`.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        identity: Identity,
        config: DirectoryConfig | None = None,
        http: aiohttp.ClientSession | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.identity = identity
        self.config = config or DirectoryConfig.from_settings()
        self._log = logger or logging.getLogger(__name__)
        self._request_log = RequestLogger(self._log)
        self.authenticator = RequestAuthenticator(identity, logger=self._log)
        self.pod_host = get_pod_host_from_user_id(identity.user_id)
        self._http = http
        self._owns_http = http is None
        self._subscription: InboxSubscription | None = None

    @property
    def base_url(self) -> str:
        return self.url_for_host(self.pod_host)

    def url_for_host(self, host: str, path: str = "") -> str:
        return f"{self.config.scheme}://{host}{path}"

    def url_for_user(self, user_id: str, path: str = "") -> str:
        return self.url_for_host(get_pod_host_from_user_id(user_id), path)

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.config.timeout))
            self._owns_http = True
        return self._http

    async def _fetch(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        data: str | None = None,
    ) -> tuple[int, str]:
        """Issue one request and return ``(status, body text)``."""
        self._request_log.log_request(method, url, {"params": params} if params else None)
        start = time.perf_counter()
        try:
            async with self._get_http().request(
                method,
                url,
                params=params,
                data=data.encode("utf-8") if data is not None else None,
                headers={"Content-Type": "text/plain; charset=utf-8"} if data is not None else None,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            ) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as e:
            self._request_log.log_response(method, url, None, level=logging.WARNING)
            raise TransportError(f"Request timed out after {self.config.timeout}s", url=url) from e
        except aiohttp.ClientError as e:
            self._request_log.log_response(method, url, None, level=logging.WARNING)
            raise TransportError(f"Request failed: {e}", url=url) from e

        self._request_log.log_response(method, url, status, (time.perf_counter() - start) * 1000)
        return status, text

    def _handle_response(self, status: int, text: str, url: str, expect_json: bool = True) -> Any:
        """Normalize a pod response into a value or a raised error."""
        try:
            body: Any = json.loads(text)
            parsed = True
        except (json.JSONDecodeError, TypeError):
            body, parsed = text, False

        if status != 200:
            message = f"Pod returned HTTP {status}"
            if parsed and isinstance(body, dict) and body.get("error"):
                error = body["error"]
                message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            elif not parsed and text:
                message = text.strip()[:200]
            if status in (401, 403):
                raise PodAuthRejectedError(status, message, url=url)
            raise PodAPIError(status, message, url=url)

        if not parsed and expect_json:
            raise ResponseParseError(body=text)
        return body

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        data: str | None = None,
        expect_json: bool = True,
    ) -> Any:
        status, text = await self._fetch(method, url, params=params, data=data)
        return self._handle_response(status, text, url, expect_json=expect_json)

    async def _signed(self, method: str, url: str, fields: dict[str, Any], params: dict[str, str] | None = None) -> Any:
        payload = self.authenticator.build_payload(url, fields)
        return await self._request(method, url, params=params, data=payload)

    # -------------------------------------------------------------------------
    # IDENTITY AND ALIASES
    # -------------------------------------------------------------------------

    async def register_identity(self) -> Any:
        """POST the bare public key to the own pod root."""
        return await self._request("POST", self.url_for_host(self.pod_host, "/"), data=self.identity.public_key_armored)

    async def create_alias(self, alias: str) -> Any:
        """Bind ``alias`` to this identity on the own pod."""
        return await self._signed("POST", self.url_for_host(self.pod_host, "/aliases"), {"alias": alias})

    async def get_public_key_for_user_id(self, user_id: str) -> str:
        """Fetch the armored public key published for ``user_id``.

        Unauthenticated; the key is public data on the user's pod.
        """
        alias = get_alias_from_user_id(user_id)
        url = self.url_for_user(user_id, f"/aliases/{alias}")
        body = await self._request("GET", url, expect_json=False)
        if isinstance(body, dict) and isinstance(body.get("publicKey"), str):
            return body["publicKey"]
        if not isinstance(body, str):
            raise ResponseParseError("Expected an armored public key", body=json.dumps(body))
        return body

    async def get_public_keys(self, user_ids: list[str]) -> list[str]:
        """Resolve several user IDs concurrently; returns keys in input order."""
        return list(await asyncio.gather(*(self.get_public_key_for_user_id(u) for u in user_ids)))

    async def search_aliases_in_pod(self, host: str, text: str) -> list[Alias]:
        """Search the aliases registered on ``host``."""
        url = self.url_for_host(host, "/aliases")
        body = await self._signed("GET", url, {"search": text}, params={"search": text})
        if not isinstance(body, list):
            raise ResponseParseError("Alias search must return a list", body=json.dumps(body))
        return [Alias.from_dict(entry, host) for entry in body]

    # -------------------------------------------------------------------------
    # TOKENS AND INBOXES
    # -------------------------------------------------------------------------

    async def create_token(self, method: str, resource: str) -> Token:
        """Obtain a single-use token for ``method resource`` on the own pod."""
        method = method.upper()
        body = await self._signed(
            "POST",
            self.url_for_host(self.pod_host, "/tokens"),
            {"method": method, "resource": resource},
        )
        return Token.from_dict(body, method, resource)

    async def get_inboxes(self, token: Token) -> list[InboxNotification]:
        """List queued notifications. Spends ``token`` (``GET /inboxes``)."""
        value = token.consume("GET", INBOXES)
        body = await self._request("GET", self.url_for_host(self.pod_host, INBOXES), params={"token": value})
        if not isinstance(body, list):
            raise ResponseParseError("Inbox listing must be a list", body=json.dumps(body))
        return [InboxNotification.from_dict(entry) for entry in body]

    async def purge_inboxes(self, token: Token) -> Any:
        """Clear queued notifications. Spends ``token`` (``DELETE /inboxes``)."""
        value = token.consume("DELETE", INBOXES)
        return await self._request("DELETE", self.url_for_host(self.pod_host, INBOXES), params={"token": value})

    async def send_message_key(self, recipient_user_id: str, key: str) -> Any:
        """Tell the recipient's pod that message ``key`` is waiting for them."""
        alias = get_alias_from_user_id(recipient_user_id)
        url = self.url_for_user(recipient_user_id, f"/inboxes/{alias}")
        return await self._signed("POST", url, {"key": key, "from": self.identity.user_id})

    # -------------------------------------------------------------------------
    # POD-MEDIATED STORAGE
    # -------------------------------------------------------------------------

    async def request_store_message(self, ciphertext: str) -> str:
        """Ask the own pod to store ``ciphertext`` in the DHT. Returns its key."""
        key = sha1_hex(ciphertext)
        validate_message(key, ciphertext)
        await self._signed("POST", self.url_for_host(self.pod_host, "/messages"), {"key": key, "message": ciphertext})
        return key

    async def request_find_message(self, key: str) -> str:
        """Ask the own pod to fetch message ``key`` from the DHT."""
        body = await self._request("GET", self.url_for_host(self.pod_host, f"/messages/{key}"), expect_json=False)
        if not isinstance(body, str):
            raise ResponseParseError("Expected an armored message", body=json.dumps(body))
        validate_message(key, body)
        return body

    # -------------------------------------------------------------------------
    # REALTIME
    # -------------------------------------------------------------------------

    def subscription_url(self) -> str:
        return f"{self.config.ws_scheme}://{self.pod_host}"

    async def subscribe(self, sink: EventSink) -> InboxSubscription:
        """Open the push connection to the own pod and feed ``sink``."""
        if self._subscription is not None:
            return self._subscription
        subscription = InboxSubscription(
            self.subscription_url(),
            self.authenticator,
            sink,
            self._get_http(),
            heartbeat=self.config.heartbeat,
            connect_timeout=self.config.timeout,
            logger=self._log,
        )
        await subscription.start()
        self._subscription = subscription
        return subscription

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
