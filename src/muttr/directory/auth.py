# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Signed request payloads.

A pod verifies that a request came from the claimed identity without any
prior handshake: the client merges a nonce and its identity reference into
the request fields, form-encodes them with sorted keys and cleartext-signs
the result.

``identityType`` is ``pubkeyhash`` when the destination is the sender's own
pod (which already holds the key and can check the hash) and ``href``
otherwise (a URL the foreign pod can fetch the key from).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any
from urllib.parse import urlencode, urlsplit

from ..core.exceptions import EmptyPayloadError
from ..identity import Identity
from ..userid import get_pod_host_from_user_id

logger = logging.getLogger(__name__)

IDENTITY_TYPE_PUBKEYHASH = "pubkeyhash"
IDENTITY_TYPE_HREF = "href"

_nonce_lock = threading.Lock()
_last_nonce = 0


def next_nonce() -> int:
    """Current time in milliseconds, strictly increasing within the process."""
    global _last_nonce
    with _nonce_lock:
        nonce = max(int(time.time() * 1000), _last_nonce + 1)
        _last_nonce = nonce
        return nonce


def _destination_host(url: str) -> str:
    return urlsplit(url).netloc.lower()


class RequestAuthenticator:
    """Builds signed, nonce-stamped payloads for one identity."""

    def __init__(self, identity: Identity, logger: logging.Logger | None = None):
        self.identity = identity
        self.pod_host = get_pod_host_from_user_id(identity.user_id)
        self._log = logger or logging.getLogger(__name__)

    def identity_type_for(self, destination_url: str) -> str:
        if _destination_host(destination_url) == self.pod_host.lower():
            return IDENTITY_TYPE_PUBKEYHASH
        return IDENTITY_TYPE_HREF

    def build_fields(
        self,
        destination_url: str,
        data: dict[str, Any] | None,
        allow_empty: bool = False,
    ) -> dict[str, Any]:
        """Merge the nonce and identity fields into ``data``.

        Raises:
            EmptyPayloadError: If ``data`` is empty and ``allow_empty`` is False.
        """
        if not data and not allow_empty:
            raise EmptyPayloadError()

        identity_type = self.identity_type_for(destination_url)
        if identity_type == IDENTITY_TYPE_PUBKEYHASH:
            identity = self.identity.get_pub_key_hash()
        else:
            identity = self.identity.get_pub_key_href()

        return {
            **(data or {}),
            "nonce": next_nonce(),
            "identity": identity,
            "identityType": identity_type,
        }

    def build_payload(
        self,
        destination_url: str,
        data: dict[str, Any] | None,
        allow_empty: bool = False,
    ) -> str:
        """Return the cleartext-signed, form-encoded payload for a request.

        ``allow_empty`` is used only by the realtime handshake, which
        authenticates with no fields of its own.

        Raises:
            EmptyPayloadError: If ``data`` is empty and ``allow_empty`` is False.
            Whatever the identity raises when signing fails.
        """
        fields = self.build_fields(destination_url, data, allow_empty=allow_empty)
        encoded = urlencode(sorted((key, str(value)) for key, value in fields.items()))
        self._log.debug(
            "Signing payload for %s (identityType=%s)",
            _destination_host(destination_url),
            fields["identityType"],
        )
        return self.identity.sign(encoded)
