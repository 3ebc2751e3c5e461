# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Muttr - end-to-end encrypted messaging for ``alias@podhost`` identities.

Encrypted message bodies live in a content-addressed DHT; per-user pods
route lightweight references to them and authenticate API calls.

Architecture:
  MessageSession (send / receive / playback state machine)
    -> DirectoryClient (signed pod REST calls, realtime inbox push)
    -> StorageGate (content-addressing and confidentiality checks on the DHT)
    -> Identity (sign / verify / encrypt / decrypt)
"""

__version__ = "0.4.0"

from .core.exceptions import MuttrException
from .directory import DirectoryClient, DirectoryConfig, RequestAuthenticator
from .identity import Identity, KeyringIdentity
from .session import MessageSession, SessionConfig, SessionState
from .storage import ConnectionConfig, InMemoryDHT, StorageConnection, StorageGate
from .userid import get_alias_from_user_id, get_pod_host_from_user_id, validate_user_id

__all__ = [
    "ConnectionConfig",
    "DirectoryClient",
    "DirectoryConfig",
    "Identity",
    "InMemoryDHT",
    "KeyringIdentity",
    "MessageSession",
    "MuttrException",
    "RequestAuthenticator",
    "SessionConfig",
    "SessionState",
    "StorageConnection",
    "StorageGate",
    "__version__",
    "get_alias_from_user_id",
    "get_pod_host_from_user_id",
    "validate_user_id",
]
