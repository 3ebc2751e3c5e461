# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""User ID helpers.

A user ID has the form ``alias@podhost``. Every routing decision starts by
resolving the pod host from the target user ID, so malformed IDs are
rejected here before any request URL is built.
"""

from __future__ import annotations

import hashlib

from .core.exceptions import InvalidUserIDError


def validate_user_id(user_id: str) -> None:
    """Validate a user ID.

    Raises:
        InvalidUserIDError: If the ID is not a string with exactly one ``@``
            separating a non-empty alias from a non-empty pod host.
    """
    if not isinstance(user_id, str):
        raise InvalidUserIDError("userID must be a string", user_id)

    parts = user_id.split("@")

    if len(parts) == 1:
        raise InvalidUserIDError('userID must contain "@<hostname>"', user_id)
    if len(parts) != 2:
        raise InvalidUserIDError("userID may only contain a single @ character", user_id)
    if not parts[0]:
        raise InvalidUserIDError("userID must have alias before the @ character", user_id)
    if not parts[1]:
        raise InvalidUserIDError("userID needs pod hostname after @ character", user_id)


def get_pod_host_from_user_id(user_id: str) -> str:
    """Extract the pod hostname from a user ID."""
    validate_user_id(user_id)
    return user_id.split("@")[1]


def get_alias_from_user_id(user_id: str) -> str:
    """Extract the alias from a user ID."""
    validate_user_id(user_id)
    return user_id.split("@")[0]


def sha1_hex(value: str | bytes) -> str:
    """Lowercase hex SHA-1 digest, the key format of the content-addressed store."""
    if isinstance(value, str):
        value = value.encode("utf-8")
    return hashlib.sha1(value).hexdigest()  # noqa: S324
