# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Exception hierarchy for muttr.

Errors fall into a small number of categories:

- ``ValidationException``: local, synchronous checks that never reach the
  network (malformed user IDs, key/value mismatches, unencrypted messages,
  empty payloads).
- ``AuthFailure``: signing failed locally or a pod rejected the request.
- ``PodAPIError``: a pod answered with a non-200 status.
- ``TransportError``: connection, DNS and timeout failures.
- ``ResponseParseError``: a body or push frame could not be decoded.
- ``StorageError``: DHT connection and lookup failures.
"""

from __future__ import annotations

from typing import Any


class MuttrException(Exception):  # noqa: N818
    """Base exception for all muttr errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationException(MuttrException):
    """Exception for local validation errors.

    Raised when:
    - A user ID is malformed
    - A message key is not the digest of its value
    - A message is not encrypted
    - A signed payload would be empty
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class InvalidUserIDError(ValidationException):
    """A user ID is not of the form ``alias@podhost``."""

    def __init__(self, message: str, user_id: Any = None):
        super().__init__(message, field="user_id", value=user_id)


class KeyMismatchError(ValidationException):
    """A message key is not the SHA-1 digest of its value."""

    def __init__(self, key: str, expected: str):
        super().__init__("Message key must be the SHA1 hash of the value", field="key", value=key)
        self.details["expected"] = expected
        self.expected = expected


class UnencryptedMessageError(ValidationException):
    """A value is plaintext or signed-only instead of an encrypted envelope."""

    def __init__(self, message: str = "Message must be encrypted"):
        super().__init__(message, field="value")


class EmptyPayloadError(ValidationException):
    """A signed payload was requested without any data fields."""

    def __init__(self, message: str = "Invalid data object supplied"):
        super().__init__(message, field="data")


# =============================================================================
# AUTHENTICATION / CRYPTO
# =============================================================================


class AuthFailure(MuttrException):  # noqa: N818
    """Signing failed or the pod refused to authenticate the request."""


class SigningError(AuthFailure):
    """The identity could not sign a message."""


class DecryptionError(MuttrException):
    """A ciphertext could not be decrypted with the identity's key."""


class VerificationError(MuttrException):
    """A signature did not verify against the claimed public key."""


class EnvelopeError(ValidationException):
    """An armored block could not be parsed."""

    def __init__(self, message: str):
        super().__init__(message, field="envelope")


# =============================================================================
# POD API
# =============================================================================


class PodAPIError(MuttrException):
    """A pod answered with a non-200 status.

    ``message`` is the pod's stated ``error`` when the body carried one.
    """

    def __init__(self, status_code: int, message: str, url: str | None = None):
        details: dict[str, Any] = {"status_code": status_code}
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url


class PodAuthRejectedError(PodAPIError, AuthFailure):
    """A pod rejected the signed payload or token (401/403)."""


class TransportError(MuttrException):
    """Connection, DNS or timeout failure talking to a remote endpoint."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message, {"url": url} if url else None)
        self.url = url


class ResponseParseError(MuttrException):
    """A response body or push frame was not the JSON that was expected."""

    def __init__(self, message: str = "Failed to parse response body", body: str | None = None):
        details = {}
        if body is not None:
            details["body"] = body[:200]
        super().__init__(message, details)
        self.body = body


# =============================================================================
# STORAGE
# =============================================================================


class StorageError(MuttrException):
    """Exception for DHT storage errors."""


class NotConnectedError(StorageError):
    """Storage was used before the connection was opened."""

    def __init__(self, message: str = "Storage connection is not open"):
        super().__init__(message)


class NetworkJoinError(StorageError):
    """Joining the DHT failed; fatal for the connect attempt."""


class MessageNotFoundError(StorageError):
    """No value is stored under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Message not found: {key}", {"key": key})
        self.key = key


# =============================================================================
# SESSION
# =============================================================================


class SessionStateError(MuttrException):
    """An operation was invoked in a state that does not allow it."""

    def __init__(self, message: str, state: str | None = None):
        super().__init__(message, {"state": state} if state else None)
        self.state = state


class TokenError(SessionStateError):
    """A token was reused or used for a method/resource it is not scoped to."""


__all__ = [
    "AuthFailure",
    "DecryptionError",
    "EmptyPayloadError",
    "EnvelopeError",
    "InvalidUserIDError",
    "KeyMismatchError",
    "MessageNotFoundError",
    "MuttrException",
    "NetworkJoinError",
    "NotConnectedError",
    "PodAPIError",
    "PodAuthRejectedError",
    "ResponseParseError",
    "SessionStateError",
    "SigningError",
    "StorageError",
    "TokenError",
    "TransportError",
    "UnencryptedMessageError",
    "ValidationException",
    "VerificationError",
]
