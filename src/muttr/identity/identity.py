# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Identity capability.

An identity is a user ID (``alias@podhost``) plus key material, exposing
``sign``/``verify``/``encrypt``/``decrypt``. Everything above this module
depends only on the :class:`Identity` protocol; :class:`KeyringIdentity` is
the implementation backed by ``cryptography``.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, runtime_checkable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey

from ..core.exceptions import (
    DecryptionError,
    EnvelopeError,
    SigningError,
    UnencryptedMessageError,
    VerificationError,
)
from ..userid import get_alias_from_user_id, get_pod_host_from_user_id, sha1_hex, validate_user_id
from .envelope import EncryptedMessage, RecipientStanza, SignedMessage, read_encrypted
from .keys import (
    MESSAGE_AAD,
    NONCE_SIZE,
    KeyPair,
    PublicKey,
    _raw_public,
    decrypt_aead,
    derive_kek,
    encrypt_aead,
    new_content_key,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class Identity(Protocol):
    """Capability set of a key-pair-backed user identity."""

    @property
    def user_id(self) -> str: ...

    @property
    def public_key_armored(self) -> str: ...

    def sign(self, message: str) -> str: ...

    def verify(self, public_key_armored: str, signed: str) -> str: ...

    def encrypt(self, public_keys: list[str], message: str) -> str: ...

    def decrypt(self, ciphertext: str) -> str: ...

    def get_pub_key_hash(self) -> str: ...

    def get_pub_key_href(self) -> str: ...


class KeyringIdentity:
    """An identity whose keys are held in process memory.

    Example:
        >>> alice = KeyringIdentity.generate("alice@pod.example", "secret")
        >>> signed = alice.sign("hello")
        >>> alice.verify(alice.public_key_armored, signed)
        'hello'
    """

    def __init__(self, user_id: str, key_pair: KeyPair, pod_scheme: str = "https", passphrase: str = ""):
        validate_user_id(user_id)
        self._user_id = user_id
        self._keys = key_pair
        self._passphrase = passphrase
        self._pod_scheme = pod_scheme
        self._public_key = key_pair.public_key(user_id)
        self._public_key_armored = self._public_key.to_armored()

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def generate(cls, user_id: str, passphrase: str, pod_scheme: str = "https") -> KeyringIdentity:
        """Generate a fresh identity.

        ``passphrase`` protects the private keys on :meth:`export_private_key`.
        """
        if not isinstance(passphrase, str):
            raise TypeError("Invalid passphrase supplied")
        return cls(user_id, KeyPair.generate(), pod_scheme=pod_scheme, passphrase=passphrase)

    @classmethod
    def load(
        cls,
        user_id: str,
        passphrase: str,
        public_key: str,
        private_key: str,
        pod_scheme: str = "https",
    ) -> KeyringIdentity:
        """Load an identity from its exported key blocks.

        Raises:
            DecryptionError: If the passphrase does not unlock the private keys.
            EnvelopeError: If the blocks are malformed or do not match.
        """
        key_pair = KeyPair.load(private_key, passphrase)
        identity = cls(user_id, key_pair, pod_scheme=pod_scheme, passphrase=passphrase)
        expected = PublicKey.from_armored(public_key)
        if (expected.signing_key, expected.encryption_key) != (
            identity._public_key.signing_key,
            identity._public_key.encryption_key,
        ):
            raise EnvelopeError("Public key does not match private key")
        return identity

    def export_private_key(self, passphrase: str | None = None) -> str:
        return self._keys.export(self._user_id, passphrase if passphrase is not None else self._passphrase)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def public_key_armored(self) -> str:
        return self._public_key_armored

    @property
    def key_id(self) -> str:
        return self._public_key.key_id

    def get_pub_key_hash(self) -> str:
        """Lowercase hex SHA-1 of the armored public key."""
        return sha1_hex(self._public_key_armored)

    def get_pub_key_href(self) -> str:
        """URL at which this identity's public key can be fetched."""
        host = get_pod_host_from_user_id(self._user_id)
        alias = get_alias_from_user_id(self._user_id)
        return f"{self._pod_scheme}://{host}/aliases/{alias}"

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    def sign(self, message: str) -> str:
        """Cleartext-sign ``message`` with the identity's Ed25519 key."""
        if not isinstance(message, str):
            raise SigningError("Message must be a string")
        try:
            signature = self._keys.sign(message.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise SigningError(f"Failed to sign message: {e}") from e
        return SignedMessage(text=message, key_id=self.key_id, signature=signature).to_armored()

    def verify(self, public_key_armored: str, signed: str) -> str:
        """Verify a cleartext-signed message and return its text.

        Raises:
            VerificationError: If the key or message is malformed, or the
                signature does not verify.
        """
        if not isinstance(signed, str):
            raise VerificationError("Message must be a string")
        try:
            key = PublicKey.from_armored(public_key_armored)
            message = SignedMessage.from_armored(signed)
        except EnvelopeError as e:
            raise VerificationError(f"Cannot verify message: {e.message}") from e

        if message.key_id != key.key_id:
            raise VerificationError("Message was signed by a different key")
        if not key.verify(message.signature, message.text.encode("utf-8")):
            raise VerificationError("Signature verification failed")
        return message.text

    def encrypt(self, public_keys: list[str], message: str) -> str:
        """Encrypt ``message`` to every key in ``public_keys`` and to this identity."""
        if not isinstance(public_keys, list):
            raise TypeError("Keys must be a list")
        if not isinstance(message, str):
            raise TypeError("Message must be a string")

        recipients: dict[str, PublicKey] = {}
        for armored in public_keys:
            key = PublicKey.from_armored(armored)
            recipients.setdefault(key.key_id, key)
        # Always readable by the sender
        recipients.setdefault(self.key_id, self._public_key)

        content_key = new_content_key()
        stanzas = []
        for key_id, key in recipients.items():
            ephemeral = X25519PrivateKey.generate()
            ephemeral_raw = _raw_public(ephemeral.public_key())
            kek = derive_kek(ephemeral.exchange(key.recipient()), ephemeral_raw, key.encryption_key)
            stanzas.append(
                RecipientStanza(
                    key_id=key_id,
                    ephemeral_key=ephemeral_raw,
                    wrapped_key=encrypt_aead(kek, content_key, key_id.encode("ascii")),
                )
            )

        sealed = encrypt_aead(content_key, message.encode("utf-8"), MESSAGE_AAD)
        logger.debug("Encrypted message to %d recipient key(s)", len(stanzas))
        return EncryptedMessage(
            recipients=tuple(stanzas),
            nonce=sealed[:NONCE_SIZE],
            ciphertext=sealed[NONCE_SIZE:],
        ).to_armored()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt an encrypted message addressed to this identity.

        Raises:
            DecryptionError: If the message is not encrypted to this identity
                or fails authentication.
        """
        if not isinstance(ciphertext, str):
            raise DecryptionError("Message must be a string")
        try:
            envelope = read_encrypted(ciphertext)
        except UnencryptedMessageError as e:
            raise DecryptionError(e.message) from e

        stanza = envelope.stanza_for(self.key_id)
        if stanza is None:
            raise DecryptionError("Message is not encrypted to this identity")

        try:
            shared = self._keys.encryption_key.exchange(X25519PublicKey.from_public_bytes(stanza.ephemeral_key))
            kek = derive_kek(shared, stanza.ephemeral_key, self._public_key.encryption_key)
            content_key = decrypt_aead(kek, stanza.wrapped_key, stanza.key_id.encode("ascii"))
            plaintext = decrypt_aead(content_key, envelope.nonce + envelope.ciphertext, MESSAGE_AAD)
        except (InvalidTag, ValueError) as e:
            raise DecryptionError("Failed to decrypt message") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted message is not valid UTF-8") from e

    def serialize(self) -> str:
        """Serialize user ID and public key as JSON."""
        return json.dumps({"userID": self._user_id, "publicKey": self._public_key_armored})

    def __repr__(self) -> str:
        return f"KeyringIdentity(user_id={self._user_id!r}, key_id={self.key_id!r})"
