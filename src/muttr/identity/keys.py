# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Key material for identities.

An identity owns two key pairs:

- Ed25519 for signing (provenance)
- X25519 for encryption (confidentiality)

Public halves travel as an armored ``PUBLIC KEY BLOCK``; private halves are
exported as passphrase-protected PKCS#8 PEM inside a ``PRIVATE KEY BLOCK``.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..core.exceptions import DecryptionError, EnvelopeError
from .envelope import (
    PRIVATE_KEY_BLOCK,
    PUBLIC_KEY_BLOCK,
    armor_json,
    b64decode,
    b64encode,
    dearmor_json,
)

NONCE_SIZE = 12
CONTENT_KEY_SIZE = 32
KEY_WRAP_INFO = b"muttr-key-wrap-v1"
MESSAGE_AAD = b"muttr-message-v1"


def _raw_public(key: Ed25519PublicKey | X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def key_id_for(encryption_key: bytes) -> str:
    """Short fingerprint of an X25519 public key (16 hex chars)."""
    return hashlib.sha256(encryption_key).hexdigest()[:16]


# =============================================================================
# PUBLIC KEYS
# =============================================================================


@dataclass(frozen=True)
class PublicKey:
    """Public signing and encryption keys bound to a user ID."""

    user_id: str
    signing_key: bytes
    encryption_key: bytes

    @property
    def key_id(self) -> str:
        return key_id_for(self.encryption_key)

    def verifier(self) -> Ed25519PublicKey:
        return Ed25519PublicKey.from_public_bytes(self.signing_key)

    def recipient(self) -> X25519PublicKey:
        return X25519PublicKey.from_public_bytes(self.encryption_key)

    def verify(self, signature: bytes, data: bytes) -> bool:
        """Verify an Ed25519 signature. Returns True if valid."""
        try:
            self.verifier().verify(signature, data)
            return True
        except InvalidSignature:
            return False

    def to_armored(self) -> str:
        return armor_json(
            PUBLIC_KEY_BLOCK,
            {
                "user_id": self.user_id,
                "signing_key": b64encode(self.signing_key),
                "encryption_key": b64encode(self.encryption_key),
            },
            headers={"Key-Id": self.key_id},
        )

    @classmethod
    def from_armored(cls, text: str) -> PublicKey:
        data = dearmor_json(text, PUBLIC_KEY_BLOCK)
        try:
            key = cls(
                user_id=str(data["user_id"]),
                signing_key=b64decode(data["signing_key"]),
                encryption_key=b64decode(data["encryption_key"]),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise EnvelopeError(f"Malformed public key block: {e}") from e
        if len(key.signing_key) != 32 or len(key.encryption_key) != 32:
            raise EnvelopeError("Public key block has keys of the wrong size")
        return key


# =============================================================================
# KEY PAIRS
# =============================================================================


@dataclass
class KeyPair:
    """Ed25519 + X25519 private keys for one identity."""

    signing_key: Ed25519PrivateKey = field(repr=False)
    encryption_key: X25519PrivateKey = field(repr=False)

    @classmethod
    def generate(cls) -> KeyPair:
        return cls(
            signing_key=Ed25519PrivateKey.generate(),
            encryption_key=X25519PrivateKey.generate(),
        )

    def public_key(self, user_id: str) -> PublicKey:
        return PublicKey(
            user_id=user_id,
            signing_key=_raw_public(self.signing_key.public_key()),
            encryption_key=_raw_public(self.encryption_key.public_key()),
        )

    def sign(self, data: bytes) -> bytes:
        return self.signing_key.sign(data)

    def export(self, user_id: str, passphrase: str) -> str:
        """Export both private keys as an armored, passphrase-protected block."""
        encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
        pems = {
            name: key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=encryption,
            ).decode("ascii")
            for name, key in (("signing_key", self.signing_key), ("encryption_key", self.encryption_key))
        }
        return armor_json(PRIVATE_KEY_BLOCK, {"user_id": user_id, **pems})

    @classmethod
    def load(cls, armored: str, passphrase: str) -> KeyPair:
        """Load a private key block.

        Raises:
            DecryptionError: If the passphrase is wrong.
            EnvelopeError: If the block is malformed.
        """
        data = dearmor_json(armored, PRIVATE_KEY_BLOCK)
        password = passphrase.encode("utf-8")
        try:
            signing_key = serialization.load_pem_private_key(data["signing_key"].encode("ascii"), password)
            encryption_key = serialization.load_pem_private_key(data["encryption_key"].encode("ascii"), password)
        except (KeyError, AttributeError) as e:
            raise EnvelopeError(f"Malformed private key block: {e}") from e
        except (ValueError, TypeError) as e:
            raise DecryptionError("Failed to decrypt private key") from e

        if not isinstance(signing_key, Ed25519PrivateKey) or not isinstance(encryption_key, X25519PrivateKey):
            raise EnvelopeError("Private key block holds keys of the wrong type")
        return cls(signing_key=signing_key, encryption_key=encryption_key)


# =============================================================================
# HYBRID ENCRYPTION
# =============================================================================


def derive_kek(shared_secret: bytes, ephemeral_key: bytes, recipient_key: bytes) -> bytes:
    """Derive a key-encryption key with HKDF-SHA256 bound to both public keys."""
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=KEY_WRAP_INFO + ephemeral_key + recipient_key,
    ).derive(shared_secret)


def encrypt_aead(key: bytes, plaintext: bytes, ad: bytes) -> bytes:
    """Encrypt with AES-256-GCM. Returns nonce || ciphertext || tag."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, ad)


def decrypt_aead(key: bytes, data: bytes, ad: bytes) -> bytes:
    """Decrypt AES-256-GCM. Input is nonce || ciphertext || tag."""
    return AESGCM(key).decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], ad)


def new_content_key() -> bytes:
    return AESGCM.generate_key(bit_length=CONTENT_KEY_SIZE * 8)
