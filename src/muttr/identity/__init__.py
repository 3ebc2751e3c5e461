"""Identities: key material, armored envelopes and the sign/encrypt capability."""

from .envelope import EncryptedMessage, SignedMessage, detect_kind, read_encrypted
from .identity import Identity, KeyringIdentity
from .keys import KeyPair, PublicKey

__all__ = [
    "EncryptedMessage",
    "Identity",
    "KeyPair",
    "KeyringIdentity",
    "PublicKey",
    "SignedMessage",
    "detect_kind",
    "read_encrypted",
]
