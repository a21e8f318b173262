"""
At-rest encryption for data the local identity keeps for itself.

- Encryption: XSalsa20-Poly1305 (NaCl ``crypto_secretbox``) via PyNaCl
- Key: first 32 bytes of the identity private key (default), or
  HKDF-SHA256 over it when kdf="hkdf" (requires `cryptography`)

The default derivation reuses raw private-key material and matches
records sealed by tweetnacl clients.
Records sealed under one derivation do not open under the other, and
regenerating the identity key pair makes every sealed record unreadable.

Install the HKDF variant with: pip install chatseal[hardened]
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

import nacl.utils
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from chatseal import (
    MAC_SIZE,
    NONCE_SIZE,
    STORAGE_KDF_ENV,
    STORAGE_KDF_HKDF,
    STORAGE_KDF_INFO,
    STORAGE_KDF_TRUNCATE,
    STORAGE_KEY_SIZE,
)
from chatseal.codec import b64_to_bytes, bytes_to_b64, bytes_to_text, text_to_bytes
from chatseal.errors import DecodeError, DecryptionFailedError

if TYPE_CHECKING:
    from chatseal.keystore import KeyStore

log = logging.getLogger(__name__)

_KDF_CHOICES = (STORAGE_KDF_TRUNCATE, STORAGE_KDF_HKDF)


def _import_cryptography():
    """Lazily import the HKDF pieces of the cryptography package.

    Raises ImportError with a helpful message if not installed.
    """
    try:
        from cryptography.hazmat.primitives import hashes
        from cryptography.hazmat.primitives.kdf.hkdf import HKDF

        return HKDF, hashes
    except ImportError:
        raise ImportError(
            "cryptography is required for kdf='hkdf'. "
            "Install with: pip install chatseal[hardened]"
        )


def resolve_kdf(kdf: str | None = None) -> str:
    """Pick the storage key derivation: explicit value, $CHATSEAL_STORAGE_KDF, or truncate."""
    if kdf is None:
        kdf = os.environ.get(STORAGE_KDF_ENV, "").strip().lower() or STORAGE_KDF_TRUNCATE
    if kdf not in _KDF_CHOICES:
        raise ValueError(f"Unknown storage kdf {kdf!r}, expected one of {_KDF_CHOICES}")
    return kdf


@dataclass(frozen=True)
class SealedRecord:
    """Output of seal_for_storage(), both fields base64."""

    encrypted_data: str
    nonce: str

    def to_dict(self) -> dict[str, str]:
        return {"encryptedData": self.encrypted_data, "nonce": self.nonce}

    @classmethod
    def from_dict(cls, d: dict) -> SealedRecord:
        try:
            encrypted_data, nonce = d["encryptedData"], d["nonce"]
        except (KeyError, TypeError):
            raise DecodeError("Sealed record needs 'encryptedData' and 'nonce'") from None
        if not isinstance(encrypted_data, str) or not isinstance(nonce, str):
            raise DecodeError("Sealed record fields must be strings")
        return cls(encrypted_data=encrypted_data, nonce=nonce)


def derive_symmetric_key(private_key: bytes, kdf: str = STORAGE_KDF_TRUNCATE) -> bytes:
    """Derive the 32-byte secretbox key from an identity private key.

    Deterministic: the same private key always yields the same key.

    Args:
        private_key: Raw identity private key.
        kdf: "truncate" (first 32 bytes) or "hkdf" (HKDF-SHA256, fixed info).
    """
    if len(private_key) < STORAGE_KEY_SIZE:
        raise DecodeError(f"Private key must be at least {STORAGE_KEY_SIZE} bytes")

    if kdf == STORAGE_KDF_TRUNCATE:
        return bytes(private_key[:STORAGE_KEY_SIZE])
    if kdf == STORAGE_KDF_HKDF:
        HKDF, hashes = _import_cryptography()
        return HKDF(
            algorithm=hashes.SHA256(),
            length=STORAGE_KEY_SIZE,
            salt=None,
            info=STORAGE_KDF_INFO,
        ).derive(bytes(private_key))
    raise ValueError(f"Unknown storage kdf {kdf!r}")


def secretbox_encrypt(key: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt with a 32-byte key and a fresh random nonce. Returns (ciphertext, nonce)."""
    if len(key) != STORAGE_KEY_SIZE:
        raise ValueError(f"Key must be {STORAGE_KEY_SIZE} bytes")
    nonce = nacl.utils.random(NONCE_SIZE)
    encrypted = SecretBox(key).encrypt(plaintext, nonce)
    return encrypted.ciphertext, nonce


def secretbox_decrypt(key: bytes, ciphertext: bytes, nonce: bytes) -> bytes:
    """Verify and decrypt a secretbox.

    Raises:
        DecryptionFailedError: If authentication fails or input is truncated.
    """
    if len(key) != STORAGE_KEY_SIZE:
        raise ValueError(f"Key must be {STORAGE_KEY_SIZE} bytes")
    if len(nonce) != NONCE_SIZE or len(ciphertext) < MAC_SIZE:
        raise DecryptionFailedError("Decryption failed")
    try:
        return SecretBox(key).decrypt(ciphertext, nonce)
    except CryptoError:
        log.debug("Sealed record failed authentication")
        raise DecryptionFailedError("Decryption failed") from None


class StorageCipher:
    """Seals and opens local records under a key derived from the identity.

    Usage:
        cipher = StorageCipher(keys)
        record = cipher.seal_for_storage("draft message")
        db.save(record.to_dict())
        text = cipher.open_record(SealedRecord.from_dict(row))
    """

    def __init__(self, keystore: KeyStore, kdf: str | None = None) -> None:
        self.keystore = keystore
        self.kdf = resolve_kdf(kdf)

    def derive_local_symmetric_key(self) -> bytes:
        """Raises KeyNotInitializedError if no private key is stored."""
        return derive_symmetric_key(self.keystore.require_private_key(), self.kdf)

    def seal_for_storage(self, plaintext: str) -> SealedRecord:
        key = self.derive_local_symmetric_key()
        ciphertext, nonce = secretbox_encrypt(key, text_to_bytes(plaintext))
        return SealedRecord(encrypted_data=bytes_to_b64(ciphertext), nonce=bytes_to_b64(nonce))

    def open_from_storage(self, encrypted_data: str, nonce: str) -> str:
        key = self.derive_local_symmetric_key()
        plaintext = secretbox_decrypt(key, b64_to_bytes(encrypted_data), b64_to_bytes(nonce))
        return bytes_to_text(plaintext)

    def open_record(self, record: SealedRecord) -> str:
        return self.open_from_storage(record.encrypted_data, record.nonce)
