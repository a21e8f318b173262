"""
Peer-to-peer authenticated encryption.

- Key agreement: X25519 between the local private key and the peer's public key
- Encryption: XSalsa20-Poly1305 (NaCl ``crypto_box``) via PyNaCl
- Nonce: 24 random bytes per call, never a counter

The box is symmetric: A encrypting to B's public key and B decrypting
with A's public key derive the same shared key.

Output is byte-compatible with tweetnacl ``nacl.box``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import nacl.utils
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey

from chatseal import KEY_SIZE, MAC_SIZE, NONCE_SIZE
from chatseal.codec import b64_to_bytes, bytes_to_b64, bytes_to_text, text_to_bytes
from chatseal.errors import DecodeError, DecryptionFailedError

if TYPE_CHECKING:
    from chatseal.keystore import KeyStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    """Ciphertext and nonce from one encrypt_for_peer() call, both base64.

    Attributes:
        ciphertext: Encrypted message including the 16-byte Poly1305 tag.
        nonce: The 24-byte nonce used for this message.
    """

    ciphertext: str
    nonce: str

    def to_dict(self) -> dict[str, str]:
        """JSON form, using the field names the chat message rows use."""
        return {"encryptedMessage": self.ciphertext, "nonce": self.nonce}

    @classmethod
    def from_dict(cls, d: dict) -> Envelope:
        try:
            ciphertext, nonce = d["encryptedMessage"], d["nonce"]
        except (KeyError, TypeError):
            raise DecodeError("Envelope needs 'encryptedMessage' and 'nonce'") from None
        if not isinstance(ciphertext, str) or not isinstance(nonce, str):
            raise DecodeError("Envelope fields must be strings")
        return cls(ciphertext=ciphertext, nonce=nonce)


def generate_nonce() -> str:
    """Return a fresh random 24-byte nonce, base64-encoded."""
    return bytes_to_b64(nacl.utils.random(NONCE_SIZE))


def _make_box(private_key: bytes, public_key: bytes) -> Box:
    if len(private_key) != KEY_SIZE:
        raise DecodeError(f"Private key must be {KEY_SIZE} bytes")
    if len(public_key) != KEY_SIZE:
        raise DecodeError(f"Public key must be {KEY_SIZE} bytes")
    try:
        return Box(PrivateKey(private_key), PublicKey(public_key))
    except CryptoError:
        # libsodium rejects low-order points
        raise DecodeError("Public key is not a usable X25519 key") from None


def box_encrypt(
    private_key: bytes,
    public_key: bytes,
    plaintext: bytes,
) -> tuple[bytes, bytes]:
    """Encrypt with a fresh random nonce.

    Args:
        private_key: Sender's 32-byte X25519 private key.
        public_key: Receiver's 32-byte X25519 public key.
        plaintext: Message bytes.

    Returns:
        (ciphertext, nonce). The ciphertext is len(plaintext) + 16 bytes.
    """
    box = _make_box(private_key, public_key)
    nonce = nacl.utils.random(NONCE_SIZE)
    encrypted = box.encrypt(plaintext, nonce)
    return encrypted.ciphertext, nonce


def box_decrypt(
    private_key: bytes,
    public_key: bytes,
    ciphertext: bytes,
    nonce: bytes,
) -> bytes:
    """Verify and decrypt a box.

    Args:
        private_key: Receiver's 32-byte X25519 private key.
        public_key: Sender's 32-byte X25519 public key.
        ciphertext: Ciphertext including the Poly1305 tag.
        nonce: The 24-byte nonce used at encryption.

    Returns:
        The plaintext bytes.

    Raises:
        DecryptionFailedError: If authentication fails, or the nonce or
            ciphertext is truncated.
    """
    box = _make_box(private_key, public_key)
    if len(nonce) != NONCE_SIZE or len(ciphertext) < MAC_SIZE:
        raise DecryptionFailedError("Decryption failed")
    try:
        return box.decrypt(ciphertext, nonce)
    except CryptoError:
        log.debug("Peer box failed authentication")
        raise DecryptionFailedError("Decryption failed") from None


class PeerCipher:
    """Encrypts to and decrypts from peers with the local identity key.

    All arguments and results are base64 strings (plaintext is text).
    Raises KeyNotInitializedError before doing any work if the key store
    holds no private key.

    Usage:
        cipher = PeerCipher(keys)
        env = cipher.encrypt_for_peer("Hello", bob_public_b64)
        text = bob_cipher.decrypt_from_peer(env.ciphertext, env.nonce, alice_public_b64)
    """

    def __init__(self, keystore: KeyStore) -> None:
        self.keystore = keystore

    def encrypt_for_peer(self, plaintext: str, receiver_public_key: str) -> Envelope:
        private_key = self.keystore.require_private_key()
        public_key = b64_to_bytes(receiver_public_key)
        ciphertext, nonce = box_encrypt(private_key, public_key, text_to_bytes(plaintext))
        return Envelope(ciphertext=bytes_to_b64(ciphertext), nonce=bytes_to_b64(nonce))

    def decrypt_from_peer(
        self,
        ciphertext: str,
        nonce: str,
        sender_public_key: str,
    ) -> str:
        private_key = self.keystore.require_private_key()
        plaintext = box_decrypt(
            private_key,
            b64_to_bytes(sender_public_key),
            b64_to_bytes(ciphertext),
            b64_to_bytes(nonce),
        )
        return bytes_to_text(plaintext)

    def open_envelope(self, envelope: Envelope, sender_public_key: str) -> str:
        """decrypt_from_peer() taking an Envelope."""
        return self.decrypt_from_peer(envelope.ciphertext, envelope.nonce, sender_public_key)
