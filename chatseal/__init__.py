"""
ChatSeal — client-side end-to-end encryption for chat messages.

Architecture:
    Identity:   X25519 key pair, base64 in a local key-value store
                ("chatEncryptionPublicKey" / "chatEncryptionPrivateKey")
    Peer:       NaCl box (X25519 + XSalsa20-Poly1305), fresh 24-byte nonce
    At rest:    NaCl secretbox keyed from the local private key
    Boundary:   every value in or out is a printable (base64) string

Envelopes and sealed records are byte-compatible with tweetnacl.
"""

from pathlib import Path

__version__ = "0.1.0"

# Persisted identity identifiers
PUBLIC_KEY_ID = "chatEncryptionPublicKey"
PRIVATE_KEY_ID = "chatEncryptionPrivateKey"

# NaCl box / secretbox sizes
KEY_SIZE = 32  # X25519 public and private keys
NONCE_SIZE = 24  # XSalsa20 nonce
MAC_SIZE = 16  # Poly1305 tag
STORAGE_KEY_SIZE = 32  # secretbox key

# Storage key derivation
STORAGE_KDF_TRUNCATE = "truncate"
STORAGE_KDF_HKDF = "hkdf"
STORAGE_KDF_INFO = b"chatseal/storage-key/v1"

# Configuration
HOME_ENV = "CHATSEAL_HOME"
STORAGE_KDF_ENV = "CHATSEAL_STORAGE_KDF"
DEFAULT_HOME = Path.home() / ".chatseal"
KEY_FILE_NAME = "keys.json"
