"""
Error kinds raised by chatseal.

Every failure is raised from the call that detected it. Messages carry
no key material and no detail about why authentication failed.
"""

from __future__ import annotations


class ChatSealError(Exception):
    """Base class for chatseal errors."""


class KeyNotInitializedError(ChatSealError):
    """A cipher call was made before a local key pair exists.

    Call ``KeyStore.ensure_initialized()`` first.
    """


class DecryptionFailedError(ChatSealError):
    """Authentication failed: wrong key, wrong nonce, tampered or truncated data."""


class DecodeError(ChatSealError, ValueError):
    """Printable-string or text input that cannot be decoded."""


class StorageUnavailableError(ChatSealError):
    """The key storage medium cannot be read or written."""
