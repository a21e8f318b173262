"""
Local identity key store.

The identity is one X25519 key pair, kept as two base64 strings under
fixed identifiers in a small key-value store:

    chatEncryptionPublicKey   -> base64(32-byte public key)
    chatEncryptionPrivateKey  -> base64(32-byte private key)

The default backend is a JSON file at ``$CHATSEAL_HOME/keys.json``
(``~/.chatseal/keys.json``), written atomically (temp file + os.replace)
with mode 600.

KeyStore does no locking. Two processes racing on first use may each
generate a pair; the last write wins. Serialize ensure_initialized()
calls yourself if that matters.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from nacl.public import PrivateKey

from chatseal import (
    DEFAULT_HOME,
    HOME_ENV,
    KEY_FILE_NAME,
    PRIVATE_KEY_ID,
    PUBLIC_KEY_ID,
)
from chatseal.codec import b64_to_bytes, bytes_to_b64
from chatseal.errors import KeyNotInitializedError, StorageUnavailableError

log = logging.getLogger(__name__)


def default_key_path() -> Path:
    """Key file location: $CHATSEAL_HOME/keys.json, else ~/.chatseal/keys.json."""
    home = os.environ.get(HOME_ENV, "").strip()
    root = Path(home).expanduser() if home else DEFAULT_HOME
    return root / KEY_FILE_NAME


@dataclass(frozen=True)
class KeyPair:
    """An X25519 identity key pair as raw bytes.

    The private key is left out of repr() so a pair can be logged or
    shown in a traceback without leaking it.
    """

    public_key: bytes
    private_key: bytes = field(repr=False)

    @property
    def public_key_b64(self) -> str:
        return bytes_to_b64(self.public_key)

    @property
    def private_key_b64(self) -> str:
        return bytes_to_b64(self.private_key)

    @classmethod
    def from_b64(cls, public_key: str, private_key: str) -> KeyPair:
        return cls(
            public_key=b64_to_bytes(public_key),
            private_key=b64_to_bytes(private_key),
        )


def generate_key_pair() -> KeyPair:
    """Generate a fresh X25519 key pair from the OS CSPRNG."""
    private = PrivateKey.generate()
    return KeyPair(public_key=bytes(private.public_key), private_key=bytes(private))


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class KeyValueStore(Protocol):
    """Process-durable string store the key pair lives in."""

    def get(self, name: str) -> str | None: ...

    def set(self, name: str, value: str) -> None: ...

    def update(self, values: dict[str, str]) -> None: ...

    def delete(self, name: str) -> None: ...


class MemoryKeyValueStore:
    """Dict-backed store. Lives as long as the object does."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, name: str) -> str | None:
        return self._data.get(name)

    def set(self, name: str, value: str) -> None:
        self._data[name] = value

    def update(self, values: dict[str, str]) -> None:
        self._data.update(values)

    def delete(self, name: str) -> None:
        self._data.pop(name, None)


class FileKeyValueStore:
    """A JSON object in a single file, rewritten atomically on every change.

    A missing file reads as empty. A file that cannot be read, or does
    not hold a JSON object of strings, raises StorageUnavailableError;
    it never reads as empty, so ensure_initialized() cannot overwrite it.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else default_key_path()

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailableError(
                f"Cannot read key file {self.path}: {exc.strerror or exc}"
            ) from exc

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageUnavailableError(
                f"Key file {self.path} is not valid JSON"
            ) from exc
        if not isinstance(data, dict) or not all(
            isinstance(v, str) for v in data.values()
        ):
            raise StorageUnavailableError(
                f"Key file {self.path} must hold a JSON object of strings"
            )
        return data

    def _write(self, data: dict[str, str]) -> None:
        payload = json.dumps(data, indent=2, sort_keys=True).encode("utf-8")
        parent = self.path.parent
        try:
            if not parent.is_dir():
                parent.mkdir(parents=True, exist_ok=True)
                try:
                    parent.chmod(0o700)
                except OSError:
                    pass  # Windows may not support chmod 700

            # mkstemp creates the file with mode 600
            fd, tmp_path = tempfile.mkstemp(
                dir=str(parent), suffix=".tmp", prefix=".keys_"
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, str(self.path))
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as exc:
            raise StorageUnavailableError(
                f"Cannot write key file {self.path}: {exc.strerror or exc}"
            ) from exc
        log.debug("Wrote key file %s", self.path)

    def get(self, name: str) -> str | None:
        return self._read().get(name)

    def set(self, name: str, value: str) -> None:
        data = self._read()
        data[name] = value
        self._write(data)

    def update(self, values: dict[str, str]) -> None:
        """Set several names in one atomic rewrite."""
        data = self._read()
        data.update(values)
        self._write(data)

    def delete(self, name: str) -> None:
        data = self._read()
        if name in data:
            del data[name]
            self._write(data)


# ---------------------------------------------------------------------------
# KeyStore
# ---------------------------------------------------------------------------

class KeyStore:
    """Owns the local identity key pair.

    Construct one at application start and hand it to PeerCipher and
    StorageCipher.

    Usage:
        keys = KeyStore()
        pair = keys.ensure_initialized()
        publish(pair.public_key_b64)
    """

    def __init__(self, backend: KeyValueStore | None = None) -> None:
        self.backend = backend if backend is not None else FileKeyValueStore()

    def _get(self, name: str) -> str | None:
        try:
            return self.backend.get(name)
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read {name}") from exc

    def _update(self, values: dict[str, str]) -> None:
        try:
            self.backend.update(values)
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot write {', '.join(values)}") from exc

    def persist(self, pair: KeyPair) -> None:
        """Write both keys, base64-encoded, replacing any existing pair.

        Both keys go to the backend in one update(). A failed write leaves
        the previous pair in place.
        """
        self._update({
            PUBLIC_KEY_ID: pair.public_key_b64,
            PRIVATE_KEY_ID: pair.private_key_b64,
        })

    def load(self) -> KeyPair | None:
        """Return the persisted pair, or None unless both keys are non-empty.

        Key well-formedness is not checked; malformed base64 raises
        DecodeError.
        """
        public = self._get(PUBLIC_KEY_ID)
        private = self._get(PRIVATE_KEY_ID)
        if not public or not private:
            return None
        log.debug("Loaded identity key pair from storage")
        return KeyPair.from_b64(public, private)

    def has_keys(self) -> bool:
        """True when both identifiers hold non-empty values."""
        return bool(self._get(PUBLIC_KEY_ID)) and bool(self._get(PRIVATE_KEY_ID))

    def ensure_initialized(self) -> KeyPair:
        """Return the persisted pair, generating and persisting one if absent.

        Idempotent once a pair exists: later calls return the same bytes.
        """
        pair = self.load()
        if pair is not None:
            return pair

        if self._get(PUBLIC_KEY_ID) or self._get(PRIVATE_KEY_ID):
            log.warning("Incomplete identity key pair in storage, replacing it")

        pair = generate_key_pair()
        self.persist(pair)
        log.info(
            "Generated new identity key pair (public key %s...)",
            pair.public_key_b64[:12],
        )
        return pair

    def require_private_key(self) -> bytes:
        """Return the local private key bytes.

        Raises KeyNotInitializedError if no private key is stored. Never
        generates one.
        """
        private = self._get(PRIVATE_KEY_ID)
        if not private:
            raise KeyNotInitializedError(
                "No private key found. Call ensure_initialized() first."
            )
        return b64_to_bytes(private)

    def clear(self) -> None:
        """Delete the persisted pair.

        Everything sealed or encrypted under it becomes unreadable.
        """
        try:
            self.backend.delete(PUBLIC_KEY_ID)
            self.backend.delete(PRIVATE_KEY_ID)
        except OSError as exc:
            raise StorageUnavailableError("Cannot delete identity keys") from exc
        log.info("Cleared identity key pair")
