"""
Canonical encodings shared by the key store and both ciphers.

    text  <-> bytes   UTF-8, strict in both directions
    bytes <-> str     standard base64 with padding, validated on decode

Both pairs are exact inverses. Decoding never repairs or truncates input:
anything that is not a valid encoding raises DecodeError.
"""

from __future__ import annotations

import base64

from chatseal.errors import DecodeError


def text_to_bytes(text: str) -> bytes:
    """Encode text as UTF-8."""
    if not isinstance(text, str):
        raise DecodeError(f"Expected str, got {type(text).__name__}")
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates have no UTF-8 form
        raise DecodeError("Text is not encodable as UTF-8") from None


def bytes_to_text(data: bytes) -> str:
    """Decode UTF-8 bytes to text."""
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError:
        raise DecodeError("Data is not valid UTF-8") from None


def bytes_to_b64(data: bytes) -> str:
    """Encode bytes as a printable base64 string."""
    return base64.b64encode(bytes(data)).decode("ascii")


def b64_to_bytes(text: str) -> bytes:
    """Decode a base64 string produced by :func:`bytes_to_b64`.

    Raises DecodeError on non-alphabet characters, bad padding or
    non-string input.
    """
    if not isinstance(text, str):
        raise DecodeError(f"Expected base64 str, got {type(text).__name__}")
    try:
        return base64.b64decode(text, validate=True)
    except ValueError:
        # binascii.Error, or non-ASCII characters in the string
        raise DecodeError("Malformed base64 input") from None
