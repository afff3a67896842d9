"""Base64 and git blob hashing helpers."""

from __future__ import annotations

import base64
import hashlib


def _to_bytes(data: str | bytes) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def encode_base64(data: str | bytes) -> str:
    """Encode text (as UTF-8) or raw bytes to a base64 string."""
    return base64.b64encode(_to_bytes(data)).decode("ascii")


def decode_base64(encoded: str) -> str:
    """Decode a base64 string to UTF-8 text. Line breaks in the input are ignored."""
    return base64.b64decode("".join(encoded.split())).decode("utf-8", errors="replace")


def get_git_hash(data: str | bytes) -> str:
    """Return the SHA-1 a git blob with this content would have."""
    raw = _to_bytes(data)
    return hashlib.sha1(b"blob %d\0" % len(raw) + raw).hexdigest()
