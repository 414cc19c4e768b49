"""Compact text encoding for embedding vectors.

vector → quantize (4 decimals) → JSON → zlib → base64 text.
Shrinks stored rows roughly 3-4x compared with raw JSON floats.
"""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from typing import Sequence

from sift.errors import StorageError
from sift.text.vector_math import quantize

_DIGITS = 4


def compress_and_encode_array(values: Sequence[float], digits: int = _DIGITS) -> str:
    """Encode *values* as compressed base64 text (lossy to *digits* decimals)."""
    payload = json.dumps(quantize(values, digits), separators=(",", ":")).encode("utf-8")
    return base64.b64encode(zlib.compress(payload, 9)).decode("ascii")


def decode_and_decompress_array(encoded: str) -> list[float]:
    """Inverse of compress_and_encode_array().

    Raises:
        StorageError: If *encoded* is not a valid compressed vector.
    """
    try:
        raw = zlib.decompress(base64.b64decode(encoded.encode("ascii"), validate=True))
        values = json.loads(raw.decode("utf-8"))
    except (binascii.Error, zlib.error, UnicodeError, ValueError) as exc:
        raise StorageError(f"Corrupt embedding payload: {exc}") from exc
    if not isinstance(values, list):
        raise StorageError("Corrupt embedding payload: not an array")
    return [float(v) for v in values]
