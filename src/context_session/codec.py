"""Default session value codec.

The cookie-mode payload is a JSON document wrapped in url-safe base64 so
that it survives cookie transport without quoting.  Padding is stripped on
encode and restored on decode.

Functions
---------
- encode  — mapping -> transport-safe string
- decode  — transport-safe string -> mapping, or None when malformed
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def encode(value: dict[str, Any]) -> str:
    """Serialise ``value`` to a url-safe base64 JSON string.

    Parameters
    ----------
    value:
        The session payload.  Must be JSON-serialisable.

    Returns
    -------
    str
        ASCII string safe for use as a cookie value.

    Raises
    ------
    TypeError
        If ``value`` contains objects JSON cannot represent.
    """
    raw = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    token = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")
    return token.rstrip("=")


def decode(token: str) -> dict[str, Any] | None:
    """Inverse of :func:`encode`.

    Never raises: any malformed input (bad base64, bad UTF-8, bad JSON, or a
    document that is not a JSON object) yields ``None``.
    """
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        value = json.loads(raw)
    except (binascii.Error, UnicodeError, ValueError) as exc:
        logger.debug("decode: malformed session payload (%s)", type(exc).__name__)
        return None

    if not isinstance(value, dict):
        logger.debug("decode: payload is %s, not an object", type(value).__name__)
        return None
    return value


__all__ = ["decode", "encode"]
