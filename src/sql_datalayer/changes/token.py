"""Continuation token codec for since-column pagination."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone

from ..errors import DecodeError

TOKEN_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
_LEGACY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_since(value: datetime) -> str:
    """Render a snapshot bound as ``YYYY-MM-DD HH:MM:SS.ffffff`` (UTC wall time)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TOKEN_TIME_FORMAT)


def encode_token(value: datetime) -> str:
    return base64.urlsafe_b64encode(format_since(value).encode("utf-8")).decode("ascii")


def decode_token(token: str) -> datetime:
    """Decode a caller supplied token back into the bound it was issued for."""
    try:
        raw = base64.b64decode(token.encode("ascii"), altchars=b"-_", validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise DecodeError(f"malformed continuation token {token!r}: {exc}") from exc

    for fmt in (TOKEN_TIME_FORMAT, _LEGACY_TIME_FORMAT):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise DecodeError(f"continuation token {token!r} does not hold a timestamp")


__all__ = ["TOKEN_TIME_FORMAT", "decode_token", "encode_token", "format_since"]
