"""Normalisation of inbound addresses and message text."""

from __future__ import annotations

import hashlib
import re

MAX_MESSAGE_LENGTH = 4096
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

_NON_DIGITS = re.compile(r"\D+")
_WHITESPACE = re.compile(r"\s+")


def sanitize_address(raw: str | None) -> str | None:
    """Return the digits of a phone number, or ``None`` when implausible."""

    if not raw:
        return None
    digits = _NON_DIGITS.sub("", raw.split("@", 1)[0])
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return None
    return digits


def sanitize_text(raw: str | None, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Trim, strip NUL bytes and lone surrogates, and truncate inbound text."""

    if not raw:
        return ""
    # lone surrogates cannot be encoded as UTF-8 (Redis keys, Postgres text)
    text = raw.encode("utf-8", "ignore").decode("utf-8")
    text = text.replace("\x00", "").strip()
    return text[:max_length]


def content_fingerprint(text: str, prefix_length: int = 100) -> str:
    """Stable fingerprint of the first ``prefix_length`` characters of ``text``.

    Whitespace and case are ignored so transports that reformat a message
    still collide.
    """

    prefix = _WHITESPACE.sub("", text[:prefix_length]).lower()
    return hashlib.sha1(prefix.encode("utf-8", "surrogatepass")).hexdigest()
