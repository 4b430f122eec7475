"""Shape checks applied before any store, cache or crypto work."""

from __future__ import annotations

import re
from typing import Any

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# RFC 5321 caps a path at 254 octets
MAX_EMAIL_LENGTH = 254
MAX_TOKEN_LENGTH = 4096


def check_email_format(email: Any) -> bool:
    if not email or not isinstance(email, str):
        return False
    if len(email) > MAX_EMAIL_LENGTH:
        return False
    return bool(_EMAIL_RE.match(email))


def check_secret_format(secret: Any, *, max_length: int = 1024) -> bool:
    """Non-empty string no longer than ``max_length``.

    Strength rules belong to account creation; any stored password must stay
    usable for login.
    """
    if not secret or not isinstance(secret, str):
        return False
    return len(secret) <= max_length


def check_token_shape(token: Any) -> bool:
    """Three non-empty dot-separated segments, as produced by the token codec."""
    if not token or not isinstance(token, str):
        return False
    if len(token) > MAX_TOKEN_LENGTH:
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)
