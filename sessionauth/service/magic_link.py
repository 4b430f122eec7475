from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional

from sessionauth.logging import get_logger
from sessionauth.service.errors import ConfigurationError, TokenInvalidError

logger = get_logger(__name__)

MAGIC_LINK_TTL_MS = 15 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_millis(value: str) -> int:
    if not value.isascii() or not value.isdigit():
        raise TokenInvalidError("Magic link timestamp invalid", reason="malformed")
    return int(value)


class MagicLinkCodec:
    """Stateless, HMAC-signed email capability.

    Token layout: ``base64(email).issuedAtMillis.expiresAtMillis.hexHmac``
    where the HMAC-SHA256 covers the first three fields exactly as they
    appear in the token. Nothing is stored server-side; redemption only
    recomputes the HMAC and checks the embedded expiry.
    """

    def __init__(self, secret: str, *, ttl_ms: int = MAGIC_LINK_TTL_MS) -> None:
        if not secret:
            raise ConfigurationError("Magic link secret is not configured")
        if ttl_ms <= 0:
            raise ConfigurationError("Magic link lifetime must be positive")
        self._key = secret.encode("utf-8")
        self.ttl_ms = ttl_ms

    def _digest(self, signed_part: str) -> str:
        return hmac.new(self._key, signed_part.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, email: str, now_ms: Optional[int] = None) -> str:
        """Return a link token for ``email``, or ``""`` when email is empty."""
        if not email:
            logger.warning("magic_link_issue_rejected", reason="empty_email")
            return ""
        issued_at = _now_ms() if now_ms is None else int(now_ms)
        expires_at = issued_at + self.ttl_ms
        encoded = base64.b64encode(email.encode("utf-8")).decode("ascii")
        signed_part = f"{encoded}.{issued_at}.{expires_at}"
        return f"{signed_part}.{self._digest(signed_part)}"

    def redeem(self, token: str, now_ms: Optional[int] = None) -> str:
        """Return the email bound into ``token``.

        Raises ``TokenInvalidError`` with reason ``malformed``,
        ``bad_signature`` or ``expired``.
        """
        if not token or not isinstance(token, str):
            raise TokenInvalidError("Magic link missing", reason="malformed")
        parts = token.split(".")
        if len(parts) != 4:
            raise TokenInvalidError("Magic link structure invalid", reason="malformed")
        encoded, issued_raw, expires_raw, supplied = parts
        _parse_millis(issued_raw)
        expires_at = _parse_millis(expires_raw)

        expected = self._digest(f"{encoded}.{issued_raw}.{expires_raw}")
        if not hmac.compare_digest(expected.encode("ascii"), supplied.encode("utf-8")):
            raise TokenInvalidError("Magic link signature mismatch", reason="bad_signature")

        now = _now_ms() if now_ms is None else int(now_ms)
        if now > expires_at:
            raise TokenInvalidError("Magic link expired", reason="expired")

        try:
            email = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise TokenInvalidError("Magic link email undecodable", reason="malformed") from None
        if not email:
            raise TokenInvalidError("Magic link email empty", reason="malformed")
        return email
