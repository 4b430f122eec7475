from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from sessionauth.service.errors import ConfigurationError, TokenInvalidError


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    subject_id: int
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime
    jti: str


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class SignedTokenCodec:
    """Compact HS256 tokens (JWT layout) for access and refresh credentials.

    Each kind is signed with its own secret and stamped with a ``typ`` claim,
    so a refresh token never parses as an access token or vice versa.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        issuer: str = "sessionauth",
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ConfigurationError("Token signing secrets are not configured")
        if access_secret == refresh_secret:
            raise ConfigurationError("Access and refresh secrets must differ")
        self._secrets = {
            TokenKind.ACCESS: access_secret.encode("utf-8"),
            TokenKind.REFRESH: refresh_secret.encode("utf-8"),
        }
        self._ttls = {TokenKind.ACCESS: access_ttl, TokenKind.REFRESH: refresh_ttl}
        self.issuer = issuer

    def lifetime(self, kind: TokenKind) -> timedelta:
        return self._ttls[kind]

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, kind: TokenKind, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(
                self._secrets[kind], signing_input.encode("utf-8"), hashlib.sha256
            ).digest()
        )

    def issue(
        self, kind: TokenKind, subject_id: int, now: Optional[datetime] = None
    ) -> str:
        issued = _utc(now)
        expires = issued + self._ttls[kind]
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "iss": self.issuer,
            "sub": subject_id,
            "typ": kind.value,
            # jti keeps two tokens minted in the same second distinct
            "jti": uuid.uuid4().hex,
            "iat": int(issued.timestamp()),
            "exp": int(expires.timestamp()),
        }
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(kind, signing_input)}"

    def parse(
        self, token: str, kind: TokenKind, now: Optional[datetime] = None
    ) -> TokenClaims:
        """Verify and decode ``token`` as ``kind``.

        Raises ``TokenInvalidError`` whose ``reason`` is one of ``malformed``,
        ``bad_signature``, ``wrong_kind`` or ``expired``.
        """
        if not isinstance(token, str):
            raise TokenInvalidError("Token is not a string", reason="malformed")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise TokenInvalidError("Token structure invalid", reason="malformed") from None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            raise TokenInvalidError("Token header undecodable", reason="malformed") from None
        # Reject anything but HS256 to prevent algorithm confusion
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            raise TokenInvalidError("Unsupported token algorithm", reason="malformed")

        expected_sig = self._sign(kind, f"{header_b64}.{payload_b64}")
        # bytes comparison: compare_digest rejects non-ASCII str operands
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8")):
            raise TokenInvalidError("Token signature mismatch", reason="bad_signature")

        try:
            payload: Any = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError):
            raise TokenInvalidError("Token payload undecodable", reason="malformed") from None
        if not isinstance(payload, dict):
            raise TokenInvalidError("Token payload invalid", reason="malformed")
        if payload.get("typ") != kind.value:
            raise TokenInvalidError("Token kind mismatch", reason="wrong_kind")
        if payload.get("iss") != self.issuer:
            raise TokenInvalidError("Token issuer mismatch", reason="bad_signature")

        subject_id = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if (
            not isinstance(subject_id, int)
            or isinstance(subject_id, bool)
            or not isinstance(exp, int)
            or not isinstance(iat, int)
        ):
            raise TokenInvalidError("Token claims missing", reason="malformed")

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if expires_at <= _utc(now):
            raise TokenInvalidError("Token expired", reason="expired")

        return TokenClaims(
            subject_id=subject_id,
            kind=kind,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=expires_at,
            jti=str(payload.get("jti", "")),
        )
