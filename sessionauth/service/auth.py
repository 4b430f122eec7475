from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sessionauth.config import Settings, validate_secrets
from sessionauth.logging import get_logger, sanitize_error_message, token_fingerprint
from sessionauth.service.credentials import CredentialVerifier
from sessionauth.service.errors import (
    AuthError,
    AuthenticationFailedError,
    InvalidInputError,
    SessionNotFoundError,
)
from sessionauth.service.magic_link import MagicLinkCodec
from sessionauth.service.tokens import SignedTokenCodec, TokenKind
from sessionauth.service.validation import (
    check_email_format,
    check_secret_format,
    check_token_shape,
)
from sessionauth.storage.accounts import AccountStore
from sessionauth.storage.models import SessionRecord
from sessionauth.storage.session_cache import (
    ACCESS_KEY_PREFIX,
    REFRESH_KEY_PREFIX,
    SessionCache,
    cache_key,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def as_dict(self) -> dict[str, str]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


class SessionAuthority:
    """Login, session verification, logout, refresh and magic links.

    A token is Active while its signature and embedded expiry hold AND the
    session cache has an entry for it; deleting the entry revokes it early.
    Public methods never raise for per-call failures: every error is logged
    with its cause and collapsed to ``None``/``False``. Construction raises
    ``ConfigurationError`` when secrets are missing or shared.
    """

    def __init__(
        self,
        settings: Settings,
        store: AccountStore,
        cache: SessionCache,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        validate_secrets(
            settings.access_token_secret,
            settings.refresh_token_secret,
            settings.magic_link_secret,
        )
        self.settings = settings
        self.store = store
        self.cache = cache
        self._clock = clock
        self.tokens = SignedTokenCodec(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            issuer=settings.token_issuer,
        )
        self.magic_links = MagicLinkCodec(
            settings.magic_link_secret,
            ttl_ms=settings.magic_link_ttl_seconds * 1000,
        )
        self.credentials = CredentialVerifier(store)
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    def _now_ms(self) -> int:
        return int(self._now().timestamp() * 1000)

    def _log_failure(self, operation: str, exc: Exception, **context) -> None:
        if isinstance(exc, AuthError):
            fields = {
                **exc.detail,
                **context,
                "error": exc.message,
                "error_code": exc.error_code,
                "reason": exc.reason,
                "retryable": exc.retryable,
            }
            if exc.retryable:
                self.logger.error(f"{operation}_failed", **fields)
            else:
                self.logger.warning(f"{operation}_failed", **fields)
            return
        self.logger.error(
            f"{operation}_failed",
            error_code="unexpected",
            error_type=type(exc).__name__,
            error=sanitize_error_message(str(exc)),
            retryable=False,
            **context,
        )

    async def _mint_session(self, subject_id: int) -> TokenPair:
        now = self._now()
        access_token = self.tokens.issue(TokenKind.ACCESS, subject_id, now)
        refresh_token = self.tokens.issue(TokenKind.REFRESH, subject_id, now)
        record = SessionRecord(subject_id=subject_id)
        # Access entries carry no TTL: staleness comes from the signed expiry,
        # the entry only enables early revocation.
        await self.cache.put(cache_key(ACCESS_KEY_PREFIX, access_token), record)
        await self.cache.put(
            cache_key(REFRESH_KEY_PREFIX, refresh_token),
            record,
            ttl_seconds=int(self.tokens.lifetime(TokenKind.REFRESH).total_seconds()),
        )
        self.logger.info(
            "session_created",
            subject_id=subject_id,
            access_fingerprint=token_fingerprint(access_token),
            refresh_fingerprint=token_fingerprint(refresh_token),
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def login(self, identifier: str, secret: str) -> Optional[TokenPair]:
        """Verify a password and open a session.

        Unknown identifiers and wrong passwords both return ``None``.
        """
        try:
            if not check_email_format(identifier) or not check_secret_format(
                secret, max_length=self.settings.max_secret_length
            ):
                raise InvalidInputError(
                    "Invalid identifier or secret format", reason="bad_format"
                )
            subject_id = await self.credentials.verify(identifier, secret)
            return await self._mint_session(subject_id)
        except Exception as exc:
            self._log_failure("login", exc)
            return None

    async def create_session(self, subject_id: int) -> Optional[TokenPair]:
        """Mint and register an access/refresh pair for an authenticated subject.

        The only path that produces a refresh token.
        """
        try:
            if not isinstance(subject_id, int) or isinstance(subject_id, bool):
                raise InvalidInputError("Subject id must be an integer", reason="bad_subject")
            return await self._mint_session(subject_id)
        except Exception as exc:
            self._log_failure("create_session", exc)
            return None

    async def verify_session(self, access_token: str) -> bool:
        fingerprint = token_fingerprint(access_token if isinstance(access_token, str) else None)
        try:
            if not check_token_shape(access_token):
                raise InvalidInputError("Malformed access token", reason="bad_shape")
            claims = self.tokens.parse(access_token, TokenKind.ACCESS, self._now())
            record = await self.cache.get(cache_key(ACCESS_KEY_PREFIX, access_token))
            if record is None:
                raise SessionNotFoundError("Session not found", reason="cache_miss")
            if record.subject_id != claims.subject_id:
                raise SessionNotFoundError("Session subject mismatch", reason="subject_mismatch")
        except Exception as exc:
            self._log_failure("session_verify", exc, access_fingerprint=fingerprint)
            return False
        self.logger.debug("session_verified", access_fingerprint=fingerprint)
        return True

    async def delete_session(self, access_token: str) -> bool:
        """Revoke an access token; ``False`` when nothing was removed.

        The signature is not checked so that entries for already-expired
        tokens can still be cleared.
        """
        fingerprint = token_fingerprint(access_token if isinstance(access_token, str) else None)
        try:
            if not check_token_shape(access_token):
                raise InvalidInputError("Malformed access token", reason="bad_shape")
            removed = await self.cache.delete(cache_key(ACCESS_KEY_PREFIX, access_token))
            if not removed:
                raise SessionNotFoundError("Session deletion failed", reason="cache_miss")
        except Exception as exc:
            self._log_failure("session_delete", exc, access_fingerprint=fingerprint)
            return False
        self.logger.info("session_deleted", access_fingerprint=fingerprint)
        return True

    async def refresh_session(self, refresh_token: str) -> Optional[str]:
        """Exchange a refresh token for a new access token.

        The new access entry is written first, then the refresh entry is
        claimed by deleting it. Only the caller whose delete removed it keeps
        its access token; the others withdraw theirs, so each refresh token
        succeeds at most once. No new refresh token is issued.
        """
        fingerprint = token_fingerprint(refresh_token if isinstance(refresh_token, str) else None)
        try:
            if not check_token_shape(refresh_token):
                raise InvalidInputError("Malformed refresh token", reason="bad_shape")
            claims = self.tokens.parse(refresh_token, TokenKind.REFRESH, self._now())
            key = cache_key(REFRESH_KEY_PREFIX, refresh_token)
            record = await self.cache.get(key)
            if record is None:
                raise SessionNotFoundError("Refresh token not found", reason="cache_miss")
            if record.subject_id != claims.subject_id:
                raise SessionNotFoundError("Refresh subject mismatch", reason="subject_mismatch")

            access_token = self.tokens.issue(TokenKind.ACCESS, claims.subject_id, self._now())
            access_key = cache_key(ACCESS_KEY_PREFIX, access_token)
            # a failed put must leave the refresh entry in place
            await self.cache.put(access_key, record)
            if not await self.cache.delete(key):
                await self.cache.delete(access_key)
                raise SessionNotFoundError("Refresh token already used", reason="rotated")
        except Exception as exc:
            self._log_failure("session_refresh", exc, refresh_fingerprint=fingerprint)
            return None
        self.logger.info(
            "refresh_token_rotated",
            subject_id=claims.subject_id,
            refresh_fingerprint=fingerprint,
            access_fingerprint=token_fingerprint(access_token),
        )
        return access_token

    def issue_magic_link(self, email: str) -> str:
        """Return a 15-minute magic-link token, or ``""`` if it cannot be issued."""
        try:
            if not check_email_format(email):
                raise InvalidInputError("Invalid email format", reason="bad_format")
            token = self.magic_links.issue(email, self._now_ms())
        except Exception as exc:
            self._log_failure("magic_link_issue", exc)
            return ""
        self.logger.info("magic_link_issued", token_fingerprint=token_fingerprint(token))
        return token

    def redeem_magic_link(self, token: str) -> Optional[str]:
        """Return the email bound into a valid, unexpired magic link.

        Does not open a session; see ``login_with_magic_link``.
        """
        try:
            email = self.magic_links.redeem(token, self._now_ms())
        except Exception as exc:
            self._log_failure(
                "magic_link_redeem",
                exc,
                token_fingerprint=token_fingerprint(token if isinstance(token, str) else None),
            )
            return None
        self.logger.info(
            "magic_link_redeemed", token_fingerprint=token_fingerprint(token)
        )
        return email

    async def login_with_magic_link(self, token: str) -> Optional[TokenPair]:
        """Redeem a magic link and open a session for the matching account."""
        try:
            email = self.magic_links.redeem(token, self._now_ms())
            record = await self.store.find_credential_by_identifier(email)
            if record is None:
                raise AuthenticationFailedError("Bad credentials", reason="not_found")
            return await self._mint_session(record.id)
        except Exception as exc:
            self._log_failure(
                "magic_link_login",
                exc,
                token_fingerprint=token_fingerprint(token if isinstance(token, str) else None),
            )
            return None
