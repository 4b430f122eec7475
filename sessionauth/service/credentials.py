from __future__ import annotations

import secrets
from typing import Tuple

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from sessionauth.logging import get_logger
from sessionauth.service.errors import (
    AuthenticationFailedError,
    UpstreamUnavailableError,
)
from sessionauth.storage.accounts import AccountStore

logger = get_logger(__name__)

# Hashes written by the original bcrypt-based account service
_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class CredentialVerifier:
    """Checks a presented password against the stored salted hash.

    New hashes are argon2id; bcrypt hashes from older account rows still
    verify. Unknown identifiers and wrong passwords raise the same exception
    type, differing only in ``reason``, which stays inside this package's logs.
    """

    def __init__(self, store: AccountStore) -> None:
        self.store = store
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # Verified against when the identifier is unknown so both failure
        # paths cost one hash verification.
        self._dummy_hash = self._pwd_hasher.hash(secrets.token_urlsafe(16))

    def hash_password(self, password: str) -> Tuple[str, str]:
        algo = "argon2id"
        digest = self._pwd_hasher.hash(password)
        return digest, algo

    def check_password(self, stored_hash: str, password: str) -> bool:
        """Constant-time, salt-aware comparison; never a raw string compare."""
        if stored_hash.startswith(_BCRYPT_PREFIXES):
            try:
                return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
            except ValueError as exc:
                # malformed hash, or a password over bcrypt's 72-byte limit
                logger.warning("bcrypt_check_failed", error=str(exc))
                return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except VerificationError:
            return False
        except InvalidHash:
            logger.warning("password_hash_invalid", algo="argon2id")
            return False

    async def verify(self, identifier: str, presented_secret: str) -> int:
        """Return the subject id for a matching credential.

        Raises:
            AuthenticationFailedError: reason ``not_found`` or ``mismatch``
            UpstreamUnavailableError: the account store could not be read
        """
        try:
            record = await self.store.find_credential_by_identifier(identifier)
        except UpstreamUnavailableError:
            raise
        except Exception as exc:
            raise UpstreamUnavailableError(
                "Account store lookup failed",
                reason="store_error",
                detail={"error_type": type(exc).__name__},
            ) from exc

        if record is None:
            self.check_password(self._dummy_hash, presented_secret)
            raise AuthenticationFailedError("Bad credentials", reason="not_found")

        if not self.check_password(record.password_hash, presented_secret):
            raise AuthenticationFailedError(
                "Bad credentials",
                reason="mismatch",
                detail={"subject_id": record.id},
            )
        return record.id
