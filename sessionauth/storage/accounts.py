from __future__ import annotations

import threading
from typing import Dict, Optional, Protocol

from psycopg import Error as PsycopgError
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from sessionauth.logging import get_logger, sanitize_error_message
from sessionauth.service.errors import UpstreamUnavailableError
from sessionauth.storage.errors import DuplicateAccountError
from sessionauth.storage.models import CredentialRecord


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


class AccountStore(Protocol):
    async def find_credential_by_identifier(
        self, identifier: str
    ) -> Optional[CredentialRecord]: ...


class MemoryAccountStore:
    """In-memory account credentials for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self._by_identifier: Dict[str, CredentialRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def add_account(self, email: str, password_hash: str) -> CredentialRecord:
        key = normalize_identifier(email)
        with self._lock:
            existing = self._by_identifier.get(key)
            if existing is not None:
                raise DuplicateAccountError(
                    "account already exists", existing_id=existing.id
                )
            record = CredentialRecord(id=self._next_id, password_hash=password_hash)
            self._next_id += 1
            self._by_identifier[key] = record
        self.logger.debug("memory_account_added", account_id=record.id)
        return record

    def remove_account(self, email: str) -> bool:
        with self._lock:
            return self._by_identifier.pop(normalize_identifier(email), None) is not None

    async def find_credential_by_identifier(
        self, identifier: str
    ) -> Optional[CredentialRecord]:
        with self._lock:
            return self._by_identifier.get(normalize_identifier(identifier))


class PostgresAccountStore:
    """Read-only view of the ``account`` table.

    Only the credential lookup is needed here; account rows are created and
    maintained elsewhere.
    """

    _LOOKUP_SQL = (
        "SELECT id, password FROM account WHERE lower(email) = lower(%s) LIMIT 1"
    )

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 5.0,
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            kwargs={"row_factory": dict_row, "autocommit": True},
            open=False,
        )

    async def open(self) -> None:
        await self.pool.open()

    async def close(self) -> None:
        await self.pool.close()

    async def find_credential_by_identifier(
        self, identifier: str
    ) -> Optional[CredentialRecord]:
        try:
            async with self.pool.connection() as conn:
                cur = await conn.execute(
                    self._LOOKUP_SQL, (normalize_identifier(identifier),)
                )
                row = await cur.fetchone()
        except PsycopgError as exc:
            raise UpstreamUnavailableError(
                "Account store lookup failed",
                reason="store_unavailable",
                detail={"cause": sanitize_error_message(str(exc))},
            ) from exc
        if not row:
            return None
        return CredentialRecord(id=int(row["id"]), password_hash=str(row["password"]))
