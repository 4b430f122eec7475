from __future__ import annotations

from typing import Any, Dict, Optional


class DuplicateAccountError(Exception):
    """An account with the same normalized identifier already exists.

    Only the unique column and the existing row id are kept; the colliding
    email itself stays out of the exception so it can be logged as is.
    """

    def __init__(
        self, message: str, *, field: str = "email", existing_id: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.existing_id = existing_id

    @property
    def detail(self) -> Dict[str, Any]:
        return {"field": self.field, "existing_id": self.existing_id}


__all__ = ["DuplicateAccountError"]
