from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class CredentialRecord:
    """Credential row as read from the account store."""

    id: int
    password_hash: str


@dataclass(frozen=True)
class SessionRecord:
    """Value stored in the session cache for a live token.

    ``encode``/``decode`` define the storage format: a compact JSON object
    ``{"subjectId": <int>}``.
    """

    subject_id: int

    def encode(self) -> str:
        return json.dumps({"subjectId": self.subject_id}, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str | bytes) -> "SessionRecord":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("session record must be a JSON object")
        subject_id = data.get("subjectId")
        # bool is an int subclass; reject it explicitly
        if not isinstance(subject_id, int) or isinstance(subject_id, bool):
            raise ValueError("session record is missing an integer subjectId")
        return cls(subject_id=subject_id)
