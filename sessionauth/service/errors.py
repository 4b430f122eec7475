from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for session-authority failures.

    Every subclass carries a stable ``error_code`` for structured logs. The
    authority collapses all of them into a generic failure at its public
    boundary; ``retryable`` only distinguishes them in logs:
    - invalid_input
    - authentication_failed
    - token_invalid
    - session_not_found
    - upstream_unavailable (retryable)
    """

    error_code: str = "auth_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.detail = detail or {}


class InvalidInputError(AuthError):
    """Identifier, secret or token does not have an acceptable shape."""
    error_code = "invalid_input"


class AuthenticationFailedError(AuthError):
    """Unknown identifier or wrong secret; the two are deliberately merged."""
    error_code = "authentication_failed"


class TokenInvalidError(AuthError):
    """Bad signature, wrong token kind, malformed structure or expired."""
    error_code = "token_invalid"


class SessionNotFoundError(AuthError):
    """Well-formed token with no live session-cache entry."""
    error_code = "session_not_found"


class UpstreamUnavailableError(AuthError):
    """Account store or session cache I/O failed."""
    error_code = "upstream_unavailable"
    retryable = True


class ConfigurationError(Exception):
    """Startup configuration is missing or unsafe.

    Not an ``AuthError``: it is raised while constructing services and is
    never collapsed into a per-call failure.
    """


__all__ = [
    "AuthError",
    "InvalidInputError",
    "AuthenticationFailedError",
    "TokenInvalidError",
    "SessionNotFoundError",
    "UpstreamUnavailableError",
    "ConfigurationError",
]
