from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from sessionauth.logging import get_logger
from sessionauth.service.errors import ConfigurationError

logger = get_logger(__name__)

ACCESS_TOKEN_TTL_SECONDS = 15 * 60
REFRESH_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
MAGIC_LINK_TTL_SECONDS = 15 * 60


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def validate_secrets(
    access_secret: str | None,
    refresh_secret: str | None,
    magic_link_secret: str | None,
) -> None:
    """Reject missing signing secrets and any secret reused across roles."""

    named = {
        "SECRET_KEY": access_secret,
        "REFRESH_SECRET_KEY": refresh_secret,
        "MAGIC_LINK_SECRET": magic_link_secret,
    }
    missing = [env for env, value in named.items() if not value or not value.strip()]
    if missing:
        raise ConfigurationError(
            f"Missing signing secret(s): {', '.join(missing)}"
        )
    if len(set(named.values())) != len(named):
        raise ConfigurationError(
            "SECRET_KEY, REFRESH_SECRET_KEY and MAGIC_LINK_SECRET must be distinct"
        )


class Settings(BaseModel):
    """Runtime settings for the session authority.

    Built once at process start and passed explicitly to the services that
    need it. Construction fails with ``ConfigurationError`` when a signing
    secret is absent or shared between roles.
    """

    access_token_secret: str | None = env_field(
        None, "SECRET_KEY", description="HMAC key for access tokens"
    )
    refresh_token_secret: str | None = env_field(
        None, "REFRESH_SECRET_KEY", description="HMAC key for refresh tokens"
    )
    magic_link_secret: str | None = env_field(
        None, "MAGIC_LINK_SECRET", description="HMAC key for magic-link tokens"
    )
    access_token_ttl_seconds: int = env_field(
        ACCESS_TOKEN_TTL_SECONDS, "ACCESS_TOKEN_TTL_SECONDS"
    )
    refresh_token_ttl_seconds: int = env_field(
        REFRESH_TOKEN_TTL_SECONDS, "REFRESH_TOKEN_TTL_SECONDS"
    )
    magic_link_ttl_seconds: int = env_field(
        MAGIC_LINK_TTL_SECONDS, "MAGIC_LINK_TTL_SECONDS"
    )
    token_issuer: str = env_field("sessionauth", "TOKEN_ISSUER")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    database_url: str = env_field(
        "postgresql://localhost:5432/sessionauth", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    use_memory_cache: bool = env_field(False, "USE_MEMORY_CACHE")
    max_secret_length: int = env_field(
        1024,
        "MAX_SECRET_LENGTH",
        description="Longest presented password accepted before hashing",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def env_names(cls) -> dict[str, str]:
        """Field name -> environment variable that sets it."""
        names = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra if isinstance(field.json_schema_extra, dict) else {}
            names[name] = extra.get("env") or name.upper()
        return names

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "Settings":
        """Build settings from the process environment, falling back to ``env_file``.

        Raises ``ConfigurationError`` naming the offending variables.
        """
        file_values = dotenv_values(env_file)
        env_names = cls.env_names()
        raw: dict[str, str] = {}
        for name, env_name in env_names.items():
            value = os.environ.get(env_name, file_values.get(env_name))
            if value is not None:
                raw[name] = value
        try:
            settings = cls(**raw)
        except ValidationError as exc:
            bad = sorted(
                {
                    env_names.get(str(err["loc"][0]), str(err["loc"][0]))
                    for err in exc.errors()
                    if err["loc"]
                }
            )
            raise ConfigurationError(f"Invalid settings: {', '.join(bad) or exc}") from exc
        logger.debug("settings_loaded", env_file=env_file, from_env=sorted(raw))
        return settings

    @model_validator(mode="after")
    def _check_secrets_and_lifetimes(self) -> "Settings":
        validate_secrets(
            self.access_token_secret,
            self.refresh_token_secret,
            self.magic_link_secret,
        )
        for name in (
            "access_token_ttl_seconds",
            "refresh_token_ttl_seconds",
            "magic_link_ttl_seconds",
            "max_secret_length",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
