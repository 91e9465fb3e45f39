"""
Settings and the immutable provider registry.

Both are built once at process start from the environment (optionally
seeded from ``.env.local`` / ``.env``) and injected into the connection
manager, adapters and orchestrator.
"""

import logging
import os
from collections.abc import Iterator, Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError
from .provider_types import (
    Capability,
    ProviderConfig,
    ProviderType,
    RateLimitConfig,
    TokenAuthMethod,
)

logger = logging.getLogger(__name__)

ENV_FILES = (".env.local", ".env")
CREDENTIAL_BACKENDS = ("memory", "file", "dynamodb")


class Settings(BaseModel):
    """Process-wide settings."""

    model_config = ConfigDict(frozen=True)

    api_url: str = "http://localhost:5000/api"
    api_token: str | None = Field(default=None, repr=False)
    user_id: str = "default"
    request_timeout: float = 30.0
    credential_backend: str = "file"
    credential_file: Path = Path.home() / ".fitbridge" / "credentials.json"
    credential_encryption_key: str | None = Field(default=None, repr=False)
    dynamodb_table: str = "fitbridge_credentials"
    kms_key_id: str | None = None
    aws_region: str = "us-east-1"
    oauth_callback_host: str = "127.0.0.1"
    oauth_callback_port: int = 8765
    apple_health_export: Path | None = None


def _load_env_file(env_file: str | Path | None) -> None:
    if env_file is not None:
        load_dotenv(env_file, override=False)
        return
    for candidate in ENV_FILES:
        if Path(candidate).exists():
            logger.debug("Loading environment from %s", candidate)
            load_dotenv(candidate, override=False)
            break


def load_settings(
    env: Mapping[str, str] | None = None,
    env_file: str | Path | None = None,
) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Explicit mapping to read instead of ``os.environ`` (no .env loading)
        env_file: Specific dotenv file to load before reading ``os.environ``

    Raises:
        ConfigurationError: If a value cannot be parsed
    """
    if env is None:
        _load_env_file(env_file)
        env = os.environ

    backend = env.get("CREDENTIAL_BACKEND", "file").lower()
    if backend not in CREDENTIAL_BACKENDS:
        raise ConfigurationError(
            f"CREDENTIAL_BACKEND must be one of {', '.join(CREDENTIAL_BACKENDS)}, got {backend!r}"
        )

    values: dict = {
        "api_url": env.get("FITBRIDGE_API_URL", "http://localhost:5000/api").rstrip("/"),
        "api_token": env.get("FITBRIDGE_API_TOKEN") or None,
        "user_id": env.get("FITBRIDGE_USER_ID", "default"),
        "credential_backend": backend,
        "credential_encryption_key": env.get("CREDENTIAL_ENCRYPTION_KEY") or None,
        "dynamodb_table": env.get("DYNAMODB_TABLE", "fitbridge_credentials"),
        "kms_key_id": env.get("KMS_KEY_ID") or None,
        "aws_region": env.get("AWS_REGION", "us-east-1"),
        "oauth_callback_host": env.get("OAUTH_CALLBACK_HOST", "127.0.0.1"),
    }
    if env.get("CREDENTIAL_FILE"):
        values["credential_file"] = Path(env["CREDENTIAL_FILE"]).expanduser()
    if env.get("APPLE_HEALTH_EXPORT"):
        values["apple_health_export"] = Path(env["APPLE_HEALTH_EXPORT"]).expanduser()

    try:
        values["request_timeout"] = float(env.get("FITBRIDGE_TIMEOUT", "30"))
        values["oauth_callback_port"] = int(env.get("OAUTH_CALLBACK_PORT", "8765"))
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    return Settings(**values)


# Static provider definitions; client credentials are filled from the environment
PROVIDER_DEFINITIONS: dict[ProviderType, dict] = {
    ProviderType.APPLE_HEALTH: {
        "display_name": "Apple Health",
        "capability": Capability.SDK,
    },
    ProviderType.GOOGLE_FIT: {
        "display_name": "Google Fit",
        "capability": Capability.OAUTH2,
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "api_url": "https://www.googleapis.com/fitness/v1",
        "scopes": (
            "https://www.googleapis.com/auth/fitness.activity.read",
            "https://www.googleapis.com/auth/fitness.body.read",
            "https://www.googleapis.com/auth/fitness.heart_rate.read",
            "https://www.googleapis.com/auth/fitness.location.read",
        ),
        "authorize_params": {
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        },
        "rate_limit": {"max_requests": 300, "time_window": 60},
    },
    ProviderType.FITBIT: {
        "display_name": "Fitbit",
        "capability": Capability.OAUTH2,
        "auth_url": "https://www.fitbit.com/oauth2/authorize",
        "token_url": "https://api.fitbit.com/oauth2/token",
        "api_url": "https://api.fitbit.com/1",
        "scopes": ("activity", "heartrate", "nutrition", "profile", "sleep", "weight"),
        "token_auth_method": TokenAuthMethod.CLIENT_SECRET_BASIC,
        "authorize_params": {"expires_in": "604800"},
        "rate_limit": {"max_requests": 150, "time_window": 3600},
    },
    ProviderType.GARMIN: {
        "display_name": "Garmin Connect",
        "capability": Capability.UNSUPPORTED,
        "auth_url": "https://connect.garmin.com/oauthConfirm",
        "api_url": "https://apis.garmin.com/wellness-api/rest",
        "scopes": ("wellness:read",),
        "unsupported_reason": "Garmin integration requires OAuth 1.0a, which is not implemented",
    },
    ProviderType.WHOOP: {
        "display_name": "Whoop",
        "capability": Capability.OAUTH2,
        "auth_url": "https://api.prod.whoop.com/oauth/oauth2/auth",
        "token_url": "https://api.prod.whoop.com/oauth/oauth2/token",
        "api_url": "https://api.prod.whoop.com/developer",
        "scopes": ("offline", "read:recovery", "read:cycles", "read:workout", "read:sleep"),
        "rate_limit": {"max_requests": 100, "time_window": 60},
    },
    ProviderType.POLAR: {
        "display_name": "Polar",
        "capability": Capability.OAUTH2,
        "auth_url": "https://flow.polar.com/oauth2/authorization",
        "token_url": "https://polarremote.com/v2/oauth2/token",
        "api_url": "https://www.polaraccesslink.com/v3",
        "scopes": ("accesslink.read_all",),
        "token_auth_method": TokenAuthMethod.CLIENT_SECRET_BASIC,
        "client_id_in_body": False,
        "rate_limit": {"max_requests": 500, "time_window": 900},
    },
    ProviderType.SAMSUNG_HEALTH: {
        "display_name": "Samsung Health",
        "capability": Capability.UNSUPPORTED,
        "unsupported_reason": "Samsung Health integration requires the Samsung Health SDK, which is not available",
    },
}


class ProviderRegistry:
    """Immutable lookup of ProviderConfig by ProviderType."""

    def __init__(self, configs: Mapping[ProviderType, ProviderConfig]):
        self._configs = dict(configs)

    def get(self, provider: ProviderType) -> ProviderConfig:
        try:
            return self._configs[provider]
        except KeyError:
            raise ConfigurationError(
                f"No configuration for provider {provider.value}", provider=provider.value
            ) from None

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, provider: object) -> bool:
        return provider in self._configs

    def oauth_providers(self) -> list[ProviderConfig]:
        return [c for c in self if c.capability == Capability.OAUTH2]

    def unconfigured(self) -> list[ProviderConfig]:
        """OAuth providers missing a client id or secret."""
        return [c for c in self.oauth_providers() if not c.is_configured]


def load_provider_registry(env: Mapping[str, str] | None = None) -> ProviderRegistry:
    """Build the provider registry, reading ``<PROVIDER>_CLIENT_ID`` / ``_CLIENT_SECRET``."""
    if env is None:
        env = os.environ

    configs: dict[ProviderType, ProviderConfig] = {}
    for provider, definition in PROVIDER_DEFINITIONS.items():
        fields = dict(definition)
        rate_limit = fields.pop("rate_limit", None)
        if rate_limit:
            fields["rate_limit"] = RateLimitConfig(provider=provider, **rate_limit)
        if fields["capability"] == Capability.OAUTH2:
            fields["client_id"] = env.get(f"{provider.value}_CLIENT_ID", "")
            fields["client_secret"] = env.get(f"{provider.value}_CLIENT_SECRET", "")
        configs[provider] = ProviderConfig(provider=provider, **fields)

    registry = ProviderRegistry(configs)
    missing = registry.unconfigured()
    if missing:
        logger.debug(
            "OAuth providers without client credentials: %s",
            ", ".join(c.provider.value for c in missing),
        )
    return registry
