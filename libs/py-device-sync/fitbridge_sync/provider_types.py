"""Type definitions, enums, and Pydantic models for provider connections."""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderType(str, Enum):
    """Supported fitness/health platforms."""

    APPLE_HEALTH = "APPLE_HEALTH"
    GOOGLE_FIT = "GOOGLE_FIT"
    FITBIT = "FITBIT"
    GARMIN = "GARMIN"
    WHOOP = "WHOOP"
    POLAR = "POLAR"
    SAMSUNG_HEALTH = "SAMSUNG_HEALTH"

    @classmethod
    def parse(cls, value: str) -> "ProviderType":
        """Accept ``fitbit``, ``FITBIT`` or ``google-fit`` style names."""
        return cls(value.strip().upper().replace("-", "_"))


class Capability(str, Enum):
    """How a provider is linked."""

    OAUTH2 = "oauth2"
    SDK = "sdk"
    UNSUPPORTED = "unsupported"


class TokenAuthMethod(str, Enum):
    """Client authentication at the token endpoint."""

    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_BASIC = "client_secret_basic"


class RateLimitConfig(BaseModel):
    """Rate limiter configuration per provider."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderType
    max_requests: int  # requests per time window
    time_window: int  # seconds
    max_burst: int | None = None


class ProviderConfig(BaseModel):
    """Static endpoints, scopes and client credentials for one provider."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderType
    display_name: str
    capability: Capability
    client_id: str = ""
    client_secret: str = Field(default="", repr=False)
    auth_url: str = ""
    token_url: str = ""
    api_url: str = ""
    scopes: tuple[str, ...] = ()
    token_auth_method: TokenAuthMethod = TokenAuthMethod.CLIENT_SECRET_POST
    client_id_in_body: bool = True
    authorize_params: tuple[tuple[str, str], ...] = ()
    unsupported_reason: str | None = None
    rate_limit: RateLimitConfig | None = None

    @field_validator("authorize_params", mode="before")
    @classmethod
    def _freeze_params(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return tuple(value.items())
        return value

    @property
    def env_prefix(self) -> str:
        return self.provider.value

    @property
    def is_configured(self) -> bool:
        """True when both client id and secret are present."""
        return bool(self.client_id and self.client_secret)


class OAuthTokens(BaseModel):
    """OAuth token set from a provider token endpoint."""

    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_in: int  # seconds
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scopes: list[str] = Field(default_factory=list)


class CredentialPair(BaseModel):
    """Access/refresh token bundle for one (user, provider) link."""

    provider: ProviderType
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_at: datetime | None = None

    def is_expired(self) -> bool:
        """Check if the access token has expired. Unknown expiry never expires."""
        if not self.expires_at:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return datetime.now(UTC) >= expires_at


class FailureKind(str, Enum):
    """Why a connection attempt failed."""

    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"
    AUTHORIZATION = "authorization"
    NETWORK = "network"
    UNSUPPORTED = "unsupported"
    STORAGE = "storage"


class ConnectionOutcome(BaseModel):
    """Terminal result of a connect attempt."""

    success: bool
    provider: ProviderType
    access_token: str | None = Field(default=None, repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_in: int | None = None
    display_name: str | None = None
    error: str | None = None
    failure: FailureKind | None = None

    @classmethod
    def failed(cls, provider: ProviderType, failure: FailureKind, error: str) -> "ConnectionOutcome":
        return cls(success=False, provider=provider, failure=failure, error=error)

    @property
    def cancelled(self) -> bool:
        return self.failure == FailureKind.CANCELLED


class AuthorizationStatus(str, Enum):
    """Outcome of the interactive authorization session."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"


class AuthorizationResult(BaseModel):
    """Redirect callback contents."""

    status: AuthorizationStatus
    code: str | None = Field(default=None, repr=False)
    state: str | None = None
    error: str | None = None


class DeviceStatus(str, Enum):
    """Device connection lifecycle."""

    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


class DeviceConnection(BaseModel):
    """One linked device for one user."""

    id: str
    name: str
    provider: ProviderType
    status: DeviceStatus = DeviceStatus.CONNECTED
    last_sync: datetime | None = None
    is_primary: bool = False

    @classmethod
    def from_registry(cls, payload: dict[str, Any]) -> "DeviceConnection":
        """Build from a server device registry record."""
        last_sync = payload.get("last_sync_time")
        return cls(
            id=str(payload["connected_device_id"]),
            name=payload.get("device_name") or payload["device_type"],
            provider=ProviderType.parse(payload["device_type"]),
            status=DeviceStatus(payload.get("connection_status") or DeviceStatus.CONNECTED.value),
            last_sync=date_parser.isoparse(last_sync) if isinstance(last_sync, str) else None,
            is_primary=bool(payload.get("is_primary_device", False)),
        )


class SyncResult(BaseModel):
    """Aggregated batch sync outcome."""

    success_count: int = 0
    failed_count: int = 0

    @property
    def total(self) -> int:
        return self.success_count + self.failed_count
