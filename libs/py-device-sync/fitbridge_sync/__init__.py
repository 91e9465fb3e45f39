"""
fitbridge device sync library.

Connects a user's account to fitness/health providers over OAuth 2.0,
keeps their credentials, pulls normalized daily activity and reconciles it
against nutrition data into a daily energy balance.
"""

from .adapters import ProviderAdapter, build_adapters, register_adapter
from .auth_session import AuthorizationSession, LoopbackAuthorizationSession
from .balance import BalanceStatus, DailyBalance, DailyBalanceCalculator, compute_daily_balance
from .config import ProviderRegistry, Settings, load_provider_registry, load_settings
from .connection_manager import ConnectionState, OAuthConnectionManager
from .credentials import (
    CredentialStore,
    DynamoCredentialStore,
    EncryptedFileCredentialStore,
    MemoryCredentialStore,
    build_credential_store,
)
from .exceptions import (
    AuthorizationCancelled,
    AuthorizationError,
    ConfigurationError,
    CredentialStoreError,
    FitBridgeError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RegistryError,
    UnsupportedProviderError,
)
from .health import HealthData
from .orchestrator import SyncOrchestrator, best_effort
from .provider_types import (
    Capability,
    ConnectionOutcome,
    CredentialPair,
    DeviceConnection,
    DeviceStatus,
    FailureKind,
    ProviderConfig,
    ProviderType,
    SyncResult,
)
from .service import DeviceSyncService

__version__ = "0.1.0"

__all__ = [
    "AuthorizationCancelled",
    "AuthorizationError",
    "AuthorizationSession",
    "BalanceStatus",
    "Capability",
    "ConfigurationError",
    "ConnectionOutcome",
    "ConnectionState",
    "CredentialPair",
    "CredentialStore",
    "CredentialStoreError",
    "DailyBalance",
    "DailyBalanceCalculator",
    "DeviceConnection",
    "DeviceStatus",
    "DeviceSyncService",
    "DynamoCredentialStore",
    "EncryptedFileCredentialStore",
    "FailureKind",
    "FitBridgeError",
    "HealthData",
    "LoopbackAuthorizationSession",
    "MemoryCredentialStore",
    "NetworkError",
    "NotFoundError",
    "OAuthConnectionManager",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderRegistry",
    "ProviderType",
    "RateLimitError",
    "RegistryError",
    "Settings",
    "SyncOrchestrator",
    "SyncResult",
    "UnsupportedProviderError",
    "best_effort",
    "build_adapters",
    "build_credential_store",
    "compute_daily_balance",
    "load_provider_registry",
    "load_settings",
]
