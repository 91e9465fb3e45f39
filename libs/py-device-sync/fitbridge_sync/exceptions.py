"""Exception taxonomy for device connection and sync."""


class FitBridgeError(Exception):
    """Base exception for all device sync errors."""

    def __init__(self, message: str, provider: str | None = None, trace_id: str | None = None):
        self.message = message
        self.provider = provider
        self.trace_id = trace_id
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert exception to API error response format."""
        return {
            "error": {
                "code": self.__class__.__name__.replace("Error", "").lower(),
                "message": self.message,
                "provider": self.provider,
                "trace_id": self.trace_id,
            }
        }


class ConfigurationError(FitBridgeError):
    """Missing client credentials or settings for an enabled provider."""


class AuthorizationError(FitBridgeError):
    """Provider rejected the authorization request or token grant."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trace_id: str | None = None,
        description: str | None = None,
    ):
        super().__init__(message, provider, trace_id)
        # Provider's own error text, passed through verbatim
        self.description = description


class AuthorizationCancelled(AuthorizationError):
    """User cancelled the interactive authorization session."""


class NetworkError(FitBridgeError):
    """Timeouts, transport failures and non-2xx responses."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trace_id: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider, trace_id)
        self.status_code = status_code


class RateLimitError(NetworkError):
    """Local token bucket exhausted or 429 from a provider API."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        trace_id: str | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, provider, trace_id, status_code=429)
        self.retry_after = retry_after


class RegistryError(FitBridgeError):
    """Server device registry answered with ``success: false``."""


class UnsupportedProviderError(FitBridgeError):
    """Provider needs a protocol or SDK that is not implemented."""


class NotFoundError(FitBridgeError):
    """Referenced device does not exist."""


class CredentialStoreError(FitBridgeError):
    """Credential storage, retrieval, or encryption errors."""
