"""Per-provider rate limiting using a token bucket."""

import time
from dataclasses import dataclass
from threading import Lock
from typing import Any

from .exceptions import RateLimitError
from .provider_types import ProviderType, RateLimitConfig


@dataclass
class TokenBucket:
    """Token bucket for rate limiting."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "TokenBucket":
        max_tokens = float(config.max_burst or config.max_requests)
        return cls(
            max_tokens=max_tokens,
            refill_rate=config.max_requests / config.time_window,
            tokens=max_tokens,
            last_refill=time.monotonic(),
        )

    def consume(self, tokens: float = 1.0) -> bool:
        """Take tokens if available; False when the bucket is short."""
        self._refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True

        return False

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def time_until_available(self, tokens: float = 1.0) -> float:
        """Seconds until enough tokens are available, or 0 if they are now."""
        self._refill()

        if self.tokens >= tokens:
            return 0.0

        return (tokens - self.tokens) / self.refill_rate

    def reset(self) -> None:
        self.tokens = self.max_tokens
        self.last_refill = time.monotonic()


class ProviderRateLimiter:
    """
    Thread-safe limiter holding one bucket per provider.

    Providers without a configuration are never limited.
    """

    def __init__(self, configs: list[RateLimitConfig] | None = None) -> None:
        self.buckets: dict[ProviderType, TokenBucket] = {}
        self._lock = Lock()
        for config in configs or []:
            self.configure(config)

    def configure(self, config: RateLimitConfig) -> None:
        with self._lock:
            self.buckets[config.provider] = TokenBucket.from_config(config)

    def check_limit(self, provider: ProviderType, tokens: float = 1.0) -> None:
        """
        Consume tokens for one outbound call.

        Raises:
            RateLimitError: If the provider's bucket is exhausted
        """
        with self._lock:
            bucket = self.buckets.get(provider)
            if bucket is None:
                return
            if not bucket.consume(tokens):
                retry_after = int(bucket.time_until_available(tokens)) + 1
                raise RateLimitError(
                    f"Rate limit exceeded for {provider.value}",
                    provider=provider.value,
                    retry_after=retry_after,
                )

    def get_remaining(self, provider: ProviderType) -> dict[str, Any]:
        with self._lock:
            bucket = self.buckets.get(provider)
            if bucket is None:
                return {}
            bucket._refill()
            return {"remaining": int(bucket.tokens), "max": int(bucket.max_tokens)}

    def reset(self, provider: ProviderType | None = None) -> None:
        """Refill one provider's bucket, or all of them."""
        with self._lock:
            if provider is not None:
                if provider in self.buckets:
                    self.buckets[provider].reset()
                return
            for bucket in self.buckets.values():
                bucket.reset()
