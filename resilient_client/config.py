"""Configuration for the resilient API client."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from .resilience.circuit_breaker import CircuitBreakerConfig
from .resilience.retry import RetryConfig
from .resilience.timeout import TimeoutConfig


class Settings(BaseSettings):
    """Client-wide defaults, overridable via RESILIENT_CLIENT_* env vars."""

    model_config = SettingsConfigDict(
        env_prefix="RESILIENT_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = ""

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 10.0  # seconds
    retry_backoff_multiplier: float = 2.0
    retry_status_codes: list[int] = [408, 429, 500, 502, 503, 504]
    retry_respect_retry_after: bool = False

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: float = 60.0  # 1 minute
    circuit_expected_error_rate: float = 0.5  # 50% error rate threshold

    # Timeouts
    request_timeout: float = 10.0
    connection_timeout: float = 5.0

    def retry_defaults(self) -> dict:
        return {
            "max_attempts": self.retry_max_attempts,
            "base_delay": self.retry_base_delay,
            "max_delay": self.retry_max_delay,
            "backoff_multiplier": self.retry_backoff_multiplier,
            "retryable_status_codes": frozenset(self.retry_status_codes),
            "respect_retry_after": self.retry_respect_retry_after,
        }

    def circuit_breaker_defaults(self) -> dict:
        return {
            "failure_threshold": self.circuit_failure_threshold,
            "recovery_timeout": self.circuit_recovery_timeout,
            "expected_error_rate": self.circuit_expected_error_rate,
        }

    def timeout_defaults(self) -> dict:
        return {
            "request_timeout": self.request_timeout,
            "connection_timeout": self.connection_timeout,
        }

    def retry_config(self) -> RetryConfig:
        return RetryConfig(**self.retry_defaults())

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(**self.circuit_breaker_defaults())

    def timeout_config(self) -> TimeoutConfig:
        return TimeoutConfig(**self.timeout_defaults())


settings = Settings()
