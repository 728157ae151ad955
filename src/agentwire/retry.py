"""
Reconnect backoff policy.

Attempt n (0-indexed) waits min(initial_delay * 2**n, max_delay) seconds,
spread by symmetric random jitter so that clients dropped together do not
reconnect in lockstep.
"""

import random
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from agentwire.errors import ConfigurationError

# Exponent cap; 2**32 seconds already exceeds any sane max_delay
_MAX_EXPONENT = 32


class RetryConfig(BaseModel):
    """
    Reconnect configuration for an AgentConnection.

    Attributes:
        enabled: Reconnect after close/error at all
        initial_delay: Delay before the first reconnect attempt (seconds)
        max_delay: Upper bound for the exponential delay (seconds)
        max_retries: Attempts allowed since the last successful open (None = unlimited)
        jitter: Fraction of the delay used as symmetric random spread
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    initial_delay: float = Field(default=1.0, gt=0.0)
    max_delay: float = Field(default=30.0, gt=0.0)
    max_retries: Optional[int] = Field(default=None, ge=0)
    jitter: float = Field(default=0.2, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def validate_delay_bounds(self):
        """Ensure the cap is not below the starting delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError(f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})")
        return self

    def allows_attempt(self, attempts_so_far: int) -> bool:
        """Check whether another reconnect may be scheduled."""
        if not self.enabled:
            return False
        return self.max_retries is None or attempts_so_far < self.max_retries


def compute_backoff(
    attempt: int,
    config: RetryConfig,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Compute the delay before reconnect attempt ``attempt``.

    Args:
        attempt: 0-indexed attempt number
        config: Retry configuration
        rand: Source of uniform [0, 1) values (injectable for tests)

    Returns:
        Delay in seconds, never negative
    """
    exponent = min(max(attempt, 0), _MAX_EXPONENT)
    base = min(config.initial_delay * (2**exponent), config.max_delay)
    spread = base * config.jitter
    return max(0.0, base + (rand() * 2.0 - 1.0) * spread)


def normalize_retry_config(
    value: Union[RetryConfig, dict[str, Any], None],
    defaults: Optional[RetryConfig] = None,
) -> RetryConfig:
    """
    Merge a partial retry configuration over defaults.

    Args:
        value: RetryConfig, dict of overrides, or None
        defaults: Base configuration (RetryConfig() if None)

    Returns:
        Validated RetryConfig

    Raises:
        ConfigurationError: If the merged configuration is invalid
    """
    base = defaults or RetryConfig()
    if value is None:
        return base
    if isinstance(value, RetryConfig):
        return value
    try:
        return RetryConfig.model_validate({**base.model_dump(), **value})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid retry configuration: {e}") from e
