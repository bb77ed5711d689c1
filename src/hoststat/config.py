"""Configuration for hoststat samplers and the monitor loop."""

from dataclasses import dataclass, field


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Seconds to wait before the second attempt.
        max_delay: Cap on any single wait, in seconds.
        exponential_base: Growth factor of the wait between attempts.
    """

    max_attempts: int = 5
    base_delay: float = 0.01
    max_delay: float = 0.5
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1:
            raise ValueError("exponential_base must be >= 1")

    def delay(self, attempt: int) -> float:
        """Return the wait after the given (0-indexed) failed attempt."""
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)


@dataclass
class SamplerConfig:
    """Monitor loop and sampler settings."""

    poll_rate: float = 2.0  # Seconds between cycles
    load_average_count: int = 3  # 1, 5 and 15 minute averages
    history_size: int = 60  # CPU samples kept for history
    swap_retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not 1 <= self.load_average_count <= 3:
            raise ValueError(
                f"load_average_count must be between 1 and 3, got {self.load_average_count}"
            )
        if self.history_size < 1:
            raise ValueError("history_size must be at least 1")
