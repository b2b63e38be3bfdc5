"""Configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """How often a failed store write is retried and how long to wait.

    ``max_retries=1`` means one retry: two attempts in total.
    """

    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=60.0, gt=0.0)
    exponential_base: float = Field(default=2.0, gt=0.0)

    @property
    def attempts(self) -> int:
        return 1 + self.max_retries

    def delay_for(self, retry: int) -> float:
        """Seconds to wait before retry number *retry* (0-based)."""
        delay = self.base_delay_seconds * (self.exponential_base**retry)
        return min(delay, self.max_delay_seconds)


class PairTalkConfig(BaseModel):
    """Tunables for signaling, quota, and delivery.

    The monthly cap and the per-call ceiling are independent settings even
    though both default to five minutes.
    """

    monthly_cap_seconds: float = Field(default=300.0, gt=0.0)
    call_ceiling_seconds: float = Field(default=300.0, gt=0.0)
    ring_timeout_seconds: float = Field(default=60.0, gt=0.0)
    quota_warning_seconds: float = Field(default=60.0, ge=0.0)
    sweep_interval_seconds: float = Field(default=1.0, gt=0.0)
    tick_interval_seconds: float = Field(default=1.0, gt=0.0)
    max_message_length: int = Field(default=4000, gt=0)
    max_consecutive_send_errors: int = Field(default=3, gt=0)
    end_calls_on_disconnect: bool = True
    commit_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_retries=1, base_delay_seconds=0.1)
    )
