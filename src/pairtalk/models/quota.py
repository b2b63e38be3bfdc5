"""Quota record model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, model_validator


def month_key(moment: datetime) -> str:
    """Return the UTC calendar month bucket (``YYYY-MM``) for *moment*."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return f"{moment.year:04d}-{moment.month:02d}"


class QuotaRecord(BaseModel):
    """Monthly call-time usage of one pair."""

    pair_key: str
    month_key: str
    used_seconds: float = Field(default=0.0, ge=0.0)
    cap_seconds: float = Field(gt=0.0)

    @model_validator(mode="after")
    def _check_cap(self) -> QuotaRecord:
        if self.used_seconds > self.cap_seconds:
            raise ValueError("used_seconds cannot exceed cap_seconds")
        return self

    @property
    def remaining_seconds(self) -> float:
        return self.cap_seconds - self.used_seconds
