"""Pydantic schemas for rate limit status responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitStatusResponse(BaseModel):
    """Caller's current token bucket state."""

    limit: int = Field(
        ..., description="Bucket capacity (tokens regenerated per interval)."
    )
    remaining: int = Field(
        ..., description="Whole tokens currently available to the caller."
    )
    retry_after_seconds: int | None = Field(
        default=None,
        description="Seconds until the next token is available; null when one is available now.",
    )
    interval_ms: int = Field(
        ..., description="Refill interval in milliseconds."
    )
