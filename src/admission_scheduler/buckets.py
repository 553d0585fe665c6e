# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Token bucket types for the admission scheduler.

Buckets are plain mutable containers; all synchronization happens in the
scheduler, which holds the per-model lock around every mutation.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .config import ModelQuotaConfig


class QuotaDimension(str, Enum):
    """The three independently tracked limits of a model."""

    REQUESTS_PER_MINUTE = "requests_per_minute"
    TOKENS_PER_MINUTE = "tokens_per_minute"
    REQUESTS_PER_DAY = "requests_per_day"


@dataclass
class QuotaBucket:
    """
    Capacity-limited counter, debited on use and credited over time.

    Invariant: 0 <= available <= capacity.
    """

    capacity: float
    refill_rate_per_minute: float
    available: Optional[float] = None  # None = start full

    def __post_init__(self):
        if self.available is None:
            self.available = float(self.capacity)
        if not 0 <= self.available <= self.capacity:
            raise ValueError(
                f"available {self.available} outside [0, {self.capacity}]"
            )

    def can_cover(self, amount: float) -> bool:
        return self.available >= amount

    def debit(self, amount: float) -> None:
        if amount < 0:
            raise ValueError(f"Cannot debit a negative amount ({amount})")
        if amount > self.available:
            raise ValueError(
                f"Debit of {amount} exceeds available {self.available}"
            )
        self.available -= amount

    def credit(self, amount: float) -> None:
        """Add capacity, clamped to the bucket's maximum."""
        if amount < 0:
            raise ValueError(f"Cannot credit a negative amount ({amount})")
        self.available = min(self.capacity, self.available + amount)

    def refill_for(self, elapsed_seconds: float) -> None:
        if elapsed_seconds <= 0:
            return
        self.credit(self.refill_rate_per_minute * elapsed_seconds / 60.0)

    def reset(self) -> None:
        self.available = float(self.capacity)

    @property
    def is_exhausted(self) -> bool:
        """True if not even one unit is left."""
        return self.available < 1

    def snapshot(self) -> "BucketSnapshot":
        return BucketSnapshot(
            capacity=self.capacity,
            available=self.available,
            refill_rate_per_minute=self.refill_rate_per_minute,
        )


@dataclass(frozen=True)
class BucketSnapshot:
    """Read-only copy of a QuotaBucket."""

    capacity: float
    available: float
    refill_rate_per_minute: float


@dataclass
class ModelBuckets:
    """
    Bucket triple for a single model.

    The lock is the atomicity boundary for check-and-debit, refill and
    daily reset on this model.
    """

    model_id: str
    requests: QuotaBucket
    tokens: QuotaBucket
    daily: QuotaBucket
    last_refill_at: float = 0.0  # Clock timestamp of the previous refill
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def from_config(cls, config: ModelQuotaConfig, now: float) -> "ModelBuckets":
        """Create a full bucket triple for a model."""
        return cls(
            model_id=config.model_id,
            requests=QuotaBucket(
                capacity=config.requests_per_minute,
                refill_rate_per_minute=config.request_refill_per_minute,
            ),
            tokens=QuotaBucket(
                capacity=config.tokens_per_minute,
                refill_rate_per_minute=config.token_refill_per_minute,
            ),
            daily=QuotaBucket(
                capacity=config.requests_per_day,
                refill_rate_per_minute=config.daily_refill_per_minute,
            ),
            last_refill_at=now,
        )

    def can_admit(self, tokens_needed: int) -> bool:
        return (
            self.requests.can_cover(1)
            and self.tokens.can_cover(tokens_needed)
            and self.daily.can_cover(1)
        )

    def admit(self, tokens_needed: int) -> None:
        self.requests.debit(1)
        self.tokens.debit(tokens_needed)
        self.daily.debit(1)

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill_at
        self.last_refill_at = now
        if elapsed <= 0:
            return
        self.requests.refill_for(elapsed)
        self.tokens.refill_for(elapsed)
        self.daily.refill_for(elapsed)

    def snapshot(self) -> Dict[QuotaDimension, BucketSnapshot]:
        return {
            QuotaDimension.REQUESTS_PER_MINUTE: self.requests.snapshot(),
            QuotaDimension.TOKENS_PER_MINUTE: self.tokens.snapshot(),
            QuotaDimension.REQUESTS_PER_DAY: self.daily.snapshot(),
        }
