# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Multi-resource admission scheduler.

Arbitrates access to several rate-limited model endpoints. Every model
carries three token buckets (requests/minute, tokens/minute, requests/day);
acquire() reserves capacity in all three at once on the first caller-ranked
model that can cover the request, and waits while none can.
"""

import asyncio
import logging
import math
import time
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence

from .buckets import BucketSnapshot, ModelBuckets, QuotaDimension
from .config import SchedulerConfig
from .errors import NoKnownCandidateError

lib_logger = logging.getLogger("admission_scheduler")


class Reservation(NamedTuple):
    """Committed capacity on one model. There is no release."""

    model_id: str
    tokens_reserved: int


class AdmissionScheduler:
    """
    Shared quota state and admission for all configured models.

    One instance is created by the process's composition root and handed
    to every worker. Bucket state is private: it is mutated only by
    acquire() (debit), refill() (credit) and reset_daily() (reset-to-full),
    always under the owning model's lock.

    Example:
        scheduler = AdmissionScheduler(load_scheduler_config())
        async with scheduler:
            model_id, tokens = await scheduler.acquire(
                ["g2.5-flash", "g2.0-flash"], estimated_tokens=2000
            )
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the scheduler with every bucket full.

        Args:
            config: Model quotas and admission policy (defaults if None)
            clock: Wall-clock source returning epoch seconds (time.time)
        """
        self._config = config or SchedulerConfig()
        self._clock = clock or time.time

        now = self._clock()
        self._buckets: Dict[str, ModelBuckets] = {}
        for model in self._config.models:
            if model.model_id in self._buckets:
                raise ValueError(f"Duplicate model id in quota config: {model.model_id}")
            self._buckets[model.model_id] = ModelBuckets.from_config(model, now)

        self._last_reset_date = self._utc_date(now)
        self._capacity_changed = asyncio.Condition()
        self._refill_task: Optional[asyncio.Task] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the background refill loop."""
        if self._refill_task:
            return
        self._refill_task = asyncio.create_task(
            self._run_refill_loop(), name="quota-refill"
        )
        lib_logger.info(
            f"Admission scheduler started for {len(self._buckets)} models "
            f"(refill every {self._config.refill_interval_seconds:.0f}s)"
        )

    async def stop(self) -> None:
        """Stop the background refill loop."""
        if not self._refill_task:
            return
        self._refill_task.cancel()
        try:
            await self._refill_task
        except asyncio.CancelledError:
            pass
        self._refill_task = None

    async def __aenter__(self) -> "AdmissionScheduler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.stop()
        return False

    @property
    def running(self) -> bool:
        return self._refill_task is not None

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def model_ids(self) -> List[str]:
        return list(self._buckets)

    # =========================================================================
    # ADMISSION
    # =========================================================================

    def effective_tokens(self, estimated_tokens: int) -> int:
        """
        Token cost actually debited for a caller estimate.

        max(min_tokens_per_request, ceil(safety_factor * estimated_tokens))
        """
        if (
            isinstance(estimated_tokens, bool)
            or not isinstance(estimated_tokens, int)
            or estimated_tokens < 0
        ):
            raise ValueError(
                f"estimated_tokens must be a non-negative integer, got {estimated_tokens!r}"
            )
        return max(
            self._config.min_tokens_per_request,
            math.ceil(self._config.safety_factor * estimated_tokens),
        )

    async def acquire(
        self, candidates: Sequence[str], estimated_tokens: int
    ) -> Reservation:
        """
        Reserve capacity on the first candidate that can cover the request.

        Waits (without limit) while no candidate has capacity in all three
        dimensions. Callers needing a deadline wrap the call in
        asyncio.wait_for(); a cancelled wait debits nothing, a returned
        reservation is committed.

        Args:
            candidates: Model ids, most preferred first. Unknown ids are skipped.
            estimated_tokens: Caller's token estimate for the upcoming call

        Returns:
            Reservation(model_id, tokens_reserved)

        Raises:
            ValueError: If estimated_tokens is not a non-negative integer
            NoKnownCandidateError: If no candidate is a configured model
        """
        tokens_needed = self.effective_tokens(estimated_tokens)

        known = [model_id for model_id in candidates if model_id in self._buckets]
        if not known:
            raise NoKnownCandidateError(candidates)

        too_small = [
            model_id
            for model_id in known
            if self._buckets[model_id].tokens.capacity < tokens_needed
        ]
        if too_small:
            lib_logger.warning(
                f"Token cost {tokens_needed} exceeds the per-minute token capacity of "
                f"{too_small}; they can never admit this call"
            )

        waiting_since = None
        while True:
            reservation = await self._try_admit(known, tokens_needed)
            if reservation is not None:
                if waiting_since is not None:
                    lib_logger.debug(
                        f"Admitted on {reservation.model_id} after waiting "
                        f"{time.monotonic() - waiting_since:.1f}s"
                    )
                return reservation

            if waiting_since is None:
                waiting_since = time.monotonic()
                lib_logger.info(
                    f"No capacity on {known} for {tokens_needed} tokens. Waiting..."
                )

            await self._wait_for_capacity()
            await self._refill_all()

    async def _try_admit(
        self, candidates: List[str], tokens_needed: int
    ) -> Optional[Reservation]:
        """Single first-fit scan; check-and-debit is atomic per model."""
        for model_id in candidates:
            buckets = self._buckets[model_id]
            async with buckets.lock:
                if buckets.can_admit(tokens_needed):
                    buckets.admit(tokens_needed)
                    lib_logger.debug(
                        f"Reserved {model_id} for {tokens_needed} tokens "
                        f"(rpm left: {buckets.requests.available:.2f}, "
                        f"tpm left: {buckets.tokens.available:.0f}, "
                        f"rpd left: {buckets.daily.available:.2f})"
                    )
                    return Reservation(model_id, tokens_needed)
        return None

    async def _wait_for_capacity(self) -> None:
        """Wait for a refill notification, at most one backoff interval."""
        async with self._capacity_changed:
            try:
                await asyncio.wait_for(
                    self._capacity_changed.wait(),
                    timeout=self._config.retry_backoff_seconds,
                )
            except asyncio.TimeoutError:
                # Timeout is normal, the caller refills and rescans
                pass

    # =========================================================================
    # REPLENISHMENT
    # =========================================================================

    async def refill(self) -> None:
        """
        Credit every bucket for the time elapsed since its last refill.

        Also performs the daily reset when the UTC date has changed, then
        wakes waiting acquire() calls.
        """
        await self._refill_all()
        await self._notify_capacity_changed()

    async def reset_daily(self) -> None:
        """Restore every requests/day bucket to full capacity."""
        self._last_reset_date = self._utc_date(self._clock())
        await self._reset_daily_buckets()
        await self._notify_capacity_changed()

    async def _refill_all(self) -> None:
        now = self._clock()
        for buckets in self._buckets.values():
            async with buckets.lock:
                buckets.refill(now)

        today = self._utc_date(now)
        if today != self._last_reset_date:
            lib_logger.info(
                f"UTC day changed ({self._last_reset_date} -> {today}); "
                f"resetting daily quotas"
            )
            self._last_reset_date = today
            await self._reset_daily_buckets()

    async def _reset_daily_buckets(self) -> None:
        for buckets in self._buckets.values():
            async with buckets.lock:
                buckets.daily.reset()

    async def _notify_capacity_changed(self) -> None:
        async with self._capacity_changed:
            self._capacity_changed.notify_all()

    async def _run_refill_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.refill_interval_seconds)
            await self.refill()

    # =========================================================================
    # INSPECTION
    # =========================================================================

    async def get_quota_snapshot(
        self,
    ) -> Dict[str, Dict[QuotaDimension, BucketSnapshot]]:
        """
        Get a copy of every model's bucket state.

        Returns:
            Dict of model_id -> {dimension: BucketSnapshot}
        """
        result = {}
        for model_id, buckets in self._buckets.items():
            async with buckets.lock:
                result[model_id] = buckets.snapshot()
        return result

    def _utc_date(self, timestamp: float) -> date:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).date()
