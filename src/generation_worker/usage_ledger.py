import asyncio
import copy
import json
import logging
import os
import time
from datetime import date, datetime, timezone
from typing import Any, Callable

import aiofiles
from filelock import FileLock

from generation_worker.cost import TokenUsage

logger = logging.getLogger(__name__)

STAT_FIELDS = {
    "success_count": 0,
    "failure_count": 0,
    "reserved_tokens": 0,
    "prompt_tokens": 0,
    "completion_tokens": 0,
    "approx_cost": 0.0,
}


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _empty_stats() -> dict[str, Any]:
    return dict(STAT_FIELDS)


class UsageLedger:
    """
    Per-model usage and cost accounting persisted to a JSON file.

    Tracks the tokens committed by the scheduler next to the tokens the
    model actually reported. Today's numbers live under "daily" and are
    folded into "global" on the first access after the UTC date changes.
    Uses asyncio-safe locking, asynchronous file I/O and a file lock for
    writers in other processes.
    """

    def __init__(
        self,
        file_path: str = "llm_usage.json",
        today: Callable[[], date] = _utc_today,
    ):
        self.file_path = file_path
        self.file_lock = FileLock(f"{self.file_path}.lock")
        self._today = today

        self._data_lock = asyncio.Lock()
        self._usage_data: dict[str, Any] | None = None
        self._initialized = asyncio.Event()
        self._init_lock = asyncio.Lock()

    async def _lazy_init(self) -> None:
        async with self._init_lock:
            if not self._initialized.is_set():
                await self._load_usage()
                self._initialized.set()

    async def _load_usage(self) -> None:
        async with self._data_lock:
            if not os.path.exists(self.file_path):
                self._usage_data = {}
                return
            try:
                async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
                    content = await f.read()
                data = json.loads(content) if content.strip() else {}
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning(
                    "Usage ledger %s could not be read (%s); starting empty",
                    self.file_path,
                    exc,
                )
                data = {}
            if not isinstance(data, dict):
                logger.warning(
                    "Usage ledger %s does not hold a JSON object; starting empty",
                    self.file_path,
                )
                data = {}
            self._usage_data = data

    async def _save_usage(self) -> None:
        if self._usage_data is None:
            return
        payload = json.dumps(self._usage_data, indent=2)
        # Use filelock to prevent multi-process races on the same file
        with self.file_lock:
            async with aiofiles.open(self.file_path, "w", encoding="utf-8") as f:
                await f.write(payload)

    def _model_entry(self, model_id: str) -> tuple[dict[str, Any], bool]:
        """
        Get a model's entry, rolling yesterday's stats into global first.

        Returns the entry and whether it changed, so readers know to save.
        """
        today_str = self._today().isoformat()
        entry = self._usage_data.get(model_id)
        if not isinstance(entry, dict):
            entry = self._usage_data[model_id] = {
                "daily": {"date": today_str, "stats": _empty_stats()},
                "global": _empty_stats(),
                "last_used_at": None,
            }
            return entry, True

        daily = entry.get("daily")
        if not daily or daily.get("date") != today_str:
            global_stats = entry.setdefault("global", _empty_stats())
            for name, value in (daily or {}).get("stats", {}).items():
                global_stats[name] = global_stats.get(name, 0) + value
            entry["daily"] = {"date": today_str, "stats": _empty_stats()}
            return entry, True
        return entry, False

    async def record_success(
        self,
        model_id: str,
        tokens_reserved: int,
        usage: TokenUsage | None = None,
        approx_cost: float = 0.0,
    ) -> None:
        await self._lazy_init()
        async with self._data_lock:
            entry, _ = self._model_entry(model_id)
            stats = entry["daily"]["stats"]
            stats["success_count"] += 1
            stats["reserved_tokens"] += tokens_reserved
            if usage is not None:
                stats["prompt_tokens"] += usage.tokens_in
                stats["completion_tokens"] += usage.tokens_out
            stats["approx_cost"] += approx_cost
            entry["last_used_at"] = time.time()
            await self._save_usage()

    async def record_failure(self, model_id: str, tokens_reserved: int) -> None:
        """Failed calls still consumed their reservation."""
        await self._lazy_init()
        async with self._data_lock:
            entry, _ = self._model_entry(model_id)
            stats = entry["daily"]["stats"]
            stats["failure_count"] += 1
            stats["reserved_tokens"] += tokens_reserved
            entry["last_used_at"] = time.time()
            await self._save_usage()

    async def get_model_stats(self, model_id: str) -> dict[str, Any] | None:
        await self._lazy_init()
        async with self._data_lock:
            if model_id not in self._usage_data:
                return None
            entry, needs_saving = self._model_entry(model_id)
            if needs_saving:
                await self._save_usage()
            return copy.deepcopy(entry)

    async def get_daily_totals(self) -> dict[str, dict[str, Any]]:
        """Today's stats for every model that has an entry."""
        await self._lazy_init()
        async with self._data_lock:
            totals = {}
            needs_saving = False
            for model_id in list(self._usage_data):
                entry, rolled_over = self._model_entry(model_id)
                needs_saving = needs_saving or rolled_over
                totals[model_id] = dict(entry["daily"]["stats"])
            if needs_saving:
                await self._save_usage()
            return totals
