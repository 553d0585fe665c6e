import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from admission_scheduler import AdmissionScheduler, Reservation, SchedulerError

from generation_worker.cost import TokenUsage, calculate_cost, extract_token_usage
from generation_worker.error_handler import (
    GenerationError,
    is_rate_limit_error,
    is_server_error,
    is_unrecoverable_error,
)
from generation_worker.failure_logger import log_failure
from generation_worker.model_client import CallModel, LiteLLMModelClient
from generation_worker.preferences import preferred_models
from generation_worker.settings import WorkerSettings
from generation_worker.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PageJob:
    page_id: str
    image: bytes
    mime_type: str = "image/png"
    attempt: int = 0  # Failed attempts so far


@dataclass(slots=True)
class PageResult:
    page_id: str
    model_id: str
    tokens_reserved: int
    usage: TokenUsage | None
    approx_cost: float
    response: Any
    attempts: int


ResultHandler = Callable[[PageResult], Awaitable[None]]
FailureHandler = Callable[[GenerationError], Awaitable[None]]

_SENTINEL = object()


def _describe_error(exc: Exception) -> str:
    if is_rate_limit_error(exc):
        return "upstream rate limit"
    if is_server_error(exc):
        return "server error"
    return type(exc).__name__


class GenerationWorker:
    """
    Runs page generation jobs on a pool of concurrent tasks.

    Every attempt reserves model capacity from the shared scheduler before
    calling the model; the reservation is committed whether the call
    succeeds or not. Failed pages are re-queued until max_attempts, and
    pages that keep failing get the stronger model first.
    """

    def __init__(
        self,
        scheduler: AdmissionScheduler,
        ledger: UsageLedger,
        prompt: str,
        *,
        settings: WorkerSettings | None = None,
        call_model: CallModel | None = None,
        on_result: ResultHandler | None = None,
        on_failure: FailureHandler | None = None,
    ):
        self._scheduler = scheduler
        self._ledger = ledger
        self._prompt = prompt
        self._settings = settings or WorkerSettings()
        self._call_model = call_model or LiteLLMModelClient(
            self._settings.model_name_map
        )
        self._on_result = on_result
        self._on_failure = on_failure

        self._queue: asyncio.Queue[PageJob | object] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self.completed = 0
        self.failed = 0
        self.retried = 0

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run_worker(), name=f"generation-worker-{i}")
            for i in range(self._settings.concurrency)
        ]
        logger.info("Started %d generation workers", len(self._tasks))

    async def submit(self, job: PageJob) -> None:
        await self._queue.put(job)

    async def join(self) -> None:
        """Wait until every submitted job, including retries, is finished."""
        await self._queue.join()

    async def stop(self) -> None:
        if not self._tasks:
            return
        await self.join()
        for _ in self._tasks:
            self._queue.put_nowait(_SENTINEL)
        await asyncio.gather(*self._tasks)
        self._tasks = []

    async def _run_worker(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _SENTINEL:
                    return
                await self.process(item)
            except Exception:
                logger.exception("Unexpected error while processing page job")
            finally:
                self._queue.task_done()

    async def process(self, job: PageJob) -> PageResult | None:
        """
        Run one generation attempt for a page.

        Returns the result on success, None when the page was re-queued or
        failed for good.
        """
        candidates = preferred_models(job.attempt, self._settings.escalation_fail_count)
        try:
            reservation = await self._scheduler.acquire(
                candidates, self._settings.estimated_tokens_per_page
            )
        except SchedulerError as exc:
            logger.error("Page %s cannot be scheduled: %s", job.page_id, exc)
            await self._finalize_failure(job, None, exc)
            return None

        try:
            response = await self._call_model(
                reservation.model_id, self._prompt, job.image, job.mime_type
            )
        except Exception as exc:
            await self._handle_call_failure(job, reservation, exc)
            return None

        usage = extract_token_usage(response)
        approx_cost = (
            calculate_cost(reservation.model_id, usage.tokens_in, usage.tokens_out)
            if usage
            else 0.0
        )
        await self._ledger.record_success(
            reservation.model_id, reservation.tokens_reserved, usage, approx_cost
        )
        self.completed += 1

        result = PageResult(
            page_id=job.page_id,
            model_id=reservation.model_id,
            tokens_reserved=reservation.tokens_reserved,
            usage=usage,
            approx_cost=approx_cost,
            response=response,
            attempts=job.attempt + 1,
        )
        logger.info(
            "Page %s generated on %s (reserved %d tokens, used %s, ~$%.6f)",
            job.page_id,
            reservation.model_id,
            reservation.tokens_reserved,
            usage.total if usage else "unknown",
            approx_cost,
        )
        if self._on_result is not None:
            await self._on_result(result)
        return result

    async def _handle_call_failure(
        self, job: PageJob, reservation: Reservation, exc: Exception
    ) -> None:
        attempt_no = job.attempt + 1
        await self._ledger.record_failure(
            reservation.model_id, reservation.tokens_reserved
        )
        log_failure(
            job.page_id,
            reservation.model_id,
            attempt_no,
            exc,
            tokens_reserved=reservation.tokens_reserved,
            prompt_version=self._settings.prompt_version,
        )

        failed_job = replace(job, attempt=attempt_no)
        if is_unrecoverable_error(exc) or attempt_no >= self._settings.max_attempts:
            await self._finalize_failure(failed_job, reservation.model_id, exc)
            return

        self.retried += 1
        logger.warning(
            "Page %s failed on %s (%s, attempt %d/%d); re-queueing",
            job.page_id,
            reservation.model_id,
            _describe_error(exc),
            attempt_no,
            self._settings.max_attempts,
        )
        self._queue.put_nowait(failed_job)

    async def _finalize_failure(
        self, job: PageJob, model_id: str | None, exc: Exception
    ) -> None:
        self.failed += 1
        error = GenerationError(job.page_id, model_id, job.attempt, exc)
        logger.error("%s", error)
        if self._on_failure is not None:
            await self._on_failure(error)
