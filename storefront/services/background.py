"""
Background persistence worker.

Architecture:
  - An asyncio.Queue receives PersistJob items.
  - A long-lived worker task drains the queue with retries + exponential backoff.
  - Every job carries a future, so callers (and tests) can observe completion
    or the final failure instead of losing it in a detached task.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Persist = Callable[[], Awaitable[Any]]
FailureCallback = Callable[[BaseException], None]


# ── Job definition ───────────────────────────────────────────────────────────

@dataclass
class PersistJob:
    key: str
    persist: Persist
    on_failure: Optional[FailureCallback] = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    done: Optional[asyncio.Future] = None

    async def wait(self) -> Any:
        """Await the final outcome; re-raises the last error if the job failed."""
        return await asyncio.shield(self.done)


# ── Worker ───────────────────────────────────────────────────────────────────

class BackgroundWorker:
    def __init__(
        self,
        name: str = "persist",
        max_retries: int = 3,
        retry_base_seconds: float = 0.5,
        maxsize: int = 10_000,
    ):
        self.name = name
        self.max_retries = max(1, max_retries)
        self.retry_base_seconds = retry_base_seconds
        self._maxsize = maxsize
        self._queue: Optional[asyncio.Queue[PersistJob]] = None
        self._task: Optional[asyncio.Task] = None
        self.processed = 0
        self.failed = 0

    def _ensure_running(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._task is not None and self._task.get_loop() is not loop:
            # Jobs queued on another loop can never run here.
            self._abandon_queued("event loop changed")
            self._task = None
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._maxsize)
        if self._task is None or self._task.done():
            # A dead worker on this loop restarts over the same queue.
            self._task = loop.create_task(self._run(), name=f"{self.name}-worker")
        return self._queue

    def _abandon_queued(self, reason: str) -> None:
        queue, self._queue = self._queue, None
        if queue is None:
            return
        while not queue.empty():
            job = queue.get_nowait()
            queue.task_done()
            logger.error("%s dropping persist for key=%s: %s", self.name, job.key, reason)
            self._fail(job, RuntimeError(f"{self.name} worker restarted: {reason}"))

    def enqueue(
        self,
        key: str,
        persist: Persist,
        on_failure: Optional[FailureCallback] = None,
    ) -> PersistJob:
        """Non-blocking enqueue. Must be called from inside a running event loop."""
        queue = self._ensure_running()
        job = PersistJob(
            key=key,
            persist=persist,
            on_failure=on_failure,
            done=asyncio.get_running_loop().create_future(),
        )
        try:
            queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.error("%s queue full – dropping persist for key=%s", self.name, key)
            self._fail(job, RuntimeError(f"{self.name} queue full"))
        return job

    async def _handle_job(self, job: PersistJob) -> None:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            job.attempts = attempt
            try:
                result = await job.persist()
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "%s error key=%s attempt=%d/%d: %s",
                    self.name, job.key, attempt, self.max_retries, exc,
                )
            else:
                logger.debug("Persisted key=%s (attempt %d)", job.key, attempt)
                self.processed += 1
                if not job.done.done():
                    job.done.set_result(result)
                return

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_base_seconds * (2 ** (attempt - 1)))

        logger.error(
            "%s failed after %d attempts for key=%s: %s",
            self.name, self.max_retries, job.key, last_error,
        )
        self._fail(job, last_error)

    def _fail(self, job: PersistJob, error: BaseException) -> None:
        self.failed += 1
        if job.on_failure is not None:
            try:
                job.on_failure(error)
            except Exception:
                logger.exception("Failure callback raised for key=%s", job.key)
        if not job.done.done():
            job.done.set_exception(error)
            # Mark retrieved so unobserved failures don't warn at GC; they are logged above.
            job.done.exception()

    async def _run(self) -> None:
        logger.info("%s worker started", self.name)
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await self._handle_job(job)
            except Exception as exc:
                logger.exception("Unexpected error in %s worker: %s", self.name, exc)
            finally:
                queue.task_done()

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued job has been handled."""
        if self._queue is None:
            return
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._queue = None

    def stats(self) -> Dict[str, int]:
        return {
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "processed": self.processed,
            "failed": self.failed,
        }
