"""
AI gateway: the one way out to a completion provider.

Every outbound completion goes through one FIFO queue drained by a single
worker task, so for the whole process:

  · at most one provider call is in flight
  · dispatch order == submission order
  · consecutive dispatch *starts* are at least `cooldown` seconds apart

A failed call does not hold up the queue beyond the cooldown. There is no
timeout here; callers that want one wrap complete() in asyncio.wait_for.

reload_config() swaps the provider client for new submissions. Jobs already
queued keep the client they were submitted with; a retired client is closed
once nothing is queued or running.
"""
from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from coach.api_exceptions import ProviderHTTPError, RateLimitError
from coach.config import ConfigResolver
from coach.providers import ProviderClient
from coach.settings import DEFAULT_COOLDOWN_S
from coach.structured_logging import logger as base_logger

logger = base_logger.bind(component="gateway")

AI_UNAVAILABLE_MESSAGE = (
    "The AI coach is unavailable right now. "
    "An administrator needs to configure an AI provider key."
)


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, ProviderHTTPError) and exc.upstream_status == 429:
        return True
    return "429" in str(exc)


@dataclass
class _Job:
    prompt:  str
    image:   Optional[bytes]
    client:  ProviderClient
    future:  asyncio.Future = field(repr=False)


class AIGateway:
    """Single serialization point for external completion requests."""

    def __init__(
        self,
        resolver: ConfigResolver,
        cooldown: float = DEFAULT_COOLDOWN_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.resolver = resolver
        self.cooldown = cooldown
        self._clock = clock
        self._sleep = sleep
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._retired: list[ProviderClient] = []
        self._outstanding = 0
        self.last_call_started: Optional[float] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def complete(self, prompt: str, image: Optional[bytes] = None) -> str:
        """Queue one completion and wait for its text.

        Returns AI_UNAVAILABLE_MESSAGE without queueing when no provider is
        configured. Raises RateLimitError on provider rate limits; any other
        provider failure propagates unchanged.
        """
        client = await self.resolver.client()
        if client is None:
            return AI_UNAVAILABLE_MESSAGE

        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        self._outstanding += 1
        await self._queue.put(_Job(prompt, image, client, future))
        return await future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            if self._queue is None:
                self._queue = asyncio.Queue()
            self._worker = asyncio.create_task(self._run(), name="ai-gateway-worker")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._dispatch(job)
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.set_exception(RuntimeError("AI gateway closed"))
                raise
            finally:
                self._queue.task_done()
                self._outstanding -= 1
                if self._outstanding == 0:
                    await self._close_retired()

    async def _dispatch(self, job: _Job) -> None:
        waited = 0.0
        if self.last_call_started is not None:
            remaining = self.cooldown - (self._clock() - self.last_call_started)
            if remaining > 0:
                waited = remaining
                await self._sleep(remaining)

        started = self._clock()
        self.last_call_started = started
        try:
            text = await job.client.complete(job.prompt, job.image)
        except Exception as exc:
            duration_ms = (self._clock() - started) * 1000
            logger.log_ai_request(job.client.name, job.client.model, len(job.prompt),
                                  waited * 1000, duration_ms, error=str(exc))
            if not job.future.done():
                job.future.set_exception(self._classify(exc, job.client.name))
            return

        logger.log_ai_request(job.client.name, job.client.model, len(job.prompt),
                              waited * 1000, (self._clock() - started) * 1000)
        if not job.future.done():
            job.future.set_result(text)

    def _classify(self, exc: Exception, provider: str) -> Exception:
        if not is_rate_limited(exc):
            return exc
        logger.log_rate_limit_exceeded(provider, str(exc))
        limited = RateLimitError(retry_after=max(1, math.ceil(self.cooldown)), service=provider)
        limited.__cause__ = exc
        return limited

    async def aclose(self) -> None:
        """Stop the worker and fail anything still queued."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        while self._queue is not None and not self._queue.empty():
            job = self._queue.get_nowait()
            if not job.future.done():
                job.future.set_exception(RuntimeError("AI gateway closed"))
        self._outstanding = 0
        await self._close_retired()

    async def reload_config(self) -> None:
        """Drop the memoized provider config; later submissions use the new one."""
        retired = await self.resolver.invalidate()
        if retired is not None:
            self._retired.append(retired)
        if self._outstanding == 0:
            await self._close_retired()

    async def _close_retired(self) -> None:
        retired, self._retired = self._retired, []
        for client in retired:
            try:
                await client.aclose()
            except Exception as exc:
                logger.warning("Failed to close retired AI client",
                               provider=client.name, error=str(exc))
