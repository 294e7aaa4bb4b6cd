from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .errors import JobBusy
from .models import JobHandle

Sleep = Callable[[float], Awaitable[None]]

OUTCOME_COMPLETED = "completed"
OUTCOME_EMPTY = "empty"
OUTCOME_CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobOutcome:
    status: str
    result_ref: Optional[str] = None

    @property
    def produced(self) -> bool:
        return self.status == OUTCOME_COMPLETED


class JobPoller:
    """Drives one server-side job at a time until it reports ``done``.

    Submit and poll errors are logged and re-raised unchanged: the artifact is
    something the user asked for, so the caller decides how to report it.
    ``cancel()`` abandons the current run quietly; ``run`` then returns a
    cancelled outcome instead of a result or an error.
    """

    def __init__(self, log, *, interval_seconds: float = 5.0, sleep: Sleep = asyncio.sleep):
        self._logger = log
        self._interval = interval_seconds
        self._sleep = sleep
        self._cancelled: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._cancelled is not None

    def cancel(self) -> None:
        if self._cancelled is None or self._cancelled.is_set():
            return
        self._logger.info("Job polling cancelled")
        self._cancelled.set()

    async def run(
        self,
        submit: Callable[[], Awaitable[JobHandle]],
        poll: Callable[[JobHandle], Awaitable[JobHandle]],
        interval_seconds: Optional[float] = None,
    ) -> JobOutcome:
        if self._cancelled is not None:
            raise JobBusy("A video job is already running")
        interval = self._interval if interval_seconds is None else interval_seconds
        cancelled = self._cancelled = asyncio.Event()
        try:
            return await self._drive(submit, poll, interval, cancelled)
        finally:
            self._cancelled = None

    async def _drive(self, submit, poll, interval: float, cancelled: asyncio.Event) -> JobOutcome:
        try:
            handle = await submit()
        except Exception as exc:
            if cancelled.is_set():
                self._logger.debug("Ignoring submit failure after cancel: %s", exc)
                return JobOutcome(OUTCOME_CANCELLED)
            self._logger.exception("Job submission failed: %s", exc)
            raise
        if cancelled.is_set():
            return JobOutcome(OUTCOME_CANCELLED)
        self._logger.info("Job submitted (done=%s)", handle.done)

        attempts = 0
        while not handle.done:
            if await self._wait(interval, cancelled):
                return JobOutcome(OUTCOME_CANCELLED)
            attempts += 1
            try:
                handle = await poll(handle)
            except Exception as exc:
                if cancelled.is_set():
                    self._logger.debug("Ignoring poll failure after cancel: %s", exc)
                    return JobOutcome(OUTCOME_CANCELLED)
                self._logger.exception("Job poll %s failed: %s", attempts, exc)
                raise
            if cancelled.is_set():
                return JobOutcome(OUTCOME_CANCELLED)
            self._logger.debug("Job poll %s: done=%s", attempts, handle.done)

        if handle.result_ref:
            self._logger.info("Job finished after %s polls", attempts)
            return JobOutcome(OUTCOME_COMPLETED, handle.result_ref)
        self._logger.warning("Job finished after %s polls without producing a result", attempts)
        return JobOutcome(OUTCOME_EMPTY)

    async def _wait(self, interval: float, cancelled: asyncio.Event) -> bool:
        """Sleep for ``interval``; return True if cancelled first."""
        if cancelled.is_set():
            return True
        sleeper = asyncio.ensure_future(self._sleep(interval))
        watcher = asyncio.ensure_future(cancelled.wait())
        try:
            await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, watcher):
                if not task.done():
                    task.cancel()
        return cancelled.is_set()
