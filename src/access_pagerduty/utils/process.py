"""Readiness-gated service jobs and the process that supervises them."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from access_pagerduty.errors import aggregate

logger = logging.getLogger(__name__)

JobFunc = Callable[["ServiceJob"], Awaitable[None]]


class ServiceJob:
    """A long-running coroutine with one-shot ready and done signals.

    The job function receives the job itself and must call ``set_ready``
    once its fallible initialisation is over. A job that finishes without
    signaling is reported as not ready.
    """

    def __init__(self, fn: JobFunc, name: str | None = None) -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__qualname__", "job")
        self._ready = False
        self._ready_event = asyncio.Event()
        self._done_event = asyncio.Event()
        self._err: BaseException | None = None
        self._started = False

    def set_ready(self, ready: bool) -> None:
        if self._ready_event.is_set():
            logger.debug("Job %s readiness already reported, ignoring", self.name)
            return
        self._ready = ready
        self._ready_event.set()

    def is_ready(self) -> bool:
        return self._ready_event.is_set() and self._ready

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until readiness is reported and return it."""
        if timeout is None:
            await self._ready_event.wait()
        else:
            await asyncio.wait_for(self._ready_event.wait(), timeout)
        return self._ready

    def done(self) -> bool:
        return self._done_event.is_set()

    async def wait_done(self) -> None:
        await self._done_event.wait()

    @property
    def err(self) -> BaseException | None:
        return self._err

    async def execute(self) -> None:
        """Run the job function to completion and record its outcome."""
        if self._started:
            raise RuntimeError(f"job {self.name} already started")
        self._started = True
        err: BaseException | None = None
        try:
            await self._fn(self)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            err = exc
        finally:
            self._finish(err)

    def _finish(self, err: BaseException | None) -> None:
        self._err = err
        self.set_ready(False)
        self._done_event.set()
        if err is not None:
            logger.debug("Job %s stopped with error: %s", self.name, err)
        else:
            logger.debug("Job %s stopped", self.name)


class Process:
    """Runs critical jobs under one cancellable lifetime.

    Any critical job ending with an error terminates the process, which
    cancels every other job. ``err`` combines all terminal errors.
    """

    def __init__(self) -> None:
        self._jobs: list[ServiceJob] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._terminated = False
        self._done = asyncio.Event()

    @property
    def terminated(self) -> bool:
        return self._terminated

    def spawn_critical_job(self, job: ServiceJob) -> None:
        self._done.clear()
        self._jobs.append(job)
        task = asyncio.create_task(job.execute(), name=f"job.{job.name}")
        self._tasks.add(task)
        task.add_done_callback(lambda t, job=job: self._on_job_finished(t, job))
        if self._terminated:
            task.cancel()

    def terminate(self) -> None:
        if not self._terminated:
            logger.debug("Terminating process")
        self._terminated = True
        for task in list(self._tasks):
            task.cancel()
        if not self._tasks:
            self._done.set()

    async def wait_done(self) -> None:
        await self._done.wait()

    @property
    def err(self) -> BaseException | None:
        return aggregate(job.err for job in self._jobs)

    def _on_job_finished(self, task: asyncio.Task[None], job: ServiceJob) -> None:
        self._tasks.discard(task)
        if not job.done():
            # cancelled before the job body started
            job._finish(None)
        if job.err is not None:
            logger.error("Critical job %s failed: %s", job.name, job.err)
            self.terminate()
        if not self._tasks:
            self._done.set()
