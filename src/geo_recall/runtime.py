"""Queue-backed event loop feeding host events to the round lifecycle."""

from __future__ import annotations

import asyncio
import logging

from geo_recall.adapters.events import HostEvent, HostPage
from geo_recall.lifecycle import RoundLifecycle


class RoundRuntime:
    """Single worker that hands host events to the lifecycle one at a time.

    Network and DOM-mutation hooks call :meth:`publish`, which never blocks. When
    a ``HostPage`` is given, a poll task snapshots it every
    ``poll_interval_seconds`` and publishes the snapshot like any other event.
    """

    def __init__(
        self,
        lifecycle: RoundLifecycle,
        *,
        host: HostPage | None = None,
        poll_interval_seconds: float = 1.0,
        max_queue_size: int = 1_000,
        logger: logging.Logger | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._host = host
        self._poll_interval_seconds = poll_interval_seconds
        self._logger = logger or logging.getLogger("geo_recall.runtime")

        self._queue: asyncio.Queue[HostEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._worker_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def lifecycle(self) -> RoundLifecycle:
        return self._lifecycle

    async def start(self) -> None:
        """Start the worker (and poller) once for this runtime."""
        if self._worker_task and not self._worker_task.done():
            return

        self._worker_task = asyncio.create_task(self._worker_loop(), name="round-runtime-worker")
        if self._host is not None:
            self._poll_task = asyncio.create_task(self._poll_loop(), name="round-runtime-poll")
        self._logger.info(
            "round_runtime_started",
            extra={"queue_maxsize": self._queue.maxsize, "polling": self._host is not None},
        )

    async def stop(self) -> None:
        """Cancel the worker, the poller and any background round work."""
        if not self._worker_task:
            return

        for task in (self._poll_task, self._worker_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._worker_task = None
        self._poll_task = None
        await self._lifecycle.shutdown()

        self._logger.info("round_runtime_stopped")

    def publish(self, event: HostEvent) -> bool:
        """Queue ``event``; returns ``False`` when the queue is full and the event is dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._logger.warning("host_event_dropped", extra={"event_type": type(event).__name__})
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued event is handled and background round work has finished."""
        await self._queue.join()
        await self._lifecycle.wait_idle()

    async def _worker_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._lifecycle.handle(event)
            except Exception:  # noqa: BLE001 - one bad event must not stop the loop.
                self._logger.exception("host_event_failed", extra={"event_type": type(event).__name__})
            finally:
                self._queue.task_done()

    async def _poll_loop(self) -> None:
        while True:
            try:
                self.publish(self._host.snapshot())
            except Exception:  # noqa: BLE001 - a failed snapshot is retried on the next tick.
                self._logger.exception("host_snapshot_failed")
            await asyncio.sleep(self._poll_interval_seconds)
