"""
Worker pool for virtual users.

Owns a set of asyncio tasks, each running a worker coroutine with its own stop
signal. Workers are expected to check their stop signal between iterations,
so retiring a worker lets its in-flight iteration finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[int, asyncio.Event], Awaitable[None]]


class WorkerPool:
    """
    Spawn, resize and stop a group of worker tasks.

    Args:
        worker_factory: coroutine function `(worker_id, stop_signal)`
        min_workers: floor applied by `scale_to`
        max_workers: ceiling applied by `scale_to`
        retire_grace_seconds: how long a retired worker may keep running its
            current iteration before it is cancelled (None waits forever)
        on_workers_changed: called after every spawn, retire and stop
        name: used in task names and log lines
    """

    def __init__(
        self,
        worker_factory: WorkerFactory,
        *,
        min_workers: int = 0,
        max_workers: int,
        retire_grace_seconds: Optional[float] = None,
        on_workers_changed: Optional[Callable[[], None]] = None,
        name: str = "pool",
    ):
        if max_workers < min_workers:
            raise ValueError("max_workers must be >= min_workers")
        self._worker_factory = worker_factory
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.retire_grace_seconds = retire_grace_seconds
        self._on_workers_changed = on_workers_changed
        self.name = name

        self._worker_tasks: dict[int, tuple[asyncio.Task, asyncio.Event]] = {}
        self._reapers: set[asyncio.Task] = set()
        self._next_worker_id = 0
        self.peak_active = 0

    @property
    def count(self) -> int:
        """Workers whose task has not finished (including retiring ones)."""
        return sum(1 for t, _ in self._worker_tasks.values() if not t.done())

    @property
    def active_count(self) -> int:
        return len(self.running_worker_ids())

    def running_worker_ids(self) -> list[int]:
        """IDs of workers that are running and have not been told to stop."""
        out: list[int] = []
        for wid, (task, stop_signal) in self._worker_tasks.items():
            if task.done() or stop_signal.is_set():
                continue
            out.append(wid)
        return sorted(out)

    def tasks(self) -> list[asyncio.Task]:
        return [t for t, _ in self._worker_tasks.values()]

    def prune_completed(self) -> None:
        for wid, (task, _) in list(self._worker_tasks.items()):
            if task.done():
                self._worker_tasks.pop(wid, None)

    def _notify(self) -> None:
        active = self.active_count
        if active > self.peak_active:
            self.peak_active = active
        if self._on_workers_changed is not None:
            self._on_workers_changed()

    async def spawn_one(self) -> int:
        wid = self._next_worker_id
        self._next_worker_id += 1
        stop_signal = asyncio.Event()
        task = asyncio.create_task(
            self._worker_factory(wid, stop_signal), name=f"{self.name}-worker-{wid}"
        )
        self._worker_tasks[wid] = (task, stop_signal)
        # Workers that finish on their own (e.g. an exhausted budget) update the counts too.
        task.add_done_callback(lambda _t: self._notify())
        self._notify()
        return wid

    async def scale_to(self, target: int) -> int:
        """
        Resize to `target` active workers (clamped to [min_workers, max_workers]).

        Scale-down signals the highest-numbered workers; they finish their
        current iteration and exit.

        Returns:
            The clamped target.
        """
        self.prune_completed()
        target = max(self.min_workers, min(self.max_workers, target))

        running_ids = self.running_worker_ids()
        running = len(running_ids)

        if running < target:
            for _ in range(target - running):
                await self.spawn_one()
        elif running > target:
            stop_ids = list(reversed(running_ids))[: running - target]
            for wid in stop_ids:
                self._retire(wid)
            self._notify()
        return target

    def _retire(self, wid: int) -> None:
        entry = self._worker_tasks.get(wid)
        if entry is None:
            return
        task, stop_signal = entry
        stop_signal.set()
        if self.retire_grace_seconds is not None and not task.done():
            reaper = asyncio.create_task(
                self._reap(wid, task, self.retire_grace_seconds),
                name=f"{self.name}-reaper-{wid}",
            )
            self._reapers.add(reaper)
            reaper.add_done_callback(self._reapers.discard)

    async def _reap(self, wid: int, task: asyncio.Task, grace: float) -> None:
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace)
        except asyncio.TimeoutError:
            logger.debug("%s: worker %d still busy after %.1fs, cancelling", self.name, wid, grace)
            task.cancel()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s: worker %d exited with error: %s", self.name, wid, e)

    async def wait_all(self) -> None:
        """Wait for every current worker task to finish on its own."""
        tasks = self.tasks()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def stop_all(self, timeout_seconds: Optional[float] = 30.0) -> int:
        """
        Signal every worker, wait up to `timeout_seconds`, then cancel stragglers.

        Returns:
            Number of workers that had to be cancelled.
        """
        for _, stop_signal in self._worker_tasks.values():
            stop_signal.set()
        for reaper in list(self._reapers):
            reaper.cancel()
        self._notify()

        tasks = [t for t, _ in self._worker_tasks.values()]
        abandoned = 0
        if tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*tasks, return_exceptions=True),
                    timeout=timeout_seconds,
                )
            except asyncio.TimeoutError:
                abandoned = sum(1 for t in tasks if t.cancelled())
                logger.warning(
                    "%s: %d worker(s) did not stop within %.1fs and were abandoned",
                    self.name,
                    abandoned,
                    timeout_seconds,
                )
        self._worker_tasks.clear()
        self._notify()
        return abandoned
