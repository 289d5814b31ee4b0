"""
Scheduler — owns the task registry and fires handlers near each occurrence.

Design:
- A poll loop wakes every ``interval`` milliseconds and records ``latest``
- Only tasks whose next occurrence lies inside the look-ahead window
  ``[latest, latest + interval]`` get a one-shot timer (loop.call_later);
  far-future tasks cost nothing until a later tick brings them into range
- When a timer fires the handler runs, then the task is re-evaluated against
  the *same* window: re-armed if its next occurrence is still inside it,
  otherwise left dormant for the next tick
- Scheduling an id that already exists replaces the old task (its timer is
  cancelled first); removing an unknown id is a no-op
- Exhausted tasks stay registered but never arm again

Everything runs on one asyncio event loop, so timers, ticks and registry
changes never interleave.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Awaitable, Callable

from cadence.core.config import CadenceConfig, SchedulerConfig
from cadence.core.errors import ArgumentError
from cadence.scheduler.recurrence import RecurrenceSpec
from cadence.scheduler.task import Handler, Task, new_task_id

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60000   # milliseconds between poll ticks

Clock = Callable[[], datetime]
PollHandler = Callable[[datetime], Any]


class Scheduler:
    """
    In-process task scheduler with a bounded look-ahead window.

    Usage:
        scheduler = Scheduler(interval=60000)
        await scheduler.start()

        task = scheduler.schedule(send_report, frequency="weekly",
                                  weekDay="mo", startTime="09:00")
        scheduler.subscribe(lambda latest: print("tick", latest))
        scheduler.remove(task.id)

        await scheduler.stop()

    Handlers may be plain callables or ``async def`` functions. Exceptions
    raised by task handlers are not caught here; they reach the event
    loop's exception handler.
    """

    def __init__(
        self,
        interval: int | None = None,
        *,
        config: SchedulerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        if interval is None:
            interval = config.interval if config is not None else DEFAULT_INTERVAL
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise ArgumentError(
                f"Poll interval must be a positive integer of milliseconds, got {interval!r}",
                argument="interval",
            )
        self._interval = interval
        self._clock: Clock = clock or datetime.now
        self._tasks: dict[str, Task] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}   # at most one per task
        self._subscribers: list[PollHandler] = []
        self._latest = self._clock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._poll_task: asyncio.Task | None = None
        self._running = False
        self._stopped = False   # set by stop(), cleared by start()
        self._in_flight: set[asyncio.Future] = set()   # async handler results

    @classmethod
    def from_config(cls, config: CadenceConfig, clock: Clock | None = None) -> Scheduler:
        return cls(config=config.scheduler, clock=clock)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Anchor the window at now, arm due tasks and start the poll loop."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._stopped = False
        self._latest = self._clock()
        for task in list(self._tasks.values()):
            self._handle_task(task)
        self._poll_task = asyncio.create_task(self._run(), name="cadence-scheduler")
        logger.info(f"Scheduler started (interval={self._interval}ms, tasks={len(self._tasks)})")

    async def stop(self) -> None:
        """Stop the poll loop and cancel every armed timer."""
        self._running = False
        self._stopped = True
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        logger.info("Scheduler stopped")

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval / 1000)
            try:
                self.poll()
            except Exception as e:
                logger.warning(f"Scheduler poll error (non-fatal): {e}")

    # ── Public API ────────────────────────────────────────────────────────────

    def schedule(
        self,
        handler: Handler,
        *,
        id: str | None = None,
        spec: RecurrenceSpec | Mapping[str, Any] | None = None,
        **options: Any,
    ) -> Task:
        """
        Register a task and arm it if it is due within the current window.

        Recurrence can be given as a RecurrenceSpec, an options mapping
        (``spec={...}``) or keyword options (``frequency="daily"``).
        A task already registered under ``id`` is replaced. After stop()
        the task is registered but not armed until the next start().

        Raises:
            ArgumentError: handler/id/spec have the wrong type.
            ValidationError: recurrence options are malformed. Nothing is
                registered or removed in that case.
        """
        if id is None:
            id = new_task_id()
            while id in self._tasks:
                id = new_task_id()
        task = Task.create(handler, spec, id=id, **options)

        if self.remove(task.id):
            logger.debug(f"Task {task.id!r} replaced")
        self._tasks[task.id] = task
        logger.info(f"Scheduled task {task.id!r}: {task.description}")

        self._handle_task(task)
        return task

    def remove(self, task_id: str) -> bool:
        """
        Cancel and unregister a task.

        Returns True if the task existed, False otherwise (not an error).
        """
        if not isinstance(task_id, str) or not task_id:
            raise ArgumentError("Task id must be a non-empty string", argument="task_id")

        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()

        existed = self._tasks.pop(task_id, None) is not None
        if existed:
            logger.debug(f"Removed task {task_id!r}")
        return existed

    def subscribe(self, handler: PollHandler) -> None:
        """
        Call ``handler(latest)`` now and after every poll tick.

        Subscriber errors are logged and do not affect other subscribers.
        There is no unsubscribe.
        """
        if not callable(handler):
            raise ArgumentError(
                f"Poll subscriber must be callable, got {type(handler).__name__}",
                argument="handler",
            )
        self._subscribers.append(handler)
        self._notify(handler)

    def poll(self) -> None:
        """
        Run one poll tick: advance the window and arm tasks now inside it.

        Called by the poll loop every ``interval`` milliseconds; callable
        directly to force a refresh.
        """
        self._latest = self._clock()
        logger.debug(f"Poll tick at {self._latest:%Y-%m-%d %H:%M:%S} ({len(self._tasks)} tasks)")
        for task in list(self._tasks.values()):
            self._handle_task(task)
        for handler in list(self._subscribers):
            self._notify(handler)

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def interval(self) -> int:
        """Poll period in milliseconds. Fixed at construction."""
        return self._interval

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self._interval)

    @property
    def latest(self) -> datetime:
        """Time of the most recent poll tick."""
        return self._latest

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tasks(self) -> Mapping[str, Task]:
        """Read-only view of the registry, in registration order."""
        return MappingProxyType(self._tasks)

    @property
    def armed(self) -> frozenset[str]:
        """Ids of tasks with a live timer."""
        return frozenset(self._timers)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # ── Internals ─────────────────────────────────────────────────────────────

    def _handle_task(self, task: Task) -> None:
        """Arm a timer for ``task`` if its next occurrence is inside the window."""
        if self._stopped or task.id in self._timers:
            return

        now = self._clock()
        date = task.next_occurrence(now)
        if date is None or date < self._latest or date > self._latest + self.window:
            return

        loop = self._get_loop()
        if loop is None:
            logger.debug(f"No running event loop; task {task.id!r} waits for start()")
            return

        delay = max((date - now).total_seconds(), 0.0)
        self._timers[task.id] = loop.call_later(delay, self._handle_timeout, task, date)
        logger.debug(f"Armed task {task.id!r} for {date:%Y-%m-%d %H:%M:%S} (in {delay:.3f}s)")

    def _handle_timeout(self, task: Task, date: datetime) -> None:
        self._timers.pop(task.id, None)
        try:
            result = task.fire(date)
            if inspect.isawaitable(result):
                self._spawn(result, f"task {task.id!r}", isolate=False)
        finally:
            # the handler may have removed or replaced its own task
            if self._tasks.get(task.id) is task:
                self._handle_task(task)

    def _notify(self, handler: PollHandler) -> None:
        try:
            result = handler(self._latest)
            if inspect.isawaitable(result):
                self._spawn(result, "poll subscriber", isolate=True)
        except Exception as e:
            logger.error(f"Poll subscriber error: {e}", exc_info=e)

    def _spawn(self, awaitable: Awaitable[Any], label: str, isolate: bool) -> None:
        """Run a handler's awaitable result on the loop."""
        loop = self._get_loop()
        if loop is None:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(f"No running event loop; dropped async result of {label}")
            return
        future = asyncio.ensure_future(awaitable, loop=loop)
        self._in_flight.add(future)
        future.add_done_callback(functools.partial(self._handle_done, label=label, isolate=isolate))

    def _handle_done(self, future: asyncio.Future, label: str, isolate: bool) -> None:
        self._in_flight.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            return
        if isolate:
            logger.error(f"Error in {label}: {error}", exc_info=error)
        else:
            future.get_loop().call_exception_handler({
                "message": f"Unhandled error in {label}",
                "exception": error,
                "future": future,
            })

    def _get_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is None or self._loop.is_closed():
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                return None
        return self._loop
