"""
Concurrent execution of a wave of independent generation tasks.

Each task in a wave is scheduled to start at ``index * stagger`` seconds
after the wave begins, which spreads request load on the provider. Tasks
run concurrently once started and the wave settles only when every task
has finished; failures never cancel siblings. The clock is injectable so
staggered schedules can be tested deterministically.
"""

import asyncio
import heapq
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .error_handler import WaveAggregateError

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class WaveTask:
    """One unit of work in a wave."""
    id: str
    execute: Callable[[], Awaitable[Any]]
    on_start: Optional[Callable[[], None]] = None
    on_complete: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None


@dataclass(order=True)
class ScheduledTask:
    """Heap entry: a task and the clock time it becomes ready."""
    ready_at: float
    index: int
    task: WaveTask = field(compare=False)


class Clock(ABC):
    """Time source for the scheduler."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    async def sleep_until(self, deadline: float):
        """Suspend until ``now() >= deadline``."""


class MonotonicClock(Clock):
    """Real time from the running event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep_until(self, deadline: float):
        delay = deadline - self.now()
        if delay > 0:
            await asyncio.sleep(delay)


class VirtualClock(Clock):
    """
    Simulated time for tests.

    Sleeping advances the clock straight to the deadline and yields once to
    the event loop, so staggered schedules run instantly and in order.
    """

    def __init__(self, start: float = 0.0):
        self._now = start

    def now(self) -> float:
        return self._now

    async def sleep_until(self, deadline: float):
        # Let already launched tasks take their first step at the old time
        await asyncio.sleep(0)
        self._now = max(self._now, deadline)


@dataclass
class TaskFailure:
    """A task that raised, with its error."""
    id: str
    error: BaseException


@dataclass
class WaveOutcome:
    """Per-task results of a settled wave."""
    succeeded: Dict[str, Any] = field(default_factory=dict)
    failed: List[TaskFailure] = field(default_factory=list)
    started_at: Dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class WaveResult:
    """Results of a fully successful wave, keyed by task id."""
    results: Dict[str, Any]
    timing_ms: int


class WaveScheduler:
    """
    Starts tasks at their scheduled times and waits for all of them.

    A single dispatcher pops tasks from a heap ordered by ready time and
    launches each one when the clock reaches it. Task bodies never block
    the dispatcher.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or MonotonicClock()
        self._queue: List[ScheduledTask] = []

    def schedule(self, tasks: Sequence[WaveTask], stagger: float):
        """
        Queue tasks relative to the current clock time.

        Args:
            tasks: Tasks in launch order
            stagger: Seconds between consecutive task starts
        """
        start = self.clock.now()
        for index, task in enumerate(tasks):
            heapq.heappush(self._queue, ScheduledTask(start + index * stagger, index, task))

    async def _run_one(self, task: WaveTask, outcome: WaveOutcome):
        try:
            if task.on_start:
                task.on_start()
            result = await task.execute()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            outcome.failed.append(TaskFailure(task.id, e))
            logger.warning(f"Wave task {task.id} failed: {str(e)}")
            if task.on_error:
                task.on_error(e)
            return

        outcome.succeeded[task.id] = result
        if task.on_complete:
            task.on_complete(result)

    async def settle(self) -> WaveOutcome:
        """Run every queued task and return once all have finished."""
        outcome = WaveOutcome()
        running = []
        try:
            while self._queue:
                entry = heapq.heappop(self._queue)
                await self.clock.sleep_until(entry.ready_at)
                outcome.started_at[entry.task.id] = self.clock.now()
                running.append(asyncio.ensure_future(self._run_one(entry.task, outcome)))
            if running:
                await asyncio.gather(*running)
        except asyncio.CancelledError:
            for future in running:
                future.cancel()
            self._queue.clear()
            raise
        return outcome


async def execute_wave(tasks: Sequence[WaveTask], stagger: float,
                       clock: Optional[Clock] = None) -> WaveResult:
    """
    Run a wave of tasks with staggered starts.

    Args:
        tasks: Tasks with unique ids, started in order
        stagger: Seconds between consecutive task starts
        clock: Time source; real time by default

    Returns:
        WaveResult with every task's result keyed by id

    Raises:
        ValueError: If task ids are not unique
        WaveAggregateError: If any task failed, naming every failed id
    """
    ids = [task.id for task in tasks]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Wave task ids must be unique: {ids}")

    started = time.perf_counter()
    scheduler = WaveScheduler(clock)
    scheduler.schedule(tasks, stagger)
    outcome = await scheduler.settle()
    timing_ms = int((time.perf_counter() - started) * 1000)

    if outcome.failed:
        failed_ids = [f.id for f in sorted(outcome.failed, key=lambda f: ids.index(f.id))]
        first = next(f.error for f in outcome.failed if f.id == failed_ids[0])
        raise WaveAggregateError(failed_ids, first, outcome)

    logger.info(f"Wave of {len(tasks)} task(s) completed in {timing_ms}ms")
    return WaveResult(results={task_id: outcome.succeeded[task_id] for task_id in ids}, timing_ms=timing_ms)
