"""
Tests for the staggered wave executor.
"""

import asyncio

import pytest

from business_logic.error_handler import FatalGenerationError, WaveAggregateError
from business_logic.wave_executor import (
    MonotonicClock, VirtualClock, WaveScheduler, WaveTask, execute_wave
)


def recording_task(task_id, clock, log, result=None, error=None, delay=0.0):
    """Task that records when it started and optionally fails."""

    async def execute():
        log.append(('run', task_id, clock.now()))
        if delay:
            await asyncio.sleep(delay)
        if error is not None:
            raise error
        return result if result is not None else task_id.upper()

    return WaveTask(
        id=task_id,
        execute=execute,
        on_start=lambda: log.append(('start', task_id)),
        on_complete=lambda value: log.append(('complete', task_id, value)),
        on_error=lambda exc: log.append(('error', task_id, str(exc))),
    )


class TestVirtualClockScheduling:
    """Deterministic stagger on simulated time."""

    def setup_method(self):
        self.clock = VirtualClock()
        self.log = []

    @pytest.mark.asyncio
    async def test_start_times_are_exact_multiples_of_stagger(self):
        tasks = [recording_task(t, self.clock, self.log) for t in ('a', 'b', 'c')]

        result = await execute_wave(tasks, 5.0, clock=self.clock)

        starts = {entry[1]: entry[2] for entry in self.log if entry[0] == 'run'}
        assert starts == {'a': 0.0, 'b': 5.0, 'c': 10.0}
        assert result.results == {'a': 'A', 'b': 'B', 'c': 'C'}

    @pytest.mark.asyncio
    async def test_zero_stagger_starts_everything_at_once(self):
        tasks = [recording_task(t, self.clock, self.log) for t in ('a', 'b')]

        await execute_wave(tasks, 0, clock=self.clock)

        assert [entry[2] for entry in self.log if entry[0] == 'run'] == [0.0, 0.0]

    @pytest.mark.asyncio
    async def test_failure_names_task_and_siblings_still_run(self):
        tasks = [
            recording_task('a', self.clock, self.log),
            recording_task('b', self.clock, self.log, error=FatalGenerationError("boom", 'b')),
        ]

        with pytest.raises(WaveAggregateError) as exc_info:
            await execute_wave(tasks, 5.0, clock=self.clock)

        error = exc_info.value
        assert error.failed_ids == ['b']
        assert "b" in str(error) and "boom" in str(error)
        assert ('start', 'a') in self.log and ('start', 'b') in self.log
        assert ('complete', 'a', 'A') in self.log
        assert ('error', 'b', 'boom') in self.log
        assert error.outcome.succeeded == {'a': 'A'}

    @pytest.mark.asyncio
    async def test_all_failures_listed_in_task_order(self):
        tasks = [
            recording_task('a', self.clock, self.log, error=ValueError("first")),
            recording_task('b', self.clock, self.log),
            recording_task('c', self.clock, self.log, error=ValueError("third")),
        ]

        with pytest.raises(WaveAggregateError) as exc_info:
            await execute_wave(tasks, 1.0, clock=self.clock)

        assert exc_info.value.failed_ids == ['a', 'c']
        assert str(exc_info.value.first_error) == "first"

    @pytest.mark.asyncio
    async def test_settle_exposes_partial_outcome(self):
        scheduler = WaveScheduler(self.clock)
        scheduler.schedule([
            recording_task('a', self.clock, self.log),
            recording_task('b', self.clock, self.log, error=RuntimeError("down")),
        ], stagger=2.0)

        outcome = await scheduler.settle()

        assert outcome.succeeded == {'a': 'A'}
        assert [f.id for f in outcome.failed] == ['b']
        assert outcome.started_at == {'a': 0.0, 'b': 2.0}
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_duplicate_ids_rejected(self):
        tasks = [recording_task('a', self.clock, self.log), recording_task('a', self.clock, self.log)]
        with pytest.raises(ValueError):
            await execute_wave(tasks, 0, clock=self.clock)


class TestMonotonicClockScheduling:
    """Stagger on real time."""

    @pytest.mark.asyncio
    async def test_starts_are_not_early(self):
        clock = MonotonicClock()
        log = []
        origin = clock.now()
        tasks = [recording_task(t, clock, log) for t in ('a', 'b', 'c')]

        await execute_wave(tasks, 0.02, clock=clock)

        starts = [entry[2] - origin for entry in log if entry[0] == 'run']
        tick = 0.005
        for index, started in enumerate(starts):
            assert started >= index * 0.02 - tick

    @pytest.mark.asyncio
    async def test_tasks_overlap_once_started(self):
        clock = MonotonicClock()
        log = []
        tasks = [recording_task(t, clock, log, delay=0.2) for t in ('a', 'b')]

        result = await execute_wave(tasks, 0.01, clock=clock)

        # b starts before a finishes
        assert result.timing_ms < 350
