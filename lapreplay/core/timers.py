# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Cooperative asyncio timers.

CountdownTimer runs from a start position to a target position (both in
media milliseconds) and calls back when the target is reached.
IntervalTimer calls back repeatedly until cancelled. Both are plain asyncio
tasks and must be stopped by their owner.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger("lapreplay.timers")


class CountdownTimer:
    """
    Elapsed-time timer over a media span.

    ``rate`` scales wall time (2.0 reaches the target twice as fast), which
    lets callers preview a queue quickly.
    """

    def __init__(
        self,
        on_target: Callable[[], Any],
        rate: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.on_target = on_target
        self.rate = rate
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._start_ms = 0
        self._target_ms = 0
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def target_ms(self) -> int:
        return self._target_ms

    @property
    def current_ms(self) -> int:
        """Position between start and target, in media milliseconds"""
        if self._started_at is None:
            return self._start_ms
        elapsed = (self.clock() - self._started_at) * 1000 * self.rate
        return int(min(self._start_ms + elapsed, self._target_ms))

    def start(self, start_ms: int, target_ms: int):
        """Start, or restart, counting from ``start_ms`` towards ``target_ms``"""
        if target_ms < start_ms:
            raise ValueError(f"target {target_ms} is before start {start_ms}")
        self.stop()
        self._start_ms = start_ms
        self._target_ms = target_ms
        self._started_at = self.clock()
        self._task = asyncio.ensure_future(self._run((target_ms - start_ms) / self.rate))

    async def _run(self, span_ms: float):
        await asyncio.sleep(span_ms / 1000)
        # Detach first so a callback that restarts the timer does not cancel us
        self._task = None
        self._started_at = None
        self._start_ms = self._target_ms
        self.on_target()

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._started_at is not None:
            self._start_ms = self.current_ms
            self._started_at = None


class IntervalTimer:
    """Calls ``callback`` every ``interval_ms`` until cancelled"""

    def __init__(self, interval_ms: int, callback: Callable[[], Any], name: str = "interval"):
        self.interval_ms = interval_ms
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        self.cancel()
        self._task = asyncio.ensure_future(self._run(self._generation))

    async def _run(self, generation: int):
        while generation == self._generation:
            await asyncio.sleep(self.interval_ms / 1000)
            if generation != self._generation:
                break
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{self.name} tick failed: {e}", exc_info=True)

    def cancel(self):
        self._generation += 1
        if self._task is not None:
            task, self._task = self._task, None
            # A tick that cancels its own timer finishes normally, then exits
            if task is not asyncio.current_task():
                task.cancel()
