# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Playback Controller

Plays a queue of segments across a set of playback adapters.

State machine:
    NOT_READY -> PREPARING -> READY -> STARTING -> PLAYING(0..n-1) -> ENDING -> NOT_READY

prepare() loads the first segment on every adapter, start() makes the
targets visible and plays segment 0. A countdown timer spans each segment;
when it reaches the segment end the controller seeks to the next one or,
after the last, pauses and ends. Every step fans out to all adapters at once
and waits for all of them; one adapter failing never stops the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence

from .base_adapter import AdapterOutcome, AdapterStep, PlaybackAdapter, fan_out
from .exceptions import EmptyQueueError, InvalidTransitionError, PlaybackError
from .models import PlayQueueItem
from .timers import CountdownTimer

logger = logging.getLogger("lapreplay.player")


class PlaybackStep(str, Enum):
    NOT_READY = "NOT_READY"
    PREPARING = "PREPARING"
    READY = "READY"
    STARTING = "STARTING"
    PLAYING = "PLAYING"
    ENDING = "ENDING"


@dataclass(frozen=True)
class PlaybackState:
    """Current step; ``index`` is the playing queue index and set only while PLAYING"""

    step: PlaybackStep
    index: Optional[int] = None

    def __post_init__(self):
        if (self.step == PlaybackStep.PLAYING) != (self.index is not None):
            raise ValueError(f"index is required exactly when PLAYING: {self}")

    def __str__(self) -> str:
        if self.index is None:
            return self.step.value
        return f"{self.step.value}({self.index})"


TRANSITIONS: Dict[PlaybackStep, FrozenSet[PlaybackStep]] = {
    PlaybackStep.NOT_READY: frozenset({PlaybackStep.PREPARING}),
    PlaybackStep.PREPARING: frozenset({PlaybackStep.READY, PlaybackStep.NOT_READY}),
    PlaybackStep.READY: frozenset(
        {PlaybackStep.PREPARING, PlaybackStep.STARTING, PlaybackStep.NOT_READY}
    ),
    PlaybackStep.STARTING: frozenset({PlaybackStep.PLAYING, PlaybackStep.NOT_READY}),
    PlaybackStep.PLAYING: frozenset(
        {PlaybackStep.PLAYING, PlaybackStep.ENDING, PlaybackStep.NOT_READY}
    ),
    PlaybackStep.ENDING: frozenset({PlaybackStep.NOT_READY}),
}

BUSY_STEPS = frozenset({PlaybackStep.STARTING, PlaybackStep.PLAYING, PlaybackStep.ENDING})


class PlaybackController:
    """
    Drives a play queue across playback adapters.

    Args:
        queue: Segments in playback order
        adapters: Targets to drive (see select_adapters)
        rate: Countdown speed; values above 1.0 play the schedule faster
    """

    def __init__(
        self,
        queue: Optional[Sequence[PlayQueueItem]] = None,
        adapters: Optional[Sequence[PlaybackAdapter]] = None,
        rate: float = 1.0,
    ):
        self._queue: List[PlayQueueItem] = list(queue or [])
        self._adapters: List[PlaybackAdapter] = list(adapters or [])
        self._state = PlaybackState(PlaybackStep.NOT_READY)
        self._timer = CountdownTimer(self._on_target, rate=rate)
        self._task: Optional[asyncio.Task] = None
        self._aborted_task: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()
        self._finished.set()
        self._status_callbacks: List[Callable[[PlaybackState], Any]] = []
        self.last_outcomes: List[AdapterOutcome] = []

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def queue(self) -> List[PlayQueueItem]:
        return list(self._queue)

    @property
    def adapters(self) -> List[PlaybackAdapter]:
        return list(self._adapters)

    @property
    def current_item(self) -> Optional[PlayQueueItem]:
        """The playing item, or the first queued one when idle"""
        if self._state.index is not None:
            return self._queue[self._state.index]
        return self._queue[0] if self._queue else None

    @property
    def elapsed_ms(self) -> int:
        """Media position of the countdown"""
        return self._timer.current_ms

    def on_status(self, callback: Callable[[PlaybackState], Any]):
        self._status_callbacks.append(callback)

    async def wait_until_finished(self, timeout: Optional[float] = None) -> bool:
        """Wait for the running playback to end or be aborted"""
        try:
            await asyncio.wait_for(self._finished.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _transition(self, step: PlaybackStep, index: Optional[int] = None):
        if step not in TRANSITIONS[self._state.step]:
            raise InvalidTransitionError(str(self._state), step.value)
        previous, self._state = self._state, PlaybackState(step, index)
        logger.debug(f"{previous} -> {self._state}")
        for callback in list(self._status_callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Status callback failed: {e}", exc_info=True)

    def _check_transition(self, step: PlaybackStep):
        if step not in TRANSITIONS[self._state.step]:
            raise InvalidTransitionError(str(self._state), step.value)

    # =========================================================================
    # Configuration
    # =========================================================================

    def set_queue(self, queue: Sequence[PlayQueueItem]):
        """
        Replace the queue.

        A prepared (or preparing) controller drops back to NOT_READY since
        the first item may have changed.

        Raises:
            PlaybackError: While starting, playing or ending
        """
        if self._state.step in BUSY_STEPS:
            raise PlaybackError(f"Cannot replace the queue while {self._state}")
        self._queue = list(queue)
        self._drop_preparation()

    def set_adapters(self, adapters: Sequence[PlaybackAdapter]):
        """Replace the adapter set; same rules as set_queue()"""
        if self._state.step in BUSY_STEPS:
            raise PlaybackError(f"Cannot replace adapters while {self._state}")
        self._adapters = list(adapters)
        self._drop_preparation()

    def _drop_preparation(self):
        if self._state.step == PlaybackStep.PREPARING:
            self._cancel_task()
        if self._state.step in (PlaybackStep.PREPARING, PlaybackStep.READY):
            self._transition(PlaybackStep.NOT_READY)

    async def check_configuration(self) -> bool:
        """True when every adapter reports it can be driven"""
        outcomes = await self._fan_out(AdapterStep.CHECK_CONFIGURATION)
        return all(outcome.success and outcome.value is not False for outcome in outcomes)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _fan_out(self, step: AdapterStep, *args: Any) -> List[AdapterOutcome]:
        outcomes = await fan_out(self._adapters, step, *args)
        self.last_outcomes = outcomes
        for outcome in outcomes:
            if outcome.success and not outcome.converged:
                logger.warning(
                    f"{outcome.adapter_name}.{step.value} completed without converging"
                )
        return outcomes

    async def _run(self, coro: Awaitable[Any], default: Any = None) -> Any:
        """Run a lifecycle coroutine as the abortable in-flight task"""
        task = asyncio.ensure_future(coro)
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._aborted_task is task:
                return default
            raise
        finally:
            if self._task is task:
                self._task = None

    async def prepare(self) -> List[AdapterOutcome]:
        """
        Load the first queue item on every adapter.

        Returns:
            One outcome per adapter (empty if aborted)

        Raises:
            EmptyQueueError: If the queue is empty
            InvalidTransitionError: Unless NOT_READY or READY
        """
        if not self._queue:
            raise EmptyQueueError("Cannot prepare an empty queue")
        self._check_transition(PlaybackStep.PREPARING)
        return await self._run(self._prepare(), default=[])

    async def _prepare(self) -> List[AdapterOutcome]:
        self._transition(PlaybackStep.PREPARING)
        first = self._queue[0]
        logger.info(f"Preparing {first.path} at {first.start_ms} ms")
        outcomes = await self._fan_out(AdapterStep.PREPARE, first.path, first.start_ms)
        self._transition(PlaybackStep.READY)
        logger.info("Replay is ready")
        return outcomes

    async def start(self) -> bool:
        """
        Start playback from READY.

        Returns:
            False (state untouched) when not READY or when aborted
        """
        if self._state.step != PlaybackStep.READY:
            if self._state.step == PlaybackStep.PLAYING:
                logger.error("Replay is already playing")
            else:
                logger.error(f"Replay is not ready ({self._state})")
            return False
        self._finished.clear()
        started = False
        try:
            started = await self._run(self._start(), default=False)
        finally:
            if not started:
                self._finished.set()
        return started

    async def _start(self) -> bool:
        self._transition(PlaybackStep.STARTING)
        await self._fan_out(AdapterStep.START)
        logger.info("Start replay")
        await self.play_item(0)
        return True

    async def play_item(self, index: int):
        """
        Play queue item ``index``.

        Raises:
            IndexError: If ``index`` is outside the queue
            InvalidTransitionError: Unless STARTING or PLAYING
        """
        if index < 0 or index >= len(self._queue):
            raise IndexError(f"Queue index {index} out of range (0..{len(self._queue) - 1})")
        self._check_transition(PlaybackStep.PLAYING)

        item = self._queue[index]
        if index != 0:
            logger.debug(f"[{index}] Seek to {item.start_ms} ms")
            await self._fan_out(AdapterStep.SEEK, item.start_ms)
        logger.debug(f"[{index}] Play {item.name}")
        await self._fan_out(AdapterStep.RESUME)

        self._timer.start(item.start_ms, item.end_ms)
        self._transition(PlaybackStep.PLAYING, index)

    def _on_target(self):
        if self._state.step != PlaybackStep.PLAYING:
            return
        index = self._state.index
        self._task = asyncio.ensure_future(self._advance(index))
        self._task.add_done_callback(self._advance_done)

    def _advance_done(self, task: asyncio.Task):
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Playback step failed: {task.exception()}", exc_info=task.exception()
            )

    async def _advance(self, index: int):
        logger.debug(f"[{index}] End")
        if index < len(self._queue) - 1:
            await self.play_item(index + 1)
            return

        self._timer.stop()
        await self._fan_out(AdapterStep.PAUSE)
        self._transition(PlaybackStep.ENDING)
        await self._fan_out(AdapterStep.END)
        self._transition(PlaybackStep.NOT_READY)
        self._finished.set()
        logger.info("Replay finished")

    def _cancel_task(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return None
        self._aborted_task = task
        task.cancel()
        return task

    async def abort(self):
        """Cancel whatever is in flight, stop the countdown and return to NOT_READY"""
        task = self._cancel_task()
        self._timer.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if self._state.step != PlaybackStep.NOT_READY:
            logger.info(f"Aborted while {self._state}")
            self._transition(PlaybackStep.NOT_READY)
        self._finished.set()

    def dispose(self):
        self._cancel_task()
        self._timer.stop()
        self._status_callbacks.clear()
        self._finished.set()


__all__ = [
    "PlaybackStep",
    "PlaybackState",
    "PlaybackController",
    "TRANSITIONS",
]
