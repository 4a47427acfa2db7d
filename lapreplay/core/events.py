# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Event bus shared by the mixer client and the controllers.

Callbacks subscribe to an event type. Coroutine callbacks run as their own
tasks so a slow handler (one that issues requests of its own) never blocks
the connection that is delivering events. Waits on a specific event go
through EventListener, which buffers matching events from the moment it is
opened.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

logger = logging.getLogger("lapreplay.events")

# Mixer events
REPLAY_BUFFER_STATE_CHANGED = "ReplayBufferStateChanged"
REPLAY_BUFFER_SAVED = "ReplayBufferSaved"
SCENE_TRANSITION_STARTED = "SceneTransitionStarted"
SCENE_TRANSITION_ENDED = "SceneTransitionEnded"
SCENE_LIST_CHANGED = "SceneListChanged"

# Connection pseudo-events published by the client
IDENTIFIED = "Identified"
CONNECTION_CLOSED = "ConnectionClosed"


class Event:
    def __init__(self, type: str, data: Optional[Dict[str, Any]] = None):
        self.type = type
        self.data = data or {}

    def __repr__(self) -> str:
        return f"<Event {self.type} {self.data}>"


Callback = Callable[[Event], Any]
Predicate = Callable[[Event], Union[bool, Awaitable[bool]]]


class EventListener:
    """Buffers events of one type until they are consumed with next()"""

    def __init__(self, bus: "EventBus", event_type: str):
        self.bus = bus
        self.event_type = event_type
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self._closed = False
        bus.subscribe(event_type, self._push)

    def _push(self, event: Event):
        self._queue.put_nowait(event)

    async def next(
        self, predicate: Optional[Predicate] = None, timeout: Optional[float] = None
    ) -> Event:
        """
        Wait for the next event accepted by ``predicate``.

        Rejected events are dropped. ``predicate`` may be a coroutine function.

        Raises:
            asyncio.TimeoutError: If ``timeout`` seconds pass first
        """

        async def _wait() -> Event:
            while True:
                event = await self._queue.get()
                if predicate is None:
                    return event
                matched = predicate(event)
                if inspect.isawaitable(matched):
                    matched = await matched
                if matched:
                    return event

        if timeout is None:
            return await _wait()
        return await asyncio.wait_for(_wait(), timeout)

    def close(self):
        if not self._closed:
            self._closed = True
            self.bus.unsubscribe(self.event_type, self._push)

    def __enter__(self) -> "EventListener":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Callback]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event_type: str, callback: Callback):
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callback):
        callbacks = self._subscribers.get(event_type)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def subscriber_count(self, event_type: str) -> int:
        return len(self._subscribers.get(event_type, []))

    async def emit(self, event: Event):
        # Copy: listeners may unsubscribe while being notified
        for callback in list(self._subscribers.get(event.type, [])):
            try:
                result = callback(event)
            except Exception as e:
                logger.error(f"Subscriber error on {event.type}: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Subscriber task failed: {task.exception()}",
                exc_info=task.exception(),
            )

    def listen(self, event_type: str) -> EventListener:
        """Start buffering events of ``event_type``; close() the listener when done"""
        return EventListener(self, event_type)

    async def wait_for(
        self,
        event_type: str,
        predicate: Optional[Predicate] = None,
        timeout: Optional[float] = None,
    ) -> Event:
        with self.listen(event_type) as listener:
            return await listener.next(predicate, timeout)

    async def drain(self):
        """Wait for subscriber tasks spawned so far"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self):
        for task in list(self._tasks):
            task.cancel()
        self._subscribers.clear()
