# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Recording Controller

Mirrors the mixer's replay buffer, captures laps while it records, and turns
each acknowledged save into a Replay.

State only changes through the mixer's events: toggle_buffer() asks the
mixer to start or stop and waits for ReplayBufferStateChanged like everyone
else. A save moves the pending laps into a stash; the stash is paired with
the next ReplayBufferSaved event.
"""

import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from lapreplay.obs import protocol
from lapreplay.obs.client import RemoteControlClient

from .config import RecorderConfig
from .events import (
    CONNECTION_CLOSED,
    IDENTIFIED,
    REPLAY_BUFFER_SAVED,
    REPLAY_BUFFER_STATE_CHANGED,
    Event,
)
from .exceptions import RemoteError, RemoteRequestError, StashConflictError
from .models import LapMarker, Replay
from .timers import IntervalTimer

logger = logging.getLogger("lapreplay.recorder")


class BufferStatus(str, Enum):
    """Replay buffer state as seen by the operator"""

    NOT_CONNECTED = "NOT_CONNECTED"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    FETCHING = "FETCHING"
    NOT_RECORDING = "NOT_RECORDING"
    STARTING = "STARTING"
    RECORDING = "RECORDING"
    ALREADY_STARTED = "ALREADY_STARTED"
    PROCESSING = "PROCESSING"


OUTPUT_STATE_TO_STATUS = {
    protocol.OUTPUT_STARTING: BufferStatus.STARTING,
    protocol.OUTPUT_STARTED: BufferStatus.RECORDING,
    protocol.OUTPUT_STOPPING: BufferStatus.PROCESSING,
    protocol.OUTPUT_STOPPED: BufferStatus.NOT_RECORDING,
}


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class SaveResult:
    """What a save() call did"""

    requested: bool
    laps: List[LapMarker]
    overwritten: Optional[List[LapMarker]] = None

    @property
    def conflict(self) -> bool:
        """True when a still-unacknowledged stash was replaced"""
        return self.overwritten is not None


class RecordingController:
    """
    Lap capture against the mixer's replay buffer.

    Call attach() once the event loop is running and dispose() when done;
    subscriptions and timers live exactly that long.
    """

    def __init__(
        self,
        client: RemoteControlClient,
        config: Optional[RecorderConfig] = None,
        on_recorded: Optional[Callable[[Replay], Any]] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.client = client
        self.config = config or RecorderConfig()
        self.clock = clock

        self._status = BufferStatus.NOT_CONNECTED
        self._laps: List[LapMarker] = []
        self._unsaved: Optional[List[LapMarker]] = None
        self._record_started_at: Optional[float] = None
        self._first_lap_at: Optional[float] = None
        self._limit_check: Optional[IntervalTimer] = None
        self._recorded_callbacks: List[Callable[[Replay], Any]] = []
        self._status_callbacks: List[Callable[[BufferStatus], Any]] = []
        self._attached = False

        if on_recorded is not None:
            self._recorded_callbacks.append(on_recorded)

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def status(self) -> BufferStatus:
        return self._status

    @property
    def laps(self) -> List[LapMarker]:
        return list(self._laps)

    @property
    def unsaved_laps(self) -> Optional[List[LapMarker]]:
        return None if self._unsaved is None else list(self._unsaved)

    @property
    def record_started_at(self) -> Optional[float]:
        return self._record_started_at

    @property
    def deadline_armed(self) -> bool:
        return self._limit_check is not None and self._limit_check.running

    def remaining_ms(self) -> Optional[float]:
        """Time left before the forced save, or None when no lap is pending"""
        if self._first_lap_at is None:
            return None
        return (
            self._first_lap_at
            + self.config.max_replay_ms
            - self.config.limit_margin_ms
            - self.clock()
        )

    def on_recorded(self, callback: Callable[[Replay], Any]):
        """Register a callback (sync or async) for completed replays"""
        self._recorded_callbacks.append(callback)

    def on_status(self, callback: Callable[[BufferStatus], Any]):
        """Register a synchronous callback for buffer status changes"""
        self._status_callbacks.append(callback)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def attach(self, connected: Optional[bool] = None):
        """
        Subscribe to mixer events and fetch the initial buffer status.

        Args:
            connected: Current connection state; read from the client when omitted
        """
        if not self._attached:
            events = self.client.events
            events.subscribe(REPLAY_BUFFER_STATE_CHANGED, self._on_state_changed)
            events.subscribe(REPLAY_BUFFER_SAVED, self._on_saved)
            events.subscribe(IDENTIFIED, self._on_identified)
            events.subscribe(CONNECTION_CLOSED, self._on_connection_closed)
            self._attached = True

        if connected is None:
            connected = bool(getattr(self.client, "connected", False))
        if connected:
            await self.on_connection_changed(True)

    def dispose(self):
        """Unsubscribe and stop the deadline check"""
        if self._attached:
            events = self.client.events
            events.unsubscribe(REPLAY_BUFFER_STATE_CHANGED, self._on_state_changed)
            events.unsubscribe(REPLAY_BUFFER_SAVED, self._on_saved)
            events.unsubscribe(IDENTIFIED, self._on_identified)
            events.unsubscribe(CONNECTION_CLOSED, self._on_connection_closed)
            self._attached = False
        self._disarm_deadline()

    async def on_connection_changed(self, connected: bool):
        """Connection signal: refetch on connect, NOT_CONNECTED on loss"""
        if not connected:
            self._set_status(BufferStatus.NOT_CONNECTED)
            return

        self._set_status(BufferStatus.FETCHING)
        try:
            response = await self.client.call(protocol.GET_REPLAY_BUFFER_STATUS)
        except RemoteRequestError as e:
            if e.code == protocol.STATUS_INVALID_RESOURCE_STATE:
                logger.info("Replay buffer is not enabled on the mixer")
                self._set_status(BufferStatus.NOT_AVAILABLE)
            else:
                logger.error(f"Failed to fetch replay buffer status: {e}")
            return
        except RemoteError as e:
            logger.error(f"Failed to fetch replay buffer status: {e}")
            return

        # A state event or a disconnect may have arrived meanwhile
        if self._status != BufferStatus.FETCHING:
            return
        if response.get("outputActive"):
            self._set_status(BufferStatus.ALREADY_STARTED)
        else:
            self._set_status(BufferStatus.NOT_RECORDING)

    async def _on_identified(self, event: Event):
        await self.on_connection_changed(True)

    def _on_connection_closed(self, event: Event):
        self._set_status(BufferStatus.NOT_CONNECTED)

    def _on_state_changed(self, event: Event):
        if self._status == BufferStatus.NOT_CONNECTED:
            return
        output_state = event.data.get("outputState")
        status = OUTPUT_STATE_TO_STATUS.get(output_state)
        if status is None:
            logger.warning(f"Unknown replay buffer output state: {output_state}")
            return
        self._set_status(status)

    def _set_status(self, status: BufferStatus):
        previous = self._status
        if status == previous:
            return
        self._status = status
        logger.debug(f"Buffer status {previous.value} -> {status.value}")

        if status == BufferStatus.RECORDING:
            self._record_started_at = self.clock()
        elif previous == BufferStatus.RECORDING:
            # The unsaved stash survives: its save event may still arrive
            self._record_started_at = None
            self._laps = []
            self._first_lap_at = None
            self._disarm_deadline()

        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Status callback failed: {e}", exc_info=True)

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def toggle_buffer(self) -> bool:
        """Ask the mixer to start or stop the buffer; errors are only logged"""
        try:
            await self.client.call(protocol.TOGGLE_REPLAY_BUFFER)
            return True
        except Exception as e:
            logger.error(f"Failed to toggle replay buffer: {e}")
            return False

    def add_lap(self) -> Optional[LapMarker]:
        """
        Mark a lap at the current recording time.

        Returns:
            The new lap, or None when the buffer is not recording
        """
        if self._status != BufferStatus.RECORDING or self._record_started_at is None:
            logger.debug(f"Lap ignored while {self._status.value}")
            return None

        now = self.clock()
        lap = LapMarker(
            time_ms=int(now - self._record_started_at),
            duration_ms=self.config.lap_duration_ms,
        )
        first = not self._laps
        self._laps.append(lap)
        if first:
            self._arm_deadline(now)
        logger.info(f"Lap {len(self._laps)} at {lap.time_ms} ms")
        return lap

    async def save(self) -> SaveResult:
        """
        Stash the pending laps and ask the mixer to save its buffer.

        When the request fails the laps are restored and the autosave
        deadline is re-armed from the oldest of them.

        Raises:
            StashConflictError: If a previous save is unacknowledged and the
                stash policy is ``reject``
        """
        return await self._save(rearm=True)

    async def _save(self, rearm: bool) -> SaveResult:
        overwritten = None
        if self._unsaved is not None:
            if self.config.stash_policy == "reject":
                raise StashConflictError(
                    "A previous save has not been acknowledged yet",
                    pending_laps=len(self._unsaved),
                )
            logger.warning(
                f"Overwriting {len(self._unsaved)} unsaved lap(s) from a previous save"
            )
            overwritten = self._unsaved

        laps = self._laps
        first_lap_at = self._first_lap_at
        self._unsaved = laps
        self._laps = []
        self._first_lap_at = None
        self._disarm_deadline()

        try:
            await self.client.call(protocol.SAVE_REPLAY_BUFFER)
        except Exception as e:
            logger.error(f"Failed to save replay buffer: {e}")
            if self._unsaved is laps:
                self._unsaved = overwritten
                self._laps = laps + self._laps
                self._restore_deadline(first_lap_at, rearm)
            return SaveResult(requested=False, laps=list(laps), overwritten=overwritten)

        logger.info(f"Save requested with {len(laps)} lap(s)")
        return SaveResult(requested=True, laps=list(laps), overwritten=overwritten)

    async def _on_saved(self, event: Event):
        path = event.data.get("savedReplayPath")
        if self._unsaved is None:
            logger.warning(f"Replay saved to {path} but no unsaved laps were found")
            return

        replay = Replay(path=path, laps=list(self._unsaved))
        self._unsaved = None
        logger.info(f"Replay saved: {path} ({len(replay.laps)} lap(s))")

        for callback in list(self._recorded_callbacks):
            try:
                result = callback(replay)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Replay callback failed: {e}", exc_info=True)

    # =========================================================================
    # Autosave deadline
    # =========================================================================

    def _arm_deadline(self, first_lap_at: float):
        self._first_lap_at = first_lap_at
        if not self.config.auto_save:
            return
        self._disarm_deadline()
        self._limit_check = IntervalTimer(
            self.config.limit_check_interval_ms,
            self._check_deadline,
            name="autosave deadline",
        )
        self._limit_check.start()

    def _restore_deadline(self, first_lap_at: Optional[float], rearm: bool):
        # Laps marked while the request was in flight may have armed a later anchor
        if first_lap_at is None or self._status != BufferStatus.RECORDING:
            return
        if self._first_lap_at is not None:
            first_lap_at = min(first_lap_at, self._first_lap_at)
        if rearm:
            self._arm_deadline(first_lap_at)
        else:
            # A failed forced save is not retried until the next manual save
            self._first_lap_at = first_lap_at
            self._disarm_deadline()

    def _disarm_deadline(self):
        if self._limit_check is not None:
            self._limit_check.cancel()
            self._limit_check = None

    async def _check_deadline(self):
        remaining = self.remaining_ms()
        if remaining is None or remaining > 0:
            return
        logger.info("Replay buffer limit reached, forcing save")
        self._disarm_deadline()
        try:
            await self._save(rearm=False)
        except StashConflictError as e:
            logger.error(f"Forced save skipped: {e}")
