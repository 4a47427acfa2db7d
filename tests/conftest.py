# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Shared fixtures: an in-memory OBS that behaves like the real one, lag included"""

import asyncio
import os
from typing import Any, Dict, List, Optional, Tuple

import pytest

os.environ.setdefault("LAPREPLAY_NO_FILE_LOGS", "true")

from lapreplay.core.config import RecorderConfig, RetryPolicy, SyncConfig
from lapreplay.core.events import (
    REPLAY_BUFFER_SAVED,
    REPLAY_BUFFER_STATE_CHANGED,
    SCENE_TRANSITION_ENDED,
    SCENE_TRANSITION_STARTED,
    Event,
    EventBus,
)
from lapreplay.core.exceptions import RemoteRequestError
from lapreplay.core.models import RemoteTargetSource
from lapreplay.obs import protocol
from lapreplay.obs.client import RemoteControlClient

MEDIA_STATE_NONE = "OBS_MEDIA_STATE_NONE"
MEDIA_STATE_OPENING = "OBS_MEDIA_STATE_OPENING"

REPLAY_SCENE = "Replay"
REPLAY_ITEM = "Replay VLC"
REPLAY_ITEM_ID = 7


class FakeObsClient(RemoteControlClient):
    """
    In-memory mixer.

    Media commands take effect with configurable lag:
    - load_polls: status polls before a newly set file reports cursor/duration
    - pause_lag: status polls after a pause command that still report playing
    - drift_polls: paused status polls whose cursor still moves
    - ignore_pause: never pause at all
    Scene switches emit SceneTransitionStarted/Ended unless auto_transitions is off.
    """

    def __init__(self):
        self.events = EventBus()
        self.connected = True
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.batches: List[List[Dict[str, Any]]] = []
        self.failures: Dict[str, RemoteRequestError] = {}

        # Replay buffer
        self.buffer_enabled = True
        self.buffer_active = False
        self.emit_saved = True
        self.saved_count = 0

        # Scenes
        self.scenes: Dict[str, List[Dict[str, Any]]] = {
            "Game": [
                {
                    "sourceName": "Capture",
                    "sceneItemId": 1,
                    "inputKind": "game_capture",
                    "isGroup": False,
                }
            ],
            REPLAY_SCENE: [
                {
                    "sourceName": REPLAY_ITEM,
                    "sceneItemId": REPLAY_ITEM_ID,
                    "inputKind": "vlc_source",
                    "isGroup": False,
                },
                {
                    "sourceName": "Overlay",
                    "sceneItemId": 8,
                    "inputKind": None,
                    "isGroup": True,
                },
            ],
        }
        self.program_scene = "Game"
        self.auto_transitions = True
        self.transition_ms = 5
        self.enabled: Dict[int, bool] = {}

        # Media
        self.playlist: Optional[str] = None
        self.media_state = MEDIA_STATE_NONE
        self.media_cursor: Optional[int] = None
        self.media_duration: Optional[int] = None
        self.load_polls = 1
        self.pause_lag = 0
        self.drift_polls = 0
        self.ignore_pause = False
        self.play_step_ms = 40
        self._loading = 0
        self._pausing: Optional[int] = None
        self._drifting = 0

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def request_types(self) -> List[str]:
        return [request_type for request_type, _ in self.calls]

    def requests_of(self, request_type: str) -> List[Dict[str, Any]]:
        return [data for kind, data in self.calls if kind == request_type]

    # -------------------------------------------------------------------------
    # RemoteControlClient
    # -------------------------------------------------------------------------

    async def close(self):
        self.connected = False

    async def call(self, request_type: str, request_data: Optional[Dict[str, Any]] = None):
        data = request_data or {}
        self.calls.append((request_type, data))
        if request_type in self.failures:
            raise self.failures[request_type]
        handler = getattr(self, f"_on_{request_type}", None)
        if handler is None:
            raise RemoteRequestError(request_type, code=204, comment="Unknown request type")
        result = handler(data)
        if asyncio.iscoroutine(result):
            result = await result
        return result or {}

    async def call_batch(self, requests, halt_on_failure=False):
        self.batches.append(list(requests))
        results = []
        for request in requests:
            request_type = request["requestType"]
            try:
                data = await self.call(request_type, request.get("requestData"))
                status = {"result": True, "code": protocol.STATUS_SUCCESS}
            except RemoteRequestError as e:
                data = None
                status = {"result": False, "code": e.code, "comment": e.comment}
            results.append(
                {"requestType": request_type, "requestStatus": status, "responseData": data}
            )
            if halt_on_failure and not status["result"]:
                break
        return results

    # -------------------------------------------------------------------------
    # Replay buffer
    # -------------------------------------------------------------------------

    def _buffer_unavailable(self, request_type):
        return RemoteRequestError(
            request_type,
            code=protocol.STATUS_INVALID_RESOURCE_STATE,
            comment="Replay buffer is not available",
        )

    def _on_GetReplayBufferStatus(self, data):
        if not self.buffer_enabled:
            raise self._buffer_unavailable("GetReplayBufferStatus")
        return {"outputActive": self.buffer_active}

    async def _on_ToggleReplayBuffer(self, data):
        if not self.buffer_enabled:
            raise self._buffer_unavailable("ToggleReplayBuffer")
        if self.buffer_active:
            await self.set_buffer_state(protocol.OUTPUT_STOPPING)
            await self.set_buffer_state(protocol.OUTPUT_STOPPED)
        else:
            await self.set_buffer_state(protocol.OUTPUT_STARTING)
            await self.set_buffer_state(protocol.OUTPUT_STARTED)

    async def _on_SaveReplayBuffer(self, data):
        if not self.buffer_active:
            raise self._buffer_unavailable("SaveReplayBuffer")
        self.saved_count += 1
        if self.emit_saved:
            await self.emit_replay_saved(f"/replays/replay-{self.saved_count}.mkv")

    async def set_buffer_state(self, output_state: str):
        self.buffer_active = output_state in (
            protocol.OUTPUT_STARTING,
            protocol.OUTPUT_STARTED,
        )
        await self.events.emit(
            Event(
                REPLAY_BUFFER_STATE_CHANGED,
                {"outputActive": self.buffer_active, "outputState": output_state},
            )
        )

    async def emit_replay_saved(self, path: str):
        await self.events.emit(Event(REPLAY_BUFFER_SAVED, {"savedReplayPath": path}))

    # -------------------------------------------------------------------------
    # Scenes
    # -------------------------------------------------------------------------

    def _on_GetSceneList(self, data):
        return {
            "currentProgramSceneName": self.program_scene,
            "scenes": [{"sceneName": name} for name in self.scenes],
        }

    def _on_GetSceneItemList(self, data):
        scene_name = data.get("sceneName")
        if scene_name not in self.scenes:
            raise RemoteRequestError(
                "GetSceneItemList", code=600, comment=f"No source was found by the name of `{scene_name}`."
            )
        return {"sceneItems": [dict(item) for item in self.scenes[scene_name]]}

    def _on_GetCurrentProgramScene(self, data):
        return {"currentProgramSceneName": self.program_scene}

    def _on_SetCurrentProgramScene(self, data):
        self.program_scene = data["sceneName"]
        if self.auto_transitions:
            asyncio.ensure_future(self._emit_transition())

    def _on_SetSceneItemEnabled(self, data):
        self.enabled[data["sceneItemId"]] = data["sceneItemEnabled"]

    async def _emit_transition(self):
        await asyncio.sleep(0)
        await self.events.emit(Event(SCENE_TRANSITION_STARTED, {"transitionName": "Fade"}))
        await asyncio.sleep(self.transition_ms / 1000)
        await self.events.emit(Event(SCENE_TRANSITION_ENDED, {"transitionName": "Fade"}))

    async def operator_transition(self, scene_name: str):
        """Simulate the operator switching scenes by hand"""
        self.program_scene = scene_name
        await self._emit_transition()

    # -------------------------------------------------------------------------
    # Media
    # -------------------------------------------------------------------------

    def _on_SetInputSettings(self, data):
        playlist = data["inputSettings"]["playlist"]
        self.playlist = playlist[0]["value"]
        self.media_state = MEDIA_STATE_OPENING
        self.media_cursor = None
        self.media_duration = None
        self._loading = self.load_polls
        self._pausing = None
        self._drifting = 0

    def _on_TriggerMediaInputAction(self, data):
        action = data["mediaAction"]
        if action == protocol.MEDIA_ACTION_PLAY:
            self._pausing = None
            self._drifting = 0
            if self.media_duration is not None:
                self.media_state = protocol.MEDIA_STATE_PLAYING
        elif action == protocol.MEDIA_ACTION_PAUSE:
            if self.ignore_pause or self.media_state != protocol.MEDIA_STATE_PLAYING:
                return
            if self.pause_lag == 0:
                self._pause_now()
            elif self._pausing is None:
                self._pausing = self.pause_lag

    def _pause_now(self):
        self.media_state = protocol.MEDIA_STATE_PAUSED
        self._pausing = None
        self._drifting = self.drift_polls

    def _on_SetMediaInputCursor(self, data):
        self.media_cursor = data["mediaCursor"]

    def _on_GetMediaInputStatus(self, data):
        if self.media_state == MEDIA_STATE_OPENING:
            if self._loading > 0:
                self._loading -= 1
            else:
                self.media_state = protocol.MEDIA_STATE_PLAYING
                self.media_duration = 60000
                self.media_cursor = 0

        if self.media_state == protocol.MEDIA_STATE_PLAYING:
            self.media_cursor += self.play_step_ms
            if self._pausing is not None:
                self._pausing -= 1
                if self._pausing <= 0:
                    self._pause_now()
        elif self.media_state == protocol.MEDIA_STATE_PAUSED and self._drifting > 0:
            self._drifting -= 1
            self.media_cursor += self.play_step_ms

        return {
            "mediaState": self.media_state,
            "mediaCursor": self.media_cursor,
            "mediaDuration": self.media_duration,
        }


class FakeClock:
    """Millisecond clock advanced by hand"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


@pytest.fixture
def obs():
    return FakeObsClient()


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def replay_source():
    return RemoteTargetSource(
        scene_name=REPLAY_SCENE, item_name=REPLAY_ITEM, scene_item_id=REPLAY_ITEM_ID
    )


@pytest.fixture
def fast_sync():
    """Production attempt budgets with no waiting between attempts"""
    return SyncConfig(
        load_poll=RetryPolicy(attempts=10, interval_ms=0),
        pause_poll=RetryPolicy(attempts=20, interval_ms=0),
        seek_verify=RetryPolicy(attempts=10, interval_ms=0),
        scene_check=RetryPolicy(attempts=5, interval_ms=0),
    )


@pytest.fixture
def recorder_config():
    return RecorderConfig(limit_check_interval_ms=5)
