# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Remote Media Sync Adapter

Drives a VLC media source hosted by the mixer. The mixer applies media
commands asynchronously and does not acknowledge them, so every step that
matters is confirmed by polling GetMediaInputStatus until the reported state
matches what was commanded. Polls are best effort: exhaustion is logged and
reported in a ConvergenceResult, never raised.

Usage:
    adapter = RemoteMediaSyncAdapter(client, source, options)
    report = await adapter.on_prepare("/replays/r1.mkv", 2000)
    await adapter.on_start()
    ...
    await adapter.on_end()
"""

import asyncio
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Optional

from lapreplay.obs import protocol
from lapreplay.obs.client import RemoteControlClient, failed_results

from ..base_adapter import PlaybackAdapter
from ..config import AdapterOptions, SyncConfig
from ..events import SCENE_TRANSITION_ENDED, SCENE_TRANSITION_STARTED, Event
from ..exceptions import RemoteError
from ..models import RemoteTargetSource
from ..retry import ConvergenceResult, poll_until

# One lock per (client, item_name): commands to one source never interleave
_source_locks: "weakref.WeakKeyDictionary[Any, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)

# No paused cursor seen yet; a null cursor is a real observation
_NO_CURSOR = object()


def source_lock(client: RemoteControlClient, item_name: str) -> asyncio.Lock:
    """Lock serializing every adapter that targets ``item_name`` on ``client``"""
    locks = _source_locks.get(client)
    if locks is None:
        locks = {}
        _source_locks[client] = locks
    if item_name not in locks:
        locks[item_name] = asyncio.Lock()
    return locks[item_name]


@dataclass
class PrepareReport:
    """How each convergence step of on_prepare() went"""

    loaded: ConvergenceResult
    paused: ConvergenceResult
    seeked: ConvergenceResult

    @property
    def success(self) -> bool:
        return bool(self.loaded and self.paused and self.seeked)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": self.loaded.to_dict(),
            "paused": self.paused.to_dict(),
            "seeked": self.seeked.to_dict(),
        }


class RemoteMediaSyncAdapter(PlaybackAdapter):
    """Playback adapter for a mixer-hosted VLC source"""

    def __init__(
        self,
        client: RemoteControlClient,
        source: RemoteTargetSource,
        options: Optional[AdapterOptions] = None,
        sync: Optional[SyncConfig] = None,
        adapter_name: Optional[str] = None,
    ):
        super().__init__(adapter_name or f"media_source[{source.item_name}]")
        self.client = client
        self.source = source
        self.options = options or AdapterOptions()
        self.sync = sync or SyncConfig()

    @property
    def lock(self) -> asyncio.Lock:
        return source_lock(self.client, self.source.item_name)

    # =========================================================================
    # Requests
    # =========================================================================

    def _enabled_request(self, enabled: bool) -> Dict[str, Any]:
        return {
            "sceneName": self.source.scene_name,
            "sceneItemId": self.source.scene_item_id,
            "sceneItemEnabled": enabled,
        }

    def _action_request(self, action: str) -> Dict[str, Any]:
        return {"inputName": self.source.item_name, "mediaAction": action}

    async def _set_enabled(self, enabled: bool):
        await self.client.call(
            protocol.SET_SCENE_ITEM_ENABLED, self._enabled_request(enabled)
        )

    async def _media_action(self, action: str):
        await self.client.call(
            protocol.TRIGGER_MEDIA_INPUT_ACTION, self._action_request(action)
        )

    async def _set_cursor(self, ms: int):
        await self.client.call(
            protocol.SET_MEDIA_INPUT_CURSOR,
            {"inputName": self.source.item_name, "mediaCursor": ms},
        )

    async def _media_status(self) -> Dict[str, Any]:
        return await self.client.call(
            protocol.GET_MEDIA_INPUT_STATUS, {"inputName": self.source.item_name}
        )

    async def _switch_scene(self, scene_name: str):
        await self.client.call(
            protocol.SET_CURRENT_PROGRAM_SCENE, {"sceneName": scene_name}
        )

    async def _program_is_target(self) -> bool:
        current = await self.client.call(protocol.GET_CURRENT_PROGRAM_SCENE)
        return current.get("currentProgramSceneName") == self.source.scene_name

    @property
    def _transition_timeout(self) -> Optional[float]:
        timeout_ms = self.sync.transition_timeout_ms
        return None if timeout_ms is None else timeout_ms / 1000

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def on_check_configuration(self) -> bool:
        """True when the item exists in its scene"""
        try:
            response = await self.client.call(
                protocol.GET_SCENE_ITEM_LIST, {"sceneName": self.source.scene_name}
            )
        except RemoteError as e:
            self.logger.error(f"Configuration check failed for {self.source}: {e}")
            return False

        names = [item.get("sourceName") for item in response.get("sceneItems", [])]
        if self.source.item_name not in names:
            self.logger.warning(f"Source {self.source} not found")
            return False
        return True

    async def on_prepare(self, path: str, first_start_ms: int) -> PrepareReport:
        """
        Load ``path`` into the hidden source and park it at ``first_start_ms``.

        Returns:
            PrepareReport with the load, pause and seek convergence results
        """
        async with self.lock:
            results = await self.client.call_batch(
                [
                    {
                        "requestType": protocol.SET_SCENE_ITEM_ENABLED,
                        "requestData": self._enabled_request(False),
                    },
                    {
                        "requestType": protocol.SET_INPUT_SETTINGS,
                        "requestData": {
                            "inputName": self.source.item_name,
                            "inputSettings": {
                                "playlist": [
                                    {"hidden": False, "selected": False, "value": path}
                                ]
                            },
                        },
                    },
                    {
                        "requestType": protocol.TRIGGER_MEDIA_INPUT_ACTION,
                        "requestData": self._action_request(protocol.MEDIA_ACTION_PLAY),
                    },
                ]
            )
            for failed in failed_results(results):
                self.logger.warning(
                    f"{failed.get('requestType')} failed: {failed.get('requestStatus')}"
                )

            self.logger.debug(f"Waiting for {path} to load")
            loaded = await poll_until(
                self._probe_loaded,
                self.sync.load_poll.attempts,
                self.sync.load_poll.interval_ms,
                name="load",
            )
            if loaded:
                self.logger.debug("Media loaded")
            else:
                self.logger.warning(
                    f"Media did not report loaded after {loaded.attempts} attempts"
                )

            paused = await self._converge_pause()

            await self._set_cursor(first_start_ms)
            seeked = await poll_until(
                self._cursor_probe(first_start_ms),
                self.sync.seek_verify.attempts,
                self.sync.seek_verify.interval_ms,
                name="seek verify",
            )
            if not seeked:
                self.logger.error(
                    f"Preparation incomplete: cursor at {seeked.value}, "
                    f"expected {first_start_ms}"
                )

        report = PrepareReport(loaded=loaded, paused=paused, seeked=seeked)
        self.logger.debug(f"Prepared {path}: {report.to_dict()}")
        return report

    async def _probe_loaded(self):
        status = await self._media_status()
        cursor = status.get("mediaCursor")
        duration = status.get("mediaDuration")
        done = (
            cursor is not None
            and duration is not None
            and cursor > 0
            and duration > 0
        )
        return done, cursor

    def _cursor_probe(self, expected_ms: int):
        async def probe():
            cursor = (await self._media_status()).get("mediaCursor")
            return cursor == expected_ms, cursor

        return probe

    async def on_start(self):
        """Show the source, bring its scene to program, then play"""
        options = self.options.in_
        async with self.lock:
            await self._set_enabled(True)

            timed_start = (
                options.play_before_transition
                and options.transition_point_ms is not None
            )
            # Listen before switching so a fast transition is not missed
            event_type = (
                SCENE_TRANSITION_STARTED if timed_start else SCENE_TRANSITION_ENDED
            )
            with self.client.events.listen(event_type) as listener:
                if options.auto_transition:
                    await self._switch_scene(self.source.scene_name)
                else:
                    self.logger.info(
                        "Auto transition is off, switch to "
                        f"'{self.source.scene_name}' manually"
                    )

                if timed_start:
                    if not options.auto_transition:
                        await self._await_transition(
                            listener, self._transition_started_into_target
                        )
                    await asyncio.sleep(options.transition_point_ms / 1000)
                else:
                    await self._await_transition(
                        listener, self._transition_ended_into_target
                    )

            await self._media_action(protocol.MEDIA_ACTION_PLAY)

    async def _transition_started_into_target(self, event: Event) -> bool:
        result = await poll_until(
            self._probe_program_scene,
            self.sync.scene_check.attempts,
            self.sync.scene_check.interval_ms,
            name="scene check",
        )
        if not result:
            self.logger.info(
                "A transition started, but not into the scene holding the replay"
            )
        return result.success

    async def _transition_ended_into_target(self, event: Event) -> bool:
        if await self._program_is_target():
            return True
        self.logger.info(
            "A transition ended, but not on the scene holding the replay"
        )
        return False

    async def _probe_program_scene(self):
        return await self._program_is_target(), None

    async def _await_transition(self, listener, predicate=None) -> bool:
        try:
            await listener.next(predicate, timeout=self._transition_timeout)
            return True
        except asyncio.TimeoutError:
            self.logger.warning(
                f"No {listener.event_type} within {self.sync.transition_timeout_ms} ms, "
                "continuing"
            )
            return False

    async def seek(self, ms: int):
        async with self.lock:
            await self._set_cursor(ms)

    async def pause(self) -> ConvergenceResult:
        """Pause and wait until the cursor stops moving"""
        async with self.lock:
            return await self._converge_pause()

    async def _converge_pause(self) -> ConvergenceResult:
        # Paused is trusted only once two consecutive polls agree on the cursor
        previous = {"cursor": _NO_CURSOR}

        async def probe():
            status = await self._media_status()
            cursor = status.get("mediaCursor")
            if status.get("mediaState") != protocol.MEDIA_STATE_PAUSED:
                await self._media_action(protocol.MEDIA_ACTION_PAUSE)
                previous["cursor"] = _NO_CURSOR
                return False, cursor
            settled = previous["cursor"] is not _NO_CURSOR and cursor == previous["cursor"]
            previous["cursor"] = cursor
            return settled, cursor

        result = await poll_until(
            probe,
            self.sync.pause_poll.attempts,
            self.sync.pause_poll.interval_ms,
            name="pause",
        )
        if not result:
            self.logger.warning(
                f"Pause did not settle after {result.attempts} attempts "
                f"(cursor {result.value})"
            )
        return result

    async def resume(self):
        async with self.lock:
            await self._media_action(protocol.MEDIA_ACTION_PLAY)

    async def on_end(self):
        """Hand the program back to the fallback scene and hide the source"""
        options = self.options.out
        async with self.lock:
            if options.keep_playing_during_transition:
                await self._media_action(protocol.MEDIA_ACTION_PLAY)

            timed_end = options.auto_transition and options.transition_point_ms is not None
            with self.client.events.listen(SCENE_TRANSITION_ENDED) as listener:
                if options.auto_transition:
                    await self._switch_scene(options.scene_name)
                else:
                    self.logger.info(
                        f"Auto transition is off, switch to '{options.scene_name}' manually"
                    )

                if timed_end:
                    await asyncio.sleep(options.transition_point_ms / 1000)
                else:
                    await self._await_transition(listener)

            await self._set_enabled(False)

            if options.keep_playing_during_transition:
                await self._converge_pause()


__all__ = ["PrepareReport", "RemoteMediaSyncAdapter", "source_lock"]
