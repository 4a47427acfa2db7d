# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for RecordingController: buffer mirroring, laps, saves and autosave
"""

import asyncio

import pytest

from lapreplay.core.config import RecorderConfig
from lapreplay.core.events import CONNECTION_CLOSED, IDENTIFIED, Event
from lapreplay.core.exceptions import RemoteRequestError, StashConflictError
from lapreplay.core.models import LapMarker
from lapreplay.core.recorder import BufferStatus, RecordingController
from lapreplay.obs import protocol


@pytest.fixture
def replays():
    return []


@pytest.fixture
def recorder(obs, recorder_config, clock, replays):
    return RecordingController(
        obs, recorder_config, on_recorded=replays.append, clock=clock
    )


async def start_recording(obs, recorder):
    await recorder.attach()
    await recorder.toggle_buffer()
    assert recorder.status == BufferStatus.RECORDING


class TestBufferStatus:
    @pytest.mark.asyncio
    async def test_attach_fetches_status(self, obs, recorder):
        await recorder.attach()
        assert recorder.status == BufferStatus.NOT_RECORDING

    @pytest.mark.asyncio
    async def test_attach_with_active_buffer(self, obs, recorder):
        obs.buffer_active = True
        await recorder.attach()
        assert recorder.status == BufferStatus.ALREADY_STARTED

    @pytest.mark.asyncio
    async def test_buffer_disabled(self, obs, recorder):
        obs.buffer_enabled = False
        await recorder.attach()
        assert recorder.status == BufferStatus.NOT_AVAILABLE

    @pytest.mark.asyncio
    async def test_other_errors_leave_fetching(self, obs, recorder):
        obs.failures["GetReplayBufferStatus"] = RemoteRequestError(
            "GetReplayBufferStatus", code=500
        )
        await recorder.attach()
        assert recorder.status == BufferStatus.FETCHING

    @pytest.mark.asyncio
    async def test_not_connected_until_attached_and_connected(self, obs, recorder):
        assert recorder.status == BufferStatus.NOT_CONNECTED
        await recorder.attach(connected=False)
        assert recorder.status == BufferStatus.NOT_CONNECTED
        assert obs.calls == []

    @pytest.mark.asyncio
    async def test_connection_events(self, obs, recorder):
        await recorder.attach()

        await obs.events.emit(Event(CONNECTION_CLOSED))
        assert recorder.status == BufferStatus.NOT_CONNECTED

        obs.buffer_active = True
        await obs.events.emit(Event(IDENTIFIED))
        await obs.events.drain()
        assert recorder.status == BufferStatus.ALREADY_STARTED

    @pytest.mark.asyncio
    async def test_toggle_follows_events(self, obs, recorder):
        statuses = []
        recorder.on_status(statuses.append)
        await recorder.attach()

        await recorder.toggle_buffer()
        await recorder.toggle_buffer()

        assert statuses == [
            BufferStatus.FETCHING,
            BufferStatus.NOT_RECORDING,
            BufferStatus.STARTING,
            BufferStatus.RECORDING,
            BufferStatus.PROCESSING,
            BufferStatus.NOT_RECORDING,
        ]

    @pytest.mark.asyncio
    async def test_toggle_failure_is_silent(self, obs, recorder):
        obs.buffer_enabled = False
        assert await recorder.toggle_buffer() is False
        assert recorder.status == BufferStatus.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_unknown_output_state_ignored(self, obs, recorder):
        await recorder.attach()
        await obs.set_buffer_state("OBS_WEBSOCKET_OUTPUT_RECONNECTING")
        assert recorder.status == BufferStatus.NOT_RECORDING

    @pytest.mark.asyncio
    async def test_events_ignored_while_disconnected(self, obs, recorder):
        await recorder.attach(connected=False)
        await obs.set_buffer_state(protocol.OUTPUT_STARTED)
        assert recorder.status == BufferStatus.NOT_CONNECTED


class TestLaps:
    @pytest.mark.asyncio
    async def test_lap_ignored_unless_recording(self, obs, recorder):
        await recorder.attach()
        assert recorder.add_lap() is None
        assert recorder.laps == []

        obs.buffer_active = True
        await recorder.on_connection_changed(True)
        assert recorder.status == BufferStatus.ALREADY_STARTED
        assert recorder.add_lap() is None

    @pytest.mark.asyncio
    async def test_lap_time_is_relative_to_record_start(self, obs, recorder, clock):
        await start_recording(obs, recorder)
        assert recorder.record_started_at == 1000.0

        clock.advance(5000)
        lap = recorder.add_lap()

        assert lap == LapMarker(time_ms=5000, duration_ms=3000)
        assert lap.start_ms == 2000
        assert recorder.laps == [lap]

    @pytest.mark.asyncio
    async def test_first_lap_arms_deadline(self, obs, recorder, clock):
        await start_recording(obs, recorder)
        assert recorder.remaining_ms() is None

        clock.advance(10000)
        recorder.add_lap()
        assert recorder.deadline_armed
        assert recorder.remaining_ms() == 300000 - 5000

        clock.advance(1000)
        recorder.add_lap()
        assert recorder.remaining_ms() == 300000 - 5000 - 1000
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_leaving_recording_clears_laps_not_stash(self, obs, recorder, clock):
        obs.emit_saved = False
        await start_recording(obs, recorder)
        clock.advance(4000)
        recorder.add_lap()
        await recorder.save()
        recorder.add_lap()

        await recorder.toggle_buffer()

        assert recorder.status == BufferStatus.NOT_RECORDING
        assert recorder.laps == []
        assert recorder.record_started_at is None
        assert recorder.remaining_ms() is None
        assert not recorder.deadline_armed
        assert len(recorder.unsaved_laps) == 1


class TestSave:
    @pytest.mark.asyncio
    async def test_save_emits_replay(self, obs, recorder, clock, replays):
        await start_recording(obs, recorder)
        clock.advance(4000)
        first = recorder.add_lap()
        clock.advance(6000)
        second = recorder.add_lap()

        result = await recorder.save()
        await obs.events.drain()

        assert result.requested and not result.conflict
        assert result.laps == [first, second]
        assert len(replays) == 1
        assert replays[0].path == "/replays/replay-1.mkv"
        assert replays[0].laps == [first, second]
        assert recorder.unsaved_laps is None
        assert recorder.laps == []
        assert recorder.remaining_ms() is None

    @pytest.mark.asyncio
    async def test_save_overwrites_pending_stash(self, obs, recorder, clock, replays):
        obs.emit_saved = False
        await start_recording(obs, recorder)
        clock.advance(4000)
        dropped = recorder.add_lap()
        await recorder.save()
        clock.advance(4000)
        kept = recorder.add_lap()

        result = await recorder.save()

        assert result.conflict
        assert result.overwritten == [dropped]
        assert recorder.unsaved_laps == [kept]

        await obs.emit_replay_saved("/replays/late.mkv")
        await obs.events.drain()
        assert [r.laps for r in replays] == [[kept]]

    @pytest.mark.asyncio
    async def test_reject_policy_keeps_state(self, obs, clock, replays):
        config = RecorderConfig(stash_policy="reject")
        recorder = RecordingController(obs, config, on_recorded=replays.append, clock=clock)
        obs.emit_saved = False
        await start_recording(obs, recorder)
        clock.advance(4000)
        pending = recorder.add_lap()
        await recorder.save()
        clock.advance(4000)
        active = recorder.add_lap()

        with pytest.raises(StashConflictError) as exc:
            await recorder.save()

        assert exc.value.pending_laps == 1
        assert recorder.unsaved_laps == [pending]
        assert recorder.laps == [active]
        assert obs.request_types().count("SaveReplayBuffer") == 1
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_failed_save_restores_laps(self, obs, recorder, clock):
        await start_recording(obs, recorder)
        clock.advance(4000)
        lap = recorder.add_lap()
        obs.failures["SaveReplayBuffer"] = RemoteRequestError("SaveReplayBuffer", code=500)

        result = await recorder.save()

        assert not result.requested
        assert recorder.laps == [lap]
        assert recorder.unsaved_laps is None
        assert recorder.deadline_armed
        assert recorder.remaining_ms() == 300000 - 5000
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_failed_save_keeps_oldest_lap_as_anchor(self, obs, recorder, clock):
        release = asyncio.Event()

        async def save_fails_late(data):
            await release.wait()
            raise RemoteRequestError("SaveReplayBuffer", code=500)

        obs._on_SaveReplayBuffer = save_fails_late
        await start_recording(obs, recorder)
        clock.advance(4000)
        first = recorder.add_lap()

        pending = asyncio.ensure_future(recorder.save())
        await asyncio.sleep(0)
        clock.advance(60000)
        second = recorder.add_lap()
        release.set()
        result = await pending

        assert not result.requested
        assert recorder.laps == [first, second]
        assert recorder.deadline_armed
        # anchored at the first lap (t=5000), now is t=65000
        assert recorder.remaining_ms() == 5000 + 300000 - 5000 - 65000
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_saved_event_without_stash_is_ignored(self, obs, recorder, replays):
        await recorder.attach()
        await obs.emit_replay_saved("/replays/foreign.mkv")
        await obs.events.drain()
        assert replays == []

    @pytest.mark.asyncio
    async def test_callback_failure_does_not_block_others(self, obs, recorder, clock, replays):
        def broken(replay):
            raise RuntimeError("boom")

        async def async_cb(replay):
            replays.append(("async", replay.path))

        recorder.on_recorded(broken)
        recorder.on_recorded(async_cb)
        await start_recording(obs, recorder)
        clock.advance(4000)
        recorder.add_lap()

        await recorder.save()
        await obs.events.drain()

        assert len(replays) == 2
        assert replays[1] == ("async", "/replays/replay-1.mkv")


class TestAutosave:
    @pytest.mark.asyncio
    async def test_deadline_forces_exactly_one_save(self, obs, clock, replays):
        config = RecorderConfig(
            max_replay_seconds=10, limit_margin_ms=5000, limit_check_interval_ms=5
        )
        recorder = RecordingController(obs, config, on_recorded=replays.append, clock=clock)
        await start_recording(obs, recorder)
        clock.advance(4000)
        recorder.add_lap()

        await asyncio.sleep(0.03)
        assert obs.request_types().count("SaveReplayBuffer") == 0

        clock.advance(5000)
        await asyncio.sleep(0.05)
        await obs.events.drain()

        assert obs.request_types().count("SaveReplayBuffer") == 1
        assert not recorder.deadline_armed
        assert len(replays) == 1
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_failed_forced_save_is_not_repeated(self, obs, clock):
        config = RecorderConfig(
            max_replay_seconds=10, limit_margin_ms=5000, limit_check_interval_ms=5
        )
        recorder = RecordingController(obs, config, clock=clock)
        await start_recording(obs, recorder)
        clock.advance(4000)
        lap = recorder.add_lap()
        obs.failures["SaveReplayBuffer"] = RemoteRequestError("SaveReplayBuffer", code=500)

        clock.advance(5000)
        await asyncio.sleep(0.1)

        assert obs.request_types().count("SaveReplayBuffer") == 1
        assert not recorder.deadline_armed
        assert recorder.laps == [lap]
        assert recorder.remaining_ms() <= 0

        del obs.failures["SaveReplayBuffer"]
        result = await recorder.save()
        assert result.requested
        assert obs.request_types().count("SaveReplayBuffer") == 2
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_manual_save_disarms_deadline(self, obs, recorder, clock):
        await start_recording(obs, recorder)
        recorder.add_lap()
        assert recorder.deadline_armed

        await recorder.save()

        assert not recorder.deadline_armed
        clock.advance(10 ** 6)
        await asyncio.sleep(0.02)
        assert obs.request_types().count("SaveReplayBuffer") == 1

    @pytest.mark.asyncio
    async def test_auto_save_off_never_arms(self, obs, clock):
        recorder = RecordingController(obs, RecorderConfig(auto_save=False), clock=clock)
        await start_recording(obs, recorder)

        recorder.add_lap()

        assert not recorder.deadline_armed
        assert recorder.remaining_ms() is not None
        recorder.dispose()

    @pytest.mark.asyncio
    async def test_dispose_unsubscribes(self, obs, recorder):
        await recorder.attach()
        recorder.dispose()

        await obs.set_buffer_state(protocol.OUTPUT_STARTED)

        assert recorder.status == BufferStatus.NOT_RECORDING
        assert obs.events.subscriber_count("ReplayBufferSaved") == 0
