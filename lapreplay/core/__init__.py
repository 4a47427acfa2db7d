# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
lapreplay Core - Init file

Replay orchestration engine: lap recording, playback state machine and the
adapters that drive render targets.
"""

from .exceptions import (
    ConfigError,
    EmptyQueueError,
    InvalidTransitionError,
    LapReplayError,
    PlaybackError,
    RecorderError,
    RemoteConnectionError,
    RemoteError,
    RemoteRequestError,
    StashConflictError,
)
from .events import Event, EventBus, EventListener
from .models import (
    LapMarker,
    PlayQueueItem,
    RemoteTargetSource,
    Replay,
    build_play_queue,
    format_timestamp,
)
from .retry import ConvergenceResult, poll_until
from .timers import CountdownTimer, IntervalTimer
from .config import AdapterOptions, ReplayConfig, get_config, load_config
from .base_adapter import (
    AdapterOutcome,
    AdapterStep,
    PlaybackAdapter,
    fan_out,
    select_adapters,
)
from .recorder import BufferStatus, RecordingController, SaveResult
from .player import PlaybackController, PlaybackState, PlaybackStep
from .adapters import DryRunAdapter, PrepareReport, RemoteMediaSyncAdapter

__all__ = [
    # Errors
    "LapReplayError",
    "ConfigError",
    "PlaybackError",
    "InvalidTransitionError",
    "EmptyQueueError",
    "RecorderError",
    "StashConflictError",
    "RemoteError",
    "RemoteRequestError",
    "RemoteConnectionError",
    # Events
    "Event",
    "EventBus",
    "EventListener",
    # Model
    "LapMarker",
    "Replay",
    "PlayQueueItem",
    "RemoteTargetSource",
    "build_play_queue",
    "format_timestamp",
    # Convergence and timers
    "ConvergenceResult",
    "poll_until",
    "CountdownTimer",
    "IntervalTimer",
    # Config
    "AdapterOptions",
    "ReplayConfig",
    "get_config",
    "load_config",
    # Adapters
    "AdapterOutcome",
    "AdapterStep",
    "PlaybackAdapter",
    "fan_out",
    "select_adapters",
    "DryRunAdapter",
    "PrepareReport",
    "RemoteMediaSyncAdapter",
    # Controllers
    "BufferStatus",
    "RecordingController",
    "SaveResult",
    "PlaybackController",
    "PlaybackState",
    "PlaybackStep",
]
