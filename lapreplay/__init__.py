# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
lapreplay - lap-marked instant replays for OBS Studio

Marks laps while the replay buffer records, saves the buffer around them and
plays the selected segments back through mixer-hosted media sources.
"""

__version__ = "1.0.0"

# core first: lapreplay.obs imports from it
from .core import (
    BufferStatus,
    PlaybackController,
    PlaybackState,
    PlaybackStep,
    RecordingController,
    RemoteMediaSyncAdapter,
)
from .obs import ObsWebSocketClient

__all__ = [
    "__version__",
    "BufferStatus",
    "ObsWebSocketClient",
    "PlaybackController",
    "PlaybackState",
    "PlaybackStep",
    "RecordingController",
    "RemoteMediaSyncAdapter",
]
