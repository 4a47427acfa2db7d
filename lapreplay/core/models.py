# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Replay data model.

Laps are captured while the buffer records, a save turns the pending laps
into a Replay, and each lap of a Replay becomes a PlayQueueItem that the
playback controller can render.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

DEFAULT_ITEM_NAME = "(unused)"


@dataclass(frozen=True)
class LapMarker:
    """A point in elapsed recording time plus a look-back window"""

    time_ms: int
    duration_ms: int

    @property
    def start_ms(self) -> int:
        return self.time_ms - self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {"time_ms": self.time_ms, "duration_ms": self.duration_ms}


@dataclass
class Replay:
    """A saved buffer file and the laps that were pending when it was saved"""

    path: str
    laps: List[LapMarker] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "laps": [lap.to_dict() for lap in self.laps]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Replay":
        return cls(
            path=data["path"],
            laps=[LapMarker(**lap) for lap in data.get("laps", [])],
        )


@dataclass(frozen=True)
class PlayQueueItem:
    """One renderable segment: ``duration_ms`` of ``path`` from ``start_ms``"""

    path: str
    name: str
    start_ms: int
    duration_ms: int

    def __post_init__(self):
        if self.start_ms < 0:
            raise ValueError(f"start_ms must be >= 0, got {self.start_ms}")
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {self.duration_ms}")

    @property
    def end_ms(self) -> int:
        return self.start_ms + self.duration_ms

    @classmethod
    def from_lap(
        cls, path: str, lap: LapMarker, name: str = DEFAULT_ITEM_NAME
    ) -> "PlayQueueItem":
        return cls(
            path=path,
            name=name,
            start_ms=lap.start_ms,
            duration_ms=lap.duration_ms,
        )


@dataclass(frozen=True)
class RemoteTargetSource:
    """Identity of a mixer-hosted media source"""

    scene_name: str
    item_name: str
    scene_item_id: int

    def __str__(self) -> str:
        return f"{self.scene_name} > {self.item_name}"


def build_play_queue(
    replay: Replay,
    name: str = DEFAULT_ITEM_NAME,
    indices: Optional[Sequence[int]] = None,
) -> List[PlayQueueItem]:
    """
    Convert the laps of a replay into a play queue.

    Args:
        replay: Saved replay
        name: Display name given to every item
        indices: Laps to play, in playback order (default: all, capture order)

    Returns:
        List of PlayQueueItem

    Raises:
        IndexError: If an index does not name a lap
        ValueError: If a lap looks back past the start of the recording
    """
    laps = replay.laps if indices is None else [replay.laps[i] for i in indices]
    return [PlayQueueItem.from_lap(replay.path, lap, name=name) for lap in laps]


def format_timestamp(ms: int) -> str:
    """Render milliseconds as H:MM:SS.mmm"""
    sign = "-" if ms < 0 else ""
    in_seconds, milliseconds = divmod(abs(int(ms)), 1000)
    in_minutes, seconds = divmod(in_seconds, 60)
    hours, minutes = divmod(in_minutes, 60)
    return f"{sign}{hours}:{minutes:02d}:{seconds:02d}.{milliseconds:03d}"
