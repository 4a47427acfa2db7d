# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Playback Adapter Architecture

A playback adapter is any render target the playback controller can drive:
a mixer-hosted media source, a local preview, a dry run. The controller
never talks to a target directly; it fans each lifecycle step out to every
adapter at once and collects one AdapterOutcome per adapter.

Hooks may be plain or async methods. Optional hooks default to no-ops.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger("lapreplay.adapters")


class AdapterStep(Enum):
    """Lifecycle steps the controller fans out"""

    CHECK_CONFIGURATION = "on_check_configuration"
    PREPARE = "on_prepare"
    START = "on_start"
    SEEK = "seek"
    PAUSE = "pause"
    RESUME = "resume"
    END = "on_end"


@dataclass
class AdapterOutcome:
    """Result of one lifecycle step on one adapter"""

    adapter_name: str
    step: AdapterStep
    success: bool
    value: Any = None
    error: Optional[BaseException] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        """False when the step completed but reported a best-effort failure"""
        if not self.success:
            return False
        value = self.value
        if hasattr(value, "success"):
            return bool(value.success)
        if hasattr(value, "converged"):
            return bool(value.converged)
        return True

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "adapter": self.adapter_name,
            "step": self.step.value,
            "success": self.success,
        }
        if self.error is not None:
            result["error"] = str(self.error)
        if self.metadata:
            result["metadata"] = self.metadata
        return result


class PlaybackAdapter(ABC):
    """
    Base class for all playback targets.

    seek(), pause() and resume() are required. pause() and resume() must be
    safe to call repeatedly.
    """

    def __init__(self, adapter_name: Optional[str] = None):
        self.adapter_name = adapter_name or self.__class__.__name__
        self.logger = logging.getLogger(f"lapreplay.adapters.{self.adapter_name}")

    def on_check_configuration(self) -> Any:
        """Readiness probe; True when the target can be driven"""
        return True

    def on_prepare(self, path: str, first_start_ms: int) -> Any:
        """Load ``path`` and park it at ``first_start_ms``"""
        return None

    def on_start(self) -> Any:
        """Make the target visible before playback begins"""
        return None

    @abstractmethod
    def seek(self, ms: int) -> Any:
        """Reposition playback"""

    @abstractmethod
    def pause(self) -> Any:
        """Pause playback"""

    @abstractmethod
    def resume(self) -> Any:
        """Resume playback"""

    def on_end(self) -> Any:
        """Tear down or restore visibility after playback"""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.adapter_name}>"


async def call_hook(adapter: PlaybackAdapter, step: AdapterStep, *args: Any) -> Any:
    """Invoke one hook, awaiting it when it returns an awaitable"""
    result = getattr(adapter, step.value)(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def fan_out(
    adapters: Sequence[PlaybackAdapter],
    step: AdapterStep,
    *args: Any,
) -> List[AdapterOutcome]:
    """
    Run one lifecycle step on every adapter concurrently.

    Waits for all adapters; a failure is captured in that adapter's outcome
    and never cancels its siblings. Cancelling the caller cancels every
    in-flight hook.

    Returns:
        One AdapterOutcome per adapter, in adapter order
    """
    if not adapters:
        return []

    results = await asyncio.gather(
        *(call_hook(adapter, step, *args) for adapter in adapters),
        return_exceptions=True,
    )

    outcomes = []
    for adapter, result in zip(adapters, results):
        if isinstance(result, asyncio.CancelledError):
            # A hook cancelled on its own; the caller was not
            outcomes.append(
                AdapterOutcome(adapter.adapter_name, step, success=False, error=result)
            )
        elif isinstance(result, BaseException):
            logger.error(
                f"{adapter.adapter_name}.{step.value} failed: {result}",
                exc_info=result,
            )
            outcomes.append(
                AdapterOutcome(adapter.adapter_name, step, success=False, error=result)
            )
        else:
            outcomes.append(
                AdapterOutcome(adapter.adapter_name, step, success=True, value=result)
            )
    return outcomes


def select_adapters(
    program: Optional[PlaybackAdapter],
    preview: Optional[PlaybackAdapter],
    preview_mode: bool = False,
) -> List[PlaybackAdapter]:
    """
    Pick the adapters to drive.

    The preview target is always driven; the program target is driven unless
    preview mode is on.
    """
    adapters: List[PlaybackAdapter] = []
    if preview is not None:
        adapters.append(preview)
    if program is not None and not preview_mode:
        adapters.append(program)
    return adapters


__all__ = [
    "AdapterStep",
    "AdapterOutcome",
    "PlaybackAdapter",
    "call_hook",
    "fan_out",
    "select_adapters",
]
