# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Dry-run adapter
Logs each lifecycle step and tracks a virtual player instead of driving a target
"""

from typing import Any, Iterable, List, Optional, Tuple

from ..base_adapter import AdapterStep, PlaybackAdapter


class DryRunAdapter(PlaybackAdapter):
    """Virtual player: position, play state and a call log"""

    def __init__(
        self,
        adapter_name: str = "dry_run",
        fail_on: Optional[Iterable[AdapterStep]] = None,
    ):
        super().__init__(adapter_name)
        self.fail_on = set(fail_on or ())
        self.calls: List[Tuple[AdapterStep, Tuple[Any, ...]]] = []
        self.path: Optional[str] = None
        self.position_ms = 0
        self.playing = False
        self.visible = False

    def _record(self, step: AdapterStep, *args: Any):
        self.calls.append((step, args))
        if step in self.fail_on:
            raise RuntimeError(f"{self.adapter_name}: simulated {step.value} failure")

    def steps(self) -> List[AdapterStep]:
        return [step for step, _ in self.calls]

    def on_check_configuration(self) -> bool:
        self._record(AdapterStep.CHECK_CONFIGURATION)
        return True

    def on_prepare(self, path: str, first_start_ms: int):
        self._record(AdapterStep.PREPARE, path, first_start_ms)
        self.playing = False
        self.path = path
        self.position_ms = first_start_ms
        self.logger.info(f"prepare {path} at {first_start_ms} ms")

    def on_start(self):
        self._record(AdapterStep.START)
        self.visible = True
        self.logger.info("start")

    def seek(self, ms: int):
        self._record(AdapterStep.SEEK, ms)
        self.position_ms = ms
        self.logger.info(f"seek {ms} ms")

    def pause(self):
        self._record(AdapterStep.PAUSE)
        self.playing = False
        self.logger.info("pause")

    def resume(self):
        self._record(AdapterStep.RESUME)
        self.playing = True
        self.logger.info("resume")

    def on_end(self):
        self._record(AdapterStep.END)
        self.visible = False
        self.logger.info("end")
