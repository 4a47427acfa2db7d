# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Bounded fixed-interval polling.

The mixer does not reliably acknowledge media commands, so the adapter
confirms them by polling status until it matches what was commanded.
poll_until() runs one such loop and reports how it went instead of raising.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

logger = logging.getLogger("lapreplay.retry")

# A probe reports whether the target state is reached, plus what it observed
Probe = Callable[[], Awaitable[Tuple[bool, Any]]]


@dataclass
class ConvergenceResult:
    """Outcome of a convergence poll"""

    success: bool
    attempts: int
    value: Any = None
    error: Optional[Exception] = None
    cancelled: bool = False

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self):
        result = {
            "success": self.success,
            "attempts": self.attempts,
            "value": self.value,
        }
        if self.error is not None:
            result["error"] = str(self.error)
        if self.cancelled:
            result["cancelled"] = True
        return result


async def poll_until(
    probe: Probe,
    attempts: int,
    interval_ms: int,
    cancel: Optional[asyncio.Event] = None,
    name: str = "poll",
) -> ConvergenceResult:
    """
    Run ``probe`` until it reports success or the attempt budget is spent.

    Attempts are spaced ``interval_ms`` apart (fixed, no backoff). A probe
    that raises counts as a failed attempt. Setting ``cancel`` stops the loop
    before the next attempt; cancelling the calling task stops it at once.

    Args:
        probe: Coroutine function returning ``(done, observed_value)``
        attempts: Maximum number of probe calls
        interval_ms: Delay between probe calls
        cancel: Optional cancellation token
        name: Label used in log messages

    Returns:
        ConvergenceResult with the last observed value
    """
    last_value: Any = None
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        if cancel is not None and cancel.is_set():
            logger.debug(f"{name}: cancelled before attempt {attempt}")
            return ConvergenceResult(
                success=False,
                attempts=attempt - 1,
                value=last_value,
                error=last_error,
                cancelled=True,
            )

        try:
            done, last_value = await probe()
            last_error = None
        except Exception as e:
            done = False
            last_error = e
            logger.debug(f"{name}: attempt {attempt} raised {e}")

        if done:
            return ConvergenceResult(success=True, attempts=attempt, value=last_value)

        if attempt < attempts:
            await asyncio.sleep(interval_ms / 1000)

    logger.debug(f"{name}: gave up after {attempts} attempts (last={last_value})")
    return ConvergenceResult(
        success=False, attempts=attempts, value=last_value, error=last_error
    )
