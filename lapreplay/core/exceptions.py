# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
lapreplay Exception Hierarchy

Exception Hierarchy:
    LapReplayError (base)
    ├── ConfigError
    ├── PlaybackError
    │   ├── InvalidTransitionError
    │   └── EmptyQueueError
    ├── RecorderError
    │   └── StashConflictError
    └── RemoteError
        ├── RemoteRequestError
        └── RemoteConnectionError

Convergence failures are not exceptions: they are reported as
ConvergenceResult values (see lapreplay.core.retry).
"""

from typing import Any, Dict, List, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class LapReplayError(Exception):
    """Base exception for all lapreplay errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.cause:
            base += f" | Caused by: {self.cause}"
        return base


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(LapReplayError):
    """Configuration-related errors"""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


# ============================================================================
# Playback Errors
# ============================================================================


class PlaybackError(LapReplayError):
    """Playback controller errors"""


class InvalidTransitionError(PlaybackError):
    """A state change outside the playback transition table was requested"""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(f"Cannot transition from {current} to {target}", **kwargs)
        self.current = current
        self.target = target

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"current": self.current, "target": self.target})
        return result


class EmptyQueueError(PlaybackError):
    """Playback was requested for an empty queue"""


# ============================================================================
# Recorder Errors
# ============================================================================


class RecorderError(LapReplayError):
    """Recording controller errors"""


class StashConflictError(RecorderError):
    """save() was called while a previous save is still unacknowledged"""

    def __init__(self, message: str, pending_laps: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.pending_laps = pending_laps

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["pending_laps"] = self.pending_laps
        return result


# ============================================================================
# Remote Errors
# ============================================================================


class RemoteError(LapReplayError):
    """Errors talking to the remote mixer"""


class RemoteRequestError(RemoteError):
    """The mixer answered a request with a failure status"""

    def __init__(
        self,
        request_type: str,
        code: Optional[int] = None,
        comment: Optional[str] = None,
        **kwargs,
    ):
        message = f"{request_type} failed with code {code}"
        if comment:
            message += f": {comment}"
        super().__init__(message, **kwargs)
        self.request_type = request_type
        self.code = code
        self.comment = comment

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "request_type": self.request_type,
                "code": self.code,
                "comment": self.comment,
            }
        )
        return result


class RemoteConnectionError(RemoteError):
    """The connection to the mixer is missing or was lost"""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.url = url

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["url"] = self.url
        return result


__all__ = [
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
]
