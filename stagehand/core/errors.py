"""Exception types raised by the stagehand core."""

from __future__ import annotations

from typing import Any


class StagehandError(Exception):
    """Base class for all stagehand errors."""


class ConfigurationError(StagehandError):
    """Startup-time misconfiguration (missing capability, bad setting, ...)."""


class HandlerFault(StagehandError):
    """A pipeline stage failed while processing one request.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, stage: str, request_id: str, message: str | None = None):
        self.stage = stage
        self.request_id = request_id
        super().__init__(message or f"Stage '{stage}' failed for request {request_id}")


class LifecycleCallbackFault(StagehandError):
    """A lifecycle callback raised while its signal was firing."""

    def __init__(self, signal: Any, callback: str, error: BaseException):
        self.signal = signal
        self.callback = callback
        self.error = error
        super().__init__(f"Lifecycle callback '{callback}' failed during {signal}: {error}")


__all__ = [
    "StagehandError",
    "ConfigurationError",
    "HandlerFault",
    "LifecycleCallbackFault",
]
