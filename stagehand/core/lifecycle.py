"""Application Lifetime Signals.

Process-wide notification points for the Started, Stopping and Stopped
transitions. The bus is an ordinary object handed to whatever needs it;
tests build their own.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .errors import LifecycleCallbackFault

LOGGER = logging.getLogger(__name__)


class LifecycleSignal(Enum):
    """Signals fired once each, in declaration order."""

    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ApplicationState(Enum):
    """Application lifetime states."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"


_SIGNAL_STATE = {
    LifecycleSignal.STARTED: ApplicationState.STARTED,
    LifecycleSignal.STOPPING: ApplicationState.STOPPING,
    LifecycleSignal.STOPPED: ApplicationState.STOPPED,
}


@dataclass
class LifecycleCallback:
    """A registered zero-argument callback."""

    name: str
    callback: Callable[[], None]


class ApplicationLifetime:
    """Lifecycle signal bus with a manual ``stop_application`` trigger."""

    def __init__(self):
        self._state = ApplicationState.NOT_STARTED
        self._callbacks: dict[LifecycleSignal, list[LifecycleCallback]] = {
            sig: [] for sig in LifecycleSignal
        }
        self._fired: set[LifecycleSignal] = set()
        self._lock = threading.RLock()
        self._stopping = threading.Event()
        self._stopped = threading.Event()
        self._stop_requested = False
        self._stop_claimed = False
        self._stop_reason: str | None = None
        self.faults: list[LifecycleCallbackFault] = []
        self._stop_runner: Callable[[Callable[[], None]], None] | None = None

    @property
    def state(self) -> ApplicationState:
        """Get current application state."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == ApplicationState.STARTED

    @property
    def stopping_requested(self) -> bool:
        """Cooperative cancellation flag: true once Stopping has fired."""
        return self._stopping.is_set()

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    def has_fired(self, sig: LifecycleSignal) -> bool:
        with self._lock:
            return sig in self._fired

    # Registration ---------------------------------------------------------
    def register(
        self,
        sig: LifecycleSignal,
        callback: Callable[[], None],
        name: str | None = None,
    ) -> Callable[[], None]:
        """Register ``callback`` against ``sig``.

        Callbacks run in registration order. Registering against a signal
        that has already fired runs the callback immediately.
        """
        entry = LifecycleCallback(name or getattr(callback, "__name__", repr(callback)), callback)
        with self._lock:
            already_fired = sig in self._fired
            if not already_fired:
                self._callbacks[sig].append(entry)
                LOGGER.debug("Registered %s callback: %s", sig.value, entry.name)
        if already_fired:
            LOGGER.debug("Signal %s already fired, running %s now", sig.value, entry.name)
            self._invoke(sig, entry)
        return callback

    def on_started(self, callback: Callable[[], None], name: str | None = None) -> Callable[[], None]:
        return self.register(LifecycleSignal.STARTED, callback, name)

    def on_stopping(self, callback: Callable[[], None], name: str | None = None) -> Callable[[], None]:
        return self.register(LifecycleSignal.STOPPING, callback, name)

    def on_stopped(self, callback: Callable[[], None], name: str | None = None) -> Callable[[], None]:
        return self.register(LifecycleSignal.STOPPED, callback, name)

    def callback_count(self, sig: LifecycleSignal) -> int:
        with self._lock:
            return len(self._callbacks[sig])

    # Transitions ----------------------------------------------------------
    def notify_started(self) -> bool:
        """Fire Started. Returns False if the application was already started."""
        with self._lock:
            if self._state is not ApplicationState.NOT_STARTED:
                LOGGER.warning("Cannot start application in state: %s", self._state.value)
                return False
        self._fire(LifecycleSignal.STARTED)
        if self._claim_stop():
            LOGGER.info("Stop was requested before start; stopping now")
            self._begin_stop()
        return True

    def stop_application(self, reason: str = "stop requested") -> None:
        """Request graceful shutdown: fire Stopping, then Stopped.

        Idempotent. Before Started has fired the request is latched and
        honoured right after it.
        """
        with self._lock:
            if self._stop_requested:
                LOGGER.debug("Shutdown already requested")
                return
            self._stop_requested = True
            self._stop_reason = reason
            if LifecycleSignal.STARTED not in self._fired:
                LOGGER.info("Stop requested before start (%s); deferring", reason)
                return
        if self._claim_stop():
            LOGGER.info("Shutting down application: %s", reason)
            self._begin_stop()

    def _claim_stop(self) -> bool:
        with self._lock:
            if not self._stop_requested or self._stop_claimed:
                return False
            self._stop_claimed = True
            return True

    def set_stop_runner(self, runner: Callable[[Callable[[], None]], None] | None) -> None:
        """Route the Stopping/Stopped sequence through ``runner(sequence)``.

        The host uses this to keep the sequence off its request event loop.
        """
        self._stop_runner = runner

    def _begin_stop(self) -> None:
        runner = self._stop_runner
        if runner is None:
            self._run_stop()
        else:
            runner(self._run_stop)

    def _run_stop(self) -> None:
        self._stopping.set()
        self._fire(LifecycleSignal.STOPPING)
        self._fire(LifecycleSignal.STOPPED)
        self._stopped.set()
        LOGGER.info("Application shutdown complete")

    def _fire(self, sig: LifecycleSignal) -> None:
        with self._lock:
            if sig in self._fired:
                return
            self._fired.add(sig)
            old_state = self._state
            self._state = _SIGNAL_STATE[sig]
            callbacks = list(self._callbacks[sig])
        LOGGER.info("Application state changed: %s -> %s", old_state.value, sig.value)

        # Callbacks run outside the lock so they may register further callbacks.
        for entry in callbacks:
            self._invoke(sig, entry)

    def _invoke(self, sig: LifecycleSignal, entry: LifecycleCallback) -> None:
        try:
            LOGGER.debug("Executing %s callback: %s", sig.value, entry.name)
            entry.callback()
        except Exception as exc:
            fault = LifecycleCallbackFault(sig.value, entry.name, exc)
            self.faults.append(fault)
            LOGGER.exception("Error executing %s callback: %s", sig.value, entry.name)

    # Waiting --------------------------------------------------------------
    def wait_for_stopping(self, timeout: float | None = None) -> bool:
        """Block until Stopping fires. Returns False on timeout."""
        return self._stopping.wait(timeout)

    def wait_for_shutdown(self, timeout: float | None = None) -> bool:
        """Block until Stopped has fired and its callbacks ran."""
        return self._stopped.wait(timeout)

    async def until_stopping(self, poll_interval: float = 0.1) -> None:
        """Await the Stopping signal without blocking the event loop."""
        while not self._stopping.is_set():
            await asyncio.sleep(poll_interval)

    # OS signals -----------------------------------------------------------
    def install_signal_handlers(self) -> bool:
        """Route SIGINT/SIGTERM to ``stop_application``.

        Only possible from the main thread; returns False otherwise.
        """

        def handler(signum, frame):
            signal_name = signal.Signals(signum).name
            LOGGER.info("Received signal %s, initiating shutdown", signal_name)
            self.stop_application(f"signal {signal_name}")

        try:
            signal.signal(signal.SIGTERM, handler)
            signal.signal(signal.SIGINT, handler)
        except (OSError, ValueError):
            LOGGER.debug("Could not register signal handlers")
            return False
        return True


def sleep_then(delay: float, callback: Callable[[], None]) -> Callable[[], None]:
    """Wrap ``callback`` so it runs after ``delay`` seconds (Stopped drains)."""

    def delayed() -> None:
        if delay > 0:
            time.sleep(delay)
        callback()

    delayed.__name__ = getattr(callback, "__name__", "delayed")
    return delayed


__all__ = [
    "ApplicationLifetime",
    "ApplicationState",
    "LifecycleCallback",
    "LifecycleSignal",
    "sleep_then",
]
