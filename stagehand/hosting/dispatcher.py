"""Event-loop dispatcher bridging WSGI worker threads to the async pipeline.

One asyncio loop runs on a background thread; every request becomes a task
on that loop, so stages that await I/O interleave with other requests
instead of holding a thread each. WSGI threads block on the result.

A dispatcher runs once: after ``stop()`` further submissions are refused
with ``concurrent.futures.CancelledError``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Coroutine
from concurrent.futures import CancelledError
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

logger = logging.getLogger(__name__)


class Dispatcher:
    """Owns the request event loop thread."""

    # How often a blocked submitter checks that the loop thread is still alive.
    wait_interval = 0.5

    def __init__(self, name: str = "stagehand-loop"):
        self.name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._pending: set[asyncio.Future] = set()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def owns_current_thread(self) -> bool:
        """True when called from the loop thread itself."""
        return self._thread is not None and self._thread is threading.current_thread()

    def start(self) -> None:
        """Start the loop thread; no-op when already running."""
        with self._lock:
            if self._stopped:
                raise RuntimeError(f"Dispatcher {self.name} has been stopped")
            if self.running:
                return
            self._ready.clear()
            self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
            self._thread.start()
        self._ready.wait()
        logger.debug("Dispatcher %s started", self.name)

    def _run_loop(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._loop = None

    def submit(self, coro: Coroutine[Any, Any, Any], timeout: float | None = None) -> Any:
        """Run ``coro`` on the loop and block until it finishes.

        Raises CancelledError when the dispatcher was stopped, or when the
        loop thread dies before the coroutine completes.
        """
        if self._stopped:
            coro.close()
            raise CancelledError(f"Dispatcher {self.name} is stopped")
        if not self.running:
            self.start()
        with self._lock:
            loop = self._loop
            if self._stopped or loop is None:
                coro.close()
                raise CancelledError(f"Dispatcher {self.name} is stopped")
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            self._pending.add(future)
        try:
            return self._wait(future, timeout)
        finally:
            with self._lock:
                self._pending.discard(future)

    def _wait(self, future, timeout: float | None) -> Any:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            interval = self.wait_interval
            if deadline is not None:
                interval = max(0.0, min(interval, deadline - time.monotonic()))
            try:
                return future.result(interval)
            except FutureTimeoutError:
                if not self.running and not future.done():
                    future.cancel()
                    raise CancelledError(
                        f"Dispatcher {self.name} loop exited before the request finished"
                    ) from None
                if deadline is not None and time.monotonic() >= deadline:
                    raise

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def stop(self, timeout: float = 5.0) -> None:
        """Refuse new work, wait up to ``timeout`` for in-flight requests, then stop the loop.

        Call it from outside the loop thread; from the loop thread nothing
        can be drained.
        """
        with self._lock:
            self._stopped = True
            if not self.running or self._loop is None:
                return
            loop, thread = self._loop, self._thread
            pending = list(self._pending)
        if thread is threading.current_thread():
            logger.warning("Dispatcher %s stopped from its own loop; skipping drain", self.name)
            pending = []

        if pending:
            logger.info("Draining %d in-flight request(s)", len(pending))
            done = threading.Event()
            remaining = len(pending)
            counter_lock = threading.Lock()

            def _finished(_future) -> None:
                nonlocal remaining
                with counter_lock:
                    remaining -= 1
                    if remaining == 0:
                        done.set()

            for future in pending:
                future.add_done_callback(_finished)
            if not done.wait(timeout):
                logger.warning("Dispatcher %s did not drain within %.1fs", self.name, timeout)
                for future in pending:
                    future.cancel()

        loop.call_soon_threadsafe(loop.stop)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Dispatcher %s did not stop within timeout", self.name)
        logger.debug("Dispatcher %s stopped", self.name)
