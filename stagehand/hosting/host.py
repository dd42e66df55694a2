"""The running application: pipeline, services and lifetime behind a server."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from werkzeug.serving import BaseWSGIServer, make_server

from ..core.config import HostSettings
from ..core.container import ServiceRegistry
from ..core.context import RequestContext
from ..core.lifecycle import ApplicationLifetime, ApplicationState
from ..core.logging import get_logger, log_with_context
from ..core.pipeline import Pipeline
from .dispatcher import Dispatcher
from .web import create_wsgi_app

LOGGER = get_logger(__name__)


class Host:
    """Serves a built pipeline and drives the lifetime signals.

    ``start()`` binds the server and then fires Started; Stopping shuts the
    server down and Stopped drains the dispatcher.
    """

    def __init__(
        self,
        settings: HostSettings,
        services: ServiceRegistry,
        pipeline: Pipeline,
        lifetime: ApplicationLifetime,
    ):
        self.settings = settings
        self.services = services
        self.pipeline = pipeline
        self.lifetime = lifetime
        self.dispatcher = Dispatcher()
        self._app: Any = None
        self._server: BaseWSGIServer | None = None
        self._serve_thread: threading.Thread | None = None

        lifetime.on_stopping(self._shutdown_server, name="host.shutdown_server")
        lifetime.on_stopped(self._stop_dispatcher, name="host.stop_dispatcher")
        lifetime.set_stop_runner(self._run_stop_sequence)

    @property
    def app(self):
        """The Flask WSGI application (created on first access)."""
        if self._app is None:
            self._app = create_wsgi_app(self)
        return self._app

    @property
    def server_address(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return host, port

    async def handle_async(self, context: RequestContext) -> RequestContext:
        """Run one request through the pipeline inside a fresh service scope."""
        with self.services.create_scope() as scope:
            context.services = scope
            try:
                await self.pipeline.handle(context)
            finally:
                context.services = None
        log_with_context(
            LOGGER,
            logging.DEBUG,
            "Request finished",
            request_id=context.request_id,
            method=context.method,
            path=context.path,
            status=context.response.status,
        )
        return context

    def handle(self, context: RequestContext) -> RequestContext:
        """Blocking entry point used by WSGI worker threads."""
        return self.dispatcher.submit(self.handle_async(context))

    # Lifecycle ------------------------------------------------------------
    def start(self) -> None:
        """Bind, begin serving on a background thread, then fire Started."""
        if self.lifetime.state is not ApplicationState.NOT_STARTED:
            raise RuntimeError(f"Host cannot start in state {self.lifetime.state.value}")
        self.dispatcher.start()
        self._server = make_server(
            self.settings.host, self.settings.port, self.app, threaded=True
        )
        self._serve_thread = threading.Thread(
            target=self._server.serve_forever, name="stagehand-server", daemon=True
        )
        self._serve_thread.start()
        host, port = self.server_address
        LOGGER.info("Now listening on: http://%s:%d", host, port)
        LOGGER.info("Hosting environment: %s", self.settings.environment)
        self.lifetime.notify_started()

    def run(self) -> None:
        """Start and block until the application has fully stopped."""
        self.lifetime.install_signal_handlers()
        self.start()
        LOGGER.info("Application started. Press Ctrl+C to shut down.")
        # Short waits keep the main thread responsive to signal handlers.
        while not self.lifetime.wait_for_shutdown(timeout=0.5):
            pass

    def stop(self, reason: str = "host stop") -> None:
        self.lifetime.stop_application(reason)

    def _run_stop_sequence(self, sequence: Callable[[], None]) -> None:
        # Stopped drains the loop, so the sequence must not run on it.
        if self.dispatcher.owns_current_thread():
            threading.Thread(target=sequence, name="stagehand-stop").start()
        else:
            sequence()

    def _shutdown_server(self) -> None:
        if self._server is None:
            return
        LOGGER.info("Stopping server")
        # shutdown() blocks until serve_forever returns; never call it from that thread.
        if self._serve_thread is not threading.current_thread():
            self._server.shutdown()
        self._server.server_close()
        if self._serve_thread is not None and self._serve_thread is not threading.current_thread():
            self._serve_thread.join(timeout=self.settings.shutdown_timeout)

    def _stop_dispatcher(self) -> None:
        self.dispatcher.stop(timeout=self.settings.shutdown_timeout)


__all__ = ["Host"]
