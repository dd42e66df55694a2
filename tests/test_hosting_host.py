"""End-to-end tests: a real server on an ephemeral port."""

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from stagehand.core.errors import ConfigurationError
from stagehand.core.lifecycle import ApplicationLifetime, ApplicationState
from stagehand.core.stages import Stage
from stagehand.hosting.builder import HostBuilder, Startup
from stagehand.samples import SampleStartup


def _host(**overrides):
    settings = {"server": {"port": 0, "shutdown_timeout": 2.0}}
    settings.update(overrides)
    return HostBuilder(overrides=settings, configure_logging=False).use_startup(SampleStartup).build()


def test_serves_requests_and_fires_signals_in_order():
    host = _host()
    events = []
    host.lifetime.on_started(lambda: events.append("started"))
    host.lifetime.on_stopping(lambda: events.append("stopping"))
    host.lifetime.on_stopped(lambda: events.append("stopped"))

    host.start()
    try:
        assert host.lifetime.state is ApplicationState.STARTED
        address, port = host.server_address
        resp = requests.get(f"http://{address}:{port}/hello", headers={"X-User-Id": "7"}, timeout=5)
        assert resp.status_code == 200
        assert resp.text.startswith("Hello user-7 from /hello\n")
    finally:
        host.stop("test done")

    assert events == ["started", "stopping", "stopped"]
    assert host.lifetime.state is ApplicationState.STOPPED
    assert host.lifetime.stop_reason == "test done"
    assert not host.dispatcher.running


def test_stop_from_request_drains_in_flight_requests():
    class StopStage(Stage):
        async def __call__(self, context, next_stage):
            if context.path == "/shutdown":
                context.resolve(ApplicationLifetime).stop_application("requested")
                await asyncio.sleep(0.05)
                context.response.write("bye")
                return
            if context.path == "/slow":
                await asyncio.sleep(0.5)
                context.response.write("slow done")
                return
            await next_stage(context)

    host = (
        HostBuilder(overrides={"server": {"port": 0}}, configure_logging=False)
        .configure(lambda app, lifetime, settings: app.use(StopStage()))
        .build()
    )
    stop_threads = []
    host.lifetime.on_stopping(lambda: stop_threads.append(threading.current_thread().name))
    host.start()
    base = "http://%s:%d" % host.server_address

    with ThreadPoolExecutor(max_workers=1) as pool:
        slow = pool.submit(requests.get, f"{base}/slow", timeout=5)
        deadline = time.monotonic() + 5
        while host.dispatcher.pending() == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        resp = requests.get(f"{base}/shutdown", timeout=5)

        assert resp.status_code == 200
        assert resp.text == "bye"
        assert slow.result(timeout=5).text == "slow done"

    assert host.lifetime.wait_for_shutdown(timeout=5)
    assert stop_threads == ["stagehand-stop"]
    assert not host.dispatcher.running


def test_run_returns_after_stop(monkeypatch):
    host = _host()
    monkeypatch.setattr(host.lifetime, "install_signal_handlers", lambda: False)
    host.lifetime.on_started(
        lambda: threading.Timer(0.05, host.stop, args=("timer",)).start()
    )

    host.run()

    assert host.lifetime.state is ApplicationState.STOPPED


def test_cannot_start_twice():
    host = _host()
    host.start()
    try:
        with pytest.raises(RuntimeError):
            host.start()
    finally:
        host.stop()


def test_missing_capability_detected_at_build():
    class Needy(Stage):
        requires = ("database",)

        async def __call__(self, context, next_stage):
            await next_stage(context)

    class NeedyStartup(Startup):
        def configure_services(self, services):
            pass

        def configure(self, app, lifetime):
            app.use_stage(Needy)

    with pytest.raises(ConfigurationError, match="database"):
        HostBuilder(configure_logging=False).use_startup(NeedyStartup).build()


def test_builder_rejects_settings_and_overrides():
    from stagehand.core.config import HostSettings

    with pytest.raises(ConfigurationError):
        HostBuilder(settings=HostSettings(), overrides={"environment": "Development"})


def test_builder_builds_once():
    builder = HostBuilder(configure_logging=False)
    builder.build()

    with pytest.raises(ConfigurationError):
        builder.build()


def test_stopped_delay_setting_used():
    host = _host(lifetime={"stopped_delay": 0.0})

    assert host.settings.stopped_delay == 0.0
    assert host.services.resolve(type(host.settings)) is host.settings
