"""Tests for the application lifetime signal bus."""

import asyncio
import threading
import time
import unittest

from stagehand.core.lifecycle import (
    ApplicationLifetime,
    ApplicationState,
    LifecycleSignal,
    sleep_then,
)


class TestApplicationLifetime(unittest.TestCase):
    """Test signal ordering, idempotence and fault isolation."""

    def setUp(self):
        self.lifetime = ApplicationLifetime()
        self.events = []

    def _record(self, label):
        return lambda: self.events.append(label)

    def test_initial_state(self):
        self.assertEqual(self.lifetime.state, ApplicationState.NOT_STARTED)
        self.assertFalse(self.lifetime.is_running)
        self.assertFalse(self.lifetime.stopping_requested)

    def test_signals_fire_in_order_once_each(self):
        for sig in LifecycleSignal:
            self.lifetime.register(sig, self._record(sig.value))
            self.lifetime.register(sig, self._record(sig.value + "-2"))

        self.assertTrue(self.lifetime.notify_started())
        self.lifetime.stop_application()

        self.assertEqual(
            self.events,
            ["started", "started-2", "stopping", "stopping-2", "stopped", "stopped-2"],
        )
        self.assertEqual(self.lifetime.state, ApplicationState.STOPPED)

    def test_signals_fire_with_no_callbacks(self):
        self.lifetime.notify_started()
        self.assertEqual(self.lifetime.state, ApplicationState.STARTED)
        self.lifetime.stop_application()
        self.assertEqual(self.lifetime.state, ApplicationState.STOPPED)
        for sig in LifecycleSignal:
            self.assertTrue(self.lifetime.has_fired(sig))

    def test_stop_application_is_idempotent(self):
        self.lifetime.on_stopping(self._record("stopping"))
        self.lifetime.on_stopped(self._record("stopped"))
        self.lifetime.notify_started()

        self.lifetime.stop_application("first")
        self.lifetime.stop_application("second")

        self.assertEqual(self.events, ["stopping", "stopped"])
        self.assertEqual(self.lifetime.stop_reason, "first")

    def test_notify_started_twice(self):
        self.lifetime.on_started(self._record("started"))

        self.assertTrue(self.lifetime.notify_started())
        self.assertFalse(self.lifetime.notify_started())
        self.assertEqual(self.events, ["started"])

    def test_stop_before_start_is_latched(self):
        for sig in LifecycleSignal:
            self.lifetime.register(sig, self._record(sig.value))

        self.lifetime.stop_application("early")
        self.assertEqual(self.events, [])
        self.assertEqual(self.lifetime.state, ApplicationState.NOT_STARTED)

        self.lifetime.notify_started()
        self.assertEqual(self.events, ["started", "stopping", "stopped"])

    def test_failing_callback_does_not_block_others(self):
        def broken():
            raise RuntimeError("boom")

        self.lifetime.on_stopping(broken)
        self.lifetime.on_stopping(self._record("stopping"))
        self.lifetime.on_stopped(self._record("stopped"))
        self.lifetime.notify_started()

        with self.assertLogs("stagehand.core.lifecycle", level="ERROR"):
            self.lifetime.stop_application()

        self.assertEqual(self.events, ["stopping", "stopped"])
        self.assertEqual(len(self.lifetime.faults), 1)
        fault = self.lifetime.faults[0]
        self.assertEqual(fault.callback, "broken")
        self.assertEqual(fault.signal, "stopping")
        self.assertIsInstance(fault.error, RuntimeError)

    def test_register_after_fire_runs_immediately(self):
        self.lifetime.notify_started()
        self.lifetime.on_started(self._record("late"))

        self.assertEqual(self.events, ["late"])
        self.assertEqual(self.lifetime.callback_count(LifecycleSignal.STARTED), 0)

    def test_callbacks_may_stop_from_started(self):
        self.lifetime.on_started(lambda: self.lifetime.stop_application("from started"))
        self.lifetime.on_stopped(self._record("stopped"))

        self.lifetime.notify_started()

        self.assertEqual(self.events, ["stopped"])
        self.assertTrue(self.lifetime.wait_for_shutdown(timeout=0))

    def test_wait_for_stopping_from_other_thread(self):
        self.lifetime.notify_started()
        timer = threading.Timer(0.05, self.lifetime.stop_application)
        timer.start()
        try:
            self.assertTrue(self.lifetime.wait_for_stopping(timeout=2))
            self.assertTrue(self.lifetime.wait_for_shutdown(timeout=2))
        finally:
            timer.cancel()

    def test_wait_times_out_without_stop(self):
        self.assertFalse(self.lifetime.wait_for_stopping(timeout=0.01))

    def test_until_stopping_is_cooperative(self):
        async def long_running():
            ticks = 0
            watcher = asyncio.ensure_future(self.lifetime.until_stopping(poll_interval=0.01))
            while not watcher.done():
                ticks += 1
                if ticks == 3:
                    self.lifetime.stop_application("drain")
                await asyncio.sleep(0.01)
            return ticks

        self.lifetime.notify_started()
        ticks = asyncio.run(long_running())
        self.assertGreaterEqual(ticks, 3)
        self.assertTrue(self.lifetime.stopping_requested)

    def test_sleep_then_delays_callback(self):
        started = time.monotonic()
        sleep_then(0.05, self._record("done"))()

        self.assertEqual(self.events, ["done"])
        self.assertGreaterEqual(time.monotonic() - started, 0.04)

    def test_stop_runner_receives_stop_sequence(self):
        sequences = []
        self.lifetime.set_stop_runner(sequences.append)
        self.lifetime.on_stopped(self._record("stopped"))
        self.lifetime.notify_started()

        self.lifetime.stop_application()
        self.assertEqual(self.events, [])
        self.assertFalse(self.lifetime.wait_for_shutdown(timeout=0))

        sequences[0]()
        self.assertEqual(self.events, ["stopped"])
        self.assertTrue(self.lifetime.wait_for_shutdown(timeout=0))

    def test_independent_instances(self):
        other = ApplicationLifetime()
        self.lifetime.notify_started()

        self.assertEqual(other.state, ApplicationState.NOT_STARTED)


if __name__ == "__main__":
    unittest.main()
