"""Tests for background timers."""

import threading

from filecache.scheduler import PeriodicTask


class TestPeriodicTask:
    """Test the daemon-thread timer."""

    def test_runs_repeatedly(self):
        calls = []
        done = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 3:
                done.set()

        task = PeriodicTask(0.01, tick, name="test")
        task.start()
        try:
            assert done.wait(5)
        finally:
            task.stop()
        assert not task.running

    def test_exceptions_do_not_stop_schedule(self):
        calls = []
        done = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 2:
                done.set()
            raise RuntimeError("tick failed")

        task = PeriodicTask(0.01, tick, name="test")
        task.start()
        try:
            assert done.wait(5)
        finally:
            task.stop()

    def test_thread_is_daemon(self):
        task = PeriodicTask(60, lambda: None, name="test")
        task.start()
        try:
            assert task.running
            assert task._thread.daemon
        finally:
            task.stop()

    def test_stop_before_start(self):
        task = PeriodicTask(60, lambda: None, name="test")
        task.stop()
        assert not task.running
