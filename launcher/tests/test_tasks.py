"""
Tests for supervised background tasks.
"""

import threading

from dayz_launcher.tasks import BackgroundTask, TaskGroup


class TestTaskGroup:

    def test_cancel_stops_all_tasks(self):
        ticks = []

        def loop(stop, interval):
            while not stop.wait(interval):
                ticks.append(1)

        group = TaskGroup()
        a = group.spawn("a", loop, 0.01)
        b = group.spawn("b", loop, 0.01)
        group.cancel(timeout=2)

        assert not a.is_alive()
        assert not b.is_alive()

    def test_crashing_task_is_logged(self, caplog):
        def boom(stop, interval):
            raise RuntimeError("loop died")

        task = BackgroundTask("boom", boom, 1)
        task.start()
        task.join(2)

        assert not task.is_alive()
        assert "Background task boom crashed" in caplog.text

    def test_tasks_share_stop_event(self):
        group = TaskGroup()
        seen = []
        group.spawn("x", lambda stop, interval: seen.append(stop), 1)
        group.cancel()
        assert seen == [group.stop_event]
