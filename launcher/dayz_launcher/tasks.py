from __future__ import annotations
import threading
from typing import Callable, List, Optional
from .logging_setup import get_logger

log = get_logger("dayz.launcher.tasks")


class BackgroundTask:
    """
    A named daemon thread running `target(stop_event, interval)`.

    The target is expected to return once the stop event is set; anything it
    raises is logged instead of dying silently with the thread.
    """

    def __init__(self, name: str, target: Callable[[threading.Event, float], None], interval: float,
                 stop: Optional[threading.Event] = None):
        self.name = name
        self.target = target
        self.interval = interval
        self.stop_event = stop or threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _main(self) -> None:
        try:
            self.target(self.stop_event, self.interval)
        except Exception as e:
            log.exception("Background task %s crashed: %s", self.name, e)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._main, name=self.name, daemon=True)
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


class TaskGroup:
    def __init__(self):
        self.stop_event = threading.Event()
        self.tasks: List[BackgroundTask] = []

    def spawn(self, name: str, target: Callable[[threading.Event, float], None], interval: float) -> BackgroundTask:
        task = BackgroundTask(name, target, interval, stop=self.stop_event)
        self.tasks.append(task)
        task.start()
        return task

    def cancel(self, timeout: float = 5.0) -> None:
        self.stop_event.set()
        for task in self.tasks:
            task.join(timeout)
            if task.is_alive():
                log.warning("Background task %s did not stop within %ss", task.name, timeout)
