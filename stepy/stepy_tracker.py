"""
Execution progress notifications for presentation layers.
"""
from typing import Callable, List


class ExecutionTracker:
    """Fan-out channel for line, start and stop events.

    Subscribers are plain callables appended to the public lists (or added
    with `subscribe`). Notifications are fire-and-forget.
    """

    def __init__(self):
        self.on_line_executed: List[Callable[[int], None]] = []
        self.on_execution_started: List[Callable[[], None]] = []
        self.on_execution_stopped: List[Callable[[], None]] = []

    def subscribe(self, on_line=None, on_started=None, on_stopped=None):
        if on_line is not None:
            self.on_line_executed.append(on_line)
        if on_started is not None:
            self.on_execution_started.append(on_started)
        if on_stopped is not None:
            self.on_execution_stopped.append(on_stopped)

    def unsubscribe(self, callback):
        for subscribers in (self.on_line_executed, self.on_execution_started, self.on_execution_stopped):
            while callback in subscribers:
                subscribers.remove(callback)

    def notify_line_execution(self, line: int):
        for cb in list(self.on_line_executed):
            cb(line)

    def notify_execution_started(self):
        for cb in list(self.on_execution_started):
            cb()

    def notify_execution_stopped(self):
        for cb in list(self.on_execution_stopped):
            cb()
