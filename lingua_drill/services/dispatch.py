from __future__ import annotations
import threading

from kivy.logger import Logger


class ClockScheduler:
    """Thin wrapper over the Kivy Clock so components can be driven by a fake loop in tests."""

    def schedule_once(self, callback, timeout: float = 0):
        from kivy.clock import Clock
        return Clock.schedule_once(callback, timeout)

    def schedule_interval(self, callback, interval: float):
        from kivy.clock import Clock
        return Clock.schedule_interval(callback, interval)


class ThreadDispatcher:
    """Runs blocking calls off the loop thread and delivers the outcome back on it."""

    def __init__(self, scheduler: ClockScheduler | None = None):
        self._scheduler = scheduler or ClockScheduler()

    def submit(self, fn, *args, on_result=None, on_error=None):
        def worker():
            try:
                value = fn(*args)
            except Exception as e:
                Logger.debug(f"Dispatch: {getattr(fn, '__name__', fn)} failed: {e}")
                if on_error is not None:
                    self._scheduler.schedule_once(lambda dt, err=e: on_error(err), 0)
                return
            if on_result is not None:
                self._scheduler.schedule_once(lambda dt: on_result(value), 0)
        threading.Thread(target=worker, daemon=True).start()
