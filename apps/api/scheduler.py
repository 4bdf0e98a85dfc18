from __future__ import annotations

from typing import Callable, Any
import threading

from apscheduler.schedulers.background import BackgroundScheduler


class SchedulerWrapper:
    def __init__(self):
        self._scheduler = BackgroundScheduler()
        self._started = False
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._started

    def start(self):
        with self._lock:
            if not self._started:
                self._scheduler.start()
                self._started = True

    def add_interval_job(
        self,
        func: Callable[..., Any],
        minutes: int,
        id: str,
        *,
        max_instances: int = 1,
        coalesce: bool = True,
        misfire_grace_time: int | None = 60,
    ):
        # Defaults chosen to reduce log noise and avoid piling up missed runs.
        self._scheduler.add_job(
            func,
            "interval",
            minutes=minutes,
            id=id,
            replace_existing=True,
            max_instances=max_instances,
            coalesce=coalesce,
            misfire_grace_time=misfire_grace_time,
        )

    def get_job(self, id: str):
        return self._scheduler.get_job(id)

    def shutdown(self):
        with self._lock:
            if self._started:
                self._scheduler.shutdown(wait=False)
                self._started = False
