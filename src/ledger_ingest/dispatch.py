"""Background task dispatch and fixed-delay scheduling."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """Fire-and-forget execution on a thread pool.

    ``submit`` returns as soon as the task is queued. Exceptions raised by a
    task are logged with its name and go no further.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ledger-task"
        )

    def submit(self, name: str, fn: Callable[..., Any], *args: Any) -> None:
        try:
            self._executor.submit(self._run, name, fn, args)
        except RuntimeError:
            logger.warning("Dispatcher is shut down; dropped task %s", name)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _run(name: str, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Task %s failed", name)


class PeriodicTask:
    """Run a job repeatedly on its own thread with a fixed delay.

    The delay is measured from the end of one run to the start of the next,
    so a run never overlaps itself.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Any],
        interval_seconds: float,
        *,
        initial_delay: float = 0.0,
    ) -> None:
        self.name = name
        self._job = job
        self._interval = interval_seconds
        self._initial_delay = initial_delay
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Started %s (every %ss)", self.name, self._interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> None:
        """Run the job now, logging instead of raising on failure."""
        try:
            self._job()
        except Exception:
            logger.exception("Periodic task %s failed", self.name)

    def _loop(self) -> None:
        if self._stop.wait(self._initial_delay):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self._interval):
                break
