from __future__ import annotations

import logging
import random
import threading
from typing import Callable

from outagebot.config import Settings
from outagebot.serial_queue import SerialQueue

logger = logging.getLogger(__name__)


def next_delay(settings: Settings, rng: random.Random | None = None) -> float:
    """Seconds until the next background pass.

    With a [min, max] range configured the delay is redrawn on every call, so
    independent deployments don't hit the upstream in lockstep.
    """
    bounds = settings.interval_range
    if bounds is not None:
        return (rng or random).uniform(*bounds)
    return settings.check_interval_seconds


def format_interval(seconds: float) -> str:
    sec = round(seconds)
    if sec < 60:
        return f"{sec} seconds"
    return f"{round(sec / 60)} minutes"


def describe_interval(settings: Settings) -> str:
    bounds = settings.interval_range
    if bounds is not None:
        return f"{format_interval(bounds[0])} to {format_interval(bounds[1])}"
    return format_interval(settings.check_interval_seconds)


class PollScheduler:
    """Submits ``check_all`` to the queue once shortly after start, then on every delay.

    The scheduler never waits for a submitted pass: a pass stuck on a slow
    upstream only holds up the queue, the next one is still enqueued on time.
    """

    def __init__(
        self,
        settings: Settings,
        queue: SerialQueue,
        check_all: Callable[[], int],
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self.queue = queue
        self.check_all = check_all
        self.rng = rng
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            logger.warning("Scheduler already started")
            return
        self._thread = threading.Thread(target=self._run, name="poll-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started (interval: %s)", describe_interval(self.settings))

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Scheduler stopped")

    def trigger(self) -> bool:
        if self.queue.closed:
            return False
        logger.info("Checking all watching chats...")
        try:
            self.queue.submit(self.check_all)
        except RuntimeError:
            # Queue closed between the check and the submit.
            return False
        return True

    def _run(self) -> None:
        delay = self.settings.initial_check_delay_seconds
        while not self._stop.wait(delay):
            self.trigger()
            delay = next_delay(self.settings, self.rng)
