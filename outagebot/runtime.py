from __future__ import annotations

import logging
import signal
import threading

from outagebot.bot import TelegramPoller
from outagebot.commands import CommandHandler
from outagebot.config import Settings
from outagebot.loe_client import fetch_schedules
from outagebot.scheduler import PollScheduler
from outagebot.serial_queue import SerialQueue
from outagebot.store import SubscriberStore
from outagebot.telegram_notifier import Dispatcher
from outagebot.worker import Watcher

logger = logging.getLogger(__name__)


def build_watcher(settings: Settings, store: SubscriberStore) -> Watcher:
    return Watcher(
        store,
        fetch=lambda: fetch_schedules(settings),
        send=Dispatcher(settings.telegram_bot_token),
    )


def run_check_once(settings: Settings) -> int:
    store = SubscriberStore(settings.state_file)
    store.load()
    queue = SerialQueue()
    try:
        return queue.call(build_watcher(settings, store).check_all)
    finally:
        queue.shutdown(cancel_pending=False)


def run_forever(settings: Settings, stop_event: threading.Event | None = None) -> None:
    stop_event = stop_event or threading.Event()

    store = SubscriberStore(settings.state_file)
    store.load()
    queue = SerialQueue()
    watcher = build_watcher(settings, store)
    handler = CommandHandler(settings, store, queue, watcher, reply=watcher.send)
    poller = TelegramPoller(settings.telegram_bot_token, handler)
    scheduler = PollScheduler(settings, queue, watcher.check_all)

    if threading.current_thread() is threading.main_thread():

        def _on_signal(signum, frame) -> None:
            logger.warning("Received signal %s", signum)
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, _on_signal)

    poller.prepare()
    poller.start()
    scheduler.start()
    logger.info("Bot is running")

    try:
        while not stop_event.wait(1.0):
            pass
    finally:
        logger.info("Shutting down...")
        poller.stop()
        scheduler.stop(timeout=5.0)
        # Units already queued are dropped; the one in flight is allowed to finish.
        queue.shutdown(cancel_pending=True)
        logger.info("Shutdown complete")
