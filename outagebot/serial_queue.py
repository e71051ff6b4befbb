from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable

logger = logging.getLogger(__name__)

_STOP = object()


class SerialQueue:
    """FIFO of units of work executed one at a time on a single thread.

    Every mutation of the subscriber store goes through here: bot commands,
    scheduled polls and forced checks alike. A unit that raises only fails its
    own Future; the next unit runs as usual.
    """

    def __init__(self, name: str = "state-queue") -> None:
        self._queue: queue.Queue[Any] = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        with self._lock:
            if self._closed:
                raise RuntimeError("SerialQueue is shut down")
            future: Future = Future()
            self._queue.put((future, fn, args, kwargs))
        return future

    def call(self, fn: Callable[..., Any], *args: Any, timeout: float | None = None, **kwargs: Any) -> Any:
        # Never call this from inside a unit: the worker would wait on itself.
        return self.submit(fn, *args, **kwargs).result(timeout=timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            future, fn, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                logger.error("Queued unit %s failed (%s: %s)", getattr(fn, "__name__", fn), type(e).__name__, e)
                future.set_exception(e)
            else:
                future.set_result(result)

    def shutdown(self, *, cancel_pending: bool = True, timeout: float | None = None) -> None:
        """Stop accepting units and wait for the one in flight.

        With ``cancel_pending`` units that have not started yet are cancelled,
        otherwise they are drained first.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if cancel_pending:
                while True:
                    try:
                        item = self._queue.get_nowait()
                    except queue.Empty:
                        break
                    if item is not _STOP:
                        item[0].cancel()
            self._queue.put(_STOP)
        self._thread.join(timeout)
