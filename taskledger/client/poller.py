# taskledger/client/poller.py
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import requests

from . import POLL_MAX_SECONDS, POLL_MIN_SECONDS

log = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError):
        resp = exc.response
        return resp is not None and resp.status_code >= 500
    return False


class Poller:
    """Re-run a read on a fixed interval and keep the last good result.

    Transient failures (network down, timeout, 5xx) are logged and skipped until
    the next tick. Anything else propagates; on the background thread it is
    logged and kept in ``last_error``.
    """

    def __init__(self, fetch: Callable[[], Any], interval: float = POLL_MAX_SECONDS,
                 on_update: Callable[[Any], None] | None = None):
        self.fetch = fetch
        self.interval = min(max(float(interval), POLL_MIN_SECONDS), POLL_MAX_SECONDS)
        self.on_update = on_update
        self.snapshot: Any = None
        self.last_success_at: float | None = None
        self.consecutive_failures = 0
        self.last_error: BaseException | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self):
        try:
            data = self.fetch()
        except Exception as e:
            if not is_transient(e):
                raise
            self.consecutive_failures += 1
            log.warning("Poll failed (%s in a row), keeping last snapshot: %s", self.consecutive_failures, e)
            return self.snapshot

        self.snapshot = data
        self.last_success_at = time.time()
        self.consecutive_failures = 0
        if self.on_update is not None:
            self.on_update(data)
        return data

    def run(self, max_ticks: int | None = None):
        ticks = 0
        while not self._stop.is_set():
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._stop.wait(self.interval)

    def _run_in_background(self):
        try:
            self.run()
        except Exception as e:
            self.last_error = e
            log.exception("Poller stopped after a non-transient error")

    def start(self):
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self.last_error = None
        self._thread = threading.Thread(target=self._run_in_background, name="taskledger-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
