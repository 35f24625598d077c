"""
Poller
Calls fetch() every `interval` seconds on a background thread. A tick is
skipped while the previous fetch is still running, and stop() ends the
loop without waiting for the next tick.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class Poller:
    def __init__(self, fetch, interval=3.0, on_result=None, on_error=None):
        self.fetch = fetch
        self.interval = interval
        self.on_result = on_result
        self.on_error = on_error
        self.skipped = 0
        self._in_flight = threading.Lock()
        self._stopped = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return self
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name="poller", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout=None):
        self._stopped.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _loop(self):
        self.tick()
        while not self._stopped.wait(self.interval):
            self.tick()

    def tick(self):
        """
        Start one fetch in the background.
        Returns the worker thread, or None when the tick was skipped.
        """
        if self._stopped.is_set():
            return None
        if not self._in_flight.acquire(blocking=False):
            self.skipped += 1
            logger.debug("Poll skipped; previous fetch still in flight")
            return None

        worker = threading.Thread(target=self._run_fetch, daemon=True)
        worker.start()
        return worker

    def _run_fetch(self):
        try:
            result = self.fetch()
        except Exception as e:
            if self.on_error is None:
                logger.exception("Poll fetch failed")
            else:
                self.on_error(e)
        else:
            if self.on_result is not None and not self._stopped.is_set():
                self.on_result(result)
        finally:
            self._in_flight.release()
