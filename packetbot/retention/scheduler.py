"""Background scheduling of retention passes."""
from __future__ import annotations

import threading
import time
from typing import Callable

from packetbot.common.discord_client import ChatClient
from packetbot.common.logger import logger
from packetbot.retention.enforcer import PassReport, RetentionEnforcer


class RetentionScheduler:
    """Runs a pass as soon as the client is ready, then on a fixed interval.

    Passes are strictly sequential. A pass requested while another is still
    running is skipped rather than queued. When a pass overruns the interval
    the next one starts immediately and missed ticks are dropped.
    """

    def __init__(
        self,
        client: ChatClient,
        enforcer: RetentionEnforcer,
        interval_s: float = 15.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._enforcer = enforcer
        self._interval = max(float(interval_s), 0.0)
        self._monotonic = monotonic
        self._stop = threading.Event()
        self._pass_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._thread_lock = threading.Lock()
        self.passes = 0
        self.last_report: PassReport | None = None

    def start(self) -> None:
        """Arm the scheduler; the first pass waits for the client's ready signal."""

        self._client.on_ready(self._launch)

    def _launch(self) -> None:
        with self._thread_lock:
            if self._thread is not None or self._stop.is_set():
                return
            self._thread = threading.Thread(target=self._run, name="retention-scheduler", daemon=True)
            self._thread.start()
        logger.info("Retention scheduler started; interval {}s", self._interval)

    def _run(self) -> None:
        next_run = self._monotonic()
        while not self._stop.is_set():
            logger.debug("running expiry pass")
            self.run_pass_once()
            next_run += self._interval
            now = self._monotonic()
            if next_run < now:
                next_run = now
            self._stop.wait(next_run - now)

    def run_pass_once(self) -> PassReport | None:
        """Run one pass unless another is already in progress."""

        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Retention pass already running; skipping this tick")
            return None
        try:
            report = self._enforcer.run_pass()
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Retention pass failed: {}", exc)
            return None
        finally:
            self._pass_lock.release()
        self.passes += 1
        self.last_report = report
        return report

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        with self._thread_lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = ["RetentionScheduler"]
