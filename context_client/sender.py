"""Relays client events (decision / generation_result / generation_error) to the UI."""

import logging
import statistics
import time
from concurrent.futures import Future, ThreadPoolExecutor

import requests

log = logging.getLogger(__name__)

EVENT_DECISION = "decision"
EVENT_GENERATION_RESULT = "generation_result"
EVENT_GENERATION_ERROR = "generation_error"


class EventSender:
    """POSTs events to the relay. Never raises; failures are logged."""

    def __init__(self, url: str = "http://localhost:18791",
                 enabled: bool = True, timeout_s: float = 2):
        self.url = url.rstrip("/")
        self.enabled = enabled
        self.timeout_s = timeout_s
        self._latencies: list[float] = []
        self._last_stats_ts: float = time.time()
        self._stats_interval = 60
        self._failures = 0
        # One worker keeps events in emission order
        self._executor = ThreadPoolExecutor(max_workers=1,
                                            thread_name_prefix="event-sender")

    @classmethod
    def from_config(cls, config: dict) -> "EventSender":
        relay_cfg = config.get("relay", {})
        return cls(url=relay_cfg.get("url", "http://localhost:18791"),
                   enabled=relay_cfg.get("enabled", False))

    def emit(self, name: str, payload: dict) -> Future | None:
        """Queues an event for delivery off the caller's thread."""
        log.debug("event %s: %s", name, payload)
        if not self.enabled:
            return None
        return self._executor.submit(self.send, name, payload)

    def send(self, name: str, payload: dict) -> bool:
        """Blocking POST of one event. Returns True on 2xx."""
        body = {"type": name, "ts": time.time() * 1000, **payload}
        t0 = time.time()
        try:
            resp = requests.post(f"{self.url}/context/event", json=body,
                                 timeout=self.timeout_s)
        except requests.RequestException as e:
            self._failures += 1
            log.warning("relay send failed: %s", e)
            return False

        self._latencies.append((time.time() - t0) * 1000)
        self._maybe_log_stats()
        if resp.status_code >= 300:
            self._failures += 1
            log.warning("relay returned %d for %s event", resp.status_code, name)
            return False
        return True

    def _maybe_log_stats(self):
        now = time.time()
        if now - self._last_stats_ts < self._stats_interval or not self._latencies:
            return
        log.info("relay latency: median %.0fms, max %.0fms over %d sends (%d failed)",
                 statistics.median(self._latencies), max(self._latencies),
                 len(self._latencies), self._failures)
        self._latencies.clear()
        self._last_stats_ts = now

    def close(self) -> None:
        self._executor.shutdown(wait=True)
