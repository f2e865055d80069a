"""Screen capture via Pillow ImageGrab, producing fingerprinted samples."""

import logging
import time

from PIL import Image, ImageGrab

from .app_detector import AppDetector
from .errors import CaptureError
from .fingerprint import fingerprint
from .gate import Sample

log = logging.getLogger(__name__)


class ScreenCapture:
    """Grabs the screen, downscales it, and attaches fingerprint + app label.

    Blocking; the scheduler calls it from a worker thread.
    """

    def __init__(self, scale: float = 0.5, hash_size: int = 8,
                 app_detector: AppDetector | None = None):
        self.scale = scale
        self.hash_size = hash_size
        self.app_detector = app_detector or AppDetector()
        self.stats_ok = 0
        self.stats_fail = 0
        self._last_stats_time = time.time()
        self._stats_interval = 60  # log stats every 60s

    @classmethod
    def from_config(cls, config: dict) -> "ScreenCapture":
        cap_cfg = config.get("capture", {})
        return cls(scale=cap_cfg.get("scale", 0.5),
                   hash_size=cap_cfg.get("hashSize", 8))

    def capture_frame(self) -> tuple[Image.Image, float]:
        """Returns (PIL Image, timestamp). Raises CaptureError."""
        ts = time.time()
        try:
            img = ImageGrab.grab()
        except OSError as e:
            self.stats_fail += 1
            raise CaptureError(f"screen grab failed: {e}") from e
        if img is None:
            self.stats_fail += 1
            raise CaptureError("screen grab returned no image")

        if self.scale != 1.0:
            new_w = max(1, int(img.width * self.scale))
            new_h = max(1, int(img.height * self.scale))
            img = img.resize((new_w, new_h), Image.LANCZOS)

        self.stats_ok += 1
        return img, ts

    def capture(self) -> Sample:
        """One full sample: frame, fingerprint, frontmost app."""
        try:
            img, ts = self.capture_frame()
        finally:
            self._maybe_log_stats()
        return Sample(
            image=img,
            fingerprint=fingerprint(img, hash_size=self.hash_size),
            source_label=self.app_detector.get_active_app(),
            captured_at=ts,
        )

    def _maybe_log_stats(self):
        now = time.time()
        if now - self._last_stats_time >= self._stats_interval:
            total = self.stats_ok + self.stats_fail
            rate = (self.stats_ok / total * 100) if total > 0 else 0
            log.info("capture stats: %d ok, %d fail (%.0f%% success, %d total)",
                     self.stats_ok, self.stats_fail, rate, total)
            if self.stats_fail > 0 and self.stats_ok == 0:
                log.warning("all captures failing, check screen recording permissions")
            self._last_stats_time = now
