"""Frontmost application name, used as the out-of-band source label."""

import logging
import platform
import subprocess

log = logging.getLogger(__name__)

_FRONTMOST_SCRIPT = (
    'tell application "System Events" to '
    'get name of first process whose frontmost is true'
)


class AppDetector:
    """Reads the frontmost app via osascript (macOS only, may need Accessibility)."""

    def __init__(self, enabled: bool | None = None, timeout_s: float = 2):
        self.enabled = platform.system() == "Darwin" if enabled is None else enabled
        self.timeout_s = timeout_s
        self._warned = False

    def get_active_app(self) -> str | None:
        """Returns the frontmost app name, or None when unavailable."""
        if not self.enabled:
            return None
        try:
            result = subprocess.run(
                ["osascript", "-e", _FRONTMOST_SCRIPT],
                capture_output=True, text=True, timeout=self.timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            if not self._warned:
                log.warning("frontmost app lookup failed: %s", e)
                self._warned = True
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None
