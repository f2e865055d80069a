"""Tests for screen capture samples and the frontmost-app label."""

import subprocess
import unittest
from unittest.mock import MagicMock, patch

from PIL import Image

from context_client.app_detector import AppDetector
from context_client.capture import ScreenCapture
from context_client.errors import CaptureError


class TestScreenCapture(unittest.TestCase):

    def _capture(self, **kwargs):
        return ScreenCapture(app_detector=AppDetector(enabled=False), **kwargs)

    @patch("context_client.capture.ImageGrab.grab")
    def test_sample_is_scaled_and_fingerprinted(self, mock_grab):
        mock_grab.return_value = Image.new("RGB", (400, 200), "white")
        sample = self._capture(scale=0.5).capture()
        self.assertEqual(sample.image.size, (200, 100))
        self.assertEqual(sample.fingerprint.hash.size, 64)
        self.assertIsNone(sample.source_label)
        self.assertGreater(sample.captured_at, 0)

    @patch("context_client.capture.ImageGrab.grab")
    def test_hash_size_from_config(self, mock_grab):
        mock_grab.return_value = Image.new("RGB", (64, 64))
        cap = ScreenCapture.from_config({"capture": {"scale": 1.0, "hashSize": 16}})
        cap.app_detector = AppDetector(enabled=False)
        self.assertEqual(cap.capture().fingerprint.hash.size, 256)

    @patch("context_client.capture.ImageGrab.grab")
    def test_grab_failure_raises_capture_error(self, mock_grab):
        mock_grab.side_effect = OSError("X connection failed")
        cap = self._capture()
        with self.assertRaises(CaptureError):
            cap.capture()
        self.assertEqual(cap.stats_fail, 1)
        self.assertEqual(cap.stats_ok, 0)


class TestAppDetector(unittest.TestCase):

    def test_disabled_returns_none(self):
        self.assertIsNone(AppDetector(enabled=False).get_active_app())

    @patch("context_client.app_detector.subprocess.run")
    def test_reads_frontmost_app(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="Safari\n")
        self.assertEqual(AppDetector(enabled=True).get_active_app(), "Safari")

    @patch("context_client.app_detector.subprocess.run")
    def test_timeout_returns_none(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="osascript", timeout=2)
        self.assertIsNone(AppDetector(enabled=True).get_active_app())

    @patch("context_client.app_detector.subprocess.run")
    def test_script_error_returns_none(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="")
        self.assertIsNone(AppDetector(enabled=True).get_active_app())


if __name__ == "__main__":
    unittest.main()
