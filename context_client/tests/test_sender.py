"""Tests for the event relay sender: delivery, failures, latency stats."""

import time
import unittest
from unittest.mock import MagicMock, patch

import requests

from context_client.sender import EVENT_DECISION, EventSender


class TestEventSender(unittest.TestCase):

    def setUp(self):
        self.sender = EventSender(url="http://localhost:18791/")

    def tearDown(self):
        self.sender.close()

    def test_init_has_latency_fields(self):
        self.assertEqual(self.sender.url, "http://localhost:18791")
        self.assertEqual(self.sender._latencies, [])
        self.assertIsInstance(self.sender._last_stats_ts, float)

    @patch("context_client.sender.requests.post")
    def test_send_posts_typed_event(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        ok = self.sender.send(EVENT_DECISION, {"action": "switch"})
        self.assertTrue(ok)
        url = mock_post.call_args[0][0]
        body = mock_post.call_args[1]["json"]
        self.assertEqual(url, "http://localhost:18791/context/event")
        self.assertEqual(body["type"], "decision")
        self.assertEqual(body["action"], "switch")
        self.assertEqual(len(self.sender._latencies), 1)

    @patch("context_client.sender.requests.post")
    def test_http_error_status_returns_false(self, mock_post):
        mock_post.return_value = MagicMock(status_code=503)
        self.assertFalse(self.sender.send(EVENT_DECISION, {}))

    @patch("context_client.sender.requests.post")
    def test_connection_error_returns_false(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        self.assertFalse(self.sender.send(EVENT_DECISION, {}))

    @patch("context_client.sender.requests.post")
    def test_stats_logged_after_interval(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        self.sender._last_stats_ts = time.time() - 61
        with self.assertLogs("context_client.sender", level="INFO") as logs:
            self.sender.send(EVENT_DECISION, {})
        self.assertTrue(any("relay latency" in line for line in logs.output))
        self.assertEqual(self.sender._latencies, [])

    @patch("context_client.sender.requests.post")
    def test_stats_not_logged_before_interval(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        with patch("context_client.sender.log") as mock_log:
            self.sender.send(EVENT_DECISION, {})
        mock_log.info.assert_not_called()

    @patch("context_client.sender.requests.post")
    def test_emit_delivers_in_background(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        future = self.sender.emit(EVENT_DECISION, {"action": "continue"})
        self.assertTrue(future.result(timeout=5))
        mock_post.assert_called_once()

    def test_disabled_sender_does_not_post(self):
        sender = EventSender(enabled=False)
        with patch("context_client.sender.requests.post") as mock_post:
            self.assertIsNone(sender.emit(EVENT_DECISION, {}))
        mock_post.assert_not_called()
        sender.close()


if __name__ == "__main__":
    unittest.main()
