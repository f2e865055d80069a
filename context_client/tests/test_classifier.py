"""Tests for classifier reply parsing and error reporting."""

import asyncio
import base64
import io
import unittest
from unittest.mock import AsyncMock, patch

import aiohttp
from PIL import Image

from context_client.classifier import (ContextClassifier, encode_image,
                                       extract_json_block, parse_classification)
from context_client.errors import ClassifyError
from context_client.tests.helpers import make_sample

_CONFIG = {"classifier": {"timeoutS": 5}, "secrets": {"anthropicApiKey": "sk-test"}}


class TestExtractJsonBlock(unittest.TestCase):

    def test_fenced_block(self):
        text = 'Sure:\n```json\n{"tag": "vscode-coding", "details": "x"}\n```'
        self.assertEqual(extract_json_block(text),
                         '{"tag": "vscode-coding", "details": "x"}')

    def test_bare_object_with_chatter(self):
        text = 'Here you go {"tag": "a"} hope that helps'
        self.assertEqual(extract_json_block(text), '{"tag": "a"}')

    def test_no_object(self):
        self.assertIsNone(extract_json_block("I cannot see the screen."))


class TestParseClassification(unittest.TestCase):

    def test_valid_reply(self):
        result = parse_classification(
            '{"tag": "chrome-docs", "details": "Reading API docs"}',
            source_label="Google Chrome")
        self.assertEqual(result.tag, "chrome-docs")
        self.assertEqual(result.detail, "Reading API docs")
        self.assertEqual(result.source_label, "Google Chrome")

    def test_missing_tag(self):
        with self.assertRaises(ClassifyError):
            parse_classification('{"details": "no tag here"}')

    def test_invalid_json(self):
        with self.assertRaises(ClassifyError):
            parse_classification("{tag: unquoted}")

    def test_no_json(self):
        with self.assertRaises(ClassifyError):
            parse_classification("sorry")


class TestEncodeImage(unittest.TestCase):

    def test_wide_frames_are_downscaled_jpeg(self):
        data = base64.b64decode(encode_image(Image.new("RGBA", (2048, 1024))))
        img = Image.open(io.BytesIO(data))
        self.assertEqual(img.format, "JPEG")
        self.assertEqual(img.size, (1024, 512))


class TestContextClassifier(unittest.IsolatedAsyncioTestCase):

    async def test_missing_api_key(self):
        classifier = ContextClassifier({"secrets": {}})
        with self.assertRaises(ClassifyError):
            await classifier.classify(make_sample(0))

    async def test_reply_carries_source_label(self):
        classifier = ContextClassifier(_CONFIG)
        reply = '```json\n{"tag": "terminal-build", "details": "Running make"}\n```'
        with patch.object(classifier, "_call_vision", AsyncMock(return_value=reply)):
            result = await classifier.classify(make_sample(0, label="Terminal"))
        self.assertEqual(result.tag, "terminal-build")
        self.assertEqual(result.source_label, "Terminal")

    async def test_timeout_becomes_classify_error(self):
        classifier = ContextClassifier(_CONFIG)
        with patch.object(classifier, "_call_vision",
                          AsyncMock(side_effect=asyncio.TimeoutError())):
            with self.assertRaises(ClassifyError):
                await classifier.classify(make_sample(0))

    async def test_network_error_becomes_classify_error(self):
        classifier = ContextClassifier(_CONFIG)
        with patch.object(classifier, "_call_vision",
                          AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))):
            with self.assertRaises(ClassifyError) as ctx:
                await classifier.classify(make_sample(0))
        self.assertIsInstance(ctx.exception.__cause__, aiohttp.ClientConnectionError)

    async def test_unparsable_reply_counts_as_failure(self):
        classifier = ContextClassifier(_CONFIG)
        with patch.object(classifier, "_call_vision",
                          AsyncMock(return_value="I could not tell.")):
            with self.assertRaises(ClassifyError):
                await classifier.classify(make_sample(0))
        self.assertEqual(classifier._total_calls, 1)
        self.assertEqual(classifier._total_failures, 1)


if __name__ == "__main__":
    unittest.main()
