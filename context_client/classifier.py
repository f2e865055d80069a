"""Activity classification via the Anthropic vision API.

Sends the captured frame as base64 JPEG together with a short prompt and
parses a {tag, details} JSON reply. Unlike the capture adapter this never
swallows failures: every problem surfaces as ClassifyError so the dispatcher
can report it and keep its rerun loop going.
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
import logging
import time

import aiohttp
from PIL import Image

from .errors import ClassifyError
from .gate import ClassificationResult, Sample

log = logging.getLogger(__name__)

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_ANTHROPIC_VERSION = "2023-06-01"

_CLASSIFY_PROMPT = (
    "You are classifying the user's current activity from a screenshot.\n"
    "Return JSON ONLY as:\n"
    "{\n"
    "  tag: stable kebab-case tag focusing on app/site and activity "
    "(e.g., 'vscode-coding', 'chrome-docs', 'terminal-build', 'figma-design'),\n"
    "  details: one short sentence\n"
    "}\n"
    "Keep the tag stable across very similar screenshots."
)


def extract_json_block(text: str) -> str | None:
    """Returns the outermost {...} span, ignoring ``` fences around it."""
    trimmed = text.strip()
    if "```" in trimmed:
        start = trimmed.find("```")
        end = trimmed.rfind("```")
        if end > start:
            inner = trimmed[start + 3:end]
            if inner.startswith("json"):
                inner = inner[4:]
            trimmed = inner.strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start == -1 or end < start:
        return None
    return trimmed[start:end + 1]


def parse_classification(text: str, source_label: str | None = None) -> ClassificationResult:
    block = extract_json_block(text)
    if block is None:
        raise ClassifyError(f"no JSON in classifier reply: {text[:120]!r}")
    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        raise ClassifyError(f"bad JSON in classifier reply: {e}") from e
    if not isinstance(data, dict):
        raise ClassifyError("classifier reply is not a JSON object")
    tag = str(data.get("tag") or "").strip()
    if not tag:
        raise ClassifyError("classifier reply has no tag")
    return ClassificationResult(
        tag=tag,
        detail=str(data.get("details") or data.get("detail") or "").strip(),
        source_label=source_label,
    )


def encode_image(image: Image.Image, max_width: int = 1024) -> str:
    """Downscales wide frames and returns base64 JPEG."""
    if image.width > max_width:
        scale = max_width / image.width
        image = image.resize((max_width, int(image.height * scale)),
                             Image.LANCZOS)
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=70)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class ContextClassifier:
    """Async activity classifier over the Anthropic Messages API."""

    def __init__(self, config: dict):
        cls_cfg = config.get("classifier", {})
        self.api_key = config.get("secrets", {}).get("anthropicApiKey", "")
        self.model = cls_cfg.get("model", "claude-3-5-haiku-latest")
        self.timeout_s = cls_cfg.get("timeoutS", 20)
        self.max_tokens = cls_cfg.get("maxTokens", 200)
        self._session: aiohttp.ClientSession | None = None
        self._total_calls = 0
        self._total_failures = 0

        if not self.api_key:
            log.warning("classifier has no api key; every call will fail")
        else:
            log.info("classifier ready (model=%s, timeout=%ds)",
                     self.model, self.timeout_s)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": _ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
            )
        return self._session

    async def classify(self, sample: Sample) -> ClassificationResult:
        if not self.api_key:
            raise ClassifyError("ANTHROPIC_API_KEY missing")

        t0 = time.monotonic()
        self._total_calls += 1
        try:
            text = await asyncio.wait_for(
                self._call_vision(sample.image), timeout=self.timeout_s)
            result = parse_classification(text, source_label=sample.source_label)
        except asyncio.TimeoutError as e:
            self._total_failures += 1
            raise ClassifyError(f"classification timed out after {self.timeout_s}s") from e
        except aiohttp.ClientError as e:
            self._total_failures += 1
            raise ClassifyError(f"classification request failed: {e}") from e
        except ClassifyError:
            self._total_failures += 1
            raise

        log.info("classified as %s in %.1fs", result.tag, time.monotonic() - t0)
        return result

    async def _call_vision(self, image: Image.Image) -> str:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": _CLASSIFY_PROMPT},
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": "image/jpeg",
                            "data": encode_image(image),
                        },
                    },
                ],
            }],
        }

        session = self._get_session()
        async with session.post(_ANTHROPIC_URL, json=payload) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise ClassifyError(f"classifier API error {resp.status}: {body[:200]}")
            data = await resp.json()

        content = data.get("content") or []
        if not content:
            raise ClassifyError("empty content from classifier API")
        return content[0].get("text", "")

    async def shutdown(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        if self._total_calls > 0:
            log.info("classifier shutdown: %d calls, %d failed",
                     self._total_calls, self._total_failures)
