"""Generation jobs: Suno HTTP backend and the bounded submit/poll loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Protocol

import aiohttp

from .errors import (JobFailedError, JobTimeoutError, PollTransportError,
                     SubmitError)
from .gate import ClassificationResult

log = logging.getLogger(__name__)

_GENERATE_URL = "https://studio-api.prod.suno.com/api/v2/external/hackmit/generate"
_CLIPS_URL = "https://studio-api.prod.suno.com/api/v2/external/hackmit/clips"
_CREDITS_URL = "https://api.sunoapi.org/api/v1/get-credits"

FAILED_STATUSES = {"failed", "error"}

_MAX_TAGS_CHARS = 100
_MAX_PROMPT_CHARS = 500


@dataclass(frozen=True)
class JobHandle:
    id: str


@dataclass
class JobStatus:
    status: str | None = None
    result: str | None = None  # audio URL once the clip is playable

    @property
    def failed(self) -> bool:
        return bool(self.status) and self.status.lower() in FAILED_STATUSES


@dataclass
class GenerationRequest:
    topic: str | None = None
    tags: str | None = None
    prompt: str | None = None
    make_instrumental: bool | None = None
    cover_clip_id: str | None = None

    def to_payload(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _shorten(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:max(limit - 3, 0)] + "..."


def build_generation_request(context: ClassificationResult | None,
                             base: dict | None = None) -> GenerationRequest:
    """Fills a request from the generation config and the current context."""
    base = base or {}
    if context is not None:
        topic = context.detail or context.tag
    else:
        topic = "Generated track"
    tags = base.get("tags") or "cinematic, ambient"
    prompt = base.get("prompt")
    return GenerationRequest(
        topic=topic,
        tags=_shorten(tags, _MAX_TAGS_CHARS),
        prompt=_shorten(prompt, _MAX_PROMPT_CHARS) if prompt else None,
        make_instrumental=base.get("makeInstrumental", True),
    )


class JobBackend(Protocol):
    async def submit(self, request: GenerationRequest) -> JobHandle: ...

    async def poll(self, handle: JobHandle) -> JobStatus: ...


class JobPoller:
    """Submit once, then poll on a fixed interval up to `max_polls` times."""

    def __init__(self, backend: JobBackend, interval: float = 5.0,
                 max_polls: int = 36, max_transport_retries: int = 2,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.backend = backend
        self.interval = interval
        self.max_polls = max_polls
        self.max_transport_retries = max_transport_retries
        self._sleep = sleep

    @classmethod
    def from_config(cls, backend: JobBackend, config: dict) -> "JobPoller":
        jobs_cfg = config.get("jobs", {})
        return cls(
            backend,
            interval=jobs_cfg.get("pollIntervalS", 5),
            max_polls=jobs_cfg.get("maxPolls", 36),
            max_transport_retries=jobs_cfg.get("maxTransportRetries", 2),
        )

    async def submit_and_await(self, request: GenerationRequest) -> str:
        """Returns the result reference.

        Raises SubmitError, JobFailedError, JobTimeoutError, or
        PollTransportError once the transport retry budget is spent.
        """
        handle = await self.backend.submit(request)
        log.info("job %s submitted", handle.id)

        transport_failures = 0
        for attempt in range(1, self.max_polls + 1):
            try:
                status = await self.backend.poll(handle)
            except PollTransportError as e:
                transport_failures += 1
                if transport_failures > self.max_transport_retries:
                    raise
                log.warning("job %s poll %d transport error (%d/%d): %s",
                            handle.id, attempt, transport_failures,
                            self.max_transport_retries, e)
            else:
                transport_failures = 0
                if status.result:
                    log.info("job %s ready after %d poll(s)", handle.id, attempt)
                    return status.result
                if status.failed:
                    raise JobFailedError(
                        f"generation failed (status={status.status})",
                        job_id=handle.id)
                log.debug("job %s poll %d status=%s", handle.id, attempt,
                          status.status)

            if attempt < self.max_polls:
                await self._sleep(self.interval)

        raise JobTimeoutError(
            f"no result after {self.max_polls} polls", job_id=handle.id)


class SunoBackend:
    """Suno clip generation over HTTP."""

    def __init__(self, api_key: str, prefer_stream: bool = False,
                 timeout_s: float = 30,
                 generate_url: str = _GENERATE_URL,
                 clips_url: str = _CLIPS_URL):
        self.api_key = api_key
        self.prefer_stream = prefer_stream
        self.timeout_s = timeout_s
        self.generate_url = generate_url
        self.clips_url = clips_url
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
            )
        return self._session

    async def submit(self, request: GenerationRequest) -> JobHandle:
        if not self.api_key:
            raise SubmitError("SUNO_API_KEY not set")
        session = self._get_session()
        try:
            async with session.post(self.generate_url,
                                    json=request.to_payload()) as resp:
                body = await resp.text()
                if resp.status >= 400:
                    raise SubmitError(f"generate error ({resp.status}): {body[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubmitError(f"generate request failed: {e}") from e
        except ValueError as e:
            raise SubmitError(f"unparsable generate response: {e}") from e

        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise SubmitError(f"generate response missing id: {body[:200]}")
        return JobHandle(id=str(job_id))

    async def poll(self, handle: JobHandle) -> JobStatus:
        session = self._get_session()
        try:
            async with session.get(self.clips_url,
                                   params={"ids": handle.id}) as resp:
                body = await resp.text()
                if resp.status >= 400:
                    raise PollTransportError(
                        f"clips error ({resp.status}): {body[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PollTransportError(f"clips request failed: {e}") from e
        except ValueError as e:
            raise PollTransportError(f"unparsable clips response: {e}") from e
        return self.parse_clips(data)

    def parse_clips(self, data) -> JobStatus:
        """Accepts a bare list of clips or {"clips": [...]}."""
        clips = data.get("clips", []) if isinstance(data, dict) else data
        if clips is None:
            clips = []
        if not isinstance(clips, list):
            raise PollTransportError(f"unexpected clips response: {str(data)[:200]}")
        clips = [c for c in clips if isinstance(c, dict)]
        status = clips[0].get("status") if clips else None
        for clip in clips:
            url = clip.get("audio_url")
            if self.prefer_stream:
                url = clip.get("stream_audio_url") or url
            if url:
                return JobStatus(status=clip.get("status") or status, result=url)
        return JobStatus(status=status)

    async def get_credits(self) -> int:
        """Remaining generation credits."""
        session = self._get_session()
        try:
            async with session.get(_CREDITS_URL) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise SubmitError(f"credits error ({resp.status}): {body[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubmitError(f"credits request failed: {e}") from e
        if data.get("code") != 200:
            raise SubmitError(f"credits returned code {data.get('code')}: {data.get('msg')}")
        return (data.get("data") or {}).get("credits") or 0

    async def shutdown(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
