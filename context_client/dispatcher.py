"""Single-flight classification dispatcher.

At most one classifier call is outstanding. Requests that arrive while a call
is running are coalesced into one rerun, which classifies the newest sample
rather than the one that triggered the request.

The `classification_in_flight` / `rerun_requested` flags live in the shared
SchedulerState and only change under the scheduler's lock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .errors import ClassifyError
from .gate import ClassificationResult, Sample, SchedulerState

log = logging.getLogger(__name__)

Classify = Callable[[Sample], Awaitable[ClassificationResult]]


class SingleFlightDispatcher:
    """Runs `classify` single-flight, folding results into SchedulerState."""

    def __init__(self, classify: Classify, state: SchedulerState,
                 lock: asyncio.Lock,
                 on_result: Callable[[ClassificationResult], None] | None = None,
                 on_error: Callable[[ClassifyError], None] | None = None):
        self._classify = classify
        self._state = state
        self._lock = lock
        self._on_result = on_result
        self._on_error = on_error
        self._task: asyncio.Task | None = None
        self.calls = 0

    async def request_classification(self, sample: Sample) -> bool:
        """Starts a classification, or coalesces into the running one.

        Returns True if a new call was started.
        """
        async with self._lock:
            if self._state.classification_in_flight:
                self._state.rerun_requested = True
                return False
            self._state.classification_in_flight = True
        self._task = asyncio.create_task(self._run(sample))
        return True

    async def wait_idle(self) -> None:
        """Waits for the current dispatch loop (and its reruns) to finish."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def _run(self, sample: Sample) -> None:
        while True:
            result = await self._classify_once(sample)
            async with self._lock:
                if result is not None:
                    self._state.pending_classification = result
                    if self._on_result:
                        self._on_result(result)
                if not self._state.rerun_requested:
                    self._state.classification_in_flight = False
                    return
                self._state.rerun_requested = False
                sample = self._state.latest_sample or sample
            log.debug("classification rerun on newer sample")

    async def _classify_once(self, sample: Sample) -> ClassificationResult | None:
        self.calls += 1
        try:
            return await self._classify(sample)
        except ClassifyError as e:
            err = e
        except Exception as e:
            # Flags must not stick; report as a classification failure
            err = ClassifyError(f"classifier crashed: {e}")
            err.__cause__ = e
        log.warning("classification failed: %s", err)
        if self._on_error:
            self._on_error(err)
        return None
