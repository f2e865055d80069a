"""Periodic context scheduler.

Each tick captures a sample, runs the decision gate under the state lock,
asks the single-flight dispatcher for a classification when the context may
have moved, and on `switch` starts a generation job in its own task. Only the
capture (worker thread), classification and job polling ever wait; the
decision itself is synchronous.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from .dispatcher import SingleFlightDispatcher
from .errors import CaptureError, ClassifyError, JobError, PollTransportError, SubmitError
from .gate import (ACTION_SWITCH, ClassificationResult, DecisionEvent,
                   DecisionGate, Sample, SchedulerState)
from .jobs import JobPoller, build_generation_request
from .sender import EVENT_DECISION, EVENT_GENERATION_ERROR, EVENT_GENERATION_RESULT

log = logging.getLogger(__name__)

Emit = Callable[[str, dict], object]


class ContextScheduler:
    """Owns SchedulerState; the only code that reads or writes it."""

    def __init__(self, capture: Callable[[], Sample],
                 classify: Callable[[Sample], Awaitable[ClassificationResult]],
                 poller: JobPoller, emit: Emit,
                 gate: DecisionGate | None = None,
                 interval: float = 2.0,
                 clock: Callable[[], float] = time.monotonic,
                 base_request: dict | None = None):
        self.capture = capture
        self.poller = poller
        self.gate = gate or DecisionGate()
        self.interval = interval
        self.base_request = base_request or {}
        self.state = SchedulerState()
        self._emit_fn = emit
        self._clock = clock
        self._lock = asyncio.Lock()
        self.dispatcher = SingleFlightDispatcher(
            classify, self.state, self._lock, on_error=self._on_classify_error)
        self._generation_tasks: set[asyncio.Task] = set()
        self.ticks = 0
        self.switches = 0

    async def tick(self) -> DecisionEvent | None:
        """One sampling step. Returns the emitted event, or None if skipped."""
        try:
            sample = await asyncio.to_thread(self.capture)
        except CaptureError as e:
            log.warning("tick skipped: %s", e)
            self._emit(EVENT_GENERATION_ERROR, {"message": f"capture failed: {e}"})
            return None

        now = self._clock()
        async with self._lock:
            self.ticks += 1
            self.state.fold_classification()
            decision = self.gate.decide(self.state, sample.fingerprint,
                                        sample.source_label, now)
            self.state.latest_sample = sample
            # A tag change alone came from the classifier; no need to ask again
            needs_classification = (decision.visual or decision.forced
                                    or self.state.previous_classification is None)
            event = DecisionEvent(
                current_context=self.state.previous_classification,
                previous_context=self.state.prior_classification,
                is_similar=decision.is_similar,
                action=decision.action,
            )

        log.debug("tick %d: distance=%d different=%s count=%d action=%s",
                  self.ticks, decision.distance, decision.is_different,
                  decision.debounce_count, decision.action)

        if needs_classification:
            await self.dispatcher.request_classification(sample)

        self._emit(EVENT_DECISION, event.to_dict())
        if decision.action == ACTION_SWITCH:
            self.switches += 1
            log.info("context switch -> %s (forced=%s, large=%s)",
                     event.current_context.tag if event.current_context else "unknown",
                     decision.forced, decision.large)
            self._start_generation(event.current_context)
        return event

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Ticks every `interval` seconds until `stop_event` is set."""
        stop_event = stop_event or asyncio.Event()
        log.info("scheduler started (interval=%.1fs)", self.interval)
        while not stop_event.is_set():
            start = time.monotonic()
            try:
                await self.tick()
            except Exception as e:
                log.exception("tick failed")
                self._emit(EVENT_GENERATION_ERROR, {"message": f"tick failed: {e}"})
            sleep_time = self.interval - (time.monotonic() - start)
            if sleep_time > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=sleep_time)
                except asyncio.TimeoutError:
                    continue
        log.info("scheduler stopped after %d ticks, %d switches",
                 self.ticks, self.switches)

    async def shutdown(self) -> None:
        """Waits for in-flight classification and generation work."""
        await self.dispatcher.wait_idle()
        if self._generation_tasks:
            await asyncio.gather(*self._generation_tasks, return_exceptions=True)

    def _start_generation(self, context: ClassificationResult | None) -> None:
        request = build_generation_request(context, self.base_request)
        task = asyncio.create_task(self._generate(request))
        self._generation_tasks.add(task)
        task.add_done_callback(self._generation_tasks.discard)

    async def _generate(self, request) -> None:
        try:
            result = await self.poller.submit_and_await(request)
        except (SubmitError, JobError, PollTransportError) as e:
            log.warning("generation failed: %s", e)
            self._emit(EVENT_GENERATION_ERROR, {"message": str(e)})
            return
        except Exception as e:
            log.exception("generation crashed")
            self._emit(EVENT_GENERATION_ERROR, {"message": f"generation failed: {e}"})
            return
        log.info("generation ready: %s", result)
        self._emit(EVENT_GENERATION_RESULT, {"result_reference": result})

    def _on_classify_error(self, err: ClassifyError) -> None:
        self._emit(EVENT_GENERATION_ERROR, {"message": f"classification failed: {err}"})

    def _emit(self, name: str, payload: dict) -> None:
        try:
            self._emit_fn(name, payload)
        except Exception:
            log.exception("emitting %s event failed", name)
