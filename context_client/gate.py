"""Decision gate — turns each fingerprint reading into `continue` or `switch`."""

import logging
from dataclasses import dataclass

import imagehash
from PIL import Image

from .fingerprint import distance, max_distance

log = logging.getLogger(__name__)

ACTION_CONTINUE = "continue"
ACTION_SWITCH = "switch"


@dataclass(frozen=True)
class ClassificationResult:
    tag: str  # e.g. "vscode-coding", "chrome-docs"
    detail: str = ""
    source_label: str | None = None  # frontmost app at capture time

    def to_dict(self) -> dict:
        return {"tag": self.tag, "details": self.detail, "app": self.source_label}


@dataclass
class Sample:
    image: Image.Image
    fingerprint: imagehash.ImageHash
    source_label: str | None = None
    captured_at: float = 0.0


@dataclass
class SchedulerState:
    """All mutable scheduler state. Only touched under the scheduler lock."""
    previous_fingerprint: imagehash.ImageHash | None = None
    previous_classification: ClassificationResult | None = None
    prior_classification: ClassificationResult | None = None
    pending_classification: ClassificationResult | None = None
    debounce_count: int = 0
    last_switch_at: float | None = None
    # Context that the last emitted switch was made for
    acknowledged_tag: str | None = None
    acknowledged_label: str | None = None
    acknowledge_next: bool = False
    classification_in_flight: bool = False
    rerun_requested: bool = False
    latest_sample: Sample | None = None

    def fold_classification(self) -> bool:
        """Promotes a landed classification to previous_classification."""
        result = self.pending_classification
        if result is None:
            return False
        self.pending_classification = None
        self.prior_classification = self.previous_classification
        self.previous_classification = result
        if self.acknowledge_next and not _differs(result.source_label,
                                                  self.acknowledged_label):
            # A switch already went out before this context was known
            self.acknowledged_tag = result.tag
            self.acknowledge_next = False
        return True


@dataclass
class Decision:
    action: str
    distance: int
    visual: bool = False
    is_different: bool = False
    large: bool = False
    forced: bool = False
    tag_changed: bool = False
    debounce_count: int = 0

    @property
    def is_similar(self) -> bool:
        return self.action != ACTION_SWITCH


@dataclass
class DecisionEvent:
    current_context: ClassificationResult | None
    previous_context: ClassificationResult | None
    is_similar: bool
    action: str

    def to_dict(self) -> dict:
        return {
            "current_context": self.current_context.to_dict() if self.current_context else None,
            "previous_context": self.previous_context.to_dict() if self.previous_context else None,
            "is_similar": self.is_similar,
            "action": self.action,
        }


def _differs(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.lower() != b.lower()


class DecisionGate:
    """Debounced, cooldown-limited change policy over fingerprint distances."""

    def __init__(self, change_fraction: float = 0.10,
                 large_change_fraction: float = 0.35,
                 confirm_count: int = 2,
                 cooldown_ms: int = 12000,
                 distance_fn=distance, max_distance_fn=max_distance):
        self.change_fraction = change_fraction
        self.large_change_fraction = large_change_fraction
        self.confirm_count = confirm_count
        self.cooldown_ms = cooldown_ms
        self._distance = distance_fn
        self._max_distance = max_distance_fn

    @classmethod
    def from_config(cls, config: dict) -> "DecisionGate":
        gate_cfg = config.get("gate", {})
        return cls(
            change_fraction=gate_cfg.get("changeFraction", 0.10),
            large_change_fraction=gate_cfg.get("largeChangeFraction", 0.35),
            confirm_count=gate_cfg.get("confirmCount", 2),
            cooldown_ms=gate_cfg.get("cooldownMs", 12000),
        )

    def decide(self, state: SchedulerState, fp: imagehash.ImageHash,
               source_label: str | None, now: float) -> Decision:
        """Mutates `state` for one tick and returns the decision.

        `now` is in seconds on the same clock as `state.last_switch_at`.
        Caller must hold the scheduler lock.
        """
        limit = self._max_distance(fp)
        if state.previous_fingerprint is None:
            dist = limit
        else:
            dist = self._distance(fp, state.previous_fingerprint)

        visual = dist > self.change_fraction * limit
        large = dist > self.large_change_fraction * limit
        forced = self._label_changed(state, source_label)
        tag_changed = self._tag_changed(state)
        is_different = visual or forced or tag_changed

        action = ACTION_CONTINUE
        if not is_different:
            state.debounce_count = 0
        else:
            state.debounce_count += 1
            if state.debounce_count >= self.confirm_count:
                action = ACTION_SWITCH

        if action == ACTION_SWITCH and self._cooling_down(state, now) \
                and not (large or forced):
            log.debug("switch suppressed by cooldown (distance=%d)", dist)
            action = ACTION_CONTINUE

        decision = Decision(action=action, distance=dist, visual=visual,
                            is_different=is_different, large=large,
                            forced=forced, tag_changed=tag_changed,
                            debounce_count=state.debounce_count)

        if action == ACTION_SWITCH:
            self._record_switch(state, source_label, now)

        state.previous_fingerprint = fp
        return decision

    def _cooling_down(self, state: SchedulerState, now: float) -> bool:
        if state.last_switch_at is None:
            return False
        return (now - state.last_switch_at) * 1000 < self.cooldown_ms

    @staticmethod
    def _label_changed(state: SchedulerState, source_label: str | None) -> bool:
        if not source_label:
            return False
        # After a switch, the app it was made for is the reference
        if state.acknowledged_label:
            return _differs(source_label, state.acknowledged_label)
        prev = state.previous_classification
        return prev is not None and _differs(source_label, prev.source_label)

    @staticmethod
    def _tag_changed(state: SchedulerState) -> bool:
        current = state.previous_classification
        if current is None or state.acknowledge_next:
            return False
        if state.acknowledged_tag is None:
            return True
        return current.tag.lower() != state.acknowledged_tag.lower()

    @staticmethod
    def _record_switch(state: SchedulerState, source_label: str | None,
                       now: float) -> None:
        state.last_switch_at = now
        state.debounce_count = 0
        current = state.previous_classification
        # The new app's classification has not landed yet
        stale = current is not None and _differs(source_label, current.source_label)
        if current is None or stale:
            state.acknowledged_tag = None
            state.acknowledge_next = True
        else:
            state.acknowledged_tag = current.tag
        if source_label:
            state.acknowledged_label = source_label
