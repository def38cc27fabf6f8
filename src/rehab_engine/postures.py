"""Posture (mudra) classification from thumb-to-fingertip proximity.

A posture is defined by which fingertips the thumb touches. Thresholds are
distances in metres tuned on a reference hand; with ``auto_normalize`` they
scale by the measured wrist-to-middle-tip length so the same configuration
works for small and large hands.

Rules are checked in priority order and the first match wins. Order matters
because a multi-digit posture (thumb on middle and ring) also satisfies the
proximity part of each single-digit posture.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

import numpy as np

from rehab_engine.errors import ConfigurationError, config_bool, config_float, config_mapping
from rehab_engine.hands import FINGERTIPS, FingerChannel, HandFrame, HandSide, Joint, as_point

logger = logging.getLogger("rehab_engine.postures")

# Wrist-to-middle-tip lengths below this are treated as tracking noise
HAND_LENGTH_EPSILON = 0.001

_NUMERIC_FIELDS = (
    "thumb_index_threshold",
    "thumb_middle_threshold",
    "thumb_ring_threshold",
    "thumb_pinky_threshold",
    "reference_hand_length",
    "pinch_min_distance",
    "pinch_max_distance",
)

DIGITS = (
    FingerChannel.INDEX,
    FingerChannel.MIDDLE,
    FingerChannel.RING,
    FingerChannel.PINKY,
)


class Posture(Enum):
    NONE = "None"
    SURYA = "Surya"
    PRITHVI = "Prithvi"
    APAN = "Apan"

    @classmethod
    def parse(cls, value: str | Posture) -> Posture:
        if isinstance(value, Posture):
            return value
        for posture in cls:
            if posture.value.lower() == str(value).strip().lower():
                return posture
        raise ValueError(f"Unknown posture: {value!r}")


@dataclass(frozen=True)
class PostureRule:
    """Thumb proximity pattern for one posture.

    ``close`` digits must all be within threshold of the thumb tip;
    ``not_close`` digits must all be outside it. Unlisted digits are ignored.
    """
    label: Posture
    close: frozenset[FingerChannel]
    not_close: frozenset[FingerChannel] = frozenset()
    description: str = ""

    def matches(self, closeness: Mapping[FingerChannel, bool]) -> bool:
        return (
            all(closeness[d] for d in self.close)
            and not any(closeness[d] for d in self.not_close)
        )

    def to_dict(self) -> dict:
        data = {
            "label": self.label.value,
            "close": [d.label for d in sorted(self.close)],
            "not_close": [d.label for d in sorted(self.not_close)],
        }
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> PostureRule:
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Invalid posture rule {data!r}: expected a mapping")
        try:
            label = Posture.parse(data["label"])
            close = frozenset(FingerChannel.parse(d) for d in data.get("close", []))
            not_close = frozenset(FingerChannel.parse(d) for d in data.get("not_close", []))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid posture rule {dict(data)!r}: {e}") from None
        return cls(label, close, not_close, data.get("description", ""))


DEFAULT_RULES = (
    PostureRule(
        Posture.APAN,
        close=frozenset({FingerChannel.MIDDLE, FingerChannel.RING}),
        description="Thumb on middle and ring tips",
    ),
    PostureRule(
        Posture.SURYA,
        close=frozenset({FingerChannel.RING}),
        not_close=frozenset({FingerChannel.MIDDLE, FingerChannel.INDEX}),
        description="Thumb on ring tip only",
    ),
    PostureRule(
        Posture.PRITHVI,
        close=frozenset({FingerChannel.MIDDLE}),
        not_close=frozenset({FingerChannel.RING, FingerChannel.INDEX}),
        description="Thumb on middle tip only",
    ),
)


@dataclass
class PostureConfig:
    """Closeness thresholds (metres) and normalization settings."""
    thumb_index_threshold: float = 0.04
    thumb_middle_threshold: float = 0.035
    thumb_ring_threshold: float = 0.03
    thumb_pinky_threshold: float = 0.04
    auto_normalize: bool = True
    reference_hand_length: float = 0.10
    pinch_min_distance: float = 0.015
    pinch_max_distance: float = 0.06
    rules: list[PostureRule] = field(default_factory=lambda: list(DEFAULT_RULES))

    def __post_init__(self):
        for name in _NUMERIC_FIELDS:
            setattr(self, name, config_float(name, getattr(self, name)))
        self.auto_normalize = config_bool("auto_normalize", self.auto_normalize)

        for digit, value in self.thresholds.items():
            if not value > 0:
                raise ConfigurationError(
                    f"thumb_{digit.label}_threshold must be positive, got {value}"
                )
        if not self.reference_hand_length > 0:
            raise ConfigurationError("reference_hand_length must be positive")
        if not 0 <= self.pinch_min_distance < self.pinch_max_distance:
            raise ConfigurationError(
                "pinch_min_distance must be >= 0 and below pinch_max_distance"
            )

        if not isinstance(self.rules, (list, tuple)):
            raise ConfigurationError(f"rules must be a list, got {type(self.rules).__name__}")
        rules = []
        for rule in self.rules:
            if not isinstance(rule, PostureRule):
                rule = PostureRule.from_dict(rule)
            if rule.label is Posture.NONE:
                raise ConfigurationError("A posture rule cannot produce the None label")
            if not rule.close:
                raise ConfigurationError(f"Rule {rule.label.value} needs at least one close digit")
            if rule.close & rule.not_close:
                raise ConfigurationError(
                    f"Rule {rule.label.value} lists a digit as both close and not close"
                )
            if FingerChannel.THUMB in rule.close | rule.not_close:
                raise ConfigurationError(f"Rule {rule.label.value} cannot reference the thumb")
            rules.append(rule)
        self.rules = rules

    @property
    def thresholds(self) -> dict[FingerChannel, float]:
        return {
            FingerChannel.INDEX: self.thumb_index_threshold,
            FingerChannel.MIDDLE: self.thumb_middle_threshold,
            FingerChannel.RING: self.thumb_ring_threshold,
            FingerChannel.PINKY: self.thumb_pinky_threshold,
        }

    def to_dict(self) -> dict:
        return {
            "thumb_index_threshold": self.thumb_index_threshold,
            "thumb_middle_threshold": self.thumb_middle_threshold,
            "thumb_ring_threshold": self.thumb_ring_threshold,
            "thumb_pinky_threshold": self.thumb_pinky_threshold,
            "auto_normalize": self.auto_normalize,
            "reference_hand_length": self.reference_hand_length,
            "pinch_min_distance": self.pinch_min_distance,
            "pinch_max_distance": self.pinch_max_distance,
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> PostureConfig:
        data = config_mapping("posture", data)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown posture options: {sorted(unknown)}")
        return cls(**data)


@dataclass
class PostureMeasurement:
    """Raw geometry behind one classification, for tuning and display."""
    distances: dict[FingerChannel, float]
    scale: float
    thresholds: dict[FingerChannel, float]
    closeness: dict[FingerChannel, bool]
    pinch_value: float

    def describe(self) -> str:
        parts = [
            f"d{d.label[0].upper()}:{self.distances[d]:.3f}(th:{self.thresholds[d]:.3f})"
            for d in DIGITS
        ]
        parts.append(f"scale:{self.scale:.2f}")
        parts.append(f"pinch:{self.pinch_value:.2f}")
        return " ".join(parts)


@dataclass
class PostureState:
    """Per-hand label memory for edge detection."""
    current_label: Posture = Posture.NONE
    previous_label: Posture = Posture.NONE


@dataclass(frozen=True)
class PostureResult:
    hand: HandSide
    label: Posture
    changed: bool
    measurement: Optional[PostureMeasurement] = None


@dataclass(frozen=True)
class PostureChange:
    """Emitted when a hand's stable label changes."""
    hand: HandSide
    label: Posture
    previous: Posture


def _inverse_lerp(a: float, b: float, value: float) -> float:
    if a == b:
        return 0.0
    return min(1.0, max(0.0, (value - a) / (b - a)))


def measure(
    config: PostureConfig,
    thumb: np.ndarray,
    tips: Mapping[FingerChannel, np.ndarray],
    wrist: Optional[np.ndarray],
) -> PostureMeasurement:
    """Compute distances, scale and closeness for one hand."""
    distances = {d: float(np.linalg.norm(thumb - tips[d])) for d in DIGITS}

    scale = 1.0
    if config.auto_normalize and wrist is not None:
        hand_length = float(np.linalg.norm(wrist - tips[FingerChannel.MIDDLE]))
        if hand_length > HAND_LENGTH_EPSILON:
            scale = hand_length / config.reference_hand_length

    thresholds = {d: t * scale for d, t in config.thresholds.items()}
    closeness = {d: distances[d] <= thresholds[d] for d in DIGITS}
    pinch_value = _inverse_lerp(
        config.pinch_max_distance, config.pinch_min_distance, distances[FingerChannel.INDEX]
    )
    return PostureMeasurement(distances, scale, thresholds, closeness, pinch_value)


def match_rules(rules, closeness: Mapping[FingerChannel, bool]) -> Posture:
    """Return the label of the first matching rule, or Posture.NONE."""
    for rule in rules:
        if rule.matches(closeness):
            return rule.label
    return Posture.NONE


class PostureClassifier:
    """Classifies each hand's posture and reports label changes.

    Usage:
        classifier = PostureClassifier()
        result = classifier.classify_frame(HandSide.LEFT, frame)
        if result.changed:
            print(result.label)
    """

    def __init__(self, config: Optional[PostureConfig] = None):
        self.config = config or PostureConfig()
        self._states: dict[HandSide, PostureState] = {}
        self.reset()

    def reset(self):
        self._states = {side: PostureState() for side in HandSide}

    def evaluate(
        self,
        thumb,
        index,
        middle,
        ring,
        pinky,
        wrist=None,
        is_tracked: bool = True,
    ) -> tuple[Posture, Optional[PostureMeasurement]]:
        """Classify joint positions without touching per-hand state."""
        if not is_tracked:
            return Posture.NONE, None

        thumb_p = as_point(thumb)
        tips = {
            FingerChannel.INDEX: as_point(index),
            FingerChannel.MIDDLE: as_point(middle),
            FingerChannel.RING: as_point(ring),
            FingerChannel.PINKY: as_point(pinky),
        }
        if thumb_p is None or any(p is None for p in tips.values()):
            return Posture.NONE, None

        m = measure(self.config, thumb_p, tips, as_point(wrist))
        return match_rules(self.config.rules, m.closeness), m

    def classify(
        self,
        hand: HandSide,
        thumb,
        index,
        middle,
        ring,
        pinky,
        wrist=None,
        is_tracked: bool = True,
    ) -> PostureResult:
        """Classify one hand for this frame and update its label memory.

        ``changed`` is True only when the label differs from the label this
        hand had on the previous frame.
        """
        label, m = self.evaluate(thumb, index, middle, ring, pinky, wrist, is_tracked)

        state = self._states[hand]
        changed = label is not state.current_label
        state.previous_label = state.current_label
        state.current_label = label

        if changed:
            logger.debug("Posture %s: %s -> %s", hand.value,
                         state.previous_label.value, label.value)

        return PostureResult(hand=hand, label=label, changed=changed, measurement=m)

    def classify_frame(self, hand: HandSide, frame: HandFrame) -> PostureResult:
        tips = [frame.joints.get(FINGERTIPS[ch]) for ch in FingerChannel]
        return self.classify(
            hand, *tips, wrist=frame.joints.get(Joint.WRIST_ROOT), is_tracked=frame.tracked
        )

    def label(self, hand: HandSide) -> Posture:
        """The label reported on the most recent frame for ``hand``."""
        return self._states[hand].current_label

    def state(self, hand: HandSide) -> PostureState:
        s = self._states[hand]
        return PostureState(s.current_label, s.previous_label)

    @property
    def labels(self) -> dict[HandSide, Posture]:
        return {side: s.current_label for side, s in self._states.items()}
