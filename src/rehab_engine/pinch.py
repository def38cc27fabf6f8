"""Pinch detection: per-finger smoothing and a hysteresis latch.

Each (hand, finger) channel runs the same small state machine every frame:

    raw strength -> low-pass filter -> micro-movement check -> latch

The latch engages when the smoothed strength reaches ``start_threshold`` and
releases only once it falls below ``end_threshold``. The gap between the two
is the hysteresis band that keeps a noisy signal near a single cutoff from
flapping between pinched and released.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional, Sequence

import numpy as np

from rehab_engine.errors import ConfigurationError, config_bool, config_float, config_mapping
from rehab_engine.hands import (
    DEFAULT_CHANNELS,
    FINGERTIPS,
    FingerChannel,
    HandFrame,
    HandSide,
    Joint,
)

logger = logging.getLogger("rehab_engine.pinch")

# Slack on the micro-movement delta for float error in accumulated strengths
MICRO_EPSILON = 1e-9

_NUMERIC_FIELDS = (
    "start_threshold",
    "end_threshold",
    "micro_movement_delta",
    "pinch_distance_min",
    "pinch_distance_max",
)
_SMOOTHING_FIELDS = ("smoothing_factor", "smoothing_time_constant")


class SmoothingPolicy(Enum):
    """How raw strength is folded into the smoothed value."""
    NONE = "none"                    # smoothed follows raw
    FACTOR = "factor"                # fixed blend per frame (frame-rate coupled)
    TIME_CONSTANT = "time_constant"  # 1 - exp(-dt / tau), frame-rate independent


class StrengthSource(Enum):
    """Where raw pinch strengths come from."""
    NATIVE = "native"      # reported by the tracking runtime
    DISTANCE = "distance"  # derived from thumb-to-tip distances


@dataclass
class PinchConfig:
    """Tunable parameters for the pinch engine."""
    start_threshold: float = 0.6
    end_threshold: float = 0.45
    smoothing_factor: Optional[float] = None
    smoothing_time_constant: Optional[float] = None
    micro_movement_delta: float = 0.01
    include_thumb: bool = False
    strength_source: StrengthSource = StrengthSource.NATIVE
    pinch_distance_min: float = 0.015
    pinch_distance_max: float = 0.05

    def __post_init__(self):
        for name in _NUMERIC_FIELDS:
            setattr(self, name, config_float(name, getattr(self, name)))
        for name in _SMOOTHING_FIELDS:
            if getattr(self, name) is not None:
                setattr(self, name, config_float(name, getattr(self, name)))
        self.include_thumb = config_bool("include_thumb", self.include_thumb)

        try:
            self.strength_source = StrengthSource(self.strength_source)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Unknown strength_source: {self.strength_source!r}"
            ) from None

        for name in ("start_threshold", "end_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if self.end_threshold >= self.start_threshold:
            raise ConfigurationError(
                f"end_threshold ({self.end_threshold}) must be strictly less than "
                f"start_threshold ({self.start_threshold})"
            )

        if self.smoothing_factor is not None and self.smoothing_time_constant is not None:
            raise ConfigurationError(
                "Set either smoothing_factor or smoothing_time_constant, not both"
            )
        if self.smoothing_factor is not None and not 0.0 < self.smoothing_factor <= 1.0:
            raise ConfigurationError(
                f"smoothing_factor must be within (0, 1], got {self.smoothing_factor}"
            )
        if self.smoothing_time_constant is not None and not self.smoothing_time_constant >= 0:
            raise ConfigurationError(
                f"smoothing_time_constant must be >= 0, got {self.smoothing_time_constant}"
            )

        if not self.micro_movement_delta > 0:
            raise ConfigurationError(
                f"micro_movement_delta must be positive, got {self.micro_movement_delta}"
            )
        if not 0 <= self.pinch_distance_min < self.pinch_distance_max:
            raise ConfigurationError(
                "pinch_distance_min must be >= 0 and below pinch_distance_max"
            )

    @property
    def policy(self) -> SmoothingPolicy:
        if self.smoothing_factor is not None:
            return SmoothingPolicy.FACTOR
        if self.smoothing_time_constant is not None:
            return SmoothingPolicy.TIME_CONSTANT
        return SmoothingPolicy.NONE

    @property
    def channels(self) -> tuple[FingerChannel, ...]:
        if self.include_thumb:
            return (FingerChannel.THUMB,) + DEFAULT_CHANNELS
        return DEFAULT_CHANNELS

    def to_dict(self) -> dict:
        data = {
            "start_threshold": self.start_threshold,
            "end_threshold": self.end_threshold,
            "micro_movement_delta": self.micro_movement_delta,
            "include_thumb": self.include_thumb,
            "strength_source": self.strength_source.value,
            "pinch_distance_min": self.pinch_distance_min,
            "pinch_distance_max": self.pinch_distance_max,
        }
        if self.smoothing_factor is not None:
            data["smoothing_factor"] = self.smoothing_factor
        if self.smoothing_time_constant is not None:
            data["smoothing_time_constant"] = self.smoothing_time_constant
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> PinchConfig:
        data = config_mapping("pinch", data)
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown pinch options: {sorted(unknown)}")
        return cls(**data)


class PinchEventType(Enum):
    START = "start"
    HOLD = "hold"
    END = "end"
    MICRO_MOVEMENT = "micro_movement"


@dataclass(frozen=True)
class PinchEvent:
    """A pinch event for one (hand, finger) channel."""
    kind: PinchEventType
    hand: HandSide
    channel: FingerChannel
    strength: float


@dataclass
class PinchChannelState:
    """Filter and latch state for one (hand, finger) pair."""
    smoothed_strength: float = 0.0
    last_reported_strength: float = 0.0
    is_pinched: bool = False
    primed: bool = False


def clamp01(value: float) -> float:
    """Clamp to [0, 1]. NaN becomes 0."""
    if value != value:
        return 0.0
    return min(1.0, max(0.0, float(value)))


def blend_weight(policy: SmoothingPolicy, factor: Optional[float],
                 time_constant: Optional[float], dt: float) -> float:
    """Weight of the new sample for one filter step, in [0, 1]."""
    if policy is SmoothingPolicy.FACTOR:
        return float(factor)
    if policy is SmoothingPolicy.TIME_CONSTANT:
        if time_constant == 0:
            return 1.0
        if dt <= 0:
            return 0.0
        return 1.0 - math.exp(-dt / time_constant)
    return 1.0


def distance_to_strength(distance: float, min_distance: float, max_distance: float) -> float:
    """Map a thumb-to-tip distance to a pinch strength.

    ``min_distance`` or closer is a full pinch (1.0), ``max_distance`` or
    farther is open (0.0), linear in between.
    """
    if distance <= min_distance:
        return 1.0
    if distance >= max_distance:
        return 0.0
    t = (distance - min_distance) / (max_distance - min_distance)
    return 1.0 - t


def strengths_from_joints(
    frame: HandFrame,
    channels: Sequence[FingerChannel],
    min_distance: float,
    max_distance: float,
) -> dict[FingerChannel, float]:
    """Derive raw pinch strengths from skeleton tip positions.

    The thumb channel has no partner digit and always reads 0. Channels whose
    joints are missing read 0.
    """
    thumb = frame.joint(Joint.THUMB_TIP)
    result: dict[FingerChannel, float] = {}
    for ch in channels:
        tip = frame.joint(FINGERTIPS[ch])
        if ch is FingerChannel.THUMB or thumb is None or tip is None:
            result[ch] = 0.0
            continue
        dist = float(np.linalg.norm(thumb - tip))
        result[ch] = distance_to_strength(dist, min_distance, max_distance)
    return result


class PinchDetector:
    """Turns raw per-finger pinch strength into start/hold/end/micro events.

    State lives in a fixed {hand x channel} table built at construction, so
    every valid pair has a slot from the first frame. The table is private;
    readers get copies through ``state()``.

    Usage:
        detector = PinchDetector(PinchConfig(smoothing_time_constant=0.15))
        events = detector.observe(HandSide.RIGHT, [0.1, 0.7, 0.0, 0.0], dt=1 / 72)
    """

    def __init__(self, config: Optional[PinchConfig] = None):
        self.config = config or PinchConfig()
        self.channels: tuple[FingerChannel, ...] = self.config.channels
        self._slots = {ch: i for i, ch in enumerate(self.channels)}
        self._table: dict[HandSide, list[PinchChannelState]] = {}
        self.reset()

    def reset(self):
        """Drop all filter and latch state."""
        self._table = {
            side: [PinchChannelState() for _ in self.channels] for side in HandSide
        }

    def _slot(self, channel) -> int:
        try:
            ch = FingerChannel.parse(channel)
        except ValueError:
            raise ValueError(f"Unknown pinch channel: {channel!r}") from None
        if ch not in self._slots:
            raise ValueError(
                f"Channel {ch.label} is not tracked by this detector "
                f"(tracking {[c.label for c in self.channels]})"
            )
        return self._slots[ch]

    def _normalize_raw(self, raw) -> list[float]:
        if isinstance(raw, Mapping):
            values = [0.0] * len(self.channels)
            for key, value in raw.items():
                values[self._slot(key)] = clamp01(value)
            return values

        values = list(raw)
        if len(values) != len(self.channels):
            raise ValueError(
                f"Expected {len(self.channels)} raw strengths, got {len(values)}"
            )
        return [clamp01(v) for v in values]

    def observe(
        self,
        hand: HandSide,
        raw_strengths: Sequence[float] | Mapping[FingerChannel, float],
        is_tracked: bool = True,
        dt: float = 0.0,
    ) -> list[PinchEvent]:
        """Process one frame for one hand.

        Args:
            hand: Which hand the readings belong to.
            raw_strengths: Raw strengths aligned with ``self.channels``, or a
                mapping of channel to strength (unlisted channels read 0).
            is_tracked: False when the tracking source lost this hand.
            dt: Seconds since the previous frame.

        Returns:
            Events in channel order.
        """
        states = self._table[hand]

        if not is_tracked:
            return self._release_all(hand, states)

        raw = self._normalize_raw(raw_strengths)
        cfg = self.config
        alpha = blend_weight(cfg.policy, cfg.smoothing_factor, cfg.smoothing_time_constant, dt)
        events: list[PinchEvent] = []

        for ch, state, value in zip(self.channels, states, raw):
            if not state.primed:
                state.smoothed_strength = value
                state.last_reported_strength = value
                state.primed = True
            else:
                prev = state.smoothed_strength
                state.smoothed_strength = clamp01(prev + (value - prev) * alpha)

            strength = state.smoothed_strength

            moved = abs(strength - state.last_reported_strength)
            if moved >= cfg.micro_movement_delta - MICRO_EPSILON:
                events.append(PinchEvent(PinchEventType.MICRO_MOVEMENT, hand, ch, strength))
                state.last_reported_strength = strength

            if not state.is_pinched:
                if strength >= cfg.start_threshold:
                    state.is_pinched = True
                    events.append(PinchEvent(PinchEventType.START, hand, ch, strength))
                    logger.debug("Pinch start %s/%s strength=%.3f", hand.value, ch.label, strength)
            elif strength < cfg.end_threshold:
                state.is_pinched = False
                events.append(PinchEvent(PinchEventType.END, hand, ch, strength))
                logger.debug("Pinch end %s/%s strength=%.3f", hand.value, ch.label, strength)
            else:
                events.append(PinchEvent(PinchEventType.HOLD, hand, ch, strength))

        return events

    def _release_all(self, hand: HandSide, states: list[PinchChannelState]) -> list[PinchEvent]:
        events = []
        for ch, state in zip(self.channels, states):
            state.smoothed_strength = 0.0
            state.last_reported_strength = 0.0
            state.primed = True
            if state.is_pinched:
                state.is_pinched = False
                events.append(PinchEvent(PinchEventType.END, hand, ch, 0.0))
                logger.debug("Pinch end %s/%s (tracking lost)", hand.value, ch.label)
        return events

    def observe_frame(self, hand: HandSide, frame: HandFrame, dt: float = 0.0) -> list[PinchEvent]:
        """Process a tracking-source snapshot for one hand.

        Picks raw strengths according to ``config.strength_source``. Channels
        the source reports but this detector does not track are ignored.
        """
        if not frame.tracked:
            return self.observe(hand, [], is_tracked=False, dt=dt)

        cfg = self.config
        if cfg.strength_source is StrengthSource.DISTANCE:
            source = strengths_from_joints(
                frame, self.channels, cfg.pinch_distance_min, cfg.pinch_distance_max
            )
        else:
            source = frame.strengths

        raw = [source.get(ch, 0.0) for ch in self.channels]
        return self.observe(hand, raw, is_tracked=True, dt=dt)

    def strength(self, hand: HandSide, channel: FingerChannel) -> float:
        """Current smoothed strength for one channel."""
        return self._table[hand][self._slot(channel)].smoothed_strength

    def is_pinched(self, hand: HandSide, channel: FingerChannel) -> bool:
        return self._table[hand][self._slot(channel)].is_pinched

    def strengths(self, hand: HandSide) -> dict[FingerChannel, float]:
        return {
            ch: state.smoothed_strength
            for ch, state in zip(self.channels, self._table[hand])
        }

    def state(self, hand: HandSide, channel: FingerChannel) -> PinchChannelState:
        """A copy of one channel's state."""
        return replace(self._table[hand][self._slot(channel)])
