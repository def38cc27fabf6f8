"""Hand-tracking input types shared by the detection engines.

The tracking source is external. Each frame it supplies, per hand, a tracked
flag, a raw pinch strength per finger and positions for a fixed joint set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Mapping, Optional

import numpy as np


class HandSide(Enum):
    """Which tracked hand a reading belongs to."""
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def parse(cls, value: str | HandSide) -> HandSide:
        if isinstance(value, HandSide):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown hand side: {value!r}") from None


class FingerChannel(IntEnum):
    """Finger channels, indexed to match the five persisted strength slots."""
    THUMB = 0
    INDEX = 1
    MIDDLE = 2
    RING = 3
    PINKY = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str | int | FingerChannel) -> FingerChannel:
        """Resolve a channel from its name or slot index.

        Raises ValueError for anything outside the five channels.
        """
        if isinstance(value, FingerChannel):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown finger channel: {value!r}") from None
        if isinstance(value, bool):
            raise ValueError(f"Unknown finger channel: {value!r}")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(f"Finger channel index must be a whole number: {value!r}")
            value = int(value)
        try:
            return cls(value)
        except (TypeError, ValueError):
            raise ValueError(f"Finger channel index out of range: {value!r}") from None


NUM_CHANNEL_SLOTS = len(FingerChannel)

# Pinch channels when the thumb is the reference digit
DEFAULT_CHANNELS = (
    FingerChannel.INDEX,
    FingerChannel.MIDDLE,
    FingerChannel.RING,
    FingerChannel.PINKY,
)


class Joint(Enum):
    """Named skeleton joints read by the engines."""
    THUMB_TIP = "thumb_tip"
    INDEX_TIP = "index_tip"
    MIDDLE_TIP = "middle_tip"
    RING_TIP = "ring_tip"
    PINKY_TIP = "pinky_tip"
    WRIST_ROOT = "wrist_root"


FINGERTIPS = {
    FingerChannel.THUMB: Joint.THUMB_TIP,
    FingerChannel.INDEX: Joint.INDEX_TIP,
    FingerChannel.MIDDLE: Joint.MIDDLE_TIP,
    FingerChannel.RING: Joint.RING_TIP,
    FingerChannel.PINKY: Joint.PINKY_TIP,
}


def as_point(value) -> Optional[np.ndarray]:
    """Convert a joint position to a float (3,) array.

    Returns None when the position is missing, malformed or non-finite.
    """
    if value is None:
        return None
    point = np.asarray(value, dtype=np.float64)
    if point.shape != (3,) or not np.all(np.isfinite(point)):
        return None
    return point


@dataclass
class HandFrame:
    """One hand's snapshot for a single frame."""
    tracked: bool = False
    strengths: dict[FingerChannel, float] = field(default_factory=dict)
    joints: dict[Joint, np.ndarray] = field(default_factory=dict)

    def joint(self, joint: Joint) -> Optional[np.ndarray]:
        return as_point(self.joints.get(joint))

    def to_dict(self) -> dict:
        return {
            "tracked": self.tracked,
            "strengths": {ch.label: float(v) for ch, v in self.strengths.items()},
            "joints": {j.value: [float(c) for c in p] for j, p in self.joints.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> HandFrame:
        return cls(
            tracked=bool(data.get("tracked", False)),
            strengths={
                FingerChannel.parse(k): float(v)
                for k, v in data.get("strengths", {}).items()
            },
            joints={
                Joint(k): np.asarray(v, dtype=np.float64)
                for k, v in data.get("joints", {}).items()
            },
        )

    @classmethod
    def untracked(cls) -> HandFrame:
        return cls(tracked=False)


@dataclass
class FrameInput:
    """Both hands for one frame. A missing hand is treated as untracked."""
    hands: dict[HandSide, HandFrame] = field(default_factory=dict)

    def hand(self, side: HandSide) -> HandFrame:
        return self.hands.get(side) or HandFrame.untracked()

    def to_dict(self) -> dict:
        return {side.value: frame.to_dict() for side, frame in self.hands.items()}

    @classmethod
    def from_dict(cls, data: Mapping) -> FrameInput:
        return cls(hands={
            HandSide.parse(side): HandFrame.from_dict(frame)
            for side, frame in data.items()
        })
