"""Synthetic hand input for demos, benchmarks and tests.

Builds plausible joint layouts (an open hand with the thumb moved onto the
fingertips a posture needs) and scripted pinch-strength timelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from rehab_engine.hands import FINGERTIPS, FingerChannel, FrameInput, HandFrame, HandSide, Joint
from rehab_engine.postures import DEFAULT_RULES, Posture

REFERENCE_LENGTH = 0.10

# Open hand on a 10 cm reference hand, wrist at the origin (metres)
_OPEN_LAYOUT = {
    Joint.WRIST_ROOT: (0.0, 0.0, 0.0),
    Joint.THUMB_TIP: (-0.06, 0.04, 0.0),
    Joint.INDEX_TIP: (-0.05, 0.09, 0.0),
    Joint.MIDDLE_TIP: (0.0, 0.10, 0.0),
    Joint.RING_TIP: (0.045, 0.09, 0.0),
    Joint.PINKY_TIP: (0.08, 0.07, 0.0),
}

# Thumb stand-off from the touched tips, as a fraction of hand length
_TOUCH_GAP = 0.05


def hand_joints(
    touching: Iterable[FingerChannel] = (),
    hand_length: float = REFERENCE_LENGTH,
    origin=(0.0, 0.0, 0.0),
) -> dict[Joint, np.ndarray]:
    """Joint positions for a hand whose thumb touches ``touching`` tips.

    The whole layout scales with ``hand_length`` (wrist to middle tip).
    """
    scale = hand_length / REFERENCE_LENGTH
    base = np.asarray(origin, dtype=np.float64)
    joints = {j: base + np.asarray(p) * scale for j, p in _OPEN_LAYOUT.items()}

    touched = [FINGERTIPS[ch] for ch in touching if ch is not FingerChannel.THUMB]
    if touched:
        centre = np.mean([joints[j] for j in touched], axis=0)
        joints[Joint.THUMB_TIP] = centre + np.array([0.0, 0.0, _TOUCH_GAP * hand_length])
    return joints


def posture_joints(
    posture: Posture,
    hand_length: float = REFERENCE_LENGTH,
    origin=(0.0, 0.0, 0.0),
) -> dict[Joint, np.ndarray]:
    """Joint positions that the default rules classify as ``posture``."""
    if posture is Posture.NONE:
        return hand_joints((), hand_length, origin)
    rule = next(r for r in DEFAULT_RULES if r.label is posture)
    return hand_joints(sorted(rule.close), hand_length, origin)


@dataclass
class Segment:
    """A stretch of constant input on one hand; the other hand is untracked."""
    duration: float
    strengths: dict[FingerChannel, float] = field(default_factory=dict)
    posture: Posture = Posture.NONE
    tracked: bool = True
    hand: HandSide = HandSide.RIGHT


def render(
    segments: Iterable[Segment],
    fps: float = 60.0,
    hand_length: float = REFERENCE_LENGTH,
) -> list[tuple[float, FrameInput]]:
    """Expand segments into ``(dt, FrameInput)`` pairs at a fixed frame rate."""
    dt = 1.0 / fps
    frames = []
    for seg in segments:
        n = max(1, int(round(seg.duration * fps)))
        if seg.tracked:
            hand = HandFrame(
                tracked=True,
                strengths={ch: seg.strengths.get(ch, 0.0) for ch in FingerChannel},
                joints=posture_joints(seg.posture, hand_length),
            )
        else:
            hand = HandFrame.untracked()
        for _ in range(n):
            frames.append((dt, FrameInput(hands={seg.hand: hand})))
    return frames


def default_session_script(strength: float = 0.9, hand: Optional[HandSide] = None) -> list[Segment]:
    """Input that completes the default task sequence."""
    hand = hand or HandSide.RIGHT
    index = {FingerChannel.INDEX: strength}
    middle = {FingerChannel.MIDDLE: strength}

    segments = [Segment(0.5, hand=hand)]
    segments.append(Segment(3.5, strengths=index, hand=hand))
    segments.append(Segment(1.0, hand=hand))
    for pinch in (index, middle):
        for _ in range(8):
            segments.append(Segment(0.5, strengths=pinch, hand=hand))
            segments.append(Segment(1.0, hand=hand))
    for _ in range(3):
        segments.append(Segment(2.5, posture=Posture.SURYA, hand=hand))
        segments.append(Segment(1.0, hand=hand))
    return segments
