"""Per-frame driver: tracking input -> engines -> session."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from rehab_engine.config import RehabConfig
from rehab_engine.hands import FrameInput, HandSide
from rehab_engine.pinch import PinchDetector, PinchEvent
from rehab_engine.postures import PostureChange, PostureClassifier, PostureResult
from rehab_engine.session import SessionEvent, SessionOrchestrator, SessionState

logger = logging.getLogger("rehab_engine.pipeline")


@dataclass
class FrameResult:
    """Everything the engines produced for one frame."""
    frame_index: int
    pinch_events: list[PinchEvent] = field(default_factory=list)
    postures: dict[HandSide, PostureResult] = field(default_factory=dict)
    posture_changes: list[PostureChange] = field(default_factory=list)
    session_events: list[SessionEvent] = field(default_factory=list)


@dataclass
class PipelineStats:
    total_frames: int = 0
    total_time: float = 0.0
    pinch_events: int = 0
    posture_changes: int = 0
    untracked_frames: dict[HandSide, int] = field(
        default_factory=lambda: {side: 0 for side in HandSide}
    )


class RehabPipeline:
    """Runs the pinch engine, posture classifier and session in frame order.

    The driver loop owns timing: call ``tick(dt, frame)`` once per tracking
    frame. Pinch and posture state are updated for both hands before the
    session reads them.

    Usage:
        pipeline = RehabPipeline(RehabConfig.default(), store=SessionStore("data"))
        pipeline.start_session()
        for dt, frame in player.play():
            result = pipeline.tick(dt, frame)
    """

    def __init__(self, config: Optional[RehabConfig] = None, store=None):
        self.config = config or RehabConfig.default()
        self.pinch = PinchDetector(self.config.pinch)
        self.postures = PostureClassifier(self.config.posture)
        self.session = SessionOrchestrator(self.config.tasks, self.pinch, self.postures, store)
        self._stats = PipelineStats()

    def start_session(self, started_at=None) -> list[SessionEvent]:
        return self.session.start_session(started_at)

    def tick(self, dt: float, frame: FrameInput) -> FrameResult:
        """Process one frame of tracking data."""
        result = FrameResult(frame_index=self._stats.total_frames)

        for side in HandSide:
            hand = frame.hand(side)
            if not hand.tracked:
                self._stats.untracked_frames[side] += 1

            result.pinch_events.extend(self.pinch.observe_frame(side, hand, dt))

            posture = self.postures.classify_frame(side, hand)
            result.postures[side] = posture
            if posture.changed:
                result.posture_changes.append(PostureChange(
                    hand=side,
                    label=posture.label,
                    previous=self.postures.state(side).previous_label,
                ))

        self._stats.total_frames += 1
        self._stats.total_time += max(0.0, dt)
        self._stats.pinch_events += len(result.pinch_events)
        self._stats.posture_changes += len(result.posture_changes)

        result.session_events = self.session.tick(dt)
        return result

    def run(self, frames: Iterable[tuple[float, FrameInput]]) -> Iterator[FrameResult]:
        """Tick through ``frames`` until they run out or the session ends."""
        for dt, frame in frames:
            yield self.tick(dt, frame)
            if self.session.state is SessionState.SESSION_COMPLETE:
                logger.debug("Session complete, stopping after frame %d",
                             self._stats.total_frames)
                break

    @property
    def stats(self) -> PipelineStats:
        return self._stats

    def reset(self):
        """Clear engine state and statistics. Does not touch the session."""
        self.pinch.reset()
        self.postures.reset()
        self._stats = PipelineStats()
