"""Frame recording and replay: capture tracking input to disk.

Recordings let a whole session run without a headset:
- Reproducible tests of the engines and the session flow
- Offline review of a patient's session with different thresholds
- Demo runs that play back deterministically
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from rehab_engine.hands import FrameInput

RECORDING_VERSION = 1


@dataclass
class RecordedFrame:
    """A single frame in a recording."""
    dt: float  # seconds since the previous frame
    frame: FrameInput


class FrameRecorder:
    """Records tracking frames to a JSON file.

    Usage:
        recorder = FrameRecorder()
        recorder.start()
        # In your frame loop:
        recorder.add_frame(dt, frame)
        # When done:
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._recording = False

    def start(self):
        """Begin a new recording."""
        self._frames = []
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        return sum(f.dt for f in self._frames)

    def add_frame(self, dt: float, frame: FrameInput):
        if not self._recording:
            return
        self._frames.append(RecordedFrame(dt=float(dt), frame=frame))

    def save(self, path: str | Path):
        """Save recording to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": RECORDING_VERSION,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [{"dt": f.dt, "hands": f.frame.to_dict()} for f in self._frames],
        }

        with open(path, "w") as f:
            json.dump(data, f)


class FramePlayer:
    """Replays a recorded frame stream.

    Usage:
        player = FramePlayer.load("session.json")
        for dt, frame in player.play():
            pipeline.tick(dt, frame)
    """

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> FramePlayer:
        with open(path) as f:
            data = json.load(f)

        version = data.get("version", RECORDING_VERSION)
        if version != RECORDING_VERSION:
            raise ValueError(f"Unsupported recording version: {version}")

        frames = [
            RecordedFrame(dt=float(f["dt"]), frame=FrameInput.from_dict(f.get("hands", {})))
            for f in data["frames"]
        ]
        return cls(frames)

    @classmethod
    def from_frames(cls, frames) -> FramePlayer:
        """Wrap in-memory ``(dt, FrameInput)`` pairs."""
        return cls([RecordedFrame(dt=dt, frame=frame) for dt, frame in frames])

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        return sum(f.dt for f in self._frames)

    def play(self) -> Iterator[tuple[float, FrameInput]]:
        """Iterate through all frames instantly (no timing)."""
        for f in self._frames:
            yield f.dt, f.frame

    def play_realtime(self, speed: float = 1.0) -> Iterator[tuple[float, FrameInput]]:
        """Replay at recorded timing (or scaled by speed factor)."""
        start = time.monotonic()
        target = 0.0
        for dt, frame in self.play():
            target += dt / speed
            elapsed = time.monotonic() - start
            if target > elapsed:
                time.sleep(target - elapsed)
            yield dt, frame

    def get_frame(self, index: int) -> Optional[RecordedFrame]:
        if 0 <= index < len(self._frames):
            return self._frames[index]
        return None
