"""Scripted rehabilitation exercise steps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from rehab_engine.errors import ConfigurationError
from rehab_engine.hands import FingerChannel, HandSide
from rehab_engine.pinch import clamp01
from rehab_engine.postures import Posture


class TaskKind(Enum):
    HOLD_AT_TARGET = "hold_at_target"
    REPEATED_PINCHES = "repeated_pinches"
    POSTURE_HOLD = "posture_hold"


@dataclass(frozen=True)
class RehabTask:
    """One exercise step.

    Pinch tasks read ``target_channel``; posture holds read ``target_posture``.
    ``hand`` limits the task to one hand, None accepts either.
    """
    instruction: str
    kind: TaskKind
    target_channel: Optional[FingerChannel] = None
    target_strength: float = 0.8
    hold_duration: float = 3.0
    required_reps: int = 1
    target_posture: Optional[Posture] = None
    hand: Optional[HandSide] = None
    rest_seconds: float = 0.0
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "target_strength", clamp01(self.target_strength))

        if self.kind in (TaskKind.HOLD_AT_TARGET, TaskKind.REPEATED_PINCHES):
            if self.target_channel is None:
                raise ConfigurationError(f"{self.kind.value} task needs a target_channel")
        elif self.kind is TaskKind.POSTURE_HOLD:
            if self.target_posture in (None, Posture.NONE):
                raise ConfigurationError("posture_hold task needs a target_posture other than None")

        if self.hold_duration < 0:
            raise ConfigurationError(f"hold_duration must be >= 0, got {self.hold_duration}")
        if self.required_reps < 1:
            raise ConfigurationError(f"required_reps must be >= 1, got {self.required_reps}")
        if self.rest_seconds < 0:
            raise ConfigurationError(f"rest_seconds must be >= 0, got {self.rest_seconds}")

    @property
    def label(self) -> str:
        """Task label used in session rows."""
        if self.name:
            return self.name
        if self.kind is TaskKind.POSTURE_HOLD:
            return f"Mudra-{self.target_posture.value}"
        if self.kind is TaskKind.REPEATED_PINCHES:
            return f"Pinch-{self.target_channel.label}"
        return f"Hold-{self.target_channel.label}"

    def to_dict(self) -> dict:
        data = {
            "instruction": self.instruction,
            "kind": self.kind.value,
            "hold_duration": self.hold_duration,
            "required_reps": self.required_reps,
            "rest_seconds": self.rest_seconds,
        }
        if self.target_channel is not None:
            data["target_channel"] = self.target_channel.label
            data["target_strength"] = self.target_strength
        if self.target_posture is not None:
            data["target_posture"] = self.target_posture.value
        if self.hand is not None:
            data["hand"] = self.hand.value
        if self.name:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> RehabTask:
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Invalid task {data!r}: expected a mapping")
        try:
            kind = TaskKind(data["kind"])
            channel = data.get("target_channel")
            posture = data.get("target_posture")
            hand = data.get("hand")
            return cls(
                instruction=data.get("instruction", ""),
                kind=kind,
                target_channel=FingerChannel.parse(channel) if channel is not None else None,
                target_strength=float(data.get("target_strength", 0.8)),
                hold_duration=float(data.get("hold_duration", 3.0)),
                required_reps=int(data.get("required_reps", 1)),
                target_posture=Posture.parse(posture) if posture is not None else None,
                hand=HandSide.parse(hand) if hand is not None else None,
                rest_seconds=float(data.get("rest_seconds", 0.0)),
                name=data.get("name", ""),
            )
        except ConfigurationError:
            raise
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid task {dict(data)!r}: {e}") from None


def default_tasks() -> list[RehabTask]:
    """The standard session: a sustained hold, pinch reps, then mudra holds."""
    return [
        RehabTask(
            instruction="Pinch your index finger to your thumb and hold",
            kind=TaskKind.HOLD_AT_TARGET,
            target_channel=FingerChannel.INDEX,
            target_strength=0.8,
            hold_duration=3.0,
        ),
        RehabTask(
            instruction="Pinch and release your index finger",
            kind=TaskKind.REPEATED_PINCHES,
            target_channel=FingerChannel.INDEX,
            required_reps=8,
            rest_seconds=0.8,
        ),
        RehabTask(
            instruction="Pinch and release your middle finger",
            kind=TaskKind.REPEATED_PINCHES,
            target_channel=FingerChannel.MIDDLE,
            required_reps=8,
            rest_seconds=0.8,
        ),
        RehabTask(
            instruction="Touch your thumb to your ring finger (Surya mudra) and hold",
            kind=TaskKind.POSTURE_HOLD,
            target_posture=Posture.SURYA,
            hold_duration=2.0,
            required_reps=3,
            rest_seconds=0.8,
        ),
    ]
