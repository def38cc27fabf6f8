"""Session record and per-repetition row types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping, Optional

from rehab_engine.hands import NUM_CHANNEL_SLOTS, FingerChannel
from rehab_engine.pinch import clamp01

SESSION_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Written in the channel column for rows not tied to a finger
CHANNEL_SENTINEL = "none"


class RowKind(Enum):
    PINCH_REP = "PinchRep"
    POSTURE_HOLD = "PostureHold"


@dataclass(frozen=True)
class SessionRow:
    """One completed repetition or posture hold."""
    timestamp: str
    task_label: str
    rep_index: int
    channel: Optional[FingerChannel]
    kind: RowKind
    duration_seconds: float
    observed_strength: float

    def __post_init__(self):
        object.__setattr__(self, "observed_strength", clamp01(self.observed_strength))


# Export columns in declaration order
ROW_COLUMNS: tuple[tuple[str, Callable[[SessionRow], str]], ...] = (
    ("timestamp", lambda r: r.timestamp),
    ("task_label", lambda r: r.task_label),
    ("rep_index", lambda r: str(r.rep_index)),
    ("channel", lambda r: r.channel.label if r.channel is not None else CHANNEL_SENTINEL),
    ("event_kind", lambda r: r.kind.value),
    ("duration_seconds", lambda r: f"{r.duration_seconds:.3f}"),
    ("observed_strength", lambda r: f"{r.observed_strength:.3f}"),
)


class SessionRecord:
    """Max strength per channel plus the rows logged during one session.

    Max strengths only ever increase and rows are append-only.
    """

    def __init__(self, session_date: str, max_pinch_strength=None):
        self.session_date = session_date
        values = list(max_pinch_strength or [])
        if len(values) > NUM_CHANNEL_SLOTS:
            raise ValueError(
                f"Expected at most {NUM_CHANNEL_SLOTS} strength slots, got {len(values)}"
            )
        values += [0.0] * (NUM_CHANNEL_SLOTS - len(values))
        self._max = [clamp01(v) for v in values]
        self._rows: list[SessionRow] = []

    @classmethod
    def start(cls, started_at: Optional[datetime] = None) -> SessionRecord:
        started_at = started_at or datetime.now()
        return cls(session_date=started_at.strftime(SESSION_DATE_FORMAT))

    @property
    def max_pinch_strength(self) -> tuple[float, ...]:
        return tuple(self._max)

    @property
    def rows(self) -> tuple[SessionRow, ...]:
        return tuple(self._rows)

    def observe_strength(self, channel: FingerChannel, value: float):
        slot = int(channel)
        self._max[slot] = max(self._max[slot], clamp01(value))

    def append_row(self, row: SessionRow):
        self._rows.append(row)

    def to_dict(self) -> dict:
        return {
            "sessionDate": self.session_date,
            "maxPinchStrength": list(self._max),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> SessionRecord:
        """Rebuild a persisted record. Raises ValueError when malformed."""
        if not isinstance(data, Mapping):
            raise ValueError("Session record must be a JSON object")
        try:
            date = str(data["sessionDate"])
            values = [float(v) for v in data["maxPinchStrength"]]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed session record: {e}") from None
        if len(values) != NUM_CHANNEL_SLOTS:
            raise ValueError(
                f"Expected {NUM_CHANNEL_SLOTS} strength slots, got {len(values)}"
            )
        return cls(date, values)

    def __repr__(self) -> str:
        return f"SessionRecord({self.session_date!r}, max={self._max}, rows={len(self._rows)})"
