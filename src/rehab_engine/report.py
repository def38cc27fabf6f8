"""Session-to-session comparison of max pinch strength."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from rehab_engine.hands import FingerChannel

# Percent change beyond which a channel counts as improved or declined
CHANGE_BAND = 5.0

FIRST_SESSION_MESSAGE = "First session complete! Data saved for next time."


class Trend(Enum):
    IMPROVED = "improved"
    DECLINED = "declined"
    STABLE = "stable"


def percent_change(current: float, previous: float) -> float:
    """Percent change from ``previous`` to ``current``.

    A previous value of 0 divides by 1 instead, so the result is the raw
    difference times 100. Rounded to 6 places so exact band edges like
    0.525 vs 0.5 are not pushed over by float error.
    """
    base = previous if previous != 0 else 1.0
    return round((current - previous) / base * 100.0, 6)


def classify_change(percent: float) -> Trend:
    """Improved is strictly above +5%, declined strictly below -5%."""
    if percent > CHANGE_BAND:
        return Trend.IMPROVED
    if percent < -CHANGE_BAND:
        return Trend.DECLINED
    return Trend.STABLE


@dataclass(frozen=True)
class ChannelComparison:
    channel: FingerChannel
    current: float
    previous: float
    percent: float
    trend: Trend

    def describe(self) -> str:
        name = self.channel.name.capitalize()
        if self.trend is Trend.STABLE:
            change = "Stable"
        else:
            change = f"{self.percent:+.0f}%"
        return f"{name}: {self.current:.0%} ({change})"


@dataclass
class ComparisonReport:
    """Per-channel comparison against the previous session, if there was one."""
    first_session: bool
    channels: list[ChannelComparison] = field(default_factory=list)

    def render(self) -> str:
        if self.first_session:
            return FIRST_SESSION_MESSAGE
        if not self.channels:
            return "Session complete. No exercises were run."
        lines = ["Session Comparison (Max Strength):"]
        lines.extend(c.describe() for c in self.channels)
        return "\n".join(lines)

    def trend(self, channel: FingerChannel) -> Optional[Trend]:
        for c in self.channels:
            if c.channel is channel:
                return c.trend
        return None

    def to_dict(self) -> dict:
        return {
            "first_session": self.first_session,
            "channels": [
                {
                    "channel": c.channel.label,
                    "current": c.current,
                    "previous": c.previous,
                    "percent": c.percent,
                    "trend": c.trend.value,
                }
                for c in self.channels
            ],
        }


def compare_sessions(
    current: Sequence[float],
    previous: Optional[Sequence[float]],
) -> ComparisonReport:
    """Compare per-channel max strengths (one slot per FingerChannel)."""
    if previous is None:
        return ComparisonReport(first_session=True)

    channels = []
    for ch in FingerChannel:
        cur = float(current[ch]) if ch < len(current) else 0.0
        prev = float(previous[ch]) if ch < len(previous) else 0.0
        pct = percent_change(cur, prev)
        channels.append(ChannelComparison(ch, cur, prev, pct, classify_change(pct)))
    return ComparisonReport(first_session=False, channels=channels)
