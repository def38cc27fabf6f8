"""Tests for session comparison."""

import pytest

from rehab_engine.hands import FingerChannel
from rehab_engine.report import (
    FIRST_SESSION_MESSAGE,
    ComparisonReport,
    Trend,
    classify_change,
    compare_sessions,
    percent_change,
)


def slots(index, middle=0.0):
    return [0.0, index, middle, 0.0, 0.0]


class TestPercentChange:
    @pytest.mark.parametrize("current,expected,trend", [
        (0.60, 20.0, Trend.IMPROVED),
        (0.48, -4.0, Trend.STABLE),
        (0.40, -20.0, Trend.DECLINED),
    ])
    def test_banding(self, current, expected, trend):
        pct = percent_change(current, 0.50)
        assert pct == pytest.approx(expected)
        assert classify_change(pct) is trend

    def test_band_edges_are_stable(self):
        assert classify_change(percent_change(0.525, 0.5)) is Trend.STABLE
        assert classify_change(percent_change(0.475, 0.5)) is Trend.STABLE
        assert classify_change(5.000001) is Trend.IMPROVED
        assert classify_change(-5.000001) is Trend.DECLINED

    def test_zero_previous(self):
        assert percent_change(0.3, 0.0) == pytest.approx(30.0)
        assert percent_change(0.0, 0.0) == 0.0


class TestCompareSessions:
    def test_first_session(self):
        report = compare_sessions(slots(0.6), None)
        assert report.first_session
        assert report.channels == []
        assert report.render() == FIRST_SESSION_MESSAGE

    def test_per_channel(self):
        report = compare_sessions(slots(0.6, 0.48), slots(0.5, 0.5))
        assert len(report.channels) == 5
        assert report.trend(FingerChannel.INDEX) is Trend.IMPROVED
        assert report.trend(FingerChannel.MIDDLE) is Trend.STABLE
        assert report.trend(FingerChannel.PINKY) is Trend.STABLE

    def test_render(self):
        report = compare_sessions(slots(0.6, 0.4), slots(0.5, 0.5))
        lines = report.render().splitlines()
        assert lines[0] == "Session Comparison (Max Strength):"
        assert "Index: 60% (+20%)" in lines
        assert "Middle: 40% (-20%)" in lines
        assert "Thumb: 0% (Stable)" in lines

    def test_to_dict(self):
        data = compare_sessions(slots(0.6), slots(0.5)).to_dict()
        index = data["channels"][FingerChannel.INDEX]
        assert index["channel"] == "index"
        assert index["trend"] == "improved"
        assert data["first_session"] is False

    def test_empty_report(self):
        report = ComparisonReport(first_session=False)
        assert "No exercises" in report.render()
        assert report.trend(FingerChannel.INDEX) is None
