"""Tests for the pinch detection engine."""

import math

import numpy as np
import pytest

from rehab_engine.errors import ConfigurationError
from rehab_engine.hands import FingerChannel, HandFrame, HandSide
from rehab_engine.pinch import (
    PinchConfig,
    PinchDetector,
    PinchEventType,
    SmoothingPolicy,
    StrengthSource,
    blend_weight,
    clamp01,
    distance_to_strength,
)
from rehab_engine.synthetic import hand_joints

R = HandSide.RIGHT
L = HandSide.LEFT
INDEX = FingerChannel.INDEX


def index_only(value):
    return {INDEX: value}


def kinds(events, channel=INDEX, skip_micro=True):
    return [
        e.kind for e in events
        if e.channel is channel and not (skip_micro and e.kind is PinchEventType.MICRO_MOVEMENT)
    ]


class TestPinchConfig:
    def test_defaults(self):
        cfg = PinchConfig()
        assert cfg.start_threshold == 0.6
        assert cfg.end_threshold == 0.45
        assert cfg.policy is SmoothingPolicy.NONE
        assert cfg.channels == (
            FingerChannel.INDEX, FingerChannel.MIDDLE, FingerChannel.RING, FingerChannel.PINKY
        )

    def test_end_must_be_below_start(self):
        with pytest.raises(ConfigurationError):
            PinchConfig(start_threshold=0.5, end_threshold=0.5)
        with pytest.raises(ConfigurationError):
            PinchConfig(start_threshold=0.4, end_threshold=0.5)

    def test_thresholds_in_unit_range(self):
        with pytest.raises(ConfigurationError):
            PinchConfig(start_threshold=1.2)

    def test_one_smoothing_policy_only(self):
        with pytest.raises(ConfigurationError):
            PinchConfig(smoothing_factor=0.5, smoothing_time_constant=0.1)

    def test_policy_selection(self):
        assert PinchConfig(smoothing_factor=0.3).policy is SmoothingPolicy.FACTOR
        assert PinchConfig(smoothing_time_constant=0.1).policy is SmoothingPolicy.TIME_CONSTANT

    def test_bad_factor(self):
        with pytest.raises(ConfigurationError):
            PinchConfig(smoothing_factor=0.0)
        with pytest.raises(ConfigurationError):
            PinchConfig(smoothing_time_constant=-1.0)

    def test_include_thumb(self):
        assert PinchConfig(include_thumb=True).channels[0] is FingerChannel.THUMB

    def test_from_dict_round_trip(self):
        cfg = PinchConfig(smoothing_time_constant=0.2, strength_source="distance")
        assert cfg.strength_source is StrengthSource.DISTANCE
        again = PinchConfig.from_dict(cfg.to_dict())
        assert again == cfg

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError):
            PinchConfig.from_dict({"start": 0.7})

    @pytest.mark.parametrize("data", [
        {"start_threshold": "high"},
        {"smoothing_time_constant": [0.1]},
        {"micro_movement_delta": None},
        {"micro_movement_delta": float("nan")},
        {"include_thumb": "yes"},
        {"strength_source": 5},
    ])
    def test_from_dict_wrong_types(self, data):
        with pytest.raises(ConfigurationError):
            PinchConfig.from_dict(data)

    def test_from_dict_needs_mapping(self):
        with pytest.raises(ConfigurationError):
            PinchConfig.from_dict([0.7, 0.5])

    def test_numeric_strings_are_coerced(self):
        cfg = PinchConfig.from_dict({"start_threshold": "0.7", "end_threshold": 0})
        assert cfg.start_threshold == 0.7
        assert isinstance(cfg.end_threshold, float)


class TestSmoothing:
    def test_factor_policy(self):
        det = PinchDetector(PinchConfig(smoothing_factor=0.5))
        det.observe(R, index_only(0.0))
        det.observe(R, index_only(1.0))
        assert det.strength(R, INDEX) == pytest.approx(0.5)
        det.observe(R, index_only(1.0))
        assert det.strength(R, INDEX) == pytest.approx(0.75)

    def test_factor_ignores_dt(self):
        a = PinchDetector(PinchConfig(smoothing_factor=0.5))
        b = PinchDetector(PinchConfig(smoothing_factor=0.5))
        for det, dt in ((a, 0.01), (b, 0.1)):
            det.observe(R, index_only(0.0), dt=dt)
            det.observe(R, index_only(1.0), dt=dt)
        assert a.strength(R, INDEX) == b.strength(R, INDEX)

    def test_time_constant_policy(self):
        det = PinchDetector(PinchConfig(smoothing_time_constant=0.1))
        det.observe(R, index_only(0.0), dt=0.1)
        det.observe(R, index_only(1.0), dt=0.1)
        assert det.strength(R, INDEX) == pytest.approx(1.0 - math.exp(-1.0))

    def test_time_constant_is_frame_rate_independent(self):
        fast = PinchDetector(PinchConfig(smoothing_time_constant=0.2))
        slow = PinchDetector(PinchConfig(smoothing_time_constant=0.2))
        fast.observe(R, index_only(0.0))
        slow.observe(R, index_only(0.0))

        for _ in range(12):
            fast.observe(R, index_only(1.0), dt=1 / 120)
        for _ in range(3):
            slow.observe(R, index_only(1.0), dt=1 / 30)

        assert fast.strength(R, INDEX) == pytest.approx(slow.strength(R, INDEX))

    def test_zero_time_constant_is_instant(self):
        assert blend_weight(SmoothingPolicy.TIME_CONSTANT, None, 0.0, 0.016) == 1.0

    def test_zero_dt_holds_value(self):
        assert blend_weight(SmoothingPolicy.TIME_CONSTANT, None, 0.1, 0.0) == 0.0

    def test_first_sample_primes_filter(self):
        det = PinchDetector(PinchConfig(smoothing_factor=0.1))
        det.observe(R, index_only(0.7))
        assert det.strength(R, INDEX) == pytest.approx(0.7)

    @pytest.mark.parametrize("config", [
        PinchConfig(smoothing_factor=0.35),
        PinchConfig(smoothing_time_constant=0.08),
    ])
    def test_bounded_and_monotone_toward_raw(self, config):
        rng = np.random.default_rng(7)
        det = PinchDetector(config)
        det.observe(R, index_only(0.0), dt=1 / 60)
        for raw in rng.uniform(-0.5, 1.5, size=300):
            prev = det.strength(R, INDEX)
            dt = float(rng.uniform(0.0, 0.05))
            det.observe(R, index_only(raw), dt=dt)
            value = det.strength(R, INDEX)
            target = clamp01(raw)

            assert 0.0 <= value <= 1.0
            lo, hi = sorted((prev, target))
            assert lo - 1e-12 <= value <= hi + 1e-12

    def test_raw_is_clamped(self):
        det = PinchDetector()
        det.observe(R, index_only(1.7))
        assert det.strength(R, INDEX) == 1.0
        det.observe(R, index_only(float("nan")))
        assert det.strength(R, INDEX) == 0.0


class TestHysteresis:
    def test_end_to_end_scenario(self):
        det = PinchDetector(PinchConfig(start_threshold=0.6, end_threshold=0.45))
        for _ in range(3):
            assert det.observe(R, [], is_tracked=False) == []

        per_frame = [kinds(det.observe(R, index_only(v))) for v in (0.2, 0.7, 0.9, 0.3)]

        assert per_frame == [
            [],
            [PinchEventType.START],
            [PinchEventType.HOLD],
            [PinchEventType.END],
        ]

    def test_band_values_do_not_engage(self):
        det = PinchDetector()
        for v in (0.5, 0.59, 0.45, 0.55):
            assert kinds(det.observe(R, index_only(v))) == []
        assert not det.is_pinched(R, INDEX)

    def test_band_values_do_not_release(self):
        det = PinchDetector()
        det.observe(R, index_only(0.8))
        for v in (0.5, 0.45, 0.59):
            assert kinds(det.observe(R, index_only(v))) == [PinchEventType.HOLD]
        assert det.is_pinched(R, INDEX)
        assert kinds(det.observe(R, index_only(0.449))) == [PinchEventType.END]

    def test_start_at_exact_threshold(self):
        det = PinchDetector()
        det.observe(R, index_only(0.0))
        assert kinds(det.observe(R, index_only(0.6))) == [PinchEventType.START]

    def test_event_strength_is_smoothed(self):
        det = PinchDetector()
        events = det.observe(R, index_only(0.75))
        start = [e for e in events if e.kind is PinchEventType.START][0]
        assert start.strength == pytest.approx(0.75)
        assert start.hand is R

    def test_channels_are_independent(self):
        det = PinchDetector()
        events = det.observe(R, [0.9, 0.1, 0.9, 0.1])
        started = {e.channel for e in events if e.kind is PinchEventType.START}
        assert started == {FingerChannel.INDEX, FingerChannel.RING}

    def test_hands_are_independent(self):
        det = PinchDetector()
        det.observe(L, index_only(0.9))
        det.observe(R, index_only(0.1))
        assert det.is_pinched(L, INDEX)
        assert not det.is_pinched(R, INDEX)


class TestMicroMovement:
    def test_fires_on_delta(self):
        det = PinchDetector(PinchConfig(micro_movement_delta=0.01))
        micro = []
        for v in (0.0, 0.3, 0.3, 0.305, 0.32):
            events = det.observe(R, index_only(v))
            micro.append(sum(e.kind is PinchEventType.MICRO_MOVEMENT for e in events))
        assert micro == [0, 1, 0, 0, 1]

    def test_steady_drift_fires_every_frame(self):
        det = PinchDetector(PinchConfig(micro_movement_delta=0.01))
        det.observe(R, index_only(0.0))
        count = 0
        for i in range(1, 21):
            events = det.observe(R, index_only(i * 0.02))
            count += sum(e.kind is PinchEventType.MICRO_MOVEMENT for e in events)
        assert count == 20

    def test_slow_drift_accumulates(self):
        det = PinchDetector(PinchConfig(micro_movement_delta=0.05))
        det.observe(R, index_only(0.0))
        count = 0
        for i in range(1, 101):
            events = det.observe(R, index_only(i * 0.005))
            count += sum(e.kind is PinchEventType.MICRO_MOVEMENT for e in events)
        # 0.5 total drift in 0.05 steps
        assert abs(count - 10) <= 1

    @pytest.mark.parametrize("delta, steps", [
        (0.1, 10),
        (0.01, 100),
        (0.2, 5),
        (0.25, 4),
        (0.1, 20),
    ])
    def test_full_ramp_count(self, delta, steps):
        det = PinchDetector(PinchConfig(micro_movement_delta=delta))
        count = 0
        for i in range(steps + 1):
            events = det.observe(R, index_only(i / steps))
            count += sum(e.kind is PinchEventType.MICRO_MOVEMENT for e in events)
        assert count == math.floor(1 / delta + 1e-9)


class TestTrackingLoss:
    def test_loss_releases_latch(self):
        det = PinchDetector()
        det.observe(R, index_only(0.9))
        events = det.observe(R, [], is_tracked=False)

        assert [(e.kind, e.channel, e.strength) for e in events] == [
            (PinchEventType.END, INDEX, 0.0)
        ]
        assert det.strength(R, INDEX) == 0.0
        assert not det.is_pinched(R, INDEX)

    def test_repeated_loss_is_silent(self):
        det = PinchDetector()
        det.observe(R, index_only(0.9))
        det.observe(R, [], is_tracked=False)
        assert det.observe(R, [], is_tracked=False) == []

    def test_resume_blends_from_zero(self):
        det = PinchDetector(PinchConfig(smoothing_factor=0.5))
        det.observe(R, index_only(0.9))
        det.observe(R, [], is_tracked=False)
        det.observe(R, index_only(0.8))
        assert det.strength(R, INDEX) == pytest.approx(0.4)

    def test_loss_only_affects_one_hand(self):
        det = PinchDetector()
        det.observe(L, index_only(0.9))
        det.observe(R, index_only(0.9))
        det.observe(R, [], is_tracked=False)
        assert det.is_pinched(L, INDEX)


class TestChannelContract:
    def test_wrong_length_rejected(self):
        det = PinchDetector()
        with pytest.raises(ValueError):
            det.observe(R, [0.1, 0.2, 0.3])

    def test_unconfigured_channel_in_mapping_rejected(self):
        det = PinchDetector()
        with pytest.raises(ValueError):
            det.observe(R, {FingerChannel.THUMB: 0.5})

    def test_unconfigured_channel_query_rejected(self):
        det = PinchDetector()
        with pytest.raises(ValueError):
            det.strength(R, FingerChannel.THUMB)
        with pytest.raises(ValueError):
            det.is_pinched(R, 7)

    def test_parse_rejects_fractional_index(self):
        assert FingerChannel.parse(2) is FingerChannel.MIDDLE
        assert FingerChannel.parse(2.0) is FingerChannel.MIDDLE
        for value in (1.7, 0.5, float("nan"), True, None):
            with pytest.raises(ValueError):
                FingerChannel.parse(value)

    def test_fractional_channel_query_rejected(self):
        det = PinchDetector()
        with pytest.raises(ValueError):
            det.strength(R, 1.7)

    def test_thumb_when_enabled(self):
        det = PinchDetector(PinchConfig(include_thumb=True))
        det.observe(R, [0.9, 0.0, 0.0, 0.0, 0.0])
        assert det.is_pinched(R, FingerChannel.THUMB)

    def test_every_pair_has_a_slot(self):
        det = PinchDetector()
        for side in HandSide:
            for ch in det.channels:
                assert det.strength(side, ch) == 0.0
                assert not det.is_pinched(side, ch)

    def test_state_is_a_copy(self):
        det = PinchDetector()
        det.observe(R, index_only(0.9))
        snapshot = det.state(R, INDEX)
        snapshot.is_pinched = False
        assert det.is_pinched(R, INDEX)

    def test_reset(self):
        det = PinchDetector()
        det.observe(R, index_only(0.9))
        det.reset()
        assert not det.is_pinched(R, INDEX)
        assert det.strength(R, INDEX) == 0.0


class TestDistanceStrength:
    def test_mapping(self):
        assert distance_to_strength(0.01, 0.015, 0.05) == 1.0
        assert distance_to_strength(0.05, 0.015, 0.05) == 0.0
        assert distance_to_strength(0.0325, 0.015, 0.05) == pytest.approx(0.5)

    def test_observe_frame_from_joints(self):
        det = PinchDetector(PinchConfig(strength_source=StrengthSource.DISTANCE))
        frame = HandFrame(tracked=True, joints=hand_joints([INDEX]))
        events = det.observe_frame(R, frame)

        assert det.strength(R, INDEX) == 1.0
        assert det.strength(R, FingerChannel.MIDDLE) == 0.0
        assert PinchEventType.START in kinds(events)

    def test_observe_frame_native_ignores_extra_channels(self):
        det = PinchDetector()
        frame = HandFrame(tracked=True, strengths={FingerChannel.THUMB: 1.0, INDEX: 0.7})
        det.observe_frame(R, frame)
        assert det.strength(R, INDEX) == pytest.approx(0.7)

    def test_observe_frame_untracked(self):
        det = PinchDetector()
        det.observe(R, index_only(0.9))
        events = det.observe_frame(R, HandFrame.untracked())
        assert kinds(events) == [PinchEventType.END]
