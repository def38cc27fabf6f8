"""Tests for task definitions and YAML configuration."""

import pytest
import yaml

from rehab_engine.config import RehabConfig, StorageConfig, load_config
from rehab_engine.errors import ConfigurationError
from rehab_engine.hands import FingerChannel, HandSide
from rehab_engine.pinch import SmoothingPolicy
from rehab_engine.postures import Posture
from rehab_engine.tasks import RehabTask, TaskKind, default_tasks

SAMPLE = """
pinch:
  start_threshold: 0.7
  end_threshold: 0.5
  smoothing_factor: 0.4
posture:
  auto_normalize: false
storage:
  data_dir: {data_dir}
tasks:
  - instruction: Pinch and hold
    kind: hold_at_target
    target_channel: index
    target_strength: 0.75
    hold_duration: 2.5
  - instruction: Surya mudra
    kind: posture_hold
    target_posture: surya
    hold_duration: 2
    required_reps: 3
    rest_seconds: 0.8
    hand: left
"""


class TestRehabTask:
    def test_labels(self):
        tasks = default_tasks()
        assert [t.label for t in tasks] == [
            "Hold-index", "Pinch-index", "Pinch-middle", "Mudra-Surya"
        ]
        named = RehabTask("x", TaskKind.HOLD_AT_TARGET, target_channel=FingerChannel.RING, name="Grip")
        assert named.label == "Grip"

    def test_target_strength_clamped(self):
        task = RehabTask("x", TaskKind.HOLD_AT_TARGET, target_channel=FingerChannel.INDEX,
                         target_strength=1.3)
        assert task.target_strength == 1.0

    def test_pinch_task_needs_channel(self):
        with pytest.raises(ConfigurationError):
            RehabTask("x", TaskKind.REPEATED_PINCHES)

    def test_posture_task_needs_posture(self):
        with pytest.raises(ConfigurationError):
            RehabTask("x", TaskKind.POSTURE_HOLD, target_posture=Posture.NONE)

    @pytest.mark.parametrize("kwargs", [
        {"hold_duration": -1.0},
        {"required_reps": 0},
        {"rest_seconds": -0.5},
    ])
    def test_invalid_numbers(self, kwargs):
        with pytest.raises(ConfigurationError):
            RehabTask("x", TaskKind.HOLD_AT_TARGET, target_channel=FingerChannel.INDEX, **kwargs)

    def test_round_trip(self):
        for task in default_tasks():
            assert RehabTask.from_dict(task.to_dict()) == task

    @pytest.mark.parametrize("data", [
        {"kind": "juggle"},
        {"kind": "hold_at_target", "target_channel": "elbow"},
        {"kind": "posture_hold", "target_posture": "Garuda"},
        {"instruction": "no kind"},
    ])
    def test_from_dict_invalid(self, data):
        with pytest.raises(ConfigurationError):
            RehabTask.from_dict(data)


class TestRehabConfig:
    def test_default(self):
        cfg = RehabConfig.default()
        assert cfg.pinch.policy is SmoothingPolicy.TIME_CONSTANT
        assert len(cfg.tasks) == 4

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "rehab.yaml"
        path.write_text(SAMPLE.format(data_dir=tmp_path / "data"))

        cfg = RehabConfig.from_yaml(path)
        assert cfg.pinch.start_threshold == 0.7
        assert cfg.pinch.policy is SmoothingPolicy.FACTOR
        assert cfg.posture.auto_normalize is False
        assert cfg.storage.store().path == tmp_path / "data" / "rehabData.json"

        hold, mudra = cfg.tasks
        assert hold.target_strength == 0.75
        assert mudra.target_posture is Posture.SURYA
        assert mudra.hand is HandSide.LEFT
        assert mudra.required_reps == 3

    def test_yaml_round_trip(self, tmp_path):
        path = tmp_path / "out.yaml"
        cfg = RehabConfig.default()
        cfg.to_yaml(path)
        assert RehabConfig.from_yaml(path) == cfg

    def test_bad_thresholds_fail_at_load(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("pinch:\n  start_threshold: 0.4\n  end_threshold: 0.5\n")
        with pytest.raises(ConfigurationError):
            RehabConfig.from_yaml(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("pinch: [unclosed\n")
        with pytest.raises(ConfigurationError):
            RehabConfig.from_yaml(path)

    def test_unknown_section(self):
        with pytest.raises(ConfigurationError):
            RehabConfig.from_dict({"pinches": {}})

    @pytest.mark.parametrize("data", [
        {"pinch": [0.7, 0.5]},
        {"pinch": {"start_threshold": "high"}},
        {"posture": "normalized"},
        {"posture": {"rules": 5}},
        {"storage": ["data"]},
        {"tasks": [5]},
    ])
    def test_malformed_values(self, data):
        with pytest.raises(ConfigurationError):
            RehabConfig.from_dict(data)

    def test_tasks_must_be_list(self):
        with pytest.raises(ConfigurationError):
            RehabConfig.from_dict({"tasks": {"kind": "hold_at_target"}})

    def test_task_channel_must_be_tracked(self):
        data = {"tasks": [{"kind": "hold_at_target", "target_channel": "thumb"}]}
        with pytest.raises(ConfigurationError):
            RehabConfig.from_dict(data)
        data["pinch"] = {"include_thumb": True}
        assert RehabConfig.from_dict(data).tasks[0].target_channel is FingerChannel.THUMB

    def test_empty_file_is_defaults_without_tasks(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        cfg = RehabConfig.from_yaml(path)
        assert cfg.tasks == []
        assert cfg.storage == StorageConfig()


class TestLoadConfig:
    def test_no_path_is_default(self):
        assert load_config() == RehabConfig.default()

    def test_require_tasks(self, tmp_path):
        path = tmp_path / "notasks.yaml"
        path.write_text(yaml.dump({"pinch": {"start_threshold": 0.7}}))
        assert load_config(path).tasks == []
        with pytest.raises(ConfigurationError):
            load_config(path, require_tasks=True)
