"""Deployment configuration loaded from YAML.

Example:

    pinch:
      start_threshold: 0.6
      end_threshold: 0.45
      smoothing_time_constant: 0.15
    posture:
      auto_normalize: true
      reference_hand_length: 0.10
    storage:
      data_dir: data
    tasks:
      - instruction: Pinch your index finger and hold
        kind: hold_at_target
        target_channel: index
        target_strength: 0.8
        hold_duration: 3.0

Every contract violation raises ConfigurationError at load time so a bad
file fails before a session starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml

from rehab_engine.errors import ConfigurationError, config_mapping
from rehab_engine.pinch import PinchConfig
from rehab_engine.postures import PostureConfig
from rehab_engine.storage import EXPORT_PREFIX, RECORD_FILENAME, SessionStore
from rehab_engine.tasks import RehabTask, default_tasks

_SECTIONS = {"pinch", "posture", "storage", "tasks"}


@dataclass
class StorageConfig:
    data_dir: str = "data"
    record_filename: str = RECORD_FILENAME
    export_prefix: str = EXPORT_PREFIX

    def store(self) -> SessionStore:
        return SessionStore(self.data_dir, self.record_filename)

    @property
    def export_dir(self) -> Path:
        return Path(self.data_dir).expanduser()

    def to_dict(self) -> dict:
        return {
            "data_dir": self.data_dir,
            "record_filename": self.record_filename,
            "export_prefix": self.export_prefix,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> StorageConfig:
        data = config_mapping("storage", data)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown storage options: {sorted(unknown)}")
        return cls(**{k: str(v) for k, v in data.items()})


@dataclass
class RehabConfig:
    pinch: PinchConfig = field(default_factory=PinchConfig)
    posture: PostureConfig = field(default_factory=PostureConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    tasks: list[RehabTask] = field(default_factory=list)

    def __post_init__(self):
        channels = self.pinch.channels
        for task in self.tasks:
            if task.target_channel is not None and task.target_channel not in channels:
                raise ConfigurationError(
                    f"Task {task.label!r} targets {task.target_channel.label}, which is "
                    f"not a tracked pinch channel (enable include_thumb to track the thumb)"
                )

    @classmethod
    def default(cls) -> RehabConfig:
        """Standard deployment: frame-rate independent smoothing, default tasks."""
        return cls(
            pinch=PinchConfig(smoothing_time_constant=0.15),
            tasks=default_tasks(),
        )

    def to_dict(self) -> dict:
        return {
            "pinch": self.pinch.to_dict(),
            "posture": self.posture.to_dict(),
            "storage": self.storage.to_dict(),
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping]) -> RehabConfig:
        data = data or {}
        if not isinstance(data, Mapping):
            raise ConfigurationError("Configuration must be a mapping")
        unknown = set(data) - _SECTIONS
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")

        tasks = data.get("tasks") or []
        if not isinstance(tasks, list):
            raise ConfigurationError("'tasks' must be a list")

        return cls(
            pinch=PinchConfig.from_dict(data.get("pinch") or {}),
            posture=PostureConfig.from_dict(data.get("posture") or {}),
            storage=StorageConfig.from_dict(data.get("storage") or {}),
            tasks=[RehabTask.from_dict(t) for t in tasks],
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> RehabConfig:
        """Load a configuration file."""
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from None
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def load_config(path: Optional[str | Path] = None, require_tasks: bool = False) -> RehabConfig:
    """Load ``path`` or fall back to the default deployment.

    Args:
        path: YAML file, or None for ``RehabConfig.default()``.
        require_tasks: Reject a configuration with an empty task sequence.
    """
    config = RehabConfig.from_yaml(path) if path else RehabConfig.default()
    if require_tasks and not config.tasks:
        raise ConfigurationError("The task sequence is empty; a session needs at least one task")
    return config
